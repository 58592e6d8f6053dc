from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Mapping, Tuple

import numpy as np

from .core import Calculator, _number, as_bool, recipe_water
from .data_io import DEFAULT_RATIO, CalMagConfig, Target, load_config, load_recipe
from .errors import InvalidInput
from .metrics import max_abs_deviation_percent
from .solver import DosingResult


class Comparator:
    """Runs every catalog fertilizer against the same water and ratio.

    Each fertilizer gets its own ``Calculator`` with no additives, so the
    evaluations are independent of each other.
    """

    def __init__(
        self,
        water_elements: Mapping[str, float],
        ratio: float = DEFAULT_RATIO,
        *,
        config: CalMagConfig | None = None,
        targets: Mapping[str, Target | Mapping] | None = None,
        dilution_support: bool | None = None,
    ) -> None:
        self._config = config if config is not None else load_config()
        self._targets = dict(targets or {})
        self._dilution_support = dilution_support
        self._ratio = (DEFAULT_RATIO, 1.0)
        self.set_ratio(ratio)
        self.set_water_elements(water_elements)

    def set_water_elements(self, water_elements: Mapping[str, float]) -> None:
        self._water = {str(k): float(v) for k, v in water_elements.items()}

    def set_ratio(self, calcium: float, magnesium: float = 1.0) -> None:
        if magnesium <= 0:
            magnesium = 1.0
        self._ratio = (float(calcium), float(magnesium))

    @property
    def ratio_calcium(self) -> float:
        calcium, magnesium = self._ratio
        return calcium / magnesium

    def _calculator(self, fertilizer: str) -> Calculator:
        calculator = Calculator(
            self._water,
            fertilizer,
            {"calcium": "", "magnesium": ""},
            self.ratio_calcium,
            config=self._config,
            dilution_support=self._dilution_support,
        )
        if self._targets:
            calculator.set_targets(self._targets)
        return calculator

    def calculate(self) -> Dict[str, Dict[str, DosingResult]]:
        """Per-stage dosing results keyed by fertilizer."""
        return {
            fertilizer: self._calculator(fertilizer).get_applied_fertilizer()
            for fertilizer in self._config.fertilizers
        }

    def rank(self, results: Mapping[str, Mapping[str, DosingResult]] | None = None) -> List[Tuple[str, float]]:
        """Fertilizers ordered by their worst stage deviation from target (percent)."""
        if results is None:
            results = self.calculate()
        names = list(results)
        scores = np.array([max_abs_deviation_percent(results[name]) for name in names], dtype=float)
        return [(names[idx], float(scores[idx])) for idx in np.argsort(scores, kind="stable")]

    def report(self) -> dict:
        results = self.calculate()
        return {
            "results": {
                fertilizer: {state: result.to_dict() for state, result in stages.items()}
                for fertilizer, stages in results.items()
            },
            "ranking": [
                {"fertilizer": fertilizer, "max_deviation_percent": score}
                for fertilizer, score in self.rank(results)
            ],
        }


def compare_recipe(recipe_path: Path) -> dict:
    recipe = load_recipe(recipe_path)
    config = load_config()
    ratio = _number(recipe, "ratio", config.ratio)
    if ratio <= 0:
        raise InvalidInput("Invalid ratio: must be positive")
    comparator = Comparator(
        recipe_water(recipe),
        ratio,
        config=config,
        targets=recipe.get("targets"),
        dilution_support=as_bool(recipe.get("support_dilution", config.dilution_support)),
    )
    return comparator.report()
