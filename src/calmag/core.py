from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, List, Mapping

from .catalog import MIN_LEVEL, apply_offset, normalize_additive, normalize_fertilizer, validate_target
from .data_io import (
    DEFAULT_RATIO,
    Additive,
    CalMagConfig,
    Fertilizer,
    GrowState,
    Ratio,
    Target,
    load_config,
    load_molar_masses,
    load_recipe,
    parse_additive,
    parse_target,
)
from .elements import convert_elements, derive_secondary_elements, parse_elements, summarize_elements
from .errors import InvalidArgument, InvalidInput, NotFound
from .metrics import deficiency_ratio
from .solver import SLOTS, DosingContext, DosingResult, SuggestedAdditive, calculate_fertilizer, suggest_additives
from .table import WeeklyTable, generate_result_table

logger = logging.getLogger(__name__)


CUSTOM_FERTILIZER_LABEL = "Custom"
CUSTOM_ADDITIVE_LABELS = {
    "calcium": "Custom calcium additive",
    "magnesium": "Custom magnesium additive",
}
WATER_UNITS = ("mg", "mmol")


@dataclass
class CalculationResult:
    deficiency: Dict[str, float]
    results: Dict[str, DosingResult]
    table: WeeklyTable

    def to_dict(self) -> dict:
        return {
            "deficiency": self.deficiency,
            "results": {state: result.to_dict() for state, result in self.results.items()},
            "table": self.table.to_dict(),
        }


class Calculator:
    """Calcium/magnesium dosing engine for one water source.

    Holds the normalized catalog, the fertilizer and additive selection, the
    target Ca:Mg ratio and the per-stage targets. Every ``calculate*`` call is a
    pure function of that state; only the ``set_*``/``add_*`` methods change it.
    """

    def __init__(
        self,
        water: Mapping[str, float],
        fertilizer: str = "",
        additive: Mapping[str, str] | None = None,
        ratio: float = DEFAULT_RATIO,
        *,
        config: CalMagConfig | None = None,
        dilution_support: bool | None = None,
    ) -> None:
        if "calcium" not in water or "magnesium" not in water:
            raise InvalidArgument("Water needs to have calcium and magnesium values")
        if config is None:
            config = load_config()

        self._fertilizers: Dict[str, Fertilizer] = dict(config.fertilizers)
        self._additives: Dict[str, Dict[str, Additive]] = {
            element: dict(group) for element, group in config.additives.items()
        }
        for slot in SLOTS:
            self._additives.setdefault(slot, {})

        self._ratio = Ratio()
        self._raw_targets: Dict[str, Target] = {}
        self._targets: Dict[str, Target] = {}
        self._target_offset = 0.0
        self._fertilizer = ""
        self._additive: Dict[str, str] = {slot: "" for slot in SLOTS}
        self._water_input: Dict[str, float] | None = None
        self._water: Dict[str, float] = {slot: MIN_LEVEL for slot in SLOTS}
        if dilution_support is None:
            dilution_support = config.dilution_support
        self._dilution_support = bool(dilution_support)

        self.set_ratio(ratio, 1.0)
        self.set_fertilizer(fertilizer)
        self.set_additive(additive or {})
        self._boot(config.targets)
        self.set_water(water)

    def _boot(self, targets: Mapping[str, Target]) -> None:
        self._fertilizers = {key: normalize_fertilizer(fert) for key, fert in self._fertilizers.items()}
        self._additives = {
            element: {key: normalize_additive(additive) for key, additive in group.items()}
            for element, group in self._additives.items()
        }
        self.set_targets(targets)

    def calculate(self) -> CalculationResult:
        return CalculationResult(
            deficiency=self.get_deficiency_ratio(),
            results=self.get_applied_fertilizer(),
            table=self.generate_result_table(),
        )

    def calculate_fertilizer(self, target: Target | Mapping) -> DosingResult:
        target = validate_target(parse_target(target), self.ratio_calcium)
        return calculate_fertilizer(target, self._context())

    def get_applied_fertilizer(self) -> Dict[str, DosingResult]:
        """One dosing result per stage target, without weekly interpolation."""
        return {
            state: self.calculate_fertilizer(self._targets[state])
            for state in GrowState.ordered(self._targets)
        }

    def generate_result_table(self) -> WeeklyTable:
        selected = self._selected_additives()
        return generate_result_table(
            self._targets,
            self.ratio_calcium,
            self.calculate_fertilizer,
            fertilizer=self._fertilizer,
            additives=self._additive,
            additive_concentrations={
                slot: additive.concentration if additive is not None else 0.0
                for slot, additive in selected.items()
            },
        )

    def get_suggested_additives(self, missing: Mapping[str, float]) -> Dict[str, SuggestedAdditive]:
        return suggest_additives(missing, self._context())

    def get_deficiency_ratio(self) -> Dict[str, float]:
        return deficiency_ratio(self._water)

    def get_fertilizer_components(self, ml: float) -> Dict[str, float]:
        fert = self._fertilizers.get(self._fertilizer)
        elements = summarize_elements(fert.elements if fert is not None else {})
        return {component: value * 10.0 * ml for component, value in elements.items()}

    def get_additive_components(self, element: str, ml: float) -> Dict[str, float]:
        additive = self._selected_additives().get(element)
        if additive is None:
            return {}
        return {component: value * ml for component, value in additive.real.items()}

    def _selected_additives(self) -> Dict[str, Additive | None]:
        return {
            slot: self._additives[slot].get(key) if key else None
            for slot, key in self._additive.items()
        }

    def _context(self) -> DosingContext:
        return DosingContext(
            water=dict(self._water),
            ratio_calcium=self.ratio_calcium,
            fertilizer=self._fertilizers.get(self._fertilizer) if self._fertilizer else None,
            additives=self._selected_additives(),
            additive_names=dict(self._additive),
            dilution_support=self._dilution_support,
        )

    def set_fertilizer(self, fertilizer: str) -> None:
        if fertilizer and fertilizer not in self._fertilizers:
            raise NotFound(f"Fertilizer not found: {fertilizer}")
        self._fertilizer = fertilizer
        self._refresh_water()

    def set_additive(self, additives: Mapping[str, str], concentrations: Mapping[str, float] | None = None) -> None:
        """Select one additive per slot; slots not given are cleared.

        ``concentrations`` (percent) overrides the selected additives'
        concentration and recomputes their yield.
        """
        for element, key in additives.items():
            if key and key not in self._additives.get(element, {}):
                raise NotFound(f"Additive not found for {element}: {key}")
        self._additive = {slot: str(additives.get(slot) or "") for slot in SLOTS}

        for element, concentration in (concentrations or {}).items():
            key = self._additive.get(element)
            if not key:
                continue
            concentration = min(max(float(concentration), 0.0), 100.0)
            additive = self._additives[element][key]
            self._additives[element][key] = normalize_additive(replace(additive, concentration=concentration))
        self._refresh_water()

    def set_water(self, elements: Mapping[str, float]) -> None:
        """Replace the source water. Never fails; bad values are healed and logged."""
        water: Dict[str, float] = {}
        for element, value in elements.items():
            try:
                value = float(value)
            except (TypeError, ValueError):
                logger.warning("Ignoring non-numeric water value %r for %s", value, element)
                continue
            if value < 0:
                logger.warning("Negative water value %s for %s, using 0", value, element)
                value = 0.0
            water[str(element)] = value
        self._water_input = water
        self._refresh_water()

    def _refresh_water(self) -> None:
        if self._water_input is None:
            return
        water = derive_secondary_elements(self._water_input)
        for element in SLOTS:
            if water.get(element, 0.0) <= 0:
                water[element] = MIN_LEVEL

        fert = self._fertilizers.get(self._fertilizer) if self._fertilizer else None
        if fert is None or not fert.elements:
            self._water = water
            return

        relevant = dict.fromkeys(SLOTS)
        relevant.update(dict.fromkeys(fert.elements))
        for additive in self._selected_additives().values():
            if additive is not None:
                relevant.update(dict.fromkeys(additive.real))
        self._water = {element: water.get(element, 0.0) for element in relevant}

    def set_ratio(self, calcium: float, magnesium: float = 1.0) -> None:
        """Set the target Ca:Mg ratio and re-derive every stage target from it."""
        if magnesium <= 0:
            magnesium = 1.0
        if calcium <= 0:
            logger.warning("Non-positive calcium ratio %s, using %s", calcium, DEFAULT_RATIO)
            calcium = DEFAULT_RATIO
        self._ratio = Ratio(calcium=float(calcium), magnesium=float(magnesium))
        self._revalidate_targets()

    def set_target(self, state: GrowState | str, target: Target | Mapping) -> None:
        state = state.value if isinstance(state, GrowState) else str(state)
        self._raw_targets[state] = replace(parse_target(target, state), state=state)
        self._revalidate_targets()

    def set_targets(self, targets: Mapping[str, Target | Mapping]) -> None:
        for state, target in targets.items():
            state = state.value if isinstance(state, GrowState) else str(state)
            self._raw_targets[state] = replace(parse_target(target, state), state=state)
        self._revalidate_targets()

    def set_target_offset(self, percent: float) -> None:
        """Scale every stage's element targets by ``1 + percent/100``.

        Replaces any earlier offset; targets are re-validated afterwards.
        """
        self._target_offset = float(percent)
        self._revalidate_targets()

    def _revalidate_targets(self) -> None:
        self._targets = {
            state: validate_target(apply_offset(target, self._target_offset), self.ratio_calcium)
            for state, target in self._raw_targets.items()
        }

    def set_dilution_support(self, dilution_support: bool) -> None:
        self._dilution_support = bool(dilution_support)

    def add_fertilizer(
        self,
        name: str,
        elements: Mapping[str, object],
        density: float = 1.0,
        brand: str = "",
    ) -> str:
        fert = normalize_fertilizer(
            Fertilizer(name=name, brand=brand, elements=parse_elements(elements), density=float(density or 1.0))
        )
        self._fertilizers[fert.key] = fert
        return fert.key

    def add_additive(self, element: str, key: str, additive: Additive | Mapping) -> None:
        self._additives.setdefault(element, {})[key] = normalize_additive(parse_additive(additive))

    @property
    def water(self) -> Dict[str, float]:
        return dict(self._water)

    @property
    def fertilizer(self) -> str:
        return self._fertilizer

    @property
    def additive(self) -> Dict[str, str]:
        return dict(self._additive)

    @property
    def targets(self) -> Dict[str, Target]:
        return dict(self._targets)

    @property
    def target_offset(self) -> float:
        return self._target_offset

    @property
    def fertilizers(self) -> Dict[str, Fertilizer]:
        return dict(self._fertilizers)

    @property
    def additives(self) -> Dict[str, Dict[str, Additive]]:
        return {element: dict(group) for element, group in self._additives.items()}

    @property
    def elements(self) -> List[str]:
        names = set(self._water)
        for fert in self._fertilizers.values():
            names.update(fert.elements)
        for group in self._additives.values():
            for additive in group.values():
                names.update(additive.elements)
        return sorted(names)

    @property
    def ratio(self) -> Ratio:
        return self._ratio

    @property
    def ratio_calcium(self) -> float:
        return self._ratio.calcium_per_magnesium

    @property
    def dilution_support(self) -> bool:
        return self._dilution_support

    def get_ratio(self, element: str) -> float:
        return getattr(self._ratio, element)


def as_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "on", "yes", "1")


def _number(recipe: Mapping, key: str, default: float) -> float:
    value = recipe.get(key, default)
    try:
        return float(default if value is None else value)
    except (TypeError, ValueError) as exc:
        raise InvalidInput(f"Invalid value for {key}: {value!r}") from exc


def recipe_volume(recipe: Mapping) -> float:
    volume = _number(recipe, "volume", 1.0)
    if volume <= 0:
        raise InvalidInput("Invalid volume: must be positive")
    return volume


def recipe_water(recipe: Mapping, molar_masses: Mapping[str, float] | None = None) -> Dict[str, float]:
    units = dict(recipe.get("water_units") or {})
    for element, unit in units.items():
        if str(unit).strip().lower() not in WATER_UNITS:
            raise InvalidInput(f"Invalid unit for {element}: {unit!r}")
    if molar_masses is None:
        molar_masses = load_molar_masses()
    return convert_elements(recipe.get("water") or {}, units, molar_masses)


def build_calculator(
    recipe: Mapping,
    config: CalMagConfig | None = None,
    molar_masses: Mapping[str, float] | None = None,
) -> Calculator:
    """Validate a recipe payload and return a configured ``Calculator``."""
    if config is None:
        config = load_config()

    ratio = _number(recipe, "ratio", config.ratio)
    if ratio <= 0:
        raise InvalidInput("Invalid ratio: must be positive")
    target_offset = _number(recipe, "target_offset", 0.0)
    if not -100.0 <= target_offset <= 100.0:
        raise InvalidInput("Invalid target offset: must be between -100 and 100")
    recipe_volume(recipe)

    concentrations = {
        str(element): float(value) for element, value in (recipe.get("additive_concentration") or {}).items()
    }
    for element, unit in (recipe.get("additive_units") or {}).items():
        # anything but "ml" is a dry additive dosed by weight at full strength
        if str(unit).strip().lower() != "ml":
            concentrations[str(element)] = 100.0

    calculator = Calculator(
        recipe_water(recipe, molar_masses),
        ratio=ratio,
        config=config,
        dilution_support=as_bool(recipe.get("support_dilution", config.dilution_support)),
    )

    fertilizer = str(recipe.get("fertilizer") or "")
    custom_elements = recipe.get("fertilizer_elements") or {}
    custom_summary = summarize_elements(parse_elements(custom_elements))
    if custom_summary["calcium"] + custom_summary["magnesium"] > 0:
        fertilizer = calculator.add_fertilizer(
            CUSTOM_FERTILIZER_LABEL,
            custom_elements,
            density=_number(recipe, "fertilizer_density", 1.0),
        )
    calculator.set_fertilizer(fertilizer)

    additive = {slot: str((recipe.get("additive") or {}).get(slot) or "") for slot in SLOTS}
    for slot, elements in (recipe.get("additive_elements") or {}).items():
        if slot not in SLOTS or not elements:
            continue
        key = f"custom_{slot}"
        calculator.add_additive(slot, key, {"name": CUSTOM_ADDITIVE_LABELS[slot], "elements": elements})
        additive[slot] = key
    calculator.set_additive(additive, concentrations)

    if recipe.get("targets"):
        calculator.set_targets(recipe["targets"])
    calculator.set_target_offset(target_offset)
    return calculator


def batch_totals(results: Mapping[str, DosingResult], volume: float) -> Dict[str, dict]:
    """Scale the per-litre doses of each stage to ``volume`` litres."""
    totals: Dict[str, dict] = {}
    for state, result in results.items():
        totals[state] = {
            "volume": volume,
            "fertilizer_ml": result.fertilizer.ml * volume,
            "additive_ml": {slot: dose.ml * volume for slot, dose in result.additive.items()},
            "additive_mg": {slot: dose.mg * volume for slot, dose in result.additive.items()},
            "water_l": result.water * volume,
        }
    return totals


def run_recipe(recipe_path: Path) -> dict:
    recipe = load_recipe(recipe_path)
    calculator = build_calculator(recipe)
    result = calculator.calculate()
    payload = result.to_dict()
    payload["batch"] = batch_totals(result.results, recipe_volume(recipe))
    return payload
