from __future__ import annotations

from typing import Dict, Mapping

import numpy as np

from .solver import SLOTS, DosingResult


def deficiency_ratio(water: Mapping[str, float]) -> Dict[str, float]:
    """Which of calcium/magnesium dominates the water, as ``x : 1``."""
    calcium = float(water.get("calcium", 0.0))
    magnesium = float(water.get("magnesium", 0.0))
    if calcium > magnesium:
        return {"calcium": calcium / (magnesium or 1.0), "magnesium": 1.0}
    if calcium < magnesium:
        return {"calcium": 1.0, "magnesium": magnesium / (calcium or 1.0)}
    return {"calcium": 1.0, "magnesium": 1.0}


def target_deviation_percent(result: DosingResult) -> Dict[str, float]:
    deviations: Dict[str, float] = {}
    for element in SLOTS:
        target = float(result.target.elements.get(element, 0.0))
        if target == 0:
            continue
        achieved = float(result.elements.get(element, 0.0))
        deviations[element] = (achieved - target) / target * 100.0
    return deviations


def max_abs_deviation_percent(results: Mapping[str, DosingResult]) -> float:
    values = [
        abs(value)
        for result in results.values()
        for value in target_deviation_percent(result).values()
    ]
    if not values:
        return 0.0
    return float(np.max(values))
