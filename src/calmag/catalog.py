from __future__ import annotations

import math
from dataclasses import replace
from typing import Dict, Mapping

from .data_io import Additive, Fertilizer, Target
from .elements import parse_element_value, scale_elements, summarize_elements


MIN_LEVEL = 0.001  # mg/L


def fertilizer_ratio(elements: Mapping[str, object]) -> float:
    summary = summarize_elements(elements)
    if summary["magnesium"] == 0:
        return math.inf
    return summary["calcium"] / summary["magnesium"]


def normalize_fertilizer(fert: Fertilizer) -> Fertilizer:
    """Store the Ca:Mg ratio and scale every declared percentage by density.

    Only call this once per catalog entry, the density scaling is applied to
    whatever elements the record currently holds.
    """
    return replace(
        fert,
        ratio=fertilizer_ratio(fert.elements),
        elements=scale_elements(fert.elements, fert.density),
    )


def additive_yield(elements: Mapping[str, object], concentration: float, density: float = 1.0) -> Dict[str, float]:
    # percent by weight -> mg per mL of additive
    return {
        component: (value * 10.0) * (concentration / 100.0) * density
        for component, value in summarize_elements(elements).items()
    }


def normalize_additive(additive: Additive) -> Additive:
    elements = dict(additive.elements)
    real = additive_yield(elements, additive.concentration, additive.density)
    for component in real:
        elements.setdefault(component, parse_element_value(0.0))
    return replace(additive, elements=elements, real=real)


def apply_offset(target: Target, percent: float) -> Target:
    if not percent:
        return target
    factor = 1.0 + percent / 100.0
    return replace(target, elements={component: value * factor for component, value in target.elements.items()})


def validate_target(target: Target, ratio_calcium: float) -> Target:
    """Fill a missing calcium or magnesium target from the other via the ratio.

    Calcium is derived first and only one of the two is ever derived. A target
    with neither gets magnesium 0.001 and calcium from the ratio. Weeks are
    floored to 1.
    """
    elements = dict(target.elements)
    calcium = elements.get("calcium")
    magnesium = elements.get("magnesium")
    if calcium is None or calcium <= 0:
        if magnesium is None or magnesium <= 0:
            magnesium = MIN_LEVEL
            elements["magnesium"] = magnesium
        elements["calcium"] = magnesium * ratio_calcium
    elif magnesium is None or magnesium <= 0:
        elements["magnesium"] = calcium / ratio_calcium
    return replace(target, elements=elements, weeks=max(1, int(target.weeks or 1)))
