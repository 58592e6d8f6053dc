from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Mapping, Union

logger = logging.getLogger(__name__)


# mass fraction of the element in its oxide
COMPOUND_FACTORS: Dict[str, float] = {
    "CaO": 0.7143,
    "MgO": 0.6032,
}

# (source, derived, factor) for elements that are reported as ions in water analyses
SECONDARY_WATER_ELEMENTS = (
    ("sulphate", "sulfur", 0.334),
    ("chloride", "chlorine", 0.5256),
    ("nitrate", "nitrogen", 0.226),
    ("nitrite", "nitrogen", 0.304),
)

BASE_ELEMENTS = ("calcium", "magnesium")


@dataclass(frozen=True)
class Scalar:
    value: float

    def total(self) -> float:
        return self.value

    def scaled(self, factor: float) -> "Scalar":
        return Scalar(self.value * factor)

    def to_plain(self) -> float:
        return self.value


@dataclass(frozen=True)
class Compound:
    # e.g. {"CaO": 20.0}; unknown sub-keys count as the element itself
    parts: Dict[str, float]

    def total(self) -> float:
        return sum(value * COMPOUND_FACTORS.get(key, 1.0) for key, value in self.parts.items())

    def scaled(self, factor: float) -> "Compound":
        return Compound({key: value * factor for key, value in self.parts.items()})

    def to_plain(self) -> Dict[str, float]:
        return dict(self.parts)


ElementValue = Union[Scalar, Compound]
ElementMap = Dict[str, ElementValue]


def _to_float(value: object | None) -> float:
    if value is None or value == "":
        return 0.0
    return float(value)


def parse_element_value(value: object) -> ElementValue:
    if isinstance(value, (Scalar, Compound)):
        return value
    if isinstance(value, Mapping):
        return Compound({str(k): _to_float(v) for k, v in value.items()})
    return Scalar(_to_float(value))


def parse_elements(elements: Mapping[str, object] | None) -> ElementMap:
    return {str(k): parse_element_value(v) for k, v in (elements or {}).items()}


def summarize_elements(elements: Mapping[str, object]) -> Dict[str, float]:
    """Reduce an element map to base-element mg/L (or %) values.

    Oxide entries are converted with ``COMPOUND_FACTORS``. The result always
    carries ``calcium`` and ``magnesium``.
    """
    result: Dict[str, float] = {element: 0.0 for element in BASE_ELEMENTS}
    for component, value in elements.items():
        result[component] = result.get(component, 0.0) + parse_element_value(value).total()
    return result


def scale_elements(elements: Mapping[str, object], factor: float) -> ElementMap:
    return {component: parse_element_value(value).scaled(factor) for component, value in elements.items()}


def plain_elements(elements: Mapping[str, object]) -> Dict[str, object]:
    return {component: parse_element_value(value).to_plain() for component, value in elements.items()}


def derive_secondary_elements(water: Mapping[str, float]) -> Dict[str, float]:
    derived = dict(water)
    for source, target, factor in SECONDARY_WATER_ELEMENTS:
        if source in water:
            derived[target] = derived.get(target, 0.0) + water[source] * factor
    return derived


def convert_elements(
    elements: Mapping[str, float],
    units: Mapping[str, str] | None,
    molar_masses: Mapping[str, float],
) -> Dict[str, float]:
    """Convert values given in mmol/L to mg/L. Everything else is taken as mg/L."""
    units = units or {}
    converted: Dict[str, float] = {}
    for element, value in elements.items():
        unit = str(units.get(element) or "mg").strip().lower()
        value = _to_float(value)
        if unit == "mmol":
            if element in molar_masses:
                value = value * float(molar_masses[element])
            else:
                logger.warning("No molar mass for '%s', keeping %s as mg/L", element, value)
        converted[element] = value
    return converted
