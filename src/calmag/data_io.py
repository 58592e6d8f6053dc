from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Mapping

import yaml

from .elements import ElementMap, parse_elements


DEFAULT_RATIO = 3.5


class GrowState(str, Enum):
    PROPAGATION = "propagation"
    VEGETATION = "vegetation"
    FLOWER = "flower"
    LATE_FLOWER = "late_flower"

    @classmethod
    def ordered(cls, keys) -> List[str]:
        # canonical stages first, unknown keys afterwards in their given order
        keys = list(keys)
        known = [state.value for state in cls if state.value in keys]
        return known + [key for key in keys if key not in known]


@dataclass(frozen=True)
class Fertilizer:
    name: str
    brand: str
    elements: ElementMap
    density: float = 1.0
    # calcium/magnesium of the summarized elements, set by the catalog normalizer
    ratio: float | None = None

    @property
    def key(self) -> str:
        if not self.brand:
            return self.name
        return f"{self.brand} - {self.name}"


@dataclass(frozen=True)
class Additive:
    name: str
    elements: ElementMap
    concentration: float = 100.0
    density: float = 1.0
    # mg of element per mL of additive
    real: Dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class Target:
    elements: Dict[str, float] = field(default_factory=dict)
    weeks: int = 1
    state: str = ""

    def to_dict(self) -> dict:
        return {"elements": dict(self.elements), "weeks": self.weeks, "state": self.state}


@dataclass(frozen=True)
class Ratio:
    calcium: float = DEFAULT_RATIO
    magnesium: float = 1.0

    @property
    def calcium_per_magnesium(self) -> float:
        return self.calcium / self.magnesium


@dataclass
class CalMagConfig:
    fertilizers: Dict[str, Fertilizer]
    additives: Dict[str, Dict[str, Additive]]
    targets: Dict[str, Target]
    ratio: float = DEFAULT_RATIO
    dilution_support: bool = True


def repo_root() -> Path:
    # this file lives in .../src/calmag/data_io.py
    return Path(__file__).resolve().parents[2]


def _read_yaml(path: Path):
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f)


def parse_target(data: Target | Mapping | None, state: str = "") -> Target:
    if isinstance(data, Target):
        return data
    data = data or {}
    elements = {str(k): float(v) for k, v in (data.get("elements") or {}).items() if v is not None}
    try:
        weeks = int(float(data.get("weeks") or 1))
    except (TypeError, ValueError):
        weeks = 1
    return Target(elements=elements, weeks=weeks, state=str(data.get("state") or state))


def parse_targets(data: Mapping | None) -> Dict[str, Target]:
    return {str(state): parse_target(target, str(state)) for state, target in (data or {}).items()}


def parse_fertilizers(brands: List[Mapping] | None) -> Dict[str, Fertilizer]:
    ferts: Dict[str, Fertilizer] = {}
    for brand in brands or []:
        brand_name = str(brand.get("brand_name") or "").strip()
        for product in brand.get("products") or []:
            raw_elements = product.get("elements") or {}
            if "calcium" not in raw_elements and "magnesium" not in raw_elements:
                continue
            fert = Fertilizer(
                name=str(product.get("name") or "").strip(),
                brand=brand_name,
                elements=parse_elements(raw_elements),
                density=float(product.get("density") or 1.0),
            )
            ferts[fert.key] = fert
    return ferts


def parse_additive(data: Additive | Mapping) -> Additive:
    if isinstance(data, Additive):
        return data
    concentration = data.get("concentration")
    return Additive(
        name=str(data.get("name") or ""),
        elements=parse_elements(data.get("elements")),
        concentration=100.0 if concentration is None else float(concentration),
        density=float(data.get("density") or 1.0),
    )


def parse_additives(data: Mapping | None) -> Dict[str, Dict[str, Additive]]:
    additives: Dict[str, Dict[str, Additive]] = {"calcium": {}, "magnesium": {}}
    for element, group in (data or {}).items():
        slot = additives.setdefault(str(element), {})
        for key, additive in (group or {}).items():
            if key == "":
                continue
            slot[str(key)] = parse_additive(additive)
    return additives


def build_config(
    *,
    fertilizers: List[Mapping] | None = None,
    additives: Mapping | None = None,
    targets: Mapping | None = None,
    ratio: float = DEFAULT_RATIO,
    dilution_support: bool = True,
) -> CalMagConfig:
    return CalMagConfig(
        fertilizers=parse_fertilizers(fertilizers),
        additives=parse_additives(additives),
        targets=parse_targets(targets),
        ratio=float(ratio),
        dilution_support=bool(dilution_support),
    )


def load_config(data_dir: Path | None = None) -> CalMagConfig:
    if data_dir is None:
        data_dir = repo_root() / "data"

    app = _read_yaml(data_dir / "app.yml") or {}
    return build_config(
        fertilizers=_read_yaml(data_dir / "fertilizers.yml") or [],
        additives=_read_yaml(data_dir / "additives.yml") or {},
        targets=app.get("targets") or {},
        ratio=float(app.get("ratio") or DEFAULT_RATIO),
        dilution_support=bool(app.get("dilution_support", True)),
    )


def load_molar_masses(path: Path | None = None) -> Dict[str, float]:
    if path is None:
        path = repo_root() / "data" / "molar_masses.yml"
    data = _read_yaml(path) or {}
    return {str(k): float(v) for k, v in data.items()}


def load_recipe(path: Path) -> dict:
    return _read_yaml(path) or {}
