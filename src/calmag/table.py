from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Mapping

import numpy as np

from .data_io import GrowState, Target
from .solver import AdditiveDose, DosingResult, SuggestedAdditive


FALLBACK_START_CALCIUM = 40.0


@dataclass
class WeekRow:
    week: int
    state: str
    target: Target
    result: DosingResult


@dataclass
class WeeklyTable:
    targets: Dict[str, Target]
    fertilizer: str
    additives: Dict[str, str]
    additive_concentrations: Dict[str, float]
    rows: List[WeekRow] = field(default_factory=list)

    def to_dict(self) -> dict:
        def additive_rows(slot: str) -> Dict[int, dict]:
            return {row.week: _dose_dict(row.result.additive.get(slot)) for row in self.rows}

        return {
            "targets": {state: target.to_dict() for state, target in self.targets.items()},
            "fertilizer": {
                "name": self.fertilizer,
                "rows": {row.week: row.result.fertilizer.ml for row in self.rows},
            },
            "ca_additive": {
                "name": self.additives.get("calcium", ""),
                "concentration": self.additive_concentrations.get("calcium", 0.0),
                "rows": additive_rows("calcium"),
            },
            "mg_additive": {
                "name": self.additives.get("magnesium", ""),
                "concentration": self.additive_concentrations.get("magnesium", 0.0),
                "rows": additive_rows("magnesium"),
            },
            "elements": {row.week: row.result.elements for row in self.rows},
            "water": {
                row.week: {"water": row.result.water, "dilution": row.result.dilution}
                for row in self.rows
            },
            "ratio": {row.week: row.result.ratio for row in self.rows},
            "target": {row.week: row.target.to_dict() for row in self.rows},
            "missing": {row.week: row.result.missing for row in self.rows},
            "suggested": {
                row.week: {slot: _suggestion_dict(s) for slot, s in row.result.suggested_additive.items()}
                for row in self.rows
            },
            "refined": {row.week: row.result.refined for row in self.rows},
        }


def _dose_dict(dose: AdditiveDose | None) -> dict:
    if dose is None:
        return {}
    return {"ml": dose.ml, "mg": dose.mg, "name": dose.name, "concentration": dose.concentration}


def _suggestion_dict(suggestion: SuggestedAdditive) -> dict:
    return {
        "missing": suggestion.missing,
        "additive": suggestion.additive,
        "ml": suggestion.ml,
        "concentration": suggestion.concentration,
        "real": suggestion.real,
    }


def interpolate_weeks(
    start: Mapping[str, float],
    end: Mapping[str, float],
    weeks: int,
    ratio_calcium: float,
) -> List[Dict[str, float]]:
    """Linear week-by-week targets from ``start`` to ``end``.

    The last week equals ``end`` exactly. Magnesium always follows calcium
    through the ratio.
    """
    weeks = max(1, int(weeks))
    columns = {
        component: np.linspace(float(start.get(component, 0.0)), float(value), weeks + 1)[1:]
        for component, value in end.items()
    }
    result = []
    for i in range(weeks):
        elements = {component: float(values[i]) for component, values in columns.items()}
        if "calcium" in elements:
            elements["magnesium"] = elements["calcium"] / ratio_calcium
        result.append(elements)
    return result


def generate_result_table(
    targets: Mapping[str, Target],
    ratio_calcium: float,
    solve: Callable[[Target], DosingResult],
    *,
    fertilizer: str = "",
    additives: Mapping[str, str] | None = None,
    additive_concentrations: Mapping[str, float] | None = None,
) -> WeeklyTable:
    """Run ``solve`` once per week across all stages in canonical order."""
    propagation = targets.get(GrowState.PROPAGATION.value)
    if propagation is not None:
        start = dict(propagation.elements)
    else:
        start = {
            "calcium": FALLBACK_START_CALCIUM,
            "magnesium": FALLBACK_START_CALCIUM / ratio_calcium,
        }

    table = WeeklyTable(
        targets=dict(targets),
        fertilizer=fertilizer,
        additives=dict(additives or {}),
        additive_concentrations=dict(additive_concentrations or {}),
    )
    week = 0
    for state in GrowState.ordered(targets):
        target = targets[state]
        for elements in interpolate_weeks(start, target.elements, target.weeks, ratio_calcium):
            week += 1
            week_target = replace(target, elements=elements, state=state)
            table.rows.append(WeekRow(week=week, state=state, target=week_target, result=solve(week_target)))
        start = dict(target.elements)
    return table
