import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1] / "src"))

from calmag.data_io import Target
from calmag.solver import DosingContext, calculate_fertilizer
from calmag.table import generate_result_table, interpolate_weeks


def test_interpolation_reaches_end_exactly() -> None:
    weeks = interpolate_weeks({"calcium": 60.0}, {"calcium": 110.0, "magnesium": 31.4}, 4, 3.5)
    assert [w["calcium"] for w in weeks] == pytest.approx([72.5, 85.0, 97.5, 110.0])
    assert weeks[-1]["calcium"] == 110.0
    for week in weeks:
        assert week["magnesium"] == pytest.approx(week["calcium"] / 3.5)


def test_interpolation_missing_start_value_starts_at_zero() -> None:
    weeks = interpolate_weeks({}, {"calcium": 100.0, "nitrogen": 20.0}, 2, 4.0)
    assert weeks[0] == pytest.approx({"calcium": 50.0, "nitrogen": 10.0, "magnesium": 12.5})
    assert weeks[1]["nitrogen"] == 20.0


def _solve(target: Target):
    ctx = DosingContext(water={"calcium": 20.0, "magnesium": 5.0}, ratio_calcium=3.5)
    return calculate_fertilizer(target, ctx)


def test_table_numbers_weeks_across_stages() -> None:
    targets = {
        "vegetation": Target(elements={"calcium": 110.0, "magnesium": 110.0 / 3.5}, weeks=2),
        "propagation": Target(elements={"calcium": 60.0, "magnesium": 60.0 / 3.5}, weeks=1),
        "flower": Target(elements={"calcium": 140.0, "magnesium": 40.0}, weeks=3),
    }
    table = generate_result_table(targets, 3.5, _solve, fertilizer="", additives={"calcium": "", "magnesium": ""})
    assert [row.week for row in table.rows] == [1, 2, 3, 4, 5, 6]
    assert [row.state for row in table.rows] == [
        "propagation",
        "vegetation",
        "vegetation",
        "flower",
        "flower",
        "flower",
    ]
    # the last week of each stage is the stage target
    assert table.rows[0].target.elements["calcium"] == 60.0
    assert table.rows[2].target.elements["calcium"] == 110.0
    assert table.rows[5].target.elements["calcium"] == 140.0
    assert table.rows[1].target.elements["calcium"] == pytest.approx(85.0)


def test_table_without_propagation_starts_from_fallback() -> None:
    targets = {"vegetation": Target(elements={"calcium": 100.0, "magnesium": 25.0}, weeks=2)}
    table = generate_result_table(targets, 4.0, _solve)
    assert [row.target.elements["calcium"] for row in table.rows] == pytest.approx([70.0, 100.0])


def test_table_dict_layout() -> None:
    targets = {"propagation": Target(elements={"calcium": 60.0, "magnesium": 60.0 / 3.5}, weeks=2)}
    table = generate_result_table(
        targets,
        3.5,
        _solve,
        fertilizer="",
        additives={"calcium": "calcium_chloride", "magnesium": ""},
        additive_concentrations={"calcium": 20.0},
    )
    data = table.to_dict()
    assert set(data["fertilizer"]["rows"]) == {1, 2}
    assert data["ca_additive"]["name"] == "calcium_chloride"
    assert data["ca_additive"]["concentration"] == 20.0
    assert data["mg_additive"]["rows"][1]["ml"] == 0.0
    assert data["target"][2]["elements"]["calcium"] == 60.0
    assert data["refined"] == {1: False, 2: False}
