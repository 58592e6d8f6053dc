import math
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1] / "src"))

from calmag.catalog import (
    additive_yield,
    apply_offset,
    fertilizer_ratio,
    normalize_additive,
    normalize_fertilizer,
    validate_target,
)
from calmag.data_io import Additive, Fertilizer, Target
from calmag.elements import parse_elements, plain_elements


def test_normalize_fertilizer_sets_ratio_and_applies_density() -> None:
    fert = Fertilizer(
        name="CalMag Agent",
        brand="Canna",
        elements=parse_elements({"calcium": {"CaO": 5.0}, "magnesium": {"MgO": 1.6}, "nitrogen": 2.0}),
        density=1.25,
    )
    normalized = normalize_fertilizer(fert)
    assert normalized.ratio == pytest.approx((5.0 * 0.7143) / (1.6 * 0.6032))
    assert plain_elements(normalized.elements) == {
        "calcium": {"CaO": 6.25},
        "magnesium": {"MgO": 2.0},
        "nitrogen": 2.5,
    }
    assert normalized.key == "Canna - CalMag Agent"


def test_fertilizer_ratio_without_magnesium() -> None:
    assert fertilizer_ratio({"calcium": 5.0}) == math.inf


def test_additive_yield() -> None:
    assert additive_yield({"calcium": 27.3}, 100.0)["calcium"] == pytest.approx(273.0)
    assert additive_yield({"calcium": 27.3}, 50.0)["calcium"] == pytest.approx(136.5)
    assert additive_yield({"calcium": 10.0}, 100.0, density=1.2)["calcium"] == pytest.approx(120.0)


def test_normalize_additive_fills_real_and_missing_keys() -> None:
    additive = Additive(name="Epsom salt", elements=parse_elements({"magnesium": {"MgO": 16.0}, "sulfur": 13.0}))
    normalized = normalize_additive(additive)
    assert normalized.real["magnesium"] == pytest.approx(16.0 * 0.6032 * 10.0)
    assert normalized.real["sulfur"] == pytest.approx(130.0)
    assert normalized.real["calcium"] == 0.0
    assert "calcium" in normalized.elements


def test_normalize_additive_is_repeatable() -> None:
    additive = Additive(name="Calcium chloride", elements=parse_elements({"calcium": 27.3}), concentration=40.0)
    once = normalize_additive(additive)
    twice = normalize_additive(once)
    assert twice.real == once.real


def test_validate_target_derives_calcium_from_magnesium() -> None:
    target = validate_target(Target(elements={"magnesium": 50.0}), 3.5)
    assert target.elements["calcium"] == 175.0
    assert target.elements["magnesium"] == 50.0


def test_validate_target_derives_magnesium_from_calcium() -> None:
    target = validate_target(Target(elements={"calcium": 140.0, "magnesium": 0.0}), 3.5)
    assert target.elements["magnesium"] == pytest.approx(40.0)


def test_validate_target_keeps_explicit_values() -> None:
    target = validate_target(Target(elements={"calcium": 150.0, "magnesium": 50.0}), 3.5)
    assert target.elements == {"calcium": 150.0, "magnesium": 50.0}


def test_validate_target_without_either_element() -> None:
    target = validate_target(Target(elements={}, weeks=0), 3.5)
    assert target.elements["magnesium"] == 0.001
    assert target.elements["calcium"] == pytest.approx(0.0035)
    assert target.weeks == 1


def test_apply_offset_scales_all_elements() -> None:
    target = apply_offset(Target(elements={"calcium": 100.0, "nitrogen": 50.0}), 10)
    assert target.elements["calcium"] == pytest.approx(110.0)
    assert target.elements["nitrogen"] == pytest.approx(55.0)
    assert apply_offset(target, 0) is target
