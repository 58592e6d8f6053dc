import json
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1] / "src"))

from calmag.__main__ import main
from calmag.compare import compare_recipe
from calmag.core import batch_totals, build_calculator, run_recipe
from calmag.data_io import build_config, load_config
from calmag.errors import InvalidArgument, InvalidInput

RECIPES = Path(__file__).resolve().parents[1] / "recipes"
MOLAR_MASSES = {"calcium": 40.078, "magnesium": 24.305}


def _config():
    return build_config(
        fertilizers=[
            {"brand_name": "Acme", "products": [{"name": "CalMag", "elements": {"calcium": 5.0, "magnesium": 5.0}}]}
        ],
        targets={"propagation": {"weeks": 1, "elements": {"calcium": 60.0}}},
    )


@pytest.mark.parametrize(
    "overrides",
    [
        {"ratio": "abc"},
        {"ratio": 0},
        {"target_offset": 150},
        {"volume": 0},
        {"water_units": {"calcium": "ppm"}},
    ],
)
def test_build_calculator_rejects_bad_payloads(overrides) -> None:
    recipe = {"water": {"calcium": 20.0, "magnesium": 5.0}}
    recipe.update(overrides)
    with pytest.raises(InvalidInput):
        build_calculator(recipe, _config(), MOLAR_MASSES)


def test_build_calculator_needs_calcium_and_magnesium() -> None:
    with pytest.raises(InvalidArgument):
        build_calculator({"water": {"calcium": 20.0}}, _config(), MOLAR_MASSES)


def test_build_calculator_expert_mode() -> None:
    recipe = {
        "water": {"calcium": 1.0, "magnesium": 0.5},
        "water_units": {"calcium": "mmol", "magnesium": "mmol"},
        "fertilizer": "Acme - CalMag",
        "fertilizer_elements": {"calcium": {"CaO": 2.0}, "magnesium": {"MgO": 3.0}},
        "fertilizer_density": 1.2,
        "additive_elements": {"magnesium": {"magnesium": 9.6}},
        "additive_concentration": {"magnesium": 50},
        "additive_units": {"magnesium": "mg"},
        "ratio": 3.0,
        "target_offset": 10,
        "support_dilution": "off",
    }
    calculator = build_calculator(recipe, _config(), MOLAR_MASSES)

    assert calculator.water["calcium"] == pytest.approx(40.078)
    assert calculator.water["magnesium"] == pytest.approx(12.1525)
    # a custom fertilizer replaces the catalog selection
    assert calculator.fertilizer == "Custom"
    assert calculator.additive == {"calcium": "", "magnesium": "custom_magnesium"}
    # dry additives are dosed at full strength
    assert calculator.additives["magnesium"]["custom_magnesium"].concentration == 100.0
    assert calculator.additives["magnesium"]["custom_magnesium"].real["magnesium"] == pytest.approx(96.0)
    assert calculator.dilution_support is False
    assert calculator.ratio_calcium == 3.0
    assert calculator.targets["propagation"].elements["calcium"] == pytest.approx(66.0)
    assert calculator.targets["propagation"].elements["magnesium"] == pytest.approx(22.0)


def test_build_calculator_keeps_catalog_fertilizer_without_custom_elements() -> None:
    recipe = {
        "water": {"calcium": 20.0, "magnesium": 5.0},
        "fertilizer": "Acme - CalMag",
        "fertilizer_elements": {"calcium": 0, "magnesium": 0},
        "targets": {"flower": {"weeks": 3, "elements": {"calcium": 140}}},
    }
    calculator = build_calculator(recipe, _config(), MOLAR_MASSES)
    assert calculator.fertilizer == "Acme - CalMag"
    assert list(calculator.targets) == ["propagation", "flower"]


def test_batch_totals_scale_with_volume() -> None:
    calculator = build_calculator(
        {"water": {"calcium": 10.0, "magnesium": 2.0}, "fertilizer": "Acme - CalMag"}, _config(), MOLAR_MASSES
    )
    results = calculator.get_applied_fertilizer()
    totals = batch_totals(results, 10.0)
    assert totals["propagation"]["volume"] == 10.0
    assert totals["propagation"]["fertilizer_ml"] == pytest.approx(results["propagation"].fertilizer.ml * 10.0)
    assert totals["propagation"]["water_l"] == pytest.approx(results["propagation"].water * 10.0)


def test_shipped_catalog_loads() -> None:
    config = load_config()
    assert "Canna - CalMag Agent" in config.fertilizers
    assert "Plagron - Pure Zym" not in config.fertilizers
    assert set(config.additives) == {"calcium", "magnesium"}
    assert list(config.targets) == ["propagation", "vegetation", "flower", "late_flower"]


def test_run_default_recipe() -> None:
    result = run_recipe(RECIPES / "default.yml")
    assert list(result["results"]) == ["propagation", "vegetation", "flower", "late_flower"]
    assert result["batch"]["flower"]["volume"] == 10.0
    assert len(result["table"]["ratio"]) == 14


def test_run_expert_recipe() -> None:
    result = run_recipe(RECIPES / "hard_water_expert.yml")
    assert result["table"]["fertilizer"]["name"] == "Custom"
    assert result["batch"]["propagation"]["volume"] == 20.0


def test_cli_writes_json(tmp_path, capsys) -> None:
    out = tmp_path / "out.json"
    main([str(RECIPES / "default.yml"), "--out", str(out)])
    printed = json.loads(capsys.readouterr().out)
    assert printed["deficiency"]["magnesium"] == 1.0
    assert json.loads(out.read_text(encoding="utf-8")) == printed


def test_cli_compare(capsys) -> None:
    main(["compare", str(RECIPES / "default.yml"), "--pretty"])
    printed = json.loads(capsys.readouterr().out)
    assert len(printed["ranking"]) == 4
    scores = [entry["max_deviation_percent"] for entry in printed["ranking"]]
    assert scores == sorted(scores)


def test_compare_recipe_rejects_non_numeric_ratio(tmp_path) -> None:
    recipe = tmp_path / "recipe.yml"
    recipe.write_text("water:\n  calcium: 20\n  magnesium: 5\nratio: abc\n", encoding="utf-8")
    with pytest.raises(InvalidInput):
        compare_recipe(recipe)
