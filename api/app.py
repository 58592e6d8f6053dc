from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from calmag.compare import Comparator
from calmag.core import build_calculator, batch_totals, recipe_water
from calmag.data_io import load_config, load_molar_masses
from calmag.elements import plain_elements
from calmag.errors import InvalidArgument, InvalidInput, NotFound


app = FastAPI(title="CalMag API", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


CONFIG = load_config()
MOLAR_MASSES = load_molar_masses()


class TargetEntry(BaseModel):
    weeks: int = Field(default=1, ge=1)
    elements: Dict[str, float] = Field(default_factory=dict)


class RecipeRequest(BaseModel):
    water: Dict[str, float]
    water_units: Dict[str, str] = Field(default_factory=dict)
    fertilizer: str = ""
    fertilizer_elements: Dict[str, Any] = Field(default_factory=dict)
    fertilizer_density: float = Field(default=1.0, gt=0)
    additive: Dict[str, str] = Field(default_factory=dict)
    additive_elements: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    additive_concentration: Dict[str, float] = Field(default_factory=dict)
    additive_units: Dict[str, str] = Field(default_factory=dict)
    ratio: float = Field(default=3.5, gt=0)
    support_dilution: bool = True
    target_offset: float = Field(default=0.0, ge=-100, le=100)
    volume: float = Field(default=1.0, gt=0)
    targets: Optional[Dict[str, TargetEntry]] = None


class CompareRequest(BaseModel):
    water: Dict[str, float]
    water_units: Dict[str, str] = Field(default_factory=dict)
    ratio: float = Field(default=3.5, gt=0)
    support_dilution: bool = True


def _bad_request(exc: Exception) -> HTTPException:
    if isinstance(exc, NotFound):
        return HTTPException(status_code=404, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/fertilizers")
def fertilizers() -> List[dict]:
    return [
        {
            "key": key,
            "name": fert.name,
            "brand": fert.brand,
            "density": fert.density,
            "elements": plain_elements(fert.elements),
        }
        for key, fert in CONFIG.fertilizers.items()
    ]


@app.get("/additives")
def additives() -> Dict[str, List[dict]]:
    return {
        element: [
            {
                "key": key,
                "name": additive.name,
                "concentration": additive.concentration,
                "density": additive.density,
                "elements": plain_elements(additive.elements),
            }
            for key, additive in group.items()
        ]
        for element, group in CONFIG.additives.items()
    }


@app.get("/targets")
def targets() -> dict:
    return {
        "ratio": CONFIG.ratio,
        "dilution_support": CONFIG.dilution_support,
        "targets": {state: target.to_dict() for state, target in CONFIG.targets.items()},
    }


@app.get("/molar-masses")
def molar_masses() -> Dict[str, float]:
    return MOLAR_MASSES


@app.post("/calculate")
def calculate(payload: RecipeRequest) -> dict:
    recipe = payload.model_dump(exclude_none=True)
    try:
        calculator = build_calculator(recipe, CONFIG, MOLAR_MASSES)
    except (InvalidArgument, InvalidInput) as exc:
        raise _bad_request(exc) from exc

    result = calculator.calculate()
    response = result.to_dict()
    response["batch"] = batch_totals(result.results, payload.volume)
    return response


@app.post("/compare")
def compare(payload: CompareRequest) -> dict:
    recipe = payload.model_dump()
    try:
        comparator = Comparator(
            recipe_water(recipe, MOLAR_MASSES),
            payload.ratio,
            config=CONFIG,
            dilution_support=payload.support_dilution,
        )
    except (InvalidArgument, InvalidInput) as exc:
        raise _bad_request(exc) from exc
    return comparator.report()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
