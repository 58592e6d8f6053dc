from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass, field
from typing import Dict, Mapping

from .catalog import MIN_LEVEL, additive_yield, fertilizer_ratio
from .data_io import Additive, Fertilizer, Target
from .elements import summarize_elements

logger = logging.getLogger(__name__)


SLOTS = ("calcium", "magnesium")

STEPS_PER_ML = 100  # one dosing step is 0.01 mL per litre
MAX_STEPS = 50_000
RATIO_CORRECTION_MAX_STEPS = 5_000
# additive doses below 0.10 mL are dropped entirely
DISCARD_STEPS = 10
TOLERANCE = 0.05
MIN_REFINE_DILUTION = 0.1


@dataclass(frozen=True)
class DosingContext:
    """Everything the solver reads from the engine for one call."""

    water: Mapping[str, float]
    ratio_calcium: float
    fertilizer: Fertilizer | None = None
    additives: Mapping[str, Additive | None] = field(default_factory=dict)
    additive_names: Mapping[str, str] = field(default_factory=dict)
    dilution_support: bool = True

    @property
    def fertilizer_name(self) -> str:
        return self.fertilizer.key if self.fertilizer is not None else ""


@dataclass
class FertilizerDose:
    ml: float
    name: str


@dataclass
class AdditiveDose:
    ml: float
    mg: float
    name: str
    concentration: float


@dataclass
class SuggestedAdditive:
    missing: float
    additive: str
    ml: float
    concentration: float
    real: Dict[str, float]


@dataclass
class DosingResult:
    fertilizer: FertilizerDose
    additive: Dict[str, AdditiveDose]
    elements: Dict[str, float]
    dilution: float
    water: float
    ratio: float
    missing: Dict[str, float]
    suggested_additive: Dict[str, SuggestedAdditive]
    target: Target
    # set when the refinement pass replaced fertilizer, dilution and elements;
    # the additive doses were computed against the earlier baseline
    refined: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


def _ratio(elements: Mapping[str, float]) -> float:
    if elements["magnesium"] == 0:
        return math.inf
    return elements["calcium"] / elements["magnesium"]


def _both_below(elements: Mapping[str, float], target_elements: Mapping[str, float]) -> bool:
    return (
        elements["calcium"] < target_elements["calcium"]
        and elements["magnesium"] < target_elements["magnesium"]
    )


def _within(value: float, reference: float, tolerance: float) -> bool:
    return abs(value - reference) <= reference * tolerance


def _add(elements: Dict[str, float], step: Mapping[str, float], times: int = 1) -> None:
    for component, value in step.items():
        elements[component] = elements.get(component, 0.0) + value * times


def _remove(elements: Dict[str, float], step: Mapping[str, float], times: int = 1) -> None:
    for component, value in step.items():
        if value > 0:
            elements[component] -= value * times


def _fertilizer_step(fert_elements: Mapping[str, float]) -> Dict[str, float]:
    # percent w/v -> mg/mL, per 0.01 mL
    return {component: value * 10.0 / STEPS_PER_ML for component, value in fert_elements.items()}


def _dilute(elements: Dict[str, float], target_elements: Mapping[str, float]) -> float:
    dilution = 1.0
    for component, target_value in target_elements.items():
        current = elements.get(component, 0.0)
        if target_value > 0 and current > target_value:
            dilution = min(dilution, target_value / current)
    if dilution < 1.0:
        for component in elements:
            elements[component] *= dilution
    return dilution


def _dose_fertilizer(
    elements: Dict[str, float],
    fert_elements: Mapping[str, float],
    target_elements: Mapping[str, float],
) -> int:
    """Add fertilizer until calcium or magnesium reaches its target.

    Returns the number of 0.01 mL steps. Fertilizers lacking calcium or
    magnesium are never dosed.
    """
    if fert_elements["calcium"] <= 0 or fert_elements["magnesium"] <= 0:
        return 0
    step = _fertilizer_step(fert_elements)
    steps = 0
    while _both_below(elements, target_elements):
        if steps >= MAX_STEPS:
            logger.warning("Fertilizer dosing hit the %d step ceiling", MAX_STEPS)
            break
        _add(elements, step)
        steps += 1
    return steps


def _needs_more(
    elements: Mapping[str, float],
    slot: str,
    target_elements: Mapping[str, float],
    ratio_calcium: float,
) -> bool:
    if _both_below(elements, target_elements):
        return True
    if slot == "magnesium":
        return _ratio(elements) > ratio_calcium
    return _ratio(elements) < ratio_calcium


def _dose_additive(
    elements: Dict[str, float],
    slot: str,
    real: Mapping[str, float],
    target_elements: Mapping[str, float],
    ratio_calcium: float,
) -> int:
    """Dose one additive slot and return the retained number of 0.01 mL steps.

    The calcium slot only doses calcium-dominant additives (raising the ratio),
    the magnesium slot only magnesium-dominant ones (lowering it).
    """
    other = "magnesium" if slot == "calcium" else "calcium"
    if real.get(slot, 0.0) <= real.get(other, 0.0):
        return 0

    step = {component: value / STEPS_PER_ML for component, value in real.items()}
    steps = 0
    while _needs_more(elements, slot, target_elements, ratio_calcium):
        if steps >= MAX_STEPS:
            logger.warning("Additive dosing for %s hit the %d step ceiling", slot, MAX_STEPS)
            break
        _add(elements, step)
        steps += 1

    if steps > DISCARD_STEPS:
        if _ratio(elements) < ratio_calcium:
            _remove(elements, step)
            steps -= 1
    elif 0 < steps < DISCARD_STEPS:
        _remove(elements, step, steps)
        steps = 0
    return steps


def suggest_additives(missing: Mapping[str, float], ctx: DosingContext) -> Dict[str, SuggestedAdditive]:
    """Additive strength that closes each deficit with a single dose.

    Up to 1 mL/L at a reduced concentration, or more than 1 mL/L at full
    strength when even 100 % is not enough.
    """
    suggestions: Dict[str, SuggestedAdditive] = {}
    for element in SLOTS:
        gap = float(missing.get(element, 0.0))
        if gap <= 0:
            continue
        additive = ctx.additives.get(element)
        if additive is None:
            continue
        # label strength at 100 %, density not applied
        per_ml = additive_yield(additive.elements, 100.0).get(element, 0.0)
        if per_ml <= 0:
            continue
        concentration = gap / per_ml * 100.0
        ml = 1.0
        if concentration > 100.0:
            ml = concentration / 100.0
            concentration = 100.0
        suggestions[element] = SuggestedAdditive(
            missing=gap,
            additive=ctx.additive_names.get(element, ""),
            ml=ml,
            concentration=concentration,
            real=additive_yield(additive.elements, concentration),
        )
    return suggestions


def _refine_with_dilution(
    result: DosingResult,
    target_elements: Mapping[str, float],
    fert_elements: Mapping[str, float],
    ctx: DosingContext,
) -> None:
    # correct the undiluted water's ratio with fertilizer, then dilute that
    # mix down to the target and dose fertilizer again from zero
    elements = summarize_elements(ctx.water)
    step = _fertilizer_step(fert_elements)
    runs = 0
    while not _within(_ratio(elements), ctx.ratio_calcium, TOLERANCE):
        if runs >= RATIO_CORRECTION_MAX_STEPS:
            logger.warning("Ratio correction hit the %d step ceiling", RATIO_CORRECTION_MAX_STEPS)
            break
        _add(elements, step)
        runs += 1

    if elements["calcium"] <= 0 or elements["magnesium"] <= 0:
        return
    dilution = min(
        target_elements["calcium"] / elements["calcium"],
        target_elements["magnesium"] / elements["magnesium"],
    )
    if not 0 < dilution <= 1.0:
        return

    logger.debug("Refining with dilution %.4f after %d ratio correction steps", dilution, runs)
    elements = {component: value * dilution for component, value in summarize_elements(ctx.water).items()}
    steps = _dose_fertilizer(elements, fert_elements, target_elements)

    result.dilution = dilution
    result.water = 1.0 - dilution
    result.ratio = _ratio(elements)
    result.elements = elements
    result.fertilizer = FertilizerDose(ml=steps / STEPS_PER_ML, name=ctx.fertilizer_name)
    result.refined = True


def calculate_fertilizer(target: Target, ctx: DosingContext) -> DosingResult:
    """Dose fertilizer and additives so the water reaches one validated target."""
    target_elements = target.elements
    elements = summarize_elements(ctx.water)

    dilution = 1.0
    if ctx.dilution_support:
        dilution = _dilute(elements, target_elements)

    fert_elements = summarize_elements(ctx.fertilizer.elements if ctx.fertilizer is not None else {})
    fert_steps = _dose_fertilizer(elements, fert_elements, target_elements)

    for element in SLOTS:
        if elements[element] <= 0:
            elements[element] = MIN_LEVEL

    doses: Dict[str, AdditiveDose] = {}
    for slot in SLOTS:
        name = ctx.additive_names.get(slot, "")
        additive = ctx.additives.get(slot)
        if additive is None:
            doses[slot] = AdditiveDose(ml=0.0, mg=0.0, name=name, concentration=100.0)
            continue
        steps = _dose_additive(elements, slot, additive.real, target_elements, ctx.ratio_calcium)
        ml = steps / STEPS_PER_ML
        doses[slot] = AdditiveDose(
            ml=ml,
            mg=ml * (additive.concentration / 100.0) * 1000.0,
            name=name,
            concentration=additive.concentration,
        )

    missing = {
        element: max(0.0, target_elements[element] - float(ctx.water.get(element, 0.0)))
        for element in SLOTS
    }

    result = DosingResult(
        fertilizer=FertilizerDose(ml=fert_steps / STEPS_PER_ML, name=ctx.fertilizer_name),
        additive=doses,
        elements=elements,
        dilution=dilution,
        water=1.0 - dilution,
        ratio=_ratio(elements),
        missing=missing,
        suggested_additive=suggest_additives(missing, ctx),
        target=target,
    )

    target_reached = all(_within(elements[element], target_elements[element], TOLERANCE) for element in SLOTS)
    if (
        not target_reached
        and ctx.dilution_support
        and ctx.fertilizer is not None
        and dilution > MIN_REFINE_DILUTION
    ):
        fert_ratio = ctx.fertilizer.ratio
        if fert_ratio is None:
            fert_ratio = fertilizer_ratio(ctx.fertilizer.elements)
        if _ratio(summarize_elements(ctx.water)) > fert_ratio:
            _refine_with_dilution(result, target_elements, fert_elements, ctx)

    return result
