"""Cálculo de bolo de comida y de corrección."""

from __future__ import annotations

import math

from dosis_tool.errors import InvalidInputError
from dosis_tool.glycemia import (
    classify_glucose,
    needs_correction,
    thresholds_for_profile,
)
from dosis_tool.model import (
    BolusBreakdown,
    DoseDecision,
    GlucoseUnit,
    GlycemicState,
    MeasurementTime,
    MedicalProfile,
)
from dosis_tool.rounding import round_to_half
from dosis_tool.units import convert_unit

DEFAULT_CORRECTION_TARGET: dict[GlucoseUnit, float] = {
    GlucoseUnit.MMOL_L: 6.0,
    GlucoseUnit.MG_DL: 100.0,
}


def _check_amount(name: str, value: float | None) -> float:
    """Validate a finite, non-negative amount; ``None`` counts as 0."""
    if value is None:
        return 0.0
    if not math.isfinite(value):
        raise InvalidInputError(f"{name} must be a finite number: {value}")
    if value < 0:
        raise InvalidInputError(f"{name} must not be negative: {value}")
    return float(value)


def _units_for(amount: float, ratio: float, ratio_name: str) -> float:
    units = amount / ratio
    if not math.isfinite(units):
        raise InvalidInputError(f"{ratio_name} is too small: {ratio}")
    return round_to_half(units)


def food_bolus(carbs: float, icr: float | None) -> float:
    """Insulin units covering ``carbs`` grams, rounded to 0.5 (0 without ICR)."""
    carbs = _check_amount("carbs", carbs)
    icr = _check_amount("icr", icr)
    if icr == 0:
        return 0.0
    return _units_for(carbs, icr, "icr")


def correction_bolus(
    glucose_value: float | None,
    correction_target: float,
    isf: float | None,
    state: GlycemicState | None,
) -> float:
    """Units needed to bring ``glucose_value`` down to ``correction_target``.

    Only HIGH and CRITICAL readings get a correction; the result is floored at
    0 and rounded to 0.5. All three glucose arguments share one unit.
    """
    isf = _check_amount("isf", isf)
    correction_target = _check_amount("correction_target", correction_target)
    if glucose_value is not None:
        glucose_value = _check_amount("glucose", glucose_value)
    if not needs_correction(state) or glucose_value is None or isf == 0:
        return 0.0
    diff = glucose_value - correction_target
    if diff <= 0:
        return 0.0
    return _units_for(diff, isf, "isf")


def compute_bolus(
    carbs: float,
    icr: float | None,
    glucose_value: float | None,
    correction_target: float,
    isf: float | None,
    state: GlycemicState | None,
) -> BolusBreakdown:
    """Suggested meal + correction dose.

    Components are rounded to 0.5 units independently and then summed. During
    a hypo no insulin is suggested: correction and total are 0, the food part
    is still reported.

    Args:
        carbs: Meal carbohydrates in grams.
        icr: Grams of carbohydrate covered by 1 unit. 0/None disables the
            food part.
        glucose_value: Current glucose, same unit as ``correction_target``
            and ``isf``. None when no reading was entered.
        correction_target: Glucose the correction aims for.
        isf: Glucose drop per unit. 0/None disables the correction.
        state: Glycemic state of the current reading.

    Returns:
        Food, correction and total units.

    Raises:
        InvalidInputError: If carbs, ICR or ISF are negative or not finite.
    """
    food = food_bolus(carbs, icr)
    if state == GlycemicState.HYPO:
        _check_amount("isf", isf)
        return BolusBreakdown(food=food, correction=0.0, total=0.0)
    correction = correction_bolus(glucose_value, correction_target, isf, state)
    return BolusBreakdown(food=food, correction=correction, total=food + correction)


def apply_overrides(
    breakdown: BolusBreakdown,
    state: GlycemicState | None,
    *,
    manual_correction: float | None = None,
    manual_total: float | None = None,
) -> DoseDecision:
    """Merge the computed dose with values typed in by a parent or doctor.

    A manual correction replaces the computed one but, as the computed one,
    only counts for HIGH/CRITICAL readings. A manual total replaces the total
    to store. ``computed`` keeps the untouched breakdown.
    """
    if manual_correction is not None:
        _check_amount("manual_correction", manual_correction)
    if manual_total is not None:
        _check_amount("manual_total", manual_total)

    correction = breakdown.correction
    if manual_correction is not None:
        correction = manual_correction
    if not needs_correction(state):
        correction = 0.0
    if state == GlycemicState.HYPO:
        computed_total = 0.0
    else:
        computed_total = breakdown.food + correction
    total = computed_total if manual_total is None else float(manual_total)
    return DoseDecision(
        computed=breakdown,
        correction=correction,
        total=total,
        state=state,
        overridden=manual_correction is not None or manual_total is not None,
    )


def icr_for_slot(profile: MedicalProfile, slot: MeasurementTime) -> float | None:
    """Carb ratio for a slot: the per-meal override if set, else the general."""
    per_meal = {
        MeasurementTime.PRE_BREAKFAST: profile.icr_breakfast,
        MeasurementTime.PRE_LUNCH: profile.icr_lunch,
        MeasurementTime.PRE_DINNER: profile.icr_dinner,
    }.get(slot)
    return per_meal or profile.icr


def correction_target_for(profile: MedicalProfile) -> float:
    default = DEFAULT_CORRECTION_TARGET[profile.preferred_unit]
    return profile.correction_target or default


def suggest_dose(
    profile: MedicalProfile,
    slot: MeasurementTime,
    carbs: float,
    glucose: float | None = None,
    *,
    unit: GlucoseUnit = GlucoseUnit.MMOL_L,
    manual_correction: float | None = None,
    manual_total: float | None = None,
) -> DoseDecision:
    """Dose suggestion for a child's meal from their medical profile.

    The reading is classified as entered, against the profile thresholds, and
    converted to the profile unit for the correction term, since ``isf`` and
    ``correction_target`` are stored in that unit. A value entered in the
    profile unit is never rounded before the comparison.

    Args:
        profile: Child's medical profile.
        slot: Measurement slot the meal belongs to (selects the ICR).
        carbs: Meal carbohydrates in grams.
        glucose: Current reading, None/0 when not entered.
        unit: Unit of ``glucose``.
        manual_correction: Correction typed in by the caregiver.
        manual_total: Total dose typed in by the caregiver.

    Returns:
        The dose decision.
    """
    state: GlycemicState | None = None
    glucose_in_unit: float | None = None
    if glucose:
        state = classify_glucose(glucose, thresholds_for_profile(profile), unit)
        glucose_in_unit = convert_unit(glucose, unit, profile.preferred_unit)
    breakdown = compute_bolus(
        carbs,
        icr_for_slot(profile, slot),
        glucose_in_unit,
        correction_target_for(profile),
        profile.isf,
        state,
    )
    return apply_overrides(
        breakdown,
        state,
        manual_correction=manual_correction,
        manual_total=manual_total,
    )
