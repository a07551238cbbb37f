"""Clasificación del estado glucémico (hipo / normal / alto / crítico)."""

from __future__ import annotations

from dosis_tool.model import GlucoseUnit, GlycemicState, MedicalProfile, ThresholdSet
from dosis_tool.units import check_glucose, convert_unit

DEFAULT_THRESHOLDS = ThresholdSet(
    hypo=4.0,
    normal_min=4.0,
    normal_max=8.0,
    high=10.9,
    critical=13.9,
    unit=GlucoseUnit.MMOL_L,
)


def convert_thresholds(thresholds: ThresholdSet, unit: GlucoseUnit) -> ThresholdSet:
    """Express a whole threshold set in ``unit`` with display rounding."""
    if thresholds.unit == unit:
        return thresholds
    src = thresholds.unit
    return ThresholdSet(
        hypo=convert_unit(thresholds.hypo, src, unit),
        normal_min=convert_unit(thresholds.normal_min, src, unit),
        normal_max=convert_unit(thresholds.normal_max, src, unit),
        high=convert_unit(thresholds.high, src, unit),
        critical=convert_unit(thresholds.critical, src, unit),
        unit=unit,
    )


def thresholds_for_profile(profile: MedicalProfile | None) -> ThresholdSet:
    """Global defaults overridden by the profile's own limits.

    The result is tagged with the profile's preferred unit; unset (0/None)
    profile fields fall back to the defaults converted to that unit.
    """
    if profile is None:
        return DEFAULT_THRESHOLDS
    base = convert_thresholds(DEFAULT_THRESHOLDS, profile.preferred_unit)
    return ThresholdSet(
        hypo=profile.target_low or base.hypo,
        normal_min=profile.normal_range_min or base.normal_min,
        normal_max=profile.normal_range_max or base.normal_max,
        high=profile.target_high or base.high,
        critical=profile.critical_high or base.critical,
        unit=profile.preferred_unit,
    )


def classify_glucose(
    value: float,
    thresholds: ThresholdSet = DEFAULT_THRESHOLDS,
    unit: GlucoseUnit = GlucoseUnit.MMOL_L,
) -> GlycemicState:
    """Classify a glucose value.

    Checks run in priority order: hypo, critical, high, and everything else
    is normal. Values between ``normal_max`` and ``high`` are NORMAL too.
    The thresholds are scaled exactly to the value's unit, so a value entered
    in the unit of the thresholds is compared as typed.

    Args:
        value: Glucose value.
        thresholds: Threshold set in any unit.
        unit: Unit of ``value``.

    Returns:
        The glycemic state.

    Raises:
        InvalidInputError: If ``value`` is negative or not finite.
    """
    check_glucose(value)
    limits = thresholds.to_unit(unit)
    if value < limits.hypo:
        return GlycemicState.HYPO
    if value > limits.critical:
        return GlycemicState.CRITICAL
    if value > limits.high:
        return GlycemicState.HIGH
    return GlycemicState.NORMAL


def needs_correction(state: GlycemicState | None) -> bool:
    return state in (GlycemicState.HIGH, GlycemicState.CRITICAL)
