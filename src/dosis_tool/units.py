"""Conversión mmol/L <-> mg/dL y cambio de unidad del perfil."""

from __future__ import annotations

import math
from dataclasses import replace

from dosis_tool.errors import InvalidInputError
from dosis_tool.model import MGDL_PER_MMOL, GlucoseUnit, MedicalProfile
from dosis_tool.rounding import round_half_up

# Fields expressed in the profile's preferred unit.
PROFILE_GLUCOSE_FIELDS: tuple[str, ...] = (
    "target_low",
    "target_high",
    "critical_high",
    "normal_range_min",
    "normal_range_max",
    "isf",
    "correction_target",
)


def mmol_to_mgdl(value: float) -> int:
    """Convert mmol/L to an integer mg/dL value."""
    return int(round_half_up(value * MGDL_PER_MMOL))


def mgdl_to_mmol(value: float) -> float:
    """Convert mg/dL to mmol/L with one decimal."""
    return round_half_up(value / MGDL_PER_MMOL, 1)


def check_glucose(value: float) -> float:
    """Reject glucose values that are negative or not finite."""
    if not math.isfinite(value):
        raise InvalidInputError(f"glucose must be a finite number: {value}")
    if value < 0:
        raise InvalidInputError(f"glucose must not be negative: {value}")
    return value


def convert_unit(value: float, from_unit: GlucoseUnit, to_unit: GlucoseUnit) -> float:
    """Convert a glucose value between units.

    Same-unit conversion returns ``value`` untouched (no rounding).

    Raises:
        InvalidInputError: If ``value`` is negative, not finite or too large
            to convert.
    """
    check_glucose(value)
    if from_unit == to_unit:
        return value
    if to_unit == GlucoseUnit.MG_DL:
        return mmol_to_mgdl(value)
    return mgdl_to_mmol(value)


def _convert_optional(
    value: float | None, from_unit: GlucoseUnit, to_unit: GlucoseUnit
) -> float | None:
    # 0 / None are "unset" and stay as they are.
    if not value:
        return value
    return convert_unit(value, from_unit, to_unit)


def switch_profile_unit(
    profile: MedicalProfile, new_unit: GlucoseUnit
) -> MedicalProfile:
    """Return ``profile`` expressed in ``new_unit``.

    Every glucose-scaled field is converted in the same ``replace`` call, so a
    profile never ends up with thresholds in mixed units.
    """
    if profile.preferred_unit == new_unit:
        return profile
    old_unit = profile.preferred_unit
    changes: dict[str, object] = {
        name: _convert_optional(getattr(profile, name), old_unit, new_unit)
        for name in PROFILE_GLUCOSE_FIELDS
    }
    return replace(profile, preferred_unit=new_unit, **changes)


def to_canonical(value: float, unit: GlucoseUnit) -> float:
    """Normalize an entered value to the stored unit (mmol/L)."""
    return convert_unit(value, unit, GlucoseUnit.MMOL_L)


def display_value(value_mmol: float, unit: GlucoseUnit) -> float:
    """Value to show for a stored mmol/L reading in ``unit``."""
    if unit == GlucoseUnit.MG_DL:
        return mmol_to_mgdl(value_mmol)
    return round_half_up(value_mmol, 1)


def format_glucose(value_mmol: float, unit: GlucoseUnit) -> str:
    """Render a stored value: ``"99"`` for mg/dL, ``"5.5"`` for mmol/L."""
    shown = display_value(value_mmol, unit)
    if unit == GlucoseUnit.MG_DL:
        return str(int(shown))
    return f"{shown:.1f}"
