"""Registro de lecturas de glucosa y de comidas con su dosis."""

from __future__ import annotations

import logging
import re
import uuid
from collections.abc import Sequence
from dataclasses import replace
from datetime import date, datetime

from dateutil import tz

from dosis_tool.dosing import compute_bolus, correction_target_for, suggest_dose
from dosis_tool.errors import HypoglycemiaError
from dosis_tool.glycemia import classify_glucose, thresholds_for_profile
from dosis_tool.model import (
    DoseDecision,
    GlucoseReading,
    GlucoseUnit,
    GlycemicState,
    MealEntry,
    MealType,
    MeasurementTime,
    SelectedFoodItem,
)
from dosis_tool.rounding import round_half_up
from dosis_tool.stores.base import HealthStore
from dosis_tool.units import convert_unit, to_canonical

logger = logging.getLogger(__name__)

_MEAL_SLOTS: dict[MealType, MeasurementTime] = {
    MealType.BREAKFAST: MeasurementTime.PRE_BREAKFAST,
    MealType.LUNCH: MeasurementTime.PRE_LUNCH,
    MealType.DINNER: MeasurementTime.PRE_DINNER,
    MealType.SNACK: MeasurementTime.SNACK,
}

_TAGS_RX = re.compile(r"\[(.*?)\]")


def slot_for_meal(meal_type: MealType) -> MeasurementTime:
    return _MEAL_SLOTS[meal_type]


def meal_for_slot(slot: MeasurementTime) -> MealType:
    """Meal type for a slot; slots that are not meals default to breakfast."""
    for meal_type, meal_slot in _MEAL_SLOTS.items():
        if meal_slot == slot:
            return meal_type
    return MealType.BREAKFAST


def tags_from_notes(notes: str | None) -> list[str]:
    """Extract ``[a, b]`` tags written into reading notes."""
    if not notes:
        return []
    match = _TAGS_RX.search(notes)
    if not match or not match.group(1):
        return []
    return [part.strip() for part in match.group(1).split(",") if part.strip()]


def meal_total_carbs(items: Sequence[SelectedFoodItem]) -> float:
    return round_half_up(sum(item.total_carbs for item in items), 1)


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def _now(now: datetime | None) -> datetime:
    return now if now is not None else datetime.now(tz=tz.tzlocal())


def record_reading(
    store: HealthStore,
    user_id: str,
    value: float,
    unit: GlucoseUnit,
    slot: MeasurementTime,
    *,
    day: date | None = None,
    notes: str | None = None,
    tags: Sequence[str] = (),
    meal_bolus: float | None = None,
    long_acting_units: float | None = None,
    correction_method: str | None = None,
    carbs: float | None = None,
    now: datetime | None = None,
) -> tuple[GlucoseReading, GlycemicState]:
    """Store a glucose reading entered by the child or a caregiver.

    The value is classified as entered against the child's thresholds
    and stored in mmol/L. A HIGH/CRITICAL reading gets a correction dose that
    is added to ``meal_bolus`` in ``insulin_units``. A meal already saved for
    the same day and slot is linked and its carbs are used when ``carbs`` is
    None.

    Args:
        store: Backing store.
        user_id: Child user id.
        value: Entered glucose value.
        unit: Unit of ``value``.
        slot: Measurement slot.
        day: Day the reading belongs to; defaults to today.
        notes: Free text.
        tags: Context tags (sport, illness, ...), stored as ``[a, b]``.
        meal_bolus: Rapid-acting units given for food.
        long_acting_units: Basal units given.
        correction_method: How a hypo was treated.
        carbs: Carbohydrates eaten, in grams.
        now: Current time (tests).

    Returns:
        The stored reading and its glycemic state.

    Raises:
        NotFoundError: If the child has no medical profile.
    """
    profile = store.get_profile(user_id)
    current = _now(now)
    day = day or current.date()
    value_mmol = to_canonical(value, unit)
    # Classified as entered; the stored mmol/L value is rounded.
    state = classify_glucose(value, thresholds_for_profile(profile), unit)

    breakdown = compute_bolus(
        0,
        None,
        convert_unit(value, unit, profile.preferred_unit),
        correction_target_for(profile),
        profile.isf,
        state,
    )

    meals = store.get_meal_entries_for_date(user_id, day)
    linked = next((m for m in meals if m.time_label == slot), None)
    parts: list[str] = []
    if notes:
        parts.append(notes)
    if tags:
        parts.append(f"[{', '.join(tags)}]")
    if linked is not None:
        parts.append("Meal: " + ", ".join(i.food_name for i in linked.items))
        if carbs is None and linked.total_carbs > 0:
            carbs = round_half_up(linked.total_carbs)

    total_rapid = breakdown.correction + (meal_bolus or 0)
    if day == current.date():
        timestamp = current
    else:
        timestamp = datetime.combine(day, current.timetz())
    reading = GlucoseReading(
        id=_new_id("reading"),
        user_id=user_id,
        value=value_mmol,
        timestamp=timestamp,
        time_label=slot,
        notes=" | ".join(parts) or None,
        meal_id=linked.id if linked is not None else None,
        insulin_units=total_rapid if total_rapid > 0 else None,
        long_acting_units=long_acting_units,
        correction_method=correction_method,
        carbs=carbs,
    )
    store.append_reading(reading)
    logger.info(
        "Reading %s for %s: %.1f mmol/L (%s), correction %.1f u",
        reading.id,
        user_id,
        value_mmol,
        state.value,
        breakdown.correction,
    )
    return reading, state


def record_meal(
    store: HealthStore,
    user_id: str,
    day: date,
    meal_type: MealType,
    items: Sequence[SelectedFoodItem],
    *,
    glucose: float | None = None,
    unit: GlucoseUnit | None = None,
    manual_correction: float | None = None,
    manual_total: float | None = None,
    now: datetime | None = None,
) -> tuple[MealEntry, DoseDecision]:
    """Save a meal with its suggested dose and update the slot's reading.

    When no glucose is passed, the reading already stored for the slot (if
    any) is used. Meals cannot be saved during a hypo.

    Raises:
        NotFoundError: If the child has no medical profile.
        HypoglycemiaError: If the current reading is hypoglycemic.
    """
    profile = store.get_profile(user_id)
    slot = slot_for_meal(meal_type)
    existing = store.get_reading_for_slot(user_id, day, slot)

    glucose_mmol: float | None = None
    entered_unit = GlucoseUnit.MMOL_L
    if glucose:
        entered_unit = unit or profile.preferred_unit
        glucose_mmol = to_canonical(glucose, entered_unit)
    elif existing is not None:
        glucose = glucose_mmol = existing.value

    total_carbs = meal_total_carbs(items)
    decision = suggest_dose(
        profile,
        slot,
        total_carbs,
        glucose,
        unit=entered_unit,
        manual_correction=manual_correction,
        manual_total=manual_total,
    )
    if decision.state == GlycemicState.HYPO:
        raise HypoglycemiaError(
            f"Glucose {glucose_mmol} mmol/L is below the hypo limit; treat it first"
        )

    entry_id = _new_id("meal")
    reading_id = existing.id if existing is not None else None
    if glucose_mmol:
        insulin = decision.total if decision.total > 0 else None
        if existing is not None:
            reading = replace(
                existing, value=glucose_mmol, meal_id=entry_id, insulin_units=insulin
            )
        else:
            reading = GlucoseReading(
                id=_new_id("meal_reading"),
                user_id=user_id,
                value=glucose_mmol,
                timestamp=datetime.combine(day, _now(now).timetz()),
                time_label=slot,
                notes=f"Meal logged ({total_carbs:g}g carbs)",
                meal_id=entry_id,
                insulin_units=insulin,
            )
        store.append_reading(reading)
        reading_id = reading.id

    entry = MealEntry(
        id=entry_id,
        user_id=user_id,
        date=day,
        time_label=slot,
        items=tuple(items),
        total_carbs=total_carbs,
        suggested_bolus=decision.computed.food,
        correction_bolus=decision.correction,
        total_bolus=decision.total,
        glucose_reading_id=reading_id,
    )
    store.append_meal_entry(entry)
    logger.info(
        "Meal %s for %s on %s: %.1fg carbs, %.1f u (food %.1f, correction %.1f)",
        entry.id,
        user_id,
        day.isoformat(),
        total_carbs,
        decision.total,
        decision.computed.food,
        decision.correction,
    )
    return entry, decision
