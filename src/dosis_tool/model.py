"""Modelos tipados: perfil médico, lecturas, comidas, visitas y dosis."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum

from dosis_tool.rounding import round_half_up

MGDL_PER_MMOL = 18


class GlucoseUnit(str, Enum):
    """Glucose unit. Stored values are always mmol/L."""

    MMOL_L = "mmol/L"
    MG_DL = "mg/dL"


class MeasurementTime(str, Enum):
    """Fixed daily measurement slots, in chronological order."""

    WAKING = "waking"
    PRE_BREAKFAST = "pre_breakfast"
    POST_BREAKFAST = "post_breakfast"
    PRE_LUNCH = "pre_lunch"
    POST_LUNCH = "post_lunch"
    PRE_DINNER = "pre_dinner"
    POST_DINNER = "post_dinner"
    SNACK = "snack"
    BEDTIME = "bedtime"
    DURING_SLEEP = "during_sleep"


TIME_LABELS: tuple[MeasurementTime, ...] = tuple(MeasurementTime)


class MealType(str, Enum):
    """Meal selector used when logging food."""

    BREAKFAST = "breakfast"
    LUNCH = "lunch"
    DINNER = "dinner"
    SNACK = "snack"


class GlycemicState(str, Enum):
    """Classification of a single glucose value."""

    HYPO = "hypo"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"


class VisitStatus(str, Enum):
    UPCOMING = "upcoming"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ThresholdSet:
    """Glucose thresholds that always travel with their unit."""

    hypo: float
    normal_min: float
    normal_max: float
    high: float
    critical: float
    unit: GlucoseUnit = GlucoseUnit.MMOL_L

    def to_unit(self, unit: GlucoseUnit) -> ThresholdSet:
        """Same limits in ``unit``, scaled exactly (no display rounding)."""
        if unit == self.unit:
            return self

        def scale(value: float) -> float:
            if unit == GlucoseUnit.MG_DL:
                return value * MGDL_PER_MMOL
            return value / MGDL_PER_MMOL

        return ThresholdSet(
            hypo=scale(self.hypo),
            normal_min=scale(self.normal_min),
            normal_max=scale(self.normal_max),
            high=scale(self.high),
            critical=scale(self.critical),
            unit=unit,
        )


@dataclass(frozen=True)
class MedicalProfile:
    """Medical data of a child.

    Threshold fields, ``isf`` and ``correction_target`` are expressed in
    ``preferred_unit``. ``None`` or ``0`` means "unset".
    """

    preferred_unit: GlucoseUnit = GlucoseUnit.MMOL_L
    target_low: float | None = None
    target_high: float | None = None
    critical_high: float | None = None
    normal_range_min: float | None = None
    normal_range_max: float | None = None
    icr: float | None = None
    icr_breakfast: float | None = None
    icr_lunch: float | None = None
    icr_dinner: float | None = None
    isf: float | None = None
    correction_target: float | None = None
    long_acting_dose: float | None = None
    long_acting_time: str | None = None
    long_acting_insulin: str | None = None
    rapid_insulin: str | None = None
    device_type: str | None = None
    allergies: tuple[str, ...] = ()
    version: int = 0


@dataclass(frozen=True)
class GlucoseReading:
    """One glucose measurement (value in mmol/L)."""

    id: str
    user_id: str
    value: float
    timestamp: datetime
    time_label: MeasurementTime
    notes: str | None = None
    meal_id: str | None = None
    insulin_units: float | None = None
    long_acting_units: float | None = None
    correction_method: str | None = None
    carbs: float | None = None


@dataclass(frozen=True)
class SelectedFoodItem:
    """A food portion added to a meal."""

    food_id: str
    food_name: str
    unit_name: str
    quantity: float
    carbs_per_unit: float
    fiber_per_unit: float = 0.0

    @property
    def total_carbs(self) -> float:
        return round_half_up(self.carbs_per_unit * self.quantity, 1)


@dataclass(frozen=True)
class MealEntry:
    """Saved meal for one slot and day, with the dose that was suggested."""

    id: str
    user_id: str
    date: date
    time_label: MeasurementTime
    items: tuple[SelectedFoodItem, ...]
    total_carbs: float
    suggested_bolus: float
    correction_bolus: float
    total_bolus: float
    glucose_reading_id: str | None = None


@dataclass(frozen=True)
class Visit:
    """Clinical visit, optionally carrying proposed profile changes."""

    id: str
    user_id: str
    date: date
    doctor_name: str = ""
    status: VisitStatus = VisitStatus.UPCOMING
    reason: str = ""
    new_long_acting_dose: float | None = None
    new_long_acting_time: str | None = None
    new_icr_breakfast: float | None = None
    new_icr_lunch: float | None = None
    new_icr_dinner: float | None = None
    new_isf: float | None = None
    changes_applied: bool = False


@dataclass(frozen=True)
class BolusBreakdown:
    """Suggested rapid-acting dose split into its components."""

    food: float
    correction: float
    total: float


@dataclass(frozen=True)
class DoseDecision:
    """Dose to store, keeping the computed breakdown for audit."""

    computed: BolusBreakdown
    correction: float
    total: float
    state: GlycemicState | None = None
    overridden: bool = False
