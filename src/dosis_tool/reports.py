"""Reportes por período: estadísticas y planilla fecha x momento del día."""

from __future__ import annotations

from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date

import pandas as pd

from dosis_tool.glycemia import DEFAULT_THRESHOLDS, classify_glucose
from dosis_tool.model import (
    TIME_LABELS,
    GlucoseReading,
    GlucoseUnit,
    GlycemicState,
    MealEntry,
    ThresholdSet,
)
from dosis_tool.rounding import round_half_up
from dosis_tool.tracker import tags_from_notes
from dosis_tool.units import display_value, mmol_to_mgdl

READING_COLUMNS = [
    "datetime",
    "date",
    "time",
    "time_label",
    "glucose_mmol_l",
    "glucose",
    "state",
    "insulin_units",
    "long_acting_units",
    "carbs",
    "notes",
]


@dataclass(frozen=True)
class PeriodStats:
    """Summary of the readings in a period."""

    count: int
    average_mmol: float
    hypos: int
    target: int
    high: int
    critical: int
    hypo_percent: int
    target_percent: int
    high_percent: int
    critical_percent: int
    estimated_a1c: float | None


def filter_period(
    readings: Sequence[GlucoseReading], start: date, end: date
) -> list[GlucoseReading]:
    """Readings whose day is within ``start``..``end`` (inclusive), by time."""
    out = [r for r in readings if start <= r.timestamp.date() <= end]
    return sorted(out, key=lambda r: r.timestamp)


def readings_to_frame(
    readings: Sequence[GlucoseReading],
    unit: GlucoseUnit = GlucoseUnit.MMOL_L,
    thresholds: ThresholdSet = DEFAULT_THRESHOLDS,
) -> pd.DataFrame:
    """Convert readings to a DataFrame with display value and state."""
    rows = [
        {
            "datetime": r.timestamp,
            "date": r.timestamp.date(),
            "time": r.timestamp.time().replace(second=0, microsecond=0),
            "time_label": r.time_label.value,
            "glucose_mmol_l": r.value,
            "glucose": display_value(r.value, unit),
            "state": classify_glucose(r.value, thresholds).value,
            "insulin_units": r.insulin_units,
            "long_acting_units": r.long_acting_units,
            "carbs": r.carbs,
            "notes": r.notes,
        }
        for r in readings
    ]
    df = pd.DataFrame(rows, columns=READING_COLUMNS)
    if df.empty:
        return df
    return df.sort_values("datetime").reset_index(drop=True)


def _percent(part: int, count: int) -> int:
    return int(round_half_up(part / count * 100))


def estimated_a1c(average_mmol: float) -> float:
    """HbA1c (%) estimated from mean glucose (ADAG: (mg/dL + 46.7) / 28.7)."""
    return round_half_up((mmol_to_mgdl(average_mmol) + 46.7) / 28.7, 1)


def period_stats(
    readings: Sequence[GlucoseReading],
    thresholds: ThresholdSet = DEFAULT_THRESHOLDS,
) -> PeriodStats:
    """Count readings per glycemic state and average them.

    Args:
        readings: Readings of the period.
        thresholds: Limits used to classify each reading.

    Returns:
        Period statistics; all zeros when there are no readings.
    """
    if not readings:
        return PeriodStats(0, 0.0, 0, 0, 0, 0, 0, 0, 0, 0, None)

    states = Counter(classify_glucose(r.value, thresholds) for r in readings)
    count = len(readings)
    average = sum(r.value for r in readings) / count
    return PeriodStats(
        count=count,
        average_mmol=round_half_up(average, 2),
        hypos=states[GlycemicState.HYPO],
        target=states[GlycemicState.NORMAL],
        high=states[GlycemicState.HIGH],
        critical=states[GlycemicState.CRITICAL],
        hypo_percent=_percent(states[GlycemicState.HYPO], count),
        target_percent=_percent(states[GlycemicState.NORMAL], count),
        high_percent=_percent(states[GlycemicState.HIGH], count),
        critical_percent=_percent(states[GlycemicState.CRITICAL], count),
        estimated_a1c=estimated_a1c(average),
    )


def compare_periods(current: PeriodStats, previous: PeriodStats) -> dict[str, float]:
    """Change from ``previous`` to ``current`` (positive = went up)."""
    average_delta = current.average_mmol - previous.average_mmol
    return {
        "target_percent": current.target_percent - previous.target_percent,
        "average_mmol": round_half_up(average_delta, 2),
        "hypos": current.hypos - previous.hypos,
    }


def tag_counts(readings: Sequence[GlucoseReading]) -> dict[str, int]:
    """How often each ``[tag]`` appears in the readings' notes."""
    counts: Counter[str] = Counter()
    for r in readings:
        counts.update(tags_from_notes(r.notes))
    return dict(counts.most_common())


def logbook_matrix(
    readings: Sequence[GlucoseReading],
    meals: Sequence[MealEntry] = (),
    unit: GlucoseUnit = GlucoseUnit.MMOL_L,
) -> pd.DataFrame:
    """One row per day (newest first), one column per measurement slot.

    Cells hold the display value of the slot's last reading, while
    ``total_insulin`` adds up every reading of the day. Days without readings
    are not listed.

    Returns:
        DataFrame with columns: date, one per slot (chronological),
        total_insulin, total_carbs.
    """
    slot_cols = [label.value for label in TIME_LABELS]
    expected_cols = ["date", *slot_cols, "total_insulin", "total_carbs"]
    if not readings:
        return pd.DataFrame(columns=expected_cols)

    insulin_by_day: dict[date, float] = {}
    for r in readings:
        day = r.timestamp.date()
        insulin_by_day[day] = insulin_by_day.get(day, 0.0) + (r.insulin_units or 0)

    carbs_by_day: dict[date, float] = {}
    for meal in meals:
        day_carbs = carbs_by_day.get(meal.date, 0.0)
        carbs_by_day[meal.date] = day_carbs + meal.total_carbs

    grouped = _last_reading_per_slot(readings)

    rows: list[dict[str, object]] = []
    for day in sorted(grouped, reverse=True):
        slots = grouped[day]
        row: dict[str, object] = {"date": day}
        for col in slot_cols:
            reading = slots.get(col)
            row[col] = display_value(reading.value, unit) if reading else pd.NA
        row["total_insulin"] = insulin_by_day[day]
        row["total_carbs"] = round_half_up(carbs_by_day.get(day, 0.0), 1)
        rows.append(row)
    return pd.DataFrame(rows, columns=expected_cols)


def logbook_states(
    readings: Sequence[GlucoseReading],
    thresholds: ThresholdSet = DEFAULT_THRESHOLDS,
) -> pd.DataFrame:
    """Glycemic state of each ``logbook_matrix`` cell, same rows and columns."""
    slot_cols = [label.value for label in TIME_LABELS]
    grouped = _last_reading_per_slot(readings)
    rows: list[dict[str, object]] = []
    for day in sorted(grouped, reverse=True):
        row: dict[str, object] = {"date": day}
        for col in slot_cols:
            reading = grouped[day].get(col)
            row[col] = (
                classify_glucose(reading.value, thresholds).value if reading else None
            )
        rows.append(row)
    return pd.DataFrame(rows, columns=["date", *slot_cols])


def _last_reading_per_slot(
    readings: Sequence[GlucoseReading],
) -> dict[date, dict[str, GlucoseReading]]:
    grouped: dict[date, dict[str, GlucoseReading]] = {}
    for r in sorted(readings, key=lambda r: r.timestamp):
        grouped.setdefault(r.timestamp.date(), {})[r.time_label.value] = r
    return grouped
