from __future__ import annotations

from datetime import date, datetime

import pandas as pd
import pytest

from dosis_tool.model import (
    GlucoseReading,
    GlucoseUnit,
    MealEntry,
    MeasurementTime,
)
from dosis_tool.reports import (
    READING_COLUMNS,
    compare_periods,
    filter_period,
    logbook_matrix,
    logbook_states,
    period_stats,
    readings_to_frame,
    tag_counts,
)


def _reading(
    reading_id: str,
    when: datetime,
    slot: MeasurementTime,
    value: float,
    insulin: float | None = None,
    notes: str | None = None,
) -> GlucoseReading:
    return GlucoseReading(
        id=reading_id,
        user_id="kid",
        value=value,
        timestamp=when,
        time_label=slot,
        notes=notes,
        insulin_units=insulin,
    )


@pytest.fixture
def readings() -> list[GlucoseReading]:
    return [
        _reading(
            "r1",
            datetime(2025, 3, 10, 7, 30),
            MeasurementTime.PRE_BREAKFAST,
            3.5,
            notes="[sport]",
        ),
        _reading("r2", datetime(2025, 3, 10, 12, 0), MeasurementTime.PRE_LUNCH, 6.0),
        _reading(
            "r3",
            datetime(2025, 3, 10, 20, 0),
            MeasurementTime.PRE_DINNER,
            12.0,
            insulin=2.0,
            notes="pizza | [sport, party]",
        ),
        _reading(
            "r4",
            datetime(2025, 3, 11, 7, 40),
            MeasurementTime.PRE_BREAKFAST,
            15.0,
            insulin=3.0,
        ),
    ]


def test_period_stats(readings: list[GlucoseReading]) -> None:
    stats = period_stats(readings)
    assert stats.count == 4
    assert stats.average_mmol == 9.13
    assert (stats.hypos, stats.target, stats.high, stats.critical) == (1, 1, 1, 1)
    assert stats.hypo_percent == 25
    assert stats.target_percent == 25
    assert stats.estimated_a1c == 7.3


def test_period_stats_percentages_round_half_up(
    readings: list[GlucoseReading],
) -> None:
    stats = period_stats([readings[0], readings[1], readings[1]])
    assert stats.hypo_percent == 33
    assert stats.target_percent == 67


def test_period_stats_empty() -> None:
    stats = period_stats([])
    assert stats.count == 0
    assert stats.average_mmol == 0.0
    assert stats.estimated_a1c is None


def test_compare_periods(readings: list[GlucoseReading]) -> None:
    current = period_stats(readings[1:2])
    previous = period_stats(readings)
    delta = compare_periods(current, previous)
    assert delta["target_percent"] == 75
    assert delta["average_mmol"] == pytest.approx(-3.13)
    assert delta["hypos"] == -1


def test_filter_period_is_inclusive(readings: list[GlucoseReading]) -> None:
    only_11 = filter_period(readings, date(2025, 3, 11), date(2025, 3, 11))
    assert [r.id for r in only_11] == ["r4"]
    assert len(filter_period(readings, date(2025, 3, 10), date(2025, 3, 11))) == 4
    assert filter_period(readings, date(2025, 3, 12), date(2025, 3, 20)) == []


def test_readings_to_frame(readings: list[GlucoseReading]) -> None:
    df = readings_to_frame(list(reversed(readings)), GlucoseUnit.MG_DL)
    assert list(df.columns) == READING_COLUMNS
    assert df["glucose"].tolist() == [63, 108, 216, 270]
    assert df["state"].tolist() == ["hypo", "normal", "high", "critical"]
    assert df.iloc[0]["time_label"] == "pre_breakfast"

    assert readings_to_frame([]).empty


def test_tag_counts(readings: list[GlucoseReading]) -> None:
    assert tag_counts(readings) == {"sport": 2, "party": 1}


def test_logbook_matrix(readings: list[GlucoseReading]) -> None:
    meals = [
        MealEntry(
            id="m1",
            user_id="kid",
            date=date(2025, 3, 10),
            time_label=MeasurementTime.PRE_LUNCH,
            items=(),
            total_carbs=45.0,
            suggested_bolus=4.5,
            correction_bolus=0.0,
            total_bolus=4.5,
        )
    ]
    matrix = logbook_matrix(readings, meals)

    assert list(matrix["date"]) == [date(2025, 3, 11), date(2025, 3, 10)]
    assert matrix.columns[1] == "waking"
    assert matrix.iloc[0]["pre_breakfast"] == 15.0
    assert pd.isna(matrix.iloc[0]["pre_lunch"])
    assert matrix.iloc[1]["pre_breakfast"] == 3.5
    assert matrix.iloc[1]["pre_dinner"] == 12.0
    assert matrix.iloc[1]["total_insulin"] == 2.0
    assert matrix.iloc[1]["total_carbs"] == 45.0
    assert matrix.iloc[0]["total_carbs"] == 0.0


def test_logbook_matrix_in_mgdl_keeps_last_reading_per_slot(
    readings: list[GlucoseReading],
) -> None:
    later = _reading(
        "r5", datetime(2025, 3, 11, 8, 30), MeasurementTime.PRE_BREAKFAST, 8.0
    )
    matrix = logbook_matrix([*readings, later], unit=GlucoseUnit.MG_DL)
    assert matrix.iloc[0]["pre_breakfast"] == 144


def test_logbook_matrix_empty() -> None:
    matrix = logbook_matrix([])
    assert matrix.empty
    assert list(matrix.columns)[-2:] == ["total_insulin", "total_carbs"]


def test_logbook_states(readings: list[GlucoseReading]) -> None:
    states = logbook_states(readings)
    assert states.iloc[0]["pre_breakfast"] == "critical"
    assert states.iloc[1]["pre_breakfast"] == "hypo"
    assert states.iloc[1]["pre_dinner"] == "high"
    assert pd.isna(states.iloc[1]["waking"])


def test_logbook_total_insulin_counts_every_reading_of_the_day(
    readings: list[GlucoseReading],
) -> None:
    recheck = _reading(
        "r5",
        datetime(2025, 3, 10, 21, 0),
        MeasurementTime.PRE_DINNER,
        10.0,
        insulin=1.0,
    )
    matrix = logbook_matrix([*readings, recheck])
    assert matrix.iloc[1]["pre_dinner"] == 10.0
    assert matrix.iloc[1]["total_insulin"] == 3.0
    assert matrix.iloc[0]["total_insulin"] == 3.0
