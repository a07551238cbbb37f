from __future__ import annotations

import sqlite3
from dataclasses import replace
from datetime import date, datetime
from pathlib import Path

import pytest

from dosis_tool.errors import ConcurrentUpdateError, NotFoundError
from dosis_tool.model import (
    GlucoseReading,
    GlucoseUnit,
    MealEntry,
    MeasurementTime,
    MedicalProfile,
    SelectedFoodItem,
    Visit,
)
from dosis_tool.stores.base import HealthStore
from dosis_tool.stores.memory import InMemoryStore
from dosis_tool.stores.sqlite import AppConfig, SQLiteStore


@pytest.fixture(params=["memory", "sqlite"])
def store(request: pytest.FixtureRequest, tmp_path: Path) -> HealthStore:
    if request.param == "memory":
        return InMemoryStore()
    return SQLiteStore(tmp_path / "app.sqlite3")


def _reading(
    reading_id: str, when: datetime, slot: MeasurementTime, value: float = 6.0
) -> GlucoseReading:
    return GlucoseReading(
        id=reading_id,
        user_id="kid",
        value=value,
        timestamp=when,
        time_label=slot,
    )


def test_profile_versioning(store: HealthStore) -> None:
    with pytest.raises(NotFoundError):
        store.get_profile("kid")

    stored = store.save_profile(
        "kid", MedicalProfile(isf=3.0, allergies=("gluten",))
    )
    assert stored.version == 1
    loaded = store.get_profile("kid")
    assert loaded == stored
    assert loaded.allergies == ("gluten",)

    with pytest.raises(ConcurrentUpdateError):
        store.save_profile("kid", MedicalProfile(isf=2.0))

    updated = store.save_profile("kid", replace(loaded, isf=2.0))
    assert updated.version == 2
    assert store.get_profile("kid").isf == 2.0


def test_profile_keeps_unit(store: HealthStore) -> None:
    store.save_profile("kid", MedicalProfile(preferred_unit=GlucoseUnit.MG_DL))
    assert store.get_profile("kid").preferred_unit == GlucoseUnit.MG_DL


def test_readings_by_slot_and_period(store: HealthStore) -> None:
    store.append_reading(
        _reading("r1", datetime(2025, 3, 10, 7, 30), MeasurementTime.PRE_BREAKFAST)
    )
    store.append_reading(
        _reading("r2", datetime(2025, 3, 10, 12, 0), MeasurementTime.PRE_LUNCH)
    )
    store.append_reading(
        _reading("r3", datetime(2025, 3, 12, 7, 45), MeasurementTime.PRE_BREAKFAST)
    )

    found = store.get_reading_for_slot(
        "kid", date(2025, 3, 10), MeasurementTime.PRE_BREAKFAST
    )
    assert found is not None
    assert found.id == "r1"
    assert (
        store.get_reading_for_slot("kid", date(2025, 3, 11), MeasurementTime.PRE_LUNCH)
        is None
    )

    all_ids = [r.id for r in store.list_readings("kid")]
    assert all_ids == ["r1", "r2", "r3"]
    ranged = store.list_readings("kid", date(2025, 3, 10), date(2025, 3, 10))
    assert [r.id for r in ranged] == ["r1", "r2"]
    assert store.list_readings("other") == []


def test_append_reading_upserts_by_id(store: HealthStore) -> None:
    reading = _reading("r1", datetime(2025, 3, 10, 7, 30), MeasurementTime.WAKING)
    store.append_reading(reading)
    store.append_reading(replace(reading, value=9.5, insulin_units=1.5))

    readings = store.list_readings("kid")
    assert len(readings) == 1
    assert readings[0].value == 9.5
    assert readings[0].insulin_units == 1.5


def test_meal_entries_round_trip(store: HealthStore) -> None:
    entry = MealEntry(
        id="m1",
        user_id="kid",
        date=date(2025, 3, 10),
        time_label=MeasurementTime.PRE_LUNCH,
        items=(SelectedFoodItem("f1", "Arroz", "taza", 1.0, 45.0),),
        total_carbs=45.0,
        suggested_bolus=4.5,
        correction_bolus=0.0,
        total_bolus=4.5,
    )
    store.append_meal_entry(entry)

    assert store.get_meal_entries_for_date("kid", date(2025, 3, 10)) == [entry]
    assert store.get_meal_entries_for_date("kid", date(2025, 3, 11)) == []


def test_visits_round_trip(store: HealthStore) -> None:
    with pytest.raises(NotFoundError):
        store.get_visit("v1")
    visit = Visit(id="v1", user_id="kid", date=date(2025, 3, 1), new_isf=2.5)
    store.save_visit(visit)
    assert store.get_visit("v1") == visit


def test_commit_visit_application_is_atomic(store: HealthStore) -> None:
    stored = store.save_profile("kid", MedicalProfile(isf=3.0))
    visit = Visit(id="v1", user_id="kid", date=date(2025, 3, 1), new_isf=2.5)
    store.save_visit(visit)
    # Someone else saves the profile in the meantime.
    store.save_profile("kid", replace(stored, icr=12))

    with pytest.raises(ConcurrentUpdateError):
        store.commit_visit_application(
            replace(visit, changes_applied=True), replace(stored, isf=2.5)
        )

    assert not store.get_visit("v1").changes_applied
    assert store.get_profile("kid").isf == 3.0


def test_commit_visit_application_without_profile(store: HealthStore) -> None:
    visit = Visit(id="v1", user_id="kid", date=date(2025, 3, 1), new_isf=2.5)
    store.save_visit(visit)
    with pytest.raises(NotFoundError):
        store.commit_visit_application(
            replace(visit, changes_applied=True), MedicalProfile(isf=2.5)
        )
    assert not store.get_visit("v1").changes_applied


def test_sqlite_config_defaults_and_save(tmp_path: Path) -> None:
    store = SQLiteStore(tmp_path / "app.sqlite3")
    config = store.load_config()
    assert config == AppConfig(
        export_dir="", timezone="UTC", default_unit=GlucoseUnit.MMOL_L, log_level="INFO"
    )

    store.save_config(
        AppConfig(
            export_dir="/data/out",
            timezone="America/Argentina/Buenos_Aires",
            default_unit=GlucoseUnit.MG_DL,
            log_level="debug",
        )
    )
    loaded = SQLiteStore(tmp_path / "app.sqlite3").load_config()
    assert loaded.export_dir == "/data/out"
    assert loaded.timezone == "America/Argentina/Buenos_Aires"
    assert loaded.default_unit == GlucoseUnit.MG_DL
    assert loaded.log_level == "DEBUG"


def test_sqlite_backfills_reading_day(tmp_path: Path) -> None:
    db_path = tmp_path / "app.sqlite3"
    SQLiteStore(db_path)
    conn = sqlite3.connect(db_path)
    conn.execute(
        """
        INSERT INTO readings(id, user_id, value, timestamp, time_label)
        VALUES ('old', 'kid', 5.5, '2025-01-02T08:00:00', 'waking')
        """
    )
    conn.commit()
    conn.close()

    store = SQLiteStore(db_path)
    readings = store.list_readings("kid", date(2025, 1, 2), date(2025, 1, 2))
    assert [r.id for r in readings] == ["old"]
