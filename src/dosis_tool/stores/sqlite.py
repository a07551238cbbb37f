"""Persistencia SQLite para configuración, perfiles, lecturas, comidas y visitas."""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import asdict, dataclass, replace
from datetime import date, datetime
from pathlib import Path
from typing import Any

from dosis_tool.errors import ConcurrentUpdateError, NotFoundError
from dosis_tool.model import (
    GlucoseReading,
    GlucoseUnit,
    MealEntry,
    MeasurementTime,
    MedicalProfile,
    SelectedFoodItem,
    Visit,
    VisitStatus,
)
from dosis_tool.stores.base import HealthStore

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS app_config (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS profiles (
    user_id TEXT PRIMARY KEY,
    version INTEGER NOT NULL,
    data TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS readings (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    value REAL NOT NULL,
    timestamp TEXT NOT NULL,
    time_label TEXT NOT NULL,
    notes TEXT,
    meal_id TEXT,
    insulin_units REAL,
    long_acting_units REAL,
    correction_method TEXT,
    carbs REAL
);

CREATE TABLE IF NOT EXISTS meal_entries (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    date TEXT NOT NULL,
    time_label TEXT NOT NULL,
    items TEXT NOT NULL,
    total_carbs REAL NOT NULL,
    suggested_bolus REAL NOT NULL,
    correction_bolus REAL NOT NULL,
    total_bolus REAL NOT NULL,
    glucose_reading_id TEXT
);

CREATE TABLE IF NOT EXISTS visits (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    date TEXT NOT NULL,
    doctor_name TEXT NOT NULL,
    status TEXT NOT NULL,
    reason TEXT NOT NULL,
    new_long_acting_dose REAL,
    new_long_acting_time TEXT,
    new_icr_breakfast REAL,
    new_icr_lunch REAL,
    new_icr_dinner REAL,
    new_isf REAL,
    changes_applied INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_meal_entries_user_date
ON meal_entries(user_id, date);
"""

_READING_COLUMNS = (
    "id",
    "user_id",
    "value",
    "timestamp",
    "day",
    "time_label",
    "notes",
    "meal_id",
    "insulin_units",
    "long_acting_units",
    "correction_method",
    "carbs",
)

_VISIT_COLUMNS = (
    "id",
    "user_id",
    "date",
    "doctor_name",
    "status",
    "reason",
    "new_long_acting_dose",
    "new_long_acting_time",
    "new_icr_breakfast",
    "new_icr_lunch",
    "new_icr_dinner",
    "new_isf",
    "changes_applied",
)


@dataclass(frozen=True)
class AppConfig:
    """Configuracion persistida de la app."""

    export_dir: str
    timezone: str
    default_unit: GlucoseUnit
    log_level: str


class SQLiteStore(HealthStore):
    """Repositorio SQLite para la app."""

    def __init__(self, db_path: Path) -> None:
        """Create store and ensure schema exists."""
        self._db_path = db_path
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.executescript(SCHEMA_SQL)
            self._migrate(conn)
            conn.commit()

    def _migrate(self, conn: sqlite3.Connection) -> None:
        """Apply lightweight schema/data migrations."""
        cols = {row["name"] for row in conn.execute("PRAGMA table_info(readings)")}
        if "day" not in cols:
            conn.execute("ALTER TABLE readings ADD COLUMN day TEXT")

        rows = conn.execute(
            "SELECT id, timestamp FROM readings WHERE day IS NULL"
        ).fetchall()
        for row in rows:
            day = datetime.fromisoformat(row["timestamp"]).date().isoformat()
            conn.execute("UPDATE readings SET day = ? WHERE id = ?", (day, row["id"]))
        if rows:
            logger.info("Backfilled day on %d readings", len(rows))

        conn.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_readings_user_day_slot
            ON readings(user_id, day, time_label)
            """
        )

    # --- config ---

    def load_config(self) -> AppConfig:
        """Devuelve configuracion guardada o defaults."""
        defaults = {
            "export_dir": "",
            "timezone": "UTC",
            "default_unit": GlucoseUnit.MMOL_L.value,
            "log_level": "INFO",
        }
        with self._connect() as conn:
            rows = conn.execute("SELECT key, value FROM app_config").fetchall()
        values = {row["key"]: row["value"] for row in rows}
        merged = {**defaults, **values}
        return AppConfig(
            export_dir=merged["export_dir"],
            timezone=merged["timezone"],
            default_unit=_parse_unit(merged["default_unit"]),
            log_level=merged["log_level"].upper(),
        )

    def save_config(self, config: AppConfig) -> None:
        """Guarda la configuracion en tabla key/value."""
        payload = {
            "export_dir": config.export_dir,
            "timezone": config.timezone,
            "default_unit": config.default_unit.value,
            "log_level": config.log_level,
        }
        with self._connect() as conn:
            conn.executemany(
                """
                INSERT INTO app_config(key, value) VALUES(?, ?)
                ON CONFLICT(key) DO UPDATE SET value=excluded.value
                """,
                payload.items(),
            )
            conn.commit()

    # --- profiles ---

    def get_profile(self, user_id: str) -> MedicalProfile:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT version, data FROM profiles WHERE user_id = ?", (user_id,)
            ).fetchone()
        if row is None:
            raise NotFoundError(f"No medical profile for user {user_id}")
        return _profile_from_json(row["data"], int(row["version"]))

    def save_profile(self, user_id: str, profile: MedicalProfile) -> MedicalProfile:
        with self._connect() as conn:
            stored = _write_profile(conn, user_id, profile)
            conn.commit()
        return stored

    # --- readings ---

    def get_reading_for_slot(
        self, user_id: str, day: date, slot: MeasurementTime
    ) -> GlucoseReading | None:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT * FROM readings
                WHERE user_id = ? AND day = ? AND time_label = ?
                ORDER BY timestamp
                LIMIT 1
                """,
                (user_id, day.isoformat(), slot.value),
            ).fetchone()
        if row is None:
            return None
        return _reading_from_row(row)

    def append_reading(self, reading: GlucoseReading) -> None:
        placeholders = ", ".join("?" for _ in _READING_COLUMNS)
        updates = ", ".join(f"{c}=excluded.{c}" for c in _READING_COLUMNS[1:])
        with self._connect() as conn:
            conn.execute(
                f"""
                INSERT INTO readings({", ".join(_READING_COLUMNS)})
                VALUES ({placeholders})
                ON CONFLICT(id) DO UPDATE SET {updates}
                """,
                _reading_to_row(reading),
            )
            conn.commit()

    def list_readings(
        self,
        user_id: str,
        start: date | None = None,
        end: date | None = None,
    ) -> list[GlucoseReading]:
        sql = "SELECT * FROM readings WHERE user_id = ?"
        params: list[object] = [user_id]
        if start is not None:
            sql += " AND day >= ?"
            params.append(start.isoformat())
        if end is not None:
            sql += " AND day <= ?"
            params.append(end.isoformat())
        sql += " ORDER BY timestamp"
        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [_reading_from_row(row) for row in rows]

    # --- meals ---

    def append_meal_entry(self, entry: MealEntry) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO meal_entries(
                    id, user_id, date, time_label, items, total_carbs,
                    suggested_bolus, correction_bolus, total_bolus,
                    glucose_reading_id
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    user_id=excluded.user_id,
                    date=excluded.date,
                    time_label=excluded.time_label,
                    items=excluded.items,
                    total_carbs=excluded.total_carbs,
                    suggested_bolus=excluded.suggested_bolus,
                    correction_bolus=excluded.correction_bolus,
                    total_bolus=excluded.total_bolus,
                    glucose_reading_id=excluded.glucose_reading_id
                """,
                (
                    entry.id,
                    entry.user_id,
                    entry.date.isoformat(),
                    entry.time_label.value,
                    json.dumps([asdict(item) for item in entry.items]),
                    entry.total_carbs,
                    entry.suggested_bolus,
                    entry.correction_bolus,
                    entry.total_bolus,
                    entry.glucose_reading_id,
                ),
            )
            conn.commit()

    def get_meal_entries_for_date(self, user_id: str, day: date) -> list[MealEntry]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM meal_entries WHERE user_id = ? AND date = ?",
                (user_id, day.isoformat()),
            ).fetchall()
        return [_meal_from_row(row) for row in rows]

    # --- visits ---

    def get_visit(self, visit_id: str) -> Visit:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM visits WHERE id = ?", (visit_id,)
            ).fetchone()
        if row is None:
            raise NotFoundError(f"No visit {visit_id}")
        return _visit_from_row(row)

    def save_visit(self, visit: Visit) -> None:
        with self._connect() as conn:
            _write_visit(conn, visit)
            conn.commit()

    def commit_visit_application(
        self, visit: Visit, profile: MedicalProfile
    ) -> MedicalProfile:
        # sqlite3's connection context manager rolls back if anything raises.
        with self._connect() as conn:
            stored = _write_profile(conn, visit.user_id, profile, must_exist=True)
            _write_visit(conn, visit)
            conn.commit()
        return stored


def _parse_unit(raw: str) -> GlucoseUnit:
    try:
        return GlucoseUnit(raw)
    except ValueError:
        return GlucoseUnit.MMOL_L


def _profile_to_json(profile: MedicalProfile) -> str:
    data: dict[str, Any] = asdict(profile)
    data.pop("version")
    data["preferred_unit"] = profile.preferred_unit.value
    data["allergies"] = list(profile.allergies)
    return json.dumps(data, ensure_ascii=False, sort_keys=True)


def _profile_from_json(raw: str, version: int) -> MedicalProfile:
    data: dict[str, Any] = json.loads(raw)
    known = set(MedicalProfile.__dataclass_fields__)
    data = {k: v for k, v in data.items() if k in known}
    data["preferred_unit"] = _parse_unit(data.get("preferred_unit", ""))
    data["allergies"] = tuple(data.get("allergies") or ())
    data["version"] = version
    return MedicalProfile(**data)


def _write_profile(
    conn: sqlite3.Connection,
    user_id: str,
    profile: MedicalProfile,
    *,
    must_exist: bool = False,
) -> MedicalProfile:
    """Insert or optimistically update a profile row."""
    row = conn.execute(
        "SELECT version FROM profiles WHERE user_id = ?", (user_id,)
    ).fetchone()
    if row is None and must_exist:
        raise NotFoundError(f"No medical profile for user {user_id}")
    current_version = int(row["version"]) if row is not None else 0
    if profile.version != current_version:
        raise ConcurrentUpdateError(
            f"Profile of {user_id} is at version {current_version}, "
            f"got {profile.version}"
        )
    stored = replace(profile, version=current_version + 1)
    updated_at = datetime.now().isoformat(timespec="seconds")
    if row is None:
        conn.execute(
            """
            INSERT INTO profiles(user_id, version, data, updated_at)
            VALUES (?, ?, ?, ?)
            """,
            (user_id, stored.version, _profile_to_json(stored), updated_at),
        )
    else:
        cur = conn.execute(
            """
            UPDATE profiles SET version = ?, data = ?, updated_at = ?
            WHERE user_id = ? AND version = ?
            """,
            (
                stored.version,
                _profile_to_json(stored),
                updated_at,
                user_id,
                current_version,
            ),
        )
        if cur.rowcount != 1:
            raise ConcurrentUpdateError(f"Profile of {user_id} changed meanwhile")
    return stored


def _write_visit(conn: sqlite3.Connection, visit: Visit) -> None:
    placeholders = ", ".join("?" for _ in _VISIT_COLUMNS)
    updates = ", ".join(f"{c}=excluded.{c}" for c in _VISIT_COLUMNS[1:])
    conn.execute(
        f"""
        INSERT INTO visits({", ".join(_VISIT_COLUMNS)})
        VALUES ({placeholders})
        ON CONFLICT(id) DO UPDATE SET {updates}
        """,
        (
            visit.id,
            visit.user_id,
            visit.date.isoformat(),
            visit.doctor_name,
            visit.status.value,
            visit.reason,
            visit.new_long_acting_dose,
            visit.new_long_acting_time,
            visit.new_icr_breakfast,
            visit.new_icr_lunch,
            visit.new_icr_dinner,
            visit.new_isf,
            int(visit.changes_applied),
        ),
    )


def _visit_from_row(row: sqlite3.Row) -> Visit:
    return Visit(
        id=row["id"],
        user_id=row["user_id"],
        date=date.fromisoformat(row["date"]),
        doctor_name=row["doctor_name"],
        status=VisitStatus(row["status"]),
        reason=row["reason"],
        new_long_acting_dose=row["new_long_acting_dose"],
        new_long_acting_time=row["new_long_acting_time"],
        new_icr_breakfast=row["new_icr_breakfast"],
        new_icr_lunch=row["new_icr_lunch"],
        new_icr_dinner=row["new_icr_dinner"],
        new_isf=row["new_isf"],
        changes_applied=bool(row["changes_applied"]),
    )


def _reading_to_row(reading: GlucoseReading) -> tuple[object, ...]:
    return (
        reading.id,
        reading.user_id,
        reading.value,
        reading.timestamp.isoformat(),
        reading.timestamp.date().isoformat(),
        reading.time_label.value,
        reading.notes,
        reading.meal_id,
        reading.insulin_units,
        reading.long_acting_units,
        reading.correction_method,
        reading.carbs,
    )


def _reading_from_row(row: sqlite3.Row) -> GlucoseReading:
    return GlucoseReading(
        id=row["id"],
        user_id=row["user_id"],
        value=row["value"],
        timestamp=datetime.fromisoformat(row["timestamp"]),
        time_label=MeasurementTime(row["time_label"]),
        notes=row["notes"],
        meal_id=row["meal_id"],
        insulin_units=row["insulin_units"],
        long_acting_units=row["long_acting_units"],
        correction_method=row["correction_method"],
        carbs=row["carbs"],
    )


def _meal_from_row(row: sqlite3.Row) -> MealEntry:
    items = tuple(SelectedFoodItem(**item) for item in json.loads(row["items"]))
    return MealEntry(
        id=row["id"],
        user_id=row["user_id"],
        date=date.fromisoformat(row["date"]),
        time_label=MeasurementTime(row["time_label"]),
        items=items,
        total_carbs=row["total_carbs"],
        suggested_bolus=row["suggested_bolus"],
        correction_bolus=row["correction_bolus"],
        total_bolus=row["total_bolus"],
        glucose_reading_id=row["glucose_reading_id"],
    )
