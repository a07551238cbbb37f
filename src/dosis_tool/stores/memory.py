"""Almacenamiento en memoria (tests y uso efímero)."""

from __future__ import annotations

from dataclasses import replace
from datetime import date

from dosis_tool.errors import ConcurrentUpdateError, NotFoundError
from dosis_tool.model import (
    GlucoseReading,
    MealEntry,
    MeasurementTime,
    MedicalProfile,
    Visit,
)
from dosis_tool.stores.base import HealthStore


class InMemoryStore(HealthStore):
    """Dict-backed store."""

    def __init__(self) -> None:
        self._profiles: dict[str, MedicalProfile] = {}
        self._readings: dict[str, GlucoseReading] = {}
        self._meals: dict[str, MealEntry] = {}
        self._visits: dict[str, Visit] = {}

    def get_profile(self, user_id: str) -> MedicalProfile:
        try:
            return self._profiles[user_id]
        except KeyError:
            raise NotFoundError(f"No medical profile for user {user_id}") from None

    def save_profile(self, user_id: str, profile: MedicalProfile) -> MedicalProfile:
        stored = self._next_version(user_id, profile)
        self._profiles[user_id] = stored
        return stored

    def _next_version(self, user_id: str, profile: MedicalProfile) -> MedicalProfile:
        current = self._profiles.get(user_id)
        current_version = current.version if current is not None else 0
        if profile.version != current_version:
            raise ConcurrentUpdateError(
                f"Profile of {user_id} is at version {current_version}, "
                f"got {profile.version}"
            )
        return replace(profile, version=current_version + 1)

    def get_reading_for_slot(
        self, user_id: str, day: date, slot: MeasurementTime
    ) -> GlucoseReading | None:
        for reading in sorted(self._readings.values(), key=lambda r: r.timestamp):
            if (
                reading.user_id == user_id
                and reading.time_label == slot
                and reading.timestamp.date() == day
            ):
                return reading
        return None

    def append_reading(self, reading: GlucoseReading) -> None:
        self._readings[reading.id] = reading

    def list_readings(
        self,
        user_id: str,
        start: date | None = None,
        end: date | None = None,
    ) -> list[GlucoseReading]:
        out = [
            r
            for r in self._readings.values()
            if r.user_id == user_id
            and (start is None or r.timestamp.date() >= start)
            and (end is None or r.timestamp.date() <= end)
        ]
        return sorted(out, key=lambda r: r.timestamp)

    def append_meal_entry(self, entry: MealEntry) -> None:
        self._meals[entry.id] = entry

    def get_meal_entries_for_date(self, user_id: str, day: date) -> list[MealEntry]:
        return [
            m for m in self._meals.values() if m.user_id == user_id and m.date == day
        ]

    def get_visit(self, visit_id: str) -> Visit:
        try:
            return self._visits[visit_id]
        except KeyError:
            raise NotFoundError(f"No visit {visit_id}") from None

    def save_visit(self, visit: Visit) -> None:
        self._visits[visit.id] = visit

    def commit_visit_application(
        self, visit: Visit, profile: MedicalProfile
    ) -> MedicalProfile:
        self.get_profile(visit.user_id)
        stored = self._next_version(visit.user_id, profile)
        # Both records are built before either is assigned.
        self._profiles[visit.user_id] = stored
        self._visits[visit.id] = visit
        return stored
