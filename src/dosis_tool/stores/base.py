"""Puertos de almacenamiento (perfiles, lecturas, comidas, visitas)."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date

from dosis_tool.model import (
    GlucoseReading,
    MealEntry,
    MeasurementTime,
    MedicalProfile,
    Visit,
)


class ProfileStore(ABC):
    """Medical profiles keyed by child user id."""

    @abstractmethod
    def get_profile(self, user_id: str) -> MedicalProfile:
        """Return the stored profile.

        Raises:
            NotFoundError: If the user has no profile.
        """

    @abstractmethod
    def save_profile(self, user_id: str, profile: MedicalProfile) -> MedicalProfile:
        """Persist ``profile`` and return it with its new version.

        Raises:
            ConcurrentUpdateError: If the stored version is not
                ``profile.version``.
        """


class ReadingStore(ABC):
    """Glucose readings, upserted by id."""

    @abstractmethod
    def get_reading_for_slot(
        self, user_id: str, day: date, slot: MeasurementTime
    ) -> GlucoseReading | None:
        """First reading of ``user_id`` on ``day`` for ``slot``."""

    @abstractmethod
    def append_reading(self, reading: GlucoseReading) -> None:
        """Insert the reading, replacing any reading with the same id."""

    @abstractmethod
    def list_readings(
        self,
        user_id: str,
        start: date | None = None,
        end: date | None = None,
    ) -> list[GlucoseReading]:
        """Readings of a user ordered by timestamp, optionally by day range."""


class MealStore(ABC):
    """Saved meals, upserted by id."""

    @abstractmethod
    def append_meal_entry(self, entry: MealEntry) -> None:
        """Insert the meal entry, replacing any entry with the same id."""

    @abstractmethod
    def get_meal_entries_for_date(self, user_id: str, day: date) -> list[MealEntry]:
        """Meal entries of a user for one day."""


class VisitStore(ABC):
    """Clinical visits."""

    @abstractmethod
    def get_visit(self, visit_id: str) -> Visit:
        """Return a visit.

        Raises:
            NotFoundError: If the visit does not exist.
        """

    @abstractmethod
    def save_visit(self, visit: Visit) -> None:
        """Insert or replace a visit."""


class HealthStore(ProfileStore, ReadingStore, MealStore, VisitStore):
    """Everything the recording flows need, plus the visit transaction."""

    @abstractmethod
    def commit_visit_application(
        self, visit: Visit, profile: MedicalProfile
    ) -> MedicalProfile:
        """Write the applied visit and the merged profile atomically.

        Either both records are stored or neither is.

        Returns:
            The stored profile (new version).

        Raises:
            NotFoundError: If the child's profile is gone.
            ConcurrentUpdateError: If the profile changed meanwhile.
        """
