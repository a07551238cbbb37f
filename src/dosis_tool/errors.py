"""Excepciones del dominio de dosificación."""

from __future__ import annotations


class InvalidInputError(ValueError):
    """Numeric input that cannot be used for a calculation (negative, not finite)."""


class NotFoundError(LookupError):
    """A referenced visit or medical profile does not exist."""


class VisitAlreadyAppliedError(RuntimeError):
    """The visit changes were already written to the profile."""

    def __init__(self, visit_id: str) -> None:
        super().__init__(f"Visit {visit_id} changes already applied")
        self.visit_id = visit_id


class HypoglycemiaError(RuntimeError):
    """Insulin must not be recorded while the reading is hypoglycemic."""


class ConcurrentUpdateError(RuntimeError):
    """Stored profile changed since it was read (version mismatch)."""
