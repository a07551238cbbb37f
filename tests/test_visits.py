from __future__ import annotations

from dataclasses import replace
from datetime import date

import pytest

from dosis_tool.errors import NotFoundError, VisitAlreadyAppliedError
from dosis_tool.model import MedicalProfile, Visit, VisitStatus
from dosis_tool.stores.memory import InMemoryStore
from dosis_tool.visits import (
    apply_visit_by_id,
    apply_visit_changes,
    has_proposed_changes,
    proposed_changes,
)


def _visit(**changes: object) -> Visit:
    return Visit(
        id="v1",
        user_id="kid",
        date=date(2025, 3, 1),
        doctor_name="Dra. Pérez",
        status=VisitStatus.COMPLETED,
        **changes,  # type: ignore[arg-type]
    )


def test_proposed_changes_skips_unset_fields() -> None:
    visit = _visit(new_isf=2.5, new_icr_breakfast=12, new_long_acting_dose=0)
    assert proposed_changes(visit) == {"isf": 2.5, "icr_breakfast": 12}
    assert has_proposed_changes(visit)
    assert not has_proposed_changes(_visit())


def test_apply_visit_changes_is_a_sparse_merge() -> None:
    profile = MedicalProfile(
        isf=3.0, icr_lunch=15, long_acting_time="21:00", allergies=("nuts",)
    )
    visit = _visit(new_isf=2.5, new_long_acting_dose=8)

    new_visit, new_profile = apply_visit_changes(visit, profile)

    assert new_visit == replace(visit, changes_applied=True)
    assert new_profile == replace(profile, isf=2.5, long_acting_dose=8)
    # Inputs are untouched.
    assert not visit.changes_applied
    assert profile.isf == 3.0


def test_apply_visit_without_changes_keeps_profile() -> None:
    profile = MedicalProfile(isf=3.0, icr_breakfast=12)
    _, new_profile = apply_visit_changes(_visit(new_isf=0), profile)
    assert new_profile == profile


def test_apply_visit_by_id_persists_both_records() -> None:
    store = InMemoryStore()
    store.save_profile("kid", MedicalProfile(isf=3.0, icr_dinner=15))
    store.save_visit(_visit(new_icr_dinner=12))

    visit, profile = apply_visit_by_id(store, "v1")

    assert visit.changes_applied
    assert profile.icr_dinner == 12
    assert profile.isf == 3.0
    assert profile.version == 2
    assert store.get_visit("v1").changes_applied
    assert store.get_profile("kid").icr_dinner == 12


def test_apply_visit_twice_requires_force() -> None:
    store = InMemoryStore()
    store.save_profile("kid", MedicalProfile(isf=3.0))
    store.save_visit(_visit(new_isf=2.0))
    apply_visit_by_id(store, "v1")

    with pytest.raises(VisitAlreadyAppliedError, match="v1"):
        apply_visit_by_id(store, "v1")

    _, profile = apply_visit_by_id(store, "v1", force=True)
    assert profile.isf == 2.0
    assert profile.version == 3


def test_apply_visit_missing_records() -> None:
    store = InMemoryStore()
    with pytest.raises(NotFoundError):
        apply_visit_by_id(store, "nope")

    store.save_visit(_visit(new_isf=2.0))
    with pytest.raises(NotFoundError):
        apply_visit_by_id(store, "v1")
    assert not store.get_visit("v1").changes_applied
