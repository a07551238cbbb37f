"""Aplicación de los cambios propuestos en una visita al perfil médico."""

from __future__ import annotations

import logging
from dataclasses import replace

from dosis_tool.errors import VisitAlreadyAppliedError
from dosis_tool.model import MedicalProfile, Visit
from dosis_tool.stores.base import HealthStore

logger = logging.getLogger(__name__)

# Visit field -> profile field.
VISIT_CHANGE_FIELDS: dict[str, str] = {
    "new_long_acting_dose": "long_acting_dose",
    "new_long_acting_time": "long_acting_time",
    "new_isf": "isf",
    "new_icr_breakfast": "icr_breakfast",
    "new_icr_lunch": "icr_lunch",
    "new_icr_dinner": "icr_dinner",
}


def proposed_changes(visit: Visit) -> dict[str, object]:
    """Profile fields the visit would overwrite (None, 0 and "" are absent)."""
    return {
        profile_field: getattr(visit, visit_field)
        for visit_field, profile_field in VISIT_CHANGE_FIELDS.items()
        if getattr(visit, visit_field)
    }


def has_proposed_changes(visit: Visit) -> bool:
    return bool(proposed_changes(visit))


def apply_visit_changes(
    visit: Visit, profile: MedicalProfile
) -> tuple[Visit, MedicalProfile]:
    """Sparse-merge the visit's proposals into ``profile``.

    Fields the visit does not set keep their current profile value. Neither
    input is modified.

    Returns:
        The visit flagged as applied and the updated profile.
    """
    updated_profile = replace(profile, **proposed_changes(visit))
    return replace(visit, changes_applied=True), updated_profile


def apply_visit_by_id(
    store: HealthStore, visit_id: str, *, force: bool = False
) -> tuple[Visit, MedicalProfile]:
    """Load, merge and persist a visit's changes in one store transaction.

    Args:
        store: Store holding visits and profiles.
        visit_id: Visit to apply.
        force: Re-apply a visit already flagged as applied.

    Returns:
        The stored visit and profile.

    Raises:
        NotFoundError: If the visit or the child's profile does not exist.
        VisitAlreadyAppliedError: If the visit was applied and ``force`` is
            False.
    """
    visit = store.get_visit(visit_id)
    if visit.changes_applied and not force:
        raise VisitAlreadyAppliedError(visit_id)
    profile = store.get_profile(visit.user_id)
    new_visit, new_profile = apply_visit_changes(visit, profile)
    stored_profile = store.commit_visit_application(new_visit, new_profile)
    logger.info(
        "Applied visit %s to profile of %s: %s",
        visit_id,
        visit.user_id,
        sorted(proposed_changes(visit)),
    )
    return new_visit, stored_profile
