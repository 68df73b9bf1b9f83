"""Regimen lifecycle: pause, resume and archive.

Paused and archived regimens drop out of list_due() and reject new
administrations. Archiving is a soft delete; past administrations keep
pointing at the row.
"""

import logging

from django.db import transaction
from django.utils import timezone

from ..audit import Actions
from ..conf import get_audit_emitter
from ..exceptions import InvalidState
from ..models import Regimen
from .recording import get_scoped


logger = logging.getLogger(__name__)


def _get_regimen(household_id, regimen_id, include_archived=False) -> Regimen:
    manager = Regimen.all_objects if include_archived else Regimen.objects
    return get_scoped(
        manager.select_for_update(),
        "Regimen",
        regimen_id,
        animal__household_id=household_id,
    )


def _emit(emitter, action, regimen, household_id, actor, metadata=None):
    transaction.on_commit(
        lambda: emitter.emit(
            action,
            household_id=household_id,
            actor_id=getattr(actor, "pk", None),
            obj=regimen,
            metadata=metadata or {},
        )
    )


def pause_regimen(household_id, regimen_id, reason: str = "", actor=None, *, audit=None, now=None) -> Regimen:
    """Pause an active regimen. Raises InvalidState if already paused."""
    now = now or timezone.now()
    with transaction.atomic():
        regimen = _get_regimen(household_id, regimen_id)
        if regimen.is_paused:
            raise InvalidState("paused", f"Regimen {regimen.pk} is already paused")
        regimen.paused_at = now
        regimen.pause_reason = reason or ""
        regimen.save(update_fields=["paused_at", "pause_reason", "updated_at"])
        _emit(audit or get_audit_emitter(), Actions.REGIMEN_PAUSED, regimen, household_id, actor,
              {"reason": regimen.pause_reason})
    logger.info("Regimen %s paused", regimen.pk)
    return regimen


def resume_regimen(household_id, regimen_id, actor=None, *, audit=None) -> Regimen:
    """Resume a paused regimen. Raises InvalidState if it is not paused."""
    with transaction.atomic():
        regimen = _get_regimen(household_id, regimen_id)
        if not regimen.is_paused:
            raise InvalidState("active", f"Regimen {regimen.pk} is not paused")
        regimen.paused_at = None
        regimen.pause_reason = ""
        regimen.save(update_fields=["paused_at", "pause_reason", "updated_at"])
        _emit(audit or get_audit_emitter(), Actions.REGIMEN_RESUMED, regimen, household_id, actor)
    logger.info("Regimen %s resumed", regimen.pk)
    return regimen


def archive_regimen(household_id, regimen_id, actor=None, *, audit=None, now=None) -> Regimen:
    """Soft delete a regimen. Archiving twice raises InvalidState."""
    now = now or timezone.now()
    with transaction.atomic():
        regimen = _get_regimen(household_id, regimen_id, include_archived=True)
        if regimen.is_archived:
            raise InvalidState("archived", f"Regimen {regimen.pk} is already archived")
        regimen.deleted_at = now
        regimen.active = False
        regimen.save(update_fields=["deleted_at", "active", "updated_at"])
        _emit(audit or get_audit_emitter(), Actions.REGIMEN_ARCHIVED, regimen, household_id, actor)
    logger.info("Regimen %s archived", regimen.pk)
    return regimen
