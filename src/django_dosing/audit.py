"""Audit emitters for dosing state transitions.

The recorder and co-sign workflow never write audit data themselves; they
call an AuditEmitter passed in by the caller, or the one configured with
DOSING_AUDIT_EMITTER. Emission happens after the surrounding transaction
commits.

Usage:
    from django_dosing.audit import Actions, DatabaseAuditEmitter

    record_administration(data, audit=DatabaseAuditEmitter())
"""

import logging


# Stable action strings. Renaming one breaks stored audit data.
class Actions:
    """Stable audit action constants for dosing operations."""

    # Administrations
    ADMINISTRATION_RECORDED = "administration.recorded"
    HIGH_RISK_ADMINISTERED = "high_risk.administered"

    # Co-sign
    COSIGN_REQUESTED = "cosign.requested"
    COSIGN_COMPLETED = "cosign.completed"
    COSIGN_EXPIRED = "cosign.expired"

    # Regimens
    REGIMEN_PAUSED = "regimen.paused"
    REGIMEN_RESUMED = "regimen.resumed"
    REGIMEN_ARCHIVED = "regimen.archived"

    # Inventory
    INVENTORY_UPDATED = "inventory.updated"
    INVENTORY_MARKED_IN_USE = "inventory.marked_in_use"


def _object_ref(obj):
    if obj is None:
        return "", ""
    label = f"{obj._meta.app_label}.{obj._meta.model_name}"
    return label, str(obj.pk) if obj.pk else ""


class AuditEmitter:
    """Append-only audit sink.

    Subclasses implement emit(). Emitters must not raise for well-formed
    events; the caller has already committed the state change.
    """

    def emit(
        self,
        action,
        *,
        household_id=None,
        actor_id=None,
        obj=None,
        metadata=None,
        sensitivity="normal",
    ):
        raise NotImplementedError


class LoggingAuditEmitter(AuditEmitter):
    """Writes each event as a structured record on the django_dosing.audit logger."""

    logger = logging.getLogger("django_dosing.audit")

    def emit(
        self,
        action,
        *,
        household_id=None,
        actor_id=None,
        obj=None,
        metadata=None,
        sensitivity="normal",
    ):
        model_label, object_id = _object_ref(obj)
        event = {
            "action": action,
            "household_id": str(household_id) if household_id else "",
            "actor_id": str(actor_id) if actor_id else "",
            "model_label": model_label,
            "object_id": object_id,
            "metadata": metadata or {},
            "sensitivity": sensitivity,
        }
        self.logger.info(
            "audit %s %s %s", action, model_label, object_id,
            extra={"audit_event": event},
        )


class DatabaseAuditEmitter(AuditEmitter):
    """Writes immutable AuditEvent rows."""

    def emit(
        self,
        action,
        *,
        household_id=None,
        actor_id=None,
        obj=None,
        metadata=None,
        sensitivity="normal",
    ):
        from .models import AuditEvent

        model_label, object_id = _object_ref(obj)
        return AuditEvent.objects.create(
            action=action,
            household_id=str(household_id) if household_id else "",
            actor_id=str(actor_id) if actor_id else "",
            model_label=model_label,
            object_id=object_id,
            metadata=metadata or {},
            sensitivity=sensitivity,
        )
