"""Administration recording.

record_administration() writes at most one Administration per idempotency
key, consumes one unit of inventory and opens a co-sign request in the same
transaction. Retries, offline replays and concurrent submissions of the same
key all converge on the first committed row.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from ..audit import Actions
from ..choices import AdministrationStatus, ScheduleType
from ..conf import get_audit_emitter, get_setting
from ..exceptions import DosingValidationError, InventoryConflict, NotFound
from ..keys import parse_key, scheduled_instant
from ..models import Administration, Animal, CoSignRequest, InventoryItem, Regimen
from ..schedule import local_day_of


logger = logging.getLogger(__name__)


@dataclass
class RecordAdministrationInput:
    household_id: object
    animal_id: object
    regimen_id: object
    caregiver: object
    idempotency_key: str
    administered_at: Optional[datetime] = None
    inventory_source_id: Optional[object] = None
    allow_override: bool = False
    notes: str = ""
    site: str = ""
    dose: str = ""
    condition_tags: list = field(default_factory=list)
    media_urls: list = field(default_factory=list)
    adverse_event: bool = False
    adverse_event_description: str = ""
    mark_missed: bool = False


@dataclass
class RecordResult:
    """Outcome of record_administration().

    created is False when the key was already recorded; administration is
    then the originally committed row.
    """

    administration: Administration
    created: bool
    co_sign_request: Optional[CoSignRequest] = None


def get_scoped(queryset, model_name: str, object_id, **filters):
    """Fetch one row or raise NotFound, treating malformed ids as missing."""
    try:
        obj = queryset.filter(pk=object_id, **filters).first()
    except (ValueError, ValidationError):
        obj = None
    if obj is None:
        raise NotFound(model_name, object_id)
    return obj


def grade_lateness(administered_at: datetime, scheduled_for: datetime) -> str:
    """Grade a scheduled dose by how late it was given. Early doses are on time."""
    late_by = administered_at - scheduled_for
    if late_by <= timedelta(minutes=get_setting("ON_TIME_MINUTES")):
        return AdministrationStatus.ON_TIME
    if late_by <= timedelta(minutes=get_setting("LATE_MINUTES")):
        return AdministrationStatus.LATE
    return AdministrationStatus.VERY_LATE


def _existing_result(administration: Administration) -> RecordResult:
    return RecordResult(
        administration=administration,
        created=False,
        co_sign_request=CoSignRequest.objects.filter(
            administration=administration
        ).first(),
    )


def _validate_key(data: RecordAdministrationInput):
    parsed = parse_key(data.idempotency_key)
    if parsed.animal_id != str(data.animal_id) or parsed.regimen_id != str(data.regimen_id):
        raise DosingValidationError(
            "Idempotency key does not match the animal and regimen",
            field="idempotency_key",
        )
    return parsed


_TEXT_FIELDS = ("notes", "site", "dose", "adverse_event_description")


def _clean_text(data: RecordAdministrationInput) -> dict:
    """Free-text fields with None read as blank. Anything else must be a string."""
    cleaned = {}
    for name in _TEXT_FIELDS:
        value = getattr(data, name)
        if value is None:
            value = ""
        if not isinstance(value, str):
            raise DosingValidationError(f"{name} must be a string", field=name)
        cleaned[name] = value
    return cleaned


def _find_existing(idempotency_key: str) -> Optional[Administration]:
    return Administration.objects.filter(idempotency_key=idempotency_key).first()


def _check_inventory(item: InventoryItem, regimen: Regimen, local_day, allow_override: bool):
    if item.units_remaining <= 0:
        raise InventoryConflict(
            item.pk, f"Inventory item {item.pk} has no units remaining", overridable=False
        )
    if allow_override:
        return
    if item.is_expired_on(local_day):
        raise InventoryConflict(item.pk, f"Inventory item {item.pk} expired on {item.expires_on}")
    if item.medication_id != regimen.medication_id:
        raise InventoryConflict(
            item.pk, f"Inventory item {item.pk} is for a different medication"
        )


def _decrement_inventory(item: InventoryItem, now: datetime):
    """Consume one unit. Runs inside the recording transaction."""
    updated = InventoryItem.objects.filter(pk=item.pk, units_remaining__gt=0).update(
        units_remaining=F("units_remaining") - 1,
        updated_at=now,
    )
    if not updated:
        raise InventoryConflict(
            item.pk, f"Inventory item {item.pk} has no units remaining", overridable=False
        )


def record_administration(data: RecordAdministrationInput, *, audit=None, now=None) -> RecordResult:
    """
    Record one administration exactly once per idempotency key.

    Args:
        data: RecordAdministrationInput
        audit: AuditEmitter; defaults to DOSING_AUDIT_EMITTER
        now: Current time; defaults to timezone.now()

    Returns:
        RecordResult (created=False when the key was already recorded)

    Raises:
        DosingValidationError: Malformed key, key/regimen mismatch, non-string
            free text, or a slot whose window has not opened yet
        NotFound: Animal, regimen or inventory source missing, or regimen inactive
        InventoryConflict: Inventory source exhausted, expired or mismatched
    """
    now = now or timezone.now()
    administered_at = data.administered_at or now
    if timezone.is_naive(administered_at):
        raise DosingValidationError("administered_at must be timezone-aware", field="administered_at")

    parsed = _validate_key(data)
    text = _clean_text(data)

    with transaction.atomic():
        animal = get_scoped(Animal.objects, "Animal", data.animal_id, household_id=data.household_id)
        regimen = get_scoped(
            Regimen.objects.select_related("medication"), "Regimen", data.regimen_id, animal=animal
        )

        existing = _find_existing(data.idempotency_key)
        if existing is not None:
            logger.debug("Administration %s already recorded for key %s", existing.pk, data.idempotency_key)
            return _existing_result(existing)

        if not regimen.is_active_on(parsed.local_day):
            raise NotFound(
                "Regimen",
                regimen.pk,
                reason=f"Regimen {regimen.pk} is not active on {parsed.local_day}",
            )

        is_prn = regimen.schedule_type == ScheduleType.PRN
        if is_prn != parsed.is_prn:
            raise DosingValidationError(
                "PRN keys are required for PRN regimens and only for them",
                field="idempotency_key",
            )

        tz = animal.tzinfo
        item = None
        # Missed doses consume nothing
        if data.inventory_source_id and not data.mark_missed:
            item = get_scoped(
                InventoryItem.objects.select_related("medication"),
                "InventoryItem",
                data.inventory_source_id,
                household_id=data.household_id,
            )
            _check_inventory(item, regimen, local_day_of(administered_at, tz), data.allow_override)

        scheduled_for = None
        if is_prn:
            if data.mark_missed:
                raise DosingValidationError("PRN doses cannot be marked missed", field="mark_missed")
            status = AdministrationStatus.PRN
        else:
            scheduled_for = scheduled_instant(regimen, tz, parsed.local_day, parsed.slot_index)
            window_opens = scheduled_for - timedelta(minutes=regimen.cutoff_minutes)
            if administered_at < window_opens:
                raise DosingValidationError(
                    f"Slot {parsed.local_day}:{parsed.slot_index} opens at {window_opens.isoformat()}",
                    field="idempotency_key",
                )
            if data.mark_missed:
                status = AdministrationStatus.MISSED
            else:
                status = grade_lateness(administered_at, scheduled_for)

        try:
            with transaction.atomic():
                administration = Administration.objects.create(
                    household_id=animal.household_id,
                    regimen=regimen,
                    animal=animal,
                    caregiver=data.caregiver,
                    scheduled_for=scheduled_for,
                    recorded_at=administered_at,
                    status=status,
                    slot_local_day=None if is_prn else parsed.local_day,
                    slot_index=parsed.slot_index,
                    source_item=item,
                    dose=text["dose"] or regimen.dose,
                    site=text["site"],
                    notes=text["notes"],
                    condition_tags=list(data.condition_tags or []),
                    media_urls=list(data.media_urls or []),
                    adverse_event=data.adverse_event,
                    adverse_event_description=text["adverse_event_description"],
                    idempotency_key=data.idempotency_key,
                )
        except IntegrityError as e:
            # A concurrent writer committed the same key first
            winner = Administration.objects.filter(idempotency_key=data.idempotency_key).first()
            if winner is None:
                raise DosingValidationError(f"Administration rejected by the database: {e}") from e
            logger.debug("Lost insert race for key %s to %s", data.idempotency_key, winner.pk)
            return _existing_result(winner)

        if item is not None:
            _decrement_inventory(item, now)

        co_sign_request = None
        if regimen.requires_co_sign and status != AdministrationStatus.MISSED:
            co_sign_request = CoSignRequest.objects.create(
                administration=administration,
                requested_by=data.caregiver,
                required_at=now,
                expires_at=now + timedelta(minutes=get_setting("CO_SIGN_WINDOW_MINUTES")),
            )

        emitter = audit or get_audit_emitter()
        transaction.on_commit(
            lambda: _emit_recorded(emitter, administration, regimen, co_sign_request)
        )

    logger.info(
        "Recorded administration %s (%s) for regimen %s",
        administration.pk, status, regimen.pk,
    )
    return RecordResult(administration=administration, created=True, co_sign_request=co_sign_request)


def _emit_recorded(emitter, administration, regimen, co_sign_request):
    metadata = {
        "regimen_id": str(regimen.pk),
        "animal_id": str(administration.animal_id),
        "status": administration.status,
        "idempotency_key": administration.idempotency_key,
    }
    if administration.source_item_id:
        metadata["inventory_item_id"] = str(administration.source_item_id)

    if regimen.high_risk:
        action, sensitivity = Actions.HIGH_RISK_ADMINISTERED, "high"
    else:
        action, sensitivity = Actions.ADMINISTRATION_RECORDED, "normal"

    emitter.emit(
        action,
        household_id=administration.household_id,
        actor_id=administration.caregiver_id,
        obj=administration,
        metadata=metadata,
        sensitivity=sensitivity,
    )
    if co_sign_request is not None:
        emitter.emit(
            Actions.COSIGN_REQUESTED,
            household_id=administration.household_id,
            actor_id=administration.caregiver_id,
            obj=co_sign_request,
            metadata={
                "administration_id": str(administration.pk),
                "expires_at": co_sign_request.expires_at.isoformat(),
            },
            sensitivity="high",
        )
