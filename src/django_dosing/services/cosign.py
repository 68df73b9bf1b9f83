"""Co-sign workflow for high-risk administrations.

Provides:
- get_co_sign_state: Current state of an administration's co-sign
- get_co_sign_request: Fetch a request, expiring it if its window elapsed
- complete_co_sign: Second caregiver approves an administration
- expire_stale_co_sign_requests: Bulk PENDING -> EXPIRED

Expiry is evaluated lazily on every read and write; the management command
only sweeps requests nobody looked at.
"""

import logging
from enum import Enum

from django.db import transaction
from django.utils import timezone

from ..audit import Actions
from ..choices import CoSignStatus, MemberRole
from ..conf import get_audit_emitter
from ..exceptions import InvalidState, NotFound
from ..models import CoSignRequest, HouseholdMember


logger = logging.getLogger(__name__)


class CoSignState(str, Enum):
    NOT_REQUIRED = "NOT_REQUIRED"
    PENDING = CoSignStatus.PENDING.value
    COMPLETED = CoSignStatus.COMPLETED.value
    EXPIRED = CoSignStatus.EXPIRED.value


# Terminal states have no outgoing transitions
TRANSITIONS = {
    CoSignState.NOT_REQUIRED: frozenset(),
    CoSignState.PENDING: frozenset({CoSignState.COMPLETED, CoSignState.EXPIRED}),
    CoSignState.COMPLETED: frozenset(),
    CoSignState.EXPIRED: frozenset(),
}


def can_transition(from_state, to_state) -> bool:
    return CoSignState(to_state) in TRANSITIONS[CoSignState(from_state)]


def _expire(request: CoSignRequest, now, emitter) -> bool:
    """Persist PENDING -> EXPIRED. Returns False if another caller got there first."""
    updated = CoSignRequest.objects.filter(
        pk=request.pk, status=CoSignStatus.PENDING
    ).update(status=CoSignStatus.EXPIRED, updated_at=now)
    request.status = CoSignStatus.EXPIRED
    if not updated:
        return False

    household_id = request.administration.household_id
    transaction.on_commit(
        lambda: emitter.emit(
            Actions.COSIGN_EXPIRED,
            household_id=household_id,
            obj=request,
            metadata={
                "administration_id": str(request.administration_id),
                "expires_at": request.expires_at.isoformat(),
            },
            sensitivity="high",
        )
    )
    logger.info("Co-sign request %s expired", request.pk)
    return True


def _refresh_expiry(request: CoSignRequest, now, emitter):
    if request.status == CoSignStatus.PENDING and request.is_past_expiry(now):
        with transaction.atomic():
            _expire(request, now, emitter)
    return request


def get_co_sign_state(administration, now=None, audit=None) -> CoSignState:
    """Return the co-sign state; NOT_REQUIRED when no request was opened."""
    request = CoSignRequest.objects.filter(administration=administration).first()
    if request is None:
        return CoSignState.NOT_REQUIRED
    _refresh_expiry(request, now or timezone.now(), audit or get_audit_emitter())
    return CoSignState(request.status)


def get_co_sign_request(household_id, administration_id, now=None, audit=None) -> CoSignRequest:
    """
    Fetch the co-sign request for an administration in a household.

    Raises:
        NotFound: No request exists for the administration in this household
    """
    request = (
        CoSignRequest.objects.select_related("administration")
        .filter(
            administration_id=administration_id,
            administration__household_id=household_id,
        )
        .first()
    )
    if request is None:
        raise NotFound("CoSignRequest", administration_id)
    return _refresh_expiry(request, now or timezone.now(), audit or get_audit_emitter())


def _is_eligible_co_signer(household_id, user) -> bool:
    return (
        HouseholdMember.objects.filter(household_id=household_id, user=user)
        .exclude(role=MemberRole.VET_READONLY)
        .exists()
    )


def complete_co_sign(
    household_id,
    administration_id,
    co_signer,
    *,
    notes: str = "",
    audit=None,
    now=None,
) -> CoSignRequest:
    """
    Complete a pending co-sign request.

    Args:
        household_id: Household the administration belongs to
        administration_id: Administration being co-signed
        co_signer: User approving; must differ from the recording caregiver
        notes: Optional co-signer notes
        audit: AuditEmitter; defaults to DOSING_AUDIT_EMITTER
        now: Current time; defaults to timezone.now()

    Returns:
        The completed CoSignRequest

    Raises:
        NotFound: No request for the administration
        InvalidState: Not pending, expired, self co-sign or ineligible co-signer
    """
    now = now or timezone.now()
    emitter = audit or get_audit_emitter()

    with transaction.atomic():
        try:
            request = (
                CoSignRequest.objects.select_for_update()
                .select_related("administration")
                .get(
                    administration_id=administration_id,
                    administration__household_id=household_id,
                )
            )
        except (CoSignRequest.DoesNotExist, ValueError):
            raise NotFound("CoSignRequest", administration_id)

        if request.status != CoSignStatus.PENDING:
            raise InvalidState(
                request.status,
                f"Co-sign request {request.pk} is {request.status.lower()}",
            )

        expired = request.is_past_expiry(now)
        if expired:
            _expire(request, now, emitter)
        else:
            if request.administration.caregiver_id == co_signer.pk:
                raise InvalidState(
                    request.status,
                    "The recording caregiver cannot co-sign their own administration",
                )
            if not _is_eligible_co_signer(household_id, co_signer):
                raise InvalidState(
                    request.status,
                    f"User {co_signer.pk} is not allowed to co-sign in this household",
                )
            if not can_transition(request.status, CoSignState.COMPLETED):
                raise InvalidState(request.status)

            request.status = CoSignStatus.COMPLETED
            request.co_signer = co_signer
            request.completed_at = now
            request.notes = notes
            request.save(update_fields=["status", "co_signer", "completed_at", "notes", "updated_at"])

            transaction.on_commit(
                lambda: emitter.emit(
                    Actions.COSIGN_COMPLETED,
                    household_id=household_id,
                    actor_id=co_signer.pk,
                    obj=request,
                    metadata={"administration_id": str(request.administration_id)},
                    sensitivity="high",
                )
            )

    # Raised after commit so the expiry itself is kept
    if expired:
        logger.warning("Rejected co-sign of %s: request expired at %s", administration_id, request.expires_at)
        raise InvalidState(CoSignStatus.EXPIRED, f"Co-sign request {request.pk} has expired")

    logger.info("Co-sign request %s completed by %s", request.pk, co_signer.pk)
    return request


def stale_co_sign_requests(now=None):
    """Pending requests whose window has elapsed."""
    return CoSignRequest.objects.filter(
        status=CoSignStatus.PENDING,
        expires_at__lte=now or timezone.now(),
    ).select_related("administration")


def expire_stale_co_sign_requests(now=None, audit=None) -> int:
    """Expire every elapsed PENDING request. Returns the number expired."""
    now = now or timezone.now()
    emitter = audit or get_audit_emitter()
    count = 0
    for request in stale_co_sign_requests(now):
        with transaction.atomic():
            if _expire(request, now, emitter):
                count += 1
    return count
