"""Django Dosing views - JSON endpoints for caregivers.

Every endpoint is scoped to a household the user belongs to. Service errors
map to status codes: validation 400, not found 404, inventory conflict and
invalid state 409.
"""
import functools
import json

from django.contrib.auth.decorators import login_required
from django.http import JsonResponse
from django.utils.dateparse import parse_datetime
from django.views.decorators.http import require_GET, require_POST

from .choices import MemberRole
from .exceptions import DosingValidationError, InvalidState, InventoryConflict, NotFound
from .keys import key_for_status
from .models import HouseholdMember
from .selectors import get_inventory_sources, list_due
from .services import (
    RecordAdministrationInput,
    complete_co_sign,
    pause_regimen,
    record_administration,
    resume_regimen,
)


def _iso(value):
    return value.isoformat() if value else None


def _error(status, code, message, **extra):
    return JsonResponse({'error': code, 'message': message, **extra}, status=status)


def household_member_required(write=False):
    """Require membership in the URL's household; write access excludes read-only vets."""
    def decorator(view):
        @functools.wraps(view)
        @login_required
        def wrapper(request, household_id, *args, **kwargs):
            member = HouseholdMember.objects.filter(
                household_id=household_id, user=request.user
            ).first()
            if member is None:
                return _error(403, 'forbidden', 'Not a member of this household')
            if write and member.role == MemberRole.VET_READONLY:
                return _error(403, 'forbidden', 'Read-only members cannot make changes')
            try:
                return view(request, household_id, *args, **kwargs)
            except DosingValidationError as e:
                return _error(400, 'validation_error', str(e), field=e.field)
            except NotFound as e:
                return _error(404, 'not_found', e.reason)
            except InventoryConflict as e:
                return _error(409, 'inventory_conflict', e.reason, overridable=e.overridable)
            except InvalidState as e:
                return _error(409, 'invalid_state', e.reason, state=e.state)
        return wrapper
    return decorator


def _json_body(request):
    if not request.body:
        return {}
    try:
        data = json.loads(request.body)
    except (ValueError, UnicodeDecodeError):
        raise DosingValidationError('Request body is not valid JSON')
    if not isinstance(data, dict):
        raise DosingValidationError('Request body must be a JSON object')
    return data


def _flag(value, default):
    if value is None:
        return default
    return value.lower() not in ('false', '0', 'no')


def _serialize_status(item):
    status = item.status
    key = None
    if status.slot_index is not None and status.local_day is not None:
        key = key_for_status(item.animal.pk, item.regimen.pk, status)
    last = item.last_administration
    return {
        'regimen_id': str(item.regimen.pk),
        'regimen_name': item.regimen.name,
        'medication': str(item.regimen.medication),
        'animal_id': str(item.animal.pk),
        'animal_name': item.animal.name,
        'schedule_type': item.regimen.schedule_type,
        'section': status.section.value,
        'next_due_at': _iso(status.next_due_at),
        'minutes_until_due': status.minutes_until_due,
        'is_overdue': status.is_overdue,
        'local_day': _iso(status.local_day),
        'slot_index': status.slot_index,
        'idempotency_key': key,
        'high_risk': item.regimen.high_risk,
        'requires_co_sign': item.regimen.requires_co_sign,
        'last_administered_at': _iso(last.recorded_at) if last else None,
        'compliance_rate': item.compliance.compliance_rate,
    }


def _serialize_co_sign(request):
    if request is None:
        return None
    return {
        'id': str(request.pk),
        'status': request.status,
        'required_at': _iso(request.required_at),
        'expires_at': _iso(request.expires_at),
        'co_signer_id': request.co_signer_id,
        'completed_at': _iso(request.completed_at),
    }


def _serialize_administration(result):
    administration = result.administration
    return {
        'id': str(administration.pk),
        'idempotency_key': administration.idempotency_key,
        'status': administration.status,
        'regimen_id': str(administration.regimen_id),
        'animal_id': str(administration.animal_id),
        'caregiver_id': administration.caregiver_id,
        'scheduled_for': _iso(administration.scheduled_for),
        'recorded_at': _iso(administration.recorded_at),
        'source_item_id': str(administration.source_item_id) if administration.source_item_id else None,
        'co_sign': _serialize_co_sign(result.co_sign_request),
        'already_recorded': not result.created,
    }


@require_GET
@household_member_required()
def due_list(request, household_id):
    """GET households/<id>/due/?animal=<id>&include_upcoming=true"""
    items = list_due(
        household_id,
        animal_id=request.GET.get('animal') or None,
        include_upcoming=_flag(request.GET.get('include_upcoming'), True),
    )
    return JsonResponse({'regimens': [_serialize_status(item) for item in items]})


@require_GET
@household_member_required()
def inventory_sources(request, household_id):
    """GET households/<id>/inventory/sources/?medication=<name>&animal=<id>&include_expired=false"""
    items = get_inventory_sources(
        household_id,
        request.GET.get('medication', ''),
        include_expired=_flag(request.GET.get('include_expired'), False),
        animal_id=request.GET.get('animal') or None,
    )
    return JsonResponse({
        'items': [
            {
                'id': str(item.pk),
                'medication': str(item.medication),
                'brand_override': item.brand_override,
                'lot': item.lot,
                'expires_on': _iso(item.expires_on),
                'units_remaining': item.units_remaining,
                'in_use': item.in_use,
                'assigned_animal_id': str(item.assigned_animal_id) if item.assigned_animal_id else None,
            }
            for item in items
        ]
    })


@require_POST
@household_member_required(write=True)
def record(request, household_id):
    """POST households/<id>/administrations/

    Idempotent on idempotency_key: 201 on first record, 200 with
    already_recorded=true on replay.
    """
    data = _json_body(request)
    missing = [k for k in ('animal_id', 'regimen_id', 'idempotency_key') if not data.get(k)]
    if missing:
        raise DosingValidationError(f"Missing fields: {', '.join(missing)}", field=missing[0])

    administered_at = None
    if data.get('administered_at'):
        administered_at = parse_datetime(data['administered_at'])
        if administered_at is None:
            raise DosingValidationError('administered_at is not an ISO datetime', field='administered_at')

    result = record_administration(
        RecordAdministrationInput(
            household_id=household_id,
            animal_id=data['animal_id'],
            regimen_id=data['regimen_id'],
            caregiver=request.user,
            idempotency_key=data['idempotency_key'],
            administered_at=administered_at,
            inventory_source_id=data.get('inventory_source_id'),
            allow_override=bool(data.get('allow_override', False)),
            notes=data.get('notes', ''),
            site=data.get('site', ''),
            dose=data.get('dose', ''),
            condition_tags=data.get('condition_tags') or [],
            media_urls=data.get('media_urls') or [],
            adverse_event=bool(data.get('adverse_event', False)),
            adverse_event_description=data.get('adverse_event_description', ''),
            mark_missed=bool(data.get('mark_missed', False)),
        )
    )
    return JsonResponse(_serialize_administration(result), status=201 if result.created else 200)


@require_POST
@household_member_required(write=True)
def co_sign(request, household_id, administration_id):
    """POST households/<id>/administrations/<id>/cosign/"""
    data = _json_body(request)
    co_sign_request = complete_co_sign(
        household_id,
        administration_id,
        request.user,
        notes=data.get('notes', ''),
    )
    return JsonResponse(_serialize_co_sign(co_sign_request))


def _serialize_regimen(regimen):
    return {
        'id': str(regimen.pk),
        'paused': regimen.is_paused,
        'paused_at': _iso(regimen.paused_at),
        'pause_reason': regimen.pause_reason,
    }


@require_POST
@household_member_required(write=True)
def pause(request, household_id, regimen_id):
    data = _json_body(request)
    regimen = pause_regimen(household_id, regimen_id, data.get('reason', ''), actor=request.user)
    return JsonResponse(_serialize_regimen(regimen))


@require_POST
@household_member_required(write=True)
def resume(request, household_id, regimen_id):
    regimen = resume_regimen(household_id, regimen_id, actor=request.user)
    return JsonResponse(_serialize_regimen(regimen))
