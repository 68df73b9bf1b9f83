"""
Idempotency keys for administrations.

A scheduled dose is identified by ``animalId:regimenId:YYYY-MM-DD:slotIndex``
where the day is the local calendar day, in the animal's timezone, of the
slot being recorded. PRN doses have no slot; each PRN submission gets a fresh
random suffix (``animalId:regimenId:YYYY-MM-DD:prn:<hex>``) so separate
as-needed doses never collapse into one.

Clients build the key once per dose and reuse it for every retry and offline
replay of that dose.
"""

import re
import secrets
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from .choices import ScheduleType
from .exceptions import DosingValidationError
from .schedule import (
    local_day_of,
    local_instant,
    minutes_after_midnight,
    parse_time_of_day,
    resolve_timezone,
)


KEY_PATTERN = re.compile(
    r"^(?P<animal>[^:\s]+):(?P<regimen>[^:\s]+):(?P<day>\d{4}-\d{2}-\d{2}):"
    r"(?:(?P<slot>\d+)|prn:(?P<nonce>[A-Za-z0-9]+))$"
)


@dataclass(frozen=True)
class ParsedKey:
    animal_id: str
    regimen_id: str
    local_day: date
    slot_index: Optional[int]
    is_prn: bool


def build_key(animal_id, regimen_id, local_day: date, slot_index: Optional[int] = None) -> str:
    """Build the idempotency key for one dose. Omit slot_index for PRN."""
    if isinstance(local_day, datetime):
        raise DosingValidationError(
            "local_day must be a date; use local_day_for() to convert an instant",
            field="local_day",
        )
    prefix = f"{animal_id}:{regimen_id}:{local_day.isoformat()}"
    if slot_index is None:
        return f"{prefix}:prn:{secrets.token_hex(8)}"
    if slot_index < 0:
        raise DosingValidationError("slot_index must be >= 0", field="slot_index")
    return f"{prefix}:{slot_index}"


def local_day_for(instant: datetime, tz) -> date:
    """Calendar day of an instant in the animal's timezone."""
    return local_day_of(instant, tz)


def key_for_status(animal_id, regimen_id, due_status) -> str:
    """Build the key for the slot a DueStatus points at.

    A 23:30 slot surfaced after local midnight keys to the day it belongs to,
    not to the day of "now".
    """
    if due_status.slot_index is None or due_status.local_day is None:
        raise DosingValidationError("DueStatus does not point at a scheduled slot")
    return build_key(animal_id, regimen_id, due_status.local_day, due_status.slot_index)


def parse_key(key: str) -> ParsedKey:
    if not isinstance(key, str):
        raise DosingValidationError("Idempotency key must be a string", field="idempotency_key")
    match = KEY_PATTERN.match(key)
    if not match:
        raise DosingValidationError(
            f"Malformed idempotency key '{key}'", field="idempotency_key"
        )
    try:
        local_day = date.fromisoformat(match.group("day"))
    except ValueError:
        raise DosingValidationError(
            f"Invalid date in idempotency key '{key}'", field="idempotency_key"
        )
    slot = match.group("slot")
    return ParsedKey(
        animal_id=match.group("animal"),
        regimen_id=match.group("regimen"),
        local_day=local_day,
        slot_index=int(slot) if slot is not None else None,
        is_prn=slot is None,
    )


def scheduled_instant(regimen, tz, local_day: date, slot_index: int) -> datetime:
    """
    Return the UTC instant a slot was scheduled for.

    FIXED/TAPER slot indexes are positions in times_local; INTERVAL slot
    indexes are minutes after local midnight.
    """
    tz = resolve_timezone(tz)
    if regimen.schedule_type in (ScheduleType.FIXED, ScheduleType.TAPER):
        times = regimen.times_local or []
        if slot_index >= len(times):
            raise DosingValidationError(
                f"Slot {slot_index} does not exist; regimen has {len(times)} times",
                field="idempotency_key",
            )
        try:
            at = parse_time_of_day(times[slot_index])
        except ValueError as e:
            raise DosingValidationError(str(e), field="times_local")
        return local_instant(local_day, at, tz)
    if regimen.schedule_type == ScheduleType.INTERVAL:
        if slot_index >= 24 * 60:
            raise DosingValidationError(
                f"Interval slot {slot_index} is outside the day", field="idempotency_key"
            )
        hours, minutes = divmod(slot_index, 60)
        return local_instant(local_day, parse_time_of_day(f"{hours:02d}:{minutes:02d}"), tz)
    raise DosingValidationError(
        f"Schedule type '{regimen.schedule_type}' has no scheduled slots",
        field="schedule_type",
    )


def slot_index_for(regimen, tz, instant: datetime) -> Optional[int]:
    """Slot index of a scheduled instant, or None for PRN regimens."""
    if regimen.schedule_type == ScheduleType.PRN:
        return None
    if regimen.schedule_type == ScheduleType.INTERVAL:
        return minutes_after_midnight(instant, tz)
    local_day = local_day_of(instant, tz)
    for index in range(len(regimen.times_local or [])):
        if scheduled_instant(regimen, tz, local_day, index) == instant:
            return index
    raise DosingValidationError(
        "Instant does not match any scheduled time", field="scheduled_for"
    )
