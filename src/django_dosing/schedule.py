"""
Pure schedule calculator for regimens.

Given a regimen, the animal's timezone and an explicit "now", decides which
section a regimen belongs in (due, later, overdue, PRN, or complete for the
day) and when the next dose is due. No database access and no clock reads:
the same inputs always produce the same DueStatus.

All slot instants are computed as aware datetimes in the animal's timezone and
compared as instants, never as local time strings.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone as dt_timezone
from enum import Enum
from typing import Iterable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .choices import ScheduleType
from .exceptions import DosingValidationError


_TIME_OF_DAY = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")

# Local days examined around "now" for FIXED/TAPER regimens
_DAY_OFFSETS = (-1, 0, 1, 2)


class Section(str, Enum):
    DUE = "due"
    LATER = "later"
    OVERDUE = "overdue"
    PRN = "prn"
    COMPLETE = "complete"


@dataclass(frozen=True)
class SlotStatus:
    """State of one scheduled slot."""

    local_day: date
    slot_index: int
    scheduled_at: datetime
    section: Section
    administered: bool = False


@dataclass(frozen=True)
class DueStatus:
    """
    Output of classify().

    local_day and slot_index identify the slot the caregiver should act on
    (None for PRN, and for COMPLETE when nothing further is scheduled).
    slots lists today's slots plus any other actionable slot, ordered by
    instant, so simultaneously due doses stay visible.
    """

    section: Section
    next_due_at: Optional[datetime]
    minutes_until_due: Optional[int]
    local_day: Optional[date]
    slot_index: Optional[int]
    slots: tuple = ()

    @property
    def is_overdue(self) -> bool:
        return self.section is Section.OVERDUE


def parse_time_of_day(value) -> time:
    """Parse an "HH:MM" 24h string. Raises ValueError on anything else."""
    if not isinstance(value, str):
        raise ValueError(f"Time of day must be an 'HH:MM' string, got {value!r}")
    match = _TIME_OF_DAY.match(value)
    if not match:
        raise ValueError(f"Invalid time of day '{value}', expected 'HH:MM'")
    return time(int(match.group(1)), int(match.group(2)))


def resolve_timezone(tz) -> ZoneInfo:
    """Accept an IANA name or a tzinfo and return a tzinfo."""
    if isinstance(tz, str):
        try:
            return ZoneInfo(tz)
        except (ZoneInfoNotFoundError, ValueError):
            raise DosingValidationError(f"Unknown timezone '{tz}'", field="timezone")
    if tz is None:
        raise DosingValidationError("Timezone is required", field="timezone")
    return tz


def local_instant(local_day: date, at: time, tz) -> datetime:
    """
    Return the UTC instant of a wall-clock time on a local day.

    Nonexistent times (DST gap) land after the gap; ambiguous times (DST
    fold) resolve to the first occurrence.
    """
    tz = resolve_timezone(tz)
    wall = datetime.combine(local_day, at).replace(tzinfo=tz)
    return wall.astimezone(dt_timezone.utc)


def local_day_of(instant: datetime, tz) -> date:
    _require_aware(instant)
    return instant.astimezone(resolve_timezone(tz)).date()


def minutes_after_midnight(instant: datetime, tz) -> int:
    local = instant.astimezone(resolve_timezone(tz))
    return local.hour * 60 + local.minute


def _require_aware(value: datetime, name: str = "now"):
    if value.tzinfo is None or value.utcoffset() is None:
        raise DosingValidationError(f"'{name}' must be timezone-aware", field=name)


def _within_bounds(regimen, local_day: date) -> bool:
    if regimen.start_date and local_day < regimen.start_date:
        return False
    if regimen.end_date and local_day > regimen.end_date:
        return False
    return True


def _minutes_until(target: datetime, now: datetime) -> int:
    return int((target - now).total_seconds() // 60)


def classify(
    regimen,
    animal_timezone,
    now: datetime,
    *,
    last_administered_at: Optional[datetime] = None,
    administered_slots: Iterable = (),
) -> DueStatus:
    """
    Classify a regimen relative to now in the animal's timezone.

    Args:
        regimen: Regimen (or any object with the same attributes)
        animal_timezone: IANA name or tzinfo of the animal
        now: Aware datetime
        last_administered_at: Most recent administration (INTERVAL anchor)
        administered_slots: (local_day, slot_index) pairs already recorded

    Raises:
        DosingValidationError: naive now, unknown timezone, malformed times
            or an unknown schedule type
    """
    _require_aware(now)
    tz = resolve_timezone(animal_timezone)
    done = {(day, index) for day, index in administered_slots}

    schedule_type = regimen.schedule_type
    if schedule_type == ScheduleType.PRN:
        return DueStatus(
            section=Section.PRN,
            next_due_at=None,
            minutes_until_due=None,
            local_day=local_day_of(now, tz),
            slot_index=None,
        )
    if schedule_type in (ScheduleType.FIXED, ScheduleType.TAPER):
        # TAPER varies only the dose amount, which is display-only here
        return _classify_fixed(regimen, tz, now, done)
    if schedule_type == ScheduleType.INTERVAL:
        return _classify_interval(regimen, tz, now, last_administered_at, done)
    raise DosingValidationError(
        f"Unknown schedule type '{schedule_type}'", field="schedule_type"
    )


def _slot_section(now, instant, next_instant, cutoff, local_day, today):
    """Section of a single slot, or None when a later slot superseded it."""
    if abs(now - instant) <= cutoff:
        return Section.DUE
    if now > instant + cutoff:
        # Missed slots stay overdue until the next slot's window opens
        if next_instant is None or now < next_instant - cutoff:
            return Section.OVERDUE
        return None
    return Section.LATER if local_day == today else Section.COMPLETE


def _classify_fixed(regimen, tz, now, done) -> DueStatus:
    try:
        times = [parse_time_of_day(value) for value in regimen.times_local or []]
    except ValueError as e:
        raise DosingValidationError(str(e), field="times_local")
    if not times:
        raise DosingValidationError(
            "FIXED and TAPER regimens need at least one time", field="times_local"
        )

    cutoff = timedelta(minutes=regimen.cutoff_minutes)
    today = local_day_of(now, tz)

    candidates = []
    for offset in _DAY_OFFSETS:
        day = today + timedelta(days=offset)
        if not _within_bounds(regimen, day):
            continue
        for index, at in enumerate(times):
            candidates.append((local_instant(day, at, tz), day, index))
    candidates.sort(key=lambda c: (c[0], c[2]))

    slots = []
    due = []
    overdue = []
    for position, (instant, day, index) in enumerate(candidates):
        next_instant = None
        if position + 1 < len(candidates):
            next_instant = candidates[position + 1][0]
        section = _slot_section(now, instant, next_instant, cutoff, day, today)

        if (day, index) in done:
            if day == today:
                slots.append(SlotStatus(day, index, instant, Section.COMPLETE, True))
            continue
        if section is None:
            # Superseded: still missed, but no longer the slot to act on
            if day == today:
                slots.append(SlotStatus(day, index, instant, Section.OVERDUE))
            continue

        slot = SlotStatus(day, index, instant, section)
        if section is Section.DUE:
            due.append(slot)
        elif section is Section.OVERDUE:
            overdue.append(slot)
        if day == today or section in (Section.DUE, Section.OVERDUE):
            slots.append(slot)

    if due:
        chosen = min(due, key=lambda s: s.scheduled_at)
        section = Section.DUE
    elif overdue:
        chosen = min(overdue, key=lambda s: s.scheduled_at)
        section = Section.OVERDUE
    else:
        chosen = _next_upcoming(candidates, now, cutoff, done)
        if chosen is None:
            return DueStatus(
                section=Section.COMPLETE,
                next_due_at=None,
                minutes_until_due=None,
                local_day=None,
                slot_index=None,
                slots=tuple(slots),
            )
        section = Section.LATER if chosen.local_day == today else Section.COMPLETE

    return DueStatus(
        section=section,
        next_due_at=chosen.scheduled_at,
        minutes_until_due=_minutes_until(chosen.scheduled_at, now),
        local_day=chosen.local_day,
        slot_index=chosen.slot_index,
        slots=tuple(slots),
    )


def _next_upcoming(candidates, now, cutoff, done) -> Optional[SlotStatus]:
    for instant, day, index in candidates:
        if (day, index) in done:
            continue
        if instant - cutoff > now:
            return SlotStatus(day, index, instant, Section.LATER)
    return None


def _classify_interval(regimen, tz, now, last_administered_at, done) -> DueStatus:
    if not regimen.interval_hours:
        raise DosingValidationError(
            "INTERVAL regimens need interval_hours > 0", field="interval_hours"
        )

    interval = timedelta(hours=regimen.interval_hours)
    cutoff = timedelta(minutes=regimen.cutoff_minutes)
    today = local_day_of(now, tz)

    if last_administered_at is not None:
        _require_aware(last_administered_at, "last_administered_at")
        next_due = last_administered_at + interval
    else:
        next_due = local_instant(regimen.start_date, time(0), tz)

    while (local_day_of(next_due, tz), minutes_after_midnight(next_due, tz)) in done:
        next_due += interval

    due_day = local_day_of(next_due, tz)
    if regimen.end_date and due_day > regimen.end_date:
        return DueStatus(
            section=Section.COMPLETE,
            next_due_at=None,
            minutes_until_due=None,
            local_day=None,
            slot_index=None,
        )

    slot_index = minutes_after_midnight(next_due, tz)
    if abs(now - next_due) <= cutoff:
        section = Section.DUE
    elif now > next_due + cutoff:
        section = Section.OVERDUE
    else:
        section = Section.LATER if due_day == today else Section.COMPLETE

    slot = SlotStatus(due_day, slot_index, next_due, section)
    return DueStatus(
        section=section,
        next_due_at=next_due,
        minutes_until_due=_minutes_until(next_due, now),
        local_day=due_day,
        slot_index=slot_index,
        slots=(slot,),
    )
