"""
Django Dosing Selectors - read-only queries for the dosing app.

Usage:
    from django_dosing.selectors import list_due, get_inventory_sources
"""
from collections import defaultdict
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from django.core.exceptions import ValidationError
from django.db.models import Count, F, OuterRef, Q, Subquery
from django.utils import timezone

from .choices import AdministrationStatus
from .conf import get_setting
from .exceptions import NotFound
from .models import Administration, Animal, InventoryItem, Regimen
from .schedule import DueStatus, Section, classify, local_day_of


SECTION_ORDER = {
    Section.OVERDUE: 0,
    Section.DUE: 1,
    Section.LATER: 2,
    Section.COMPLETE: 3,
    Section.PRN: 4,
}


@dataclass(frozen=True)
class ComplianceStats:
    """Administration counts for one regimen over a trailing window."""

    days: int
    on_time: int = 0
    late: int = 0
    very_late: int = 0
    missed: int = 0
    prn: int = 0

    @property
    def administered(self) -> int:
        return self.on_time + self.late + self.very_late

    @property
    def expected(self) -> int:
        return self.administered + self.missed

    @property
    def compliance_rate(self) -> Optional[float]:
        """Percent of recorded scheduled doses that were given. None without data."""
        if not self.expected:
            return None
        return round(100.0 * self.administered / self.expected, 1)

    @property
    def on_time_rate(self) -> Optional[float]:
        if not self.expected:
            return None
        return round(100.0 * self.on_time / self.expected, 1)


@dataclass(frozen=True)
class RegimenStatus:
    regimen: Regimen
    animal: Animal
    status: DueStatus
    last_administration: Optional[Administration]
    compliance: ComplianceStats

    @property
    def section(self) -> Section:
        return self.status.section


# =============================================================================
# COMPLIANCE
# =============================================================================

def _compliance_counts(regimen_ids, now, days) -> dict:
    """ComplianceStats per regimen id from one grouped query."""
    rows = (
        Administration.objects.filter(
            regimen_id__in=regimen_ids,
            recorded_at__gt=now - timedelta(days=days),
            recorded_at__lte=now,
        )
        .values("regimen_id", "status")
        .annotate(n=Count("id"))
    )
    counts = defaultdict(dict)
    for row in rows:
        counts[row["regimen_id"]][row["status"]] = row["n"]
    return {
        regimen_id: ComplianceStats(
            days=days,
            on_time=counts[regimen_id].get(AdministrationStatus.ON_TIME, 0),
            late=counts[regimen_id].get(AdministrationStatus.LATE, 0),
            very_late=counts[regimen_id].get(AdministrationStatus.VERY_LATE, 0),
            missed=counts[regimen_id].get(AdministrationStatus.MISSED, 0),
            prn=counts[regimen_id].get(AdministrationStatus.PRN, 0),
        )
        for regimen_id in regimen_ids
    }


def get_compliance(regimen: Regimen, now=None, days: int = None) -> ComplianceStats:
    """Count administrations by status over the last `days` days."""
    now = now or timezone.now()
    days = days or get_setting("COMPLIANCE_WINDOW_DAYS")
    return _compliance_counts([regimen.pk], now, days)[regimen.pk]


# =============================================================================
# DUE LIST
# =============================================================================

def _last_administrations(regimens) -> dict:
    """Most recent non-missed administration per regimen id, in two queries."""
    latest = (
        Administration.objects.filter(regimen=OuterRef("pk"))
        .exclude(status=AdministrationStatus.MISSED)
        .order_by("-recorded_at")
        .values("pk")[:1]
    )
    ids = dict(
        Regimen.all_objects.filter(pk__in=[r.pk for r in regimens])
        .annotate(last_id=Subquery(latest))
        .values_list("pk", "last_id")
    )
    by_pk = Administration.objects.in_bulk([pk for pk in ids.values() if pk is not None])
    return {regimen_id: by_pk.get(last_id) for regimen_id, last_id in ids.items()}


def _administered_slots(regimens, first_day, last_day) -> dict:
    """(local_day, slot_index) pairs per regimen id within a day range."""
    slots = defaultdict(list)
    rows = Administration.objects.filter(
        regimen_id__in=[r.pk for r in regimens],
        slot_local_day__gte=first_day,
        slot_local_day__lte=last_day,
    ).values_list("regimen_id", "slot_local_day", "slot_index")
    for regimen_id, day, index in rows:
        slots[regimen_id].append((day, index))
    return slots


def _sort_key(item: RegimenStatus):
    next_due = item.status.next_due_at
    return (
        SECTION_ORDER[item.section],
        next_due is None,
        next_due.timestamp() if next_due else 0,
        item.animal.name,
        item.regimen.name,
    )


def list_due(household_id, animal_id=None, include_upcoming: bool = True, now=None) -> list[RegimenStatus]:
    """
    Classify every currently active regimen in a household.

    Regimens that ended yesterday (local) are still included so a late
    evening slot can be recorded after midnight. Administrations are read
    in a fixed number of queries however many regimens there are.
    """
    now = now or timezone.now()
    regimens = (
        Regimen.objects.filter(
            animal__household_id=household_id,
            animal__deleted_at__isnull=True,
            active=True,
            paused_at__isnull=True,
        )
        .select_related("animal", "medication")
    )
    if animal_id is not None:
        regimens = regimens.filter(animal_id=animal_id)

    candidates = []
    for regimen in regimens:
        today = local_day_of(now, regimen.animal.tzinfo)
        if regimen.start_date > today:
            continue
        if regimen.end_date is not None and regimen.end_date < today - timedelta(days=1):
            continue
        candidates.append((regimen, today))
    if not candidates:
        return []

    active = [regimen for regimen, _ in candidates]
    days = [today for _, today in candidates]
    last_by_regimen = _last_administrations(active)
    slots_by_regimen = _administered_slots(
        active, min(days) - timedelta(days=1), max(days) + timedelta(days=2)
    )
    compliance = _compliance_counts(
        [regimen.pk for regimen in active], now, get_setting("COMPLIANCE_WINDOW_DAYS")
    )

    results = []
    for regimen, today in candidates:
        last = last_by_regimen.get(regimen.pk)
        administered = [
            (day, index)
            for day, index in slots_by_regimen[regimen.pk]
            if today - timedelta(days=1) <= day <= today + timedelta(days=2)
        ]
        status = classify(
            regimen,
            regimen.animal.tzinfo,
            now,
            last_administered_at=last.recorded_at if last else None,
            administered_slots=administered,
        )
        if not include_upcoming and status.section in (Section.LATER, Section.COMPLETE):
            continue
        results.append(
            RegimenStatus(
                regimen=regimen,
                animal=regimen.animal,
                status=status,
                last_administration=last,
                compliance=compliance[regimen.pk],
            )
        )

    return sorted(results, key=_sort_key)


# =============================================================================
# INVENTORY
# =============================================================================

def _household_animal(household_id, animal_id) -> Animal:
    try:
        animal = Animal.objects.filter(pk=animal_id, household_id=household_id).first()
    except (ValueError, ValidationError):
        animal = None
    if animal is None:
        raise NotFound("Animal", animal_id)
    return animal


def get_inventory_sources(household_id, medication_name: str, include_expired: bool = False, now=None, animal_id=None):
    """
    Inventory items with units left matching a medication name, in-use first,
    then soonest expiry.

    Expiry is judged on the given animal's local day, as recording does; with
    no animal it falls back to the server's current date.
    """
    name = (medication_name or "").strip()
    if not name:
        return []
    items = InventoryItem.objects.filter(
        household_id=household_id,
        units_remaining__gt=0,
    ).filter(
        Q(medication__generic_name__iexact=name)
        | Q(medication__brand_name__iexact=name)
        | Q(brand_override__iexact=name)
    ).select_related("medication", "assigned_animal")

    if not include_expired:
        now = now or timezone.now()
        if animal_id is not None:
            today = local_day_of(now, _household_animal(household_id, animal_id).tzinfo)
        else:
            today = timezone.localdate(now)
        items = items.filter(Q(expires_on__isnull=True) | Q(expires_on__gte=today))

    return list(
        items.order_by("-in_use", F("expires_on").asc(nulls_last=True), "created_at")
    )
