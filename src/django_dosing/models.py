"""Models for django-dosing.

Provides:
- Household, HouseholdMember, Animal, Medication: minimal tenant/subject records
- Regimen: a prescribed dosing plan for one animal
- Administration: a dose given (or marked PRN/missed), unique per idempotency key
- InventoryItem: a physical supply unit consumed by administrations
- CoSignRequest: second-caregiver approval for high-risk administrations
- AuditEvent: append-only audit rows written by DatabaseAuditEmitter
- OfflineQueueEntry: durable storage for the offline queue

Every query on these tables is scoped by household, either directly or
through the animal.
"""

import uuid
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.utils import timezone

from .choices import (
    AdministrationStatus,
    CoSignStatus,
    MemberRole,
    QueueEntryStatus,
    ScheduleType,
    Sensitivity,
)
from .schedule import parse_time_of_day


class DosingBaseModel(models.Model):
    """Base model with UUID PK and timestamps."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class SoftDeleteManager(models.Manager):
    """Manager that excludes soft-deleted objects by default."""

    def get_queryset(self):
        return super().get_queryset().filter(deleted_at__isnull=True)

    def with_deleted(self):
        return super().get_queryset()


class Household(DosingBaseModel):
    name = models.CharField(max_length=200)

    def __str__(self):
        return self.name


class HouseholdMember(DosingBaseModel):
    """Membership of a user in a household. Caregivers are auth users."""

    household = models.ForeignKey(
        Household,
        on_delete=models.CASCADE,
        related_name="members",
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="dosing_memberships",
    )
    role = models.CharField(
        max_length=20,
        choices=MemberRole.choices,
        default=MemberRole.CAREGIVER,
    )

    class Meta:
        unique_together = ["household", "user"]

    def __str__(self):
        return f"{self.user} in {self.household} ({self.role})"


class Animal(DosingBaseModel):
    household = models.ForeignKey(
        Household,
        on_delete=models.PROTECT,
        related_name="animals",
    )
    name = models.CharField(max_length=200)
    species = models.CharField(max_length=50, blank=True)
    timezone = models.CharField(
        max_length=64,
        default="UTC",
        help_text="IANA timezone; all local-day computations use it",
    )
    deleted_at = models.DateTimeField(null=True, blank=True)

    objects = SoftDeleteManager()
    all_objects = models.Manager()

    def __str__(self):
        return self.name

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def clean(self):
        super().clean()
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValidationError({"timezone": f"Unknown timezone '{self.timezone}'"})


class Medication(DosingBaseModel):
    generic_name = models.CharField(max_length=200)
    brand_name = models.CharField(max_length=200, blank=True)

    def __str__(self):
        return self.generic_name or self.brand_name


class Regimen(DosingBaseModel):
    """
    A prescribed dosing plan for one animal.

    Key invariants:
    - FIXED and TAPER regimens have a non-empty times_local list of HH:MM strings
    - INTERVAL regimens have interval_hours > 0
    - Archived (deleted_at set) regimens are never hard-deleted while
      administrations reference them
    """

    animal = models.ForeignKey(
        Animal,
        on_delete=models.PROTECT,
        related_name="regimens",
    )
    medication = models.ForeignKey(
        Medication,
        on_delete=models.PROTECT,
        related_name="regimens",
    )
    name = models.CharField(max_length=200, blank=True)
    instructions = models.TextField(blank=True)

    schedule_type = models.CharField(max_length=20, choices=ScheduleType.choices)
    times_local = models.JSONField(
        default=list,
        blank=True,
        help_text='Local times of day for FIXED/TAPER, e.g. ["08:00", "20:00"]',
    )
    interval_hours = models.PositiveIntegerField(null=True, blank=True)

    start_date = models.DateField()
    end_date = models.DateField(null=True, blank=True, help_text="Null means ongoing")

    prn_reason = models.CharField(max_length=200, blank=True)
    max_daily_doses = models.PositiveIntegerField(null=True, blank=True)

    cutoff_minutes = models.PositiveIntegerField(
        default=240,
        help_text="Grace window around a scheduled time before the dose is overdue",
    )
    high_risk = models.BooleanField(default=False)
    requires_co_sign = models.BooleanField(default=False)

    active = models.BooleanField(default=True)
    paused_at = models.DateTimeField(null=True, blank=True)
    pause_reason = models.CharField(max_length=500, blank=True)

    dose = models.CharField(max_length=100, blank=True)
    route = models.CharField(max_length=100, blank=True)

    deleted_at = models.DateTimeField(null=True, blank=True)

    objects = SoftDeleteManager()
    all_objects = models.Manager()

    class Meta:
        indexes = [
            models.Index(fields=["animal", "active"], name="dosing_regimen_animal_active"),
            models.Index(fields=["start_date"], name="dosing_regimen_start_date"),
        ]

    def __str__(self):
        return self.name or f"{self.medication} ({self.schedule_type})"

    @property
    def is_paused(self) -> bool:
        return self.paused_at is not None

    @property
    def is_archived(self) -> bool:
        return self.deleted_at is not None

    def is_active_on(self, local_day) -> bool:
        """True if the regimen is currently active for the given local day."""
        if not self.active or self.is_paused or self.is_archived:
            return False
        if local_day < self.start_date:
            return False
        return self.end_date is None or local_day <= self.end_date

    def clean(self):
        super().clean()
        errors = {}

        if self.schedule_type in (ScheduleType.FIXED, ScheduleType.TAPER):
            if not self.times_local:
                errors["times_local"] = "FIXED and TAPER regimens need at least one time"
            else:
                for value in self.times_local:
                    try:
                        parse_time_of_day(value)
                    except ValueError as e:
                        errors["times_local"] = str(e)
                        break

        if self.schedule_type == ScheduleType.INTERVAL and not self.interval_hours:
            errors["interval_hours"] = "INTERVAL regimens need interval_hours > 0"

        if self.end_date is not None and self.start_date is not None:
            if self.end_date < self.start_date:
                errors["end_date"] = "end_date must not be before start_date"

        if errors:
            raise ValidationError(errors)


class InventoryItem(DosingBaseModel):
    """A physical supply unit of a medication held by a household."""

    household = models.ForeignKey(
        Household,
        on_delete=models.PROTECT,
        related_name="inventory_items",
    )
    medication = models.ForeignKey(
        Medication,
        on_delete=models.PROTECT,
        related_name="inventory_items",
    )
    brand_override = models.CharField(max_length=200, blank=True)
    lot = models.CharField(max_length=100, blank=True)
    expires_on = models.DateField(null=True, blank=True)
    quantity_total = models.PositiveIntegerField(default=0)
    # PositiveIntegerField carries a database-level >= 0 check
    units_remaining = models.PositiveIntegerField(default=0)
    assigned_animal = models.ForeignKey(
        Animal,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="assigned_inventory",
    )
    in_use = models.BooleanField(default=False)
    notes = models.TextField(blank=True)
    deleted_at = models.DateTimeField(null=True, blank=True)

    objects = SoftDeleteManager()
    all_objects = models.Manager()

    class Meta:
        indexes = [
            models.Index(fields=["household", "medication"], name="dosing_inventory_hh_med"),
            models.Index(fields=["expires_on"], name="dosing_inventory_expires"),
        ]

    def __str__(self):
        return f"{self.medication} lot {self.lot or '-'} ({self.units_remaining} left)"

    def is_expired_on(self, day) -> bool:
        return self.expires_on is not None and self.expires_on < day


class Administration(DosingBaseModel):
    """
    A record that a dose was given, or explicitly marked PRN/missed.

    idempotency_key is unique at the database level: at most one row per key,
    for all time. Corrections are separate audited operations, never silent
    overwrites.
    """

    household = models.ForeignKey(
        Household,
        on_delete=models.PROTECT,
        related_name="administrations",
    )
    regimen = models.ForeignKey(
        Regimen,
        on_delete=models.PROTECT,
        related_name="administrations",
    )
    animal = models.ForeignKey(
        Animal,
        on_delete=models.PROTECT,
        related_name="administrations",
    )
    caregiver = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="dosing_administrations",
    )

    scheduled_for = models.DateTimeField(null=True, blank=True, help_text="Null for PRN")
    recorded_at = models.DateTimeField(db_index=True)
    status = models.CharField(max_length=20, choices=AdministrationStatus.choices)

    # Slot decoded from the idempotency key (null for PRN)
    slot_local_day = models.DateField(null=True, blank=True)
    slot_index = models.PositiveIntegerField(null=True, blank=True)

    source_item = models.ForeignKey(
        InventoryItem,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="administrations",
    )

    dose = models.CharField(max_length=100, blank=True)
    site = models.CharField(max_length=100, blank=True)
    notes = models.TextField(blank=True)
    condition_tags = models.JSONField(default=list, blank=True)
    media_urls = models.JSONField(default=list, blank=True)

    adverse_event = models.BooleanField(default=False)
    adverse_event_description = models.TextField(blank=True)

    idempotency_key = models.CharField(max_length=255, unique=True)

    class Meta:
        ordering = ["-recorded_at"]
        indexes = [
            models.Index(fields=["regimen", "recorded_at"], name="dosing_admin_regimen_rec"),
            models.Index(fields=["household", "recorded_at"], name="dosing_admin_household_rec"),
            models.Index(fields=["status"], name="dosing_admin_status"),
        ]

    def __str__(self):
        return f"Administration({self.regimen_id}, {self.status}, {self.recorded_at})"


class CoSignRequest(DosingBaseModel):
    """
    Second-caregiver approval for a high-risk Administration.

    status moves only PENDING -> COMPLETED or PENDING -> EXPIRED and is never
    re-opened.
    """

    administration = models.OneToOneField(
        Administration,
        on_delete=models.CASCADE,
        related_name="co_sign_request",
    )
    requested_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="dosing_co_signs_requested",
    )
    co_signer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="dosing_co_signs_completed",
    )
    status = models.CharField(
        max_length=20,
        choices=CoSignStatus.choices,
        default=CoSignStatus.PENDING,
    )
    required_at = models.DateTimeField()
    expires_at = models.DateTimeField()
    completed_at = models.DateTimeField(null=True, blank=True)
    notes = models.TextField(blank=True)

    class Meta:
        indexes = [
            models.Index(fields=["status", "expires_at"], name="dosing_cosign_status_exp"),
        ]

    def __str__(self):
        return f"CoSignRequest({self.administration_id}, {self.status})"

    def is_past_expiry(self, now) -> bool:
        return now >= self.expires_at


class AuditEvent(models.Model):
    """Immutable audit row written by DatabaseAuditEmitter.

    Ids are stored as strings so the sink stays decoupled from the tables
    it describes.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    action = models.CharField(max_length=50, db_index=True)
    household_id = models.CharField(max_length=50, blank=True)
    actor_id = models.CharField(max_length=50, blank=True)
    model_label = models.CharField(max_length=100, blank=True)
    object_id = models.CharField(max_length=50, blank=True)
    metadata = models.JSONField(default=dict, blank=True)
    sensitivity = models.CharField(
        max_length=20,
        choices=Sensitivity.choices,
        default=Sensitivity.NORMAL,
    )

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["household_id", "created_at"], name="dosing_audit_household_time"),
            models.Index(fields=["object_id", "model_label"], name="dosing_audit_object"),
        ]

    def __str__(self):
        return f"{self.actor_id or 'system'} {self.action} {self.model_label}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("Audit events are immutable and cannot be updated")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("Audit events are immutable and cannot be deleted")


class OfflineQueueEntry(models.Model):
    """Durable row behind DatabaseQueueStore, replayed in sequence order."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    idempotency_key = models.CharField(max_length=255, unique=True)
    action_type = models.CharField(max_length=50)
    payload = models.JSONField(default=dict, blank=True)
    household_id = models.CharField(max_length=50, blank=True)
    sequence = models.PositiveBigIntegerField(db_index=True)
    status = models.CharField(
        max_length=20,
        choices=QueueEntryStatus.choices,
        default=QueueEntryStatus.QUEUED,
    )
    attempts = models.PositiveIntegerField(default=0)
    max_attempts = models.PositiveIntegerField(default=3)
    last_error = models.TextField(blank=True)
    enqueued_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["sequence"]

    def __str__(self):
        return f"{self.action_type}:{self.idempotency_key} ({self.status})"
