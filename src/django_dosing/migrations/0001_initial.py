# Generated manually for standalone django-dosing package

import uuid

import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


SCHEDULE_TYPES = [
    ("FIXED", "Fixed times"),
    ("PRN", "As needed"),
    ("INTERVAL", "Every N hours"),
    ("TAPER", "Taper"),
]

ADMINISTRATION_STATUSES = [
    ("ON_TIME", "On time"),
    ("LATE", "Late"),
    ("VERY_LATE", "Very late"),
    ("MISSED", "Missed"),
    ("PRN", "As needed"),
]


def _base_fields():
    return [
        (
            "id",
            models.UUIDField(
                default=uuid.uuid4, editable=False, primary_key=True, serialize=False
            ),
        ),
        ("created_at", models.DateTimeField(auto_now_add=True)),
        ("updated_at", models.DateTimeField(auto_now=True)),
    ]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Household",
            fields=_base_fields() + [
                ("name", models.CharField(max_length=200)),
            ],
        ),
        migrations.CreateModel(
            name="Medication",
            fields=_base_fields() + [
                ("generic_name", models.CharField(max_length=200)),
                ("brand_name", models.CharField(blank=True, max_length=200)),
            ],
        ),
        migrations.CreateModel(
            name="AuditEvent",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4, editable=False, primary_key=True, serialize=False
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("action", models.CharField(db_index=True, max_length=50)),
                ("household_id", models.CharField(blank=True, max_length=50)),
                ("actor_id", models.CharField(blank=True, max_length=50)),
                ("model_label", models.CharField(blank=True, max_length=100)),
                ("object_id", models.CharField(blank=True, max_length=50)),
                ("metadata", models.JSONField(blank=True, default=dict)),
                (
                    "sensitivity",
                    models.CharField(
                        choices=[("normal", "Normal"), ("high", "High"), ("critical", "Critical")],
                        default="normal",
                        max_length=20,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["household_id", "created_at"], name="dosing_audit_household_time"),
                    models.Index(fields=["object_id", "model_label"], name="dosing_audit_object"),
                ],
            },
        ),
        migrations.CreateModel(
            name="OfflineQueueEntry",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4, editable=False, primary_key=True, serialize=False
                    ),
                ),
                ("idempotency_key", models.CharField(max_length=255, unique=True)),
                ("action_type", models.CharField(max_length=50)),
                ("payload", models.JSONField(blank=True, default=dict)),
                ("household_id", models.CharField(blank=True, max_length=50)),
                ("sequence", models.PositiveBigIntegerField(db_index=True)),
                (
                    "status",
                    models.CharField(
                        choices=[("QUEUED", "Queued"), ("FAILED", "Failed")],
                        default="QUEUED",
                        max_length=20,
                    ),
                ),
                ("attempts", models.PositiveIntegerField(default=0)),
                ("max_attempts", models.PositiveIntegerField(default=3)),
                ("last_error", models.TextField(blank=True)),
                ("enqueued_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["sequence"],
            },
        ),
        migrations.CreateModel(
            name="HouseholdMember",
            fields=_base_fields() + [
                (
                    "role",
                    models.CharField(
                        choices=[
                            ("OWNER", "Owner"),
                            ("CAREGIVER", "Caregiver"),
                            ("VET_READONLY", "Vet (read only)"),
                        ],
                        default="CAREGIVER",
                        max_length=20,
                    ),
                ),
                (
                    "household",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="members",
                        to="django_dosing.household",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="dosing_memberships",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "unique_together": {("household", "user")},
            },
        ),
        migrations.CreateModel(
            name="Animal",
            fields=_base_fields() + [
                ("name", models.CharField(max_length=200)),
                ("species", models.CharField(blank=True, max_length=50)),
                (
                    "timezone",
                    models.CharField(
                        default="UTC",
                        help_text="IANA timezone; all local-day computations use it",
                        max_length=64,
                    ),
                ),
                ("deleted_at", models.DateTimeField(blank=True, null=True)),
                (
                    "household",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="animals",
                        to="django_dosing.household",
                    ),
                ),
            ],
        ),
        migrations.CreateModel(
            name="Regimen",
            fields=_base_fields() + [
                ("name", models.CharField(blank=True, max_length=200)),
                ("instructions", models.TextField(blank=True)),
                ("schedule_type", models.CharField(choices=SCHEDULE_TYPES, max_length=20)),
                (
                    "times_local",
                    models.JSONField(
                        blank=True,
                        default=list,
                        help_text='Local times of day for FIXED/TAPER, e.g. ["08:00", "20:00"]',
                    ),
                ),
                ("interval_hours", models.PositiveIntegerField(blank=True, null=True)),
                ("start_date", models.DateField()),
                (
                    "end_date",
                    models.DateField(blank=True, help_text="Null means ongoing", null=True),
                ),
                ("prn_reason", models.CharField(blank=True, max_length=200)),
                ("max_daily_doses", models.PositiveIntegerField(blank=True, null=True)),
                (
                    "cutoff_minutes",
                    models.PositiveIntegerField(
                        default=240,
                        help_text="Grace window around a scheduled time before the dose is overdue",
                    ),
                ),
                ("high_risk", models.BooleanField(default=False)),
                ("requires_co_sign", models.BooleanField(default=False)),
                ("active", models.BooleanField(default=True)),
                ("paused_at", models.DateTimeField(blank=True, null=True)),
                ("pause_reason", models.CharField(blank=True, max_length=500)),
                ("dose", models.CharField(blank=True, max_length=100)),
                ("route", models.CharField(blank=True, max_length=100)),
                ("deleted_at", models.DateTimeField(blank=True, null=True)),
                (
                    "animal",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="regimens",
                        to="django_dosing.animal",
                    ),
                ),
                (
                    "medication",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="regimens",
                        to="django_dosing.medication",
                    ),
                ),
            ],
            options={
                "indexes": [
                    models.Index(fields=["animal", "active"], name="dosing_regimen_animal_active"),
                    models.Index(fields=["start_date"], name="dosing_regimen_start_date"),
                ],
            },
        ),
        migrations.CreateModel(
            name="InventoryItem",
            fields=_base_fields() + [
                ("brand_override", models.CharField(blank=True, max_length=200)),
                ("lot", models.CharField(blank=True, max_length=100)),
                ("expires_on", models.DateField(blank=True, null=True)),
                ("quantity_total", models.PositiveIntegerField(default=0)),
                ("units_remaining", models.PositiveIntegerField(default=0)),
                ("in_use", models.BooleanField(default=False)),
                ("notes", models.TextField(blank=True)),
                ("deleted_at", models.DateTimeField(blank=True, null=True)),
                (
                    "assigned_animal",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="assigned_inventory",
                        to="django_dosing.animal",
                    ),
                ),
                (
                    "household",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="inventory_items",
                        to="django_dosing.household",
                    ),
                ),
                (
                    "medication",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="inventory_items",
                        to="django_dosing.medication",
                    ),
                ),
            ],
            options={
                "indexes": [
                    models.Index(fields=["household", "medication"], name="dosing_inventory_hh_med"),
                    models.Index(fields=["expires_on"], name="dosing_inventory_expires"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Administration",
            fields=_base_fields() + [
                (
                    "scheduled_for",
                    models.DateTimeField(blank=True, help_text="Null for PRN", null=True),
                ),
                ("recorded_at", models.DateTimeField(db_index=True)),
                ("status", models.CharField(choices=ADMINISTRATION_STATUSES, max_length=20)),
                ("slot_local_day", models.DateField(blank=True, null=True)),
                ("slot_index", models.PositiveIntegerField(blank=True, null=True)),
                ("dose", models.CharField(blank=True, max_length=100)),
                ("site", models.CharField(blank=True, max_length=100)),
                ("notes", models.TextField(blank=True)),
                ("condition_tags", models.JSONField(blank=True, default=list)),
                ("media_urls", models.JSONField(blank=True, default=list)),
                ("adverse_event", models.BooleanField(default=False)),
                ("adverse_event_description", models.TextField(blank=True)),
                ("idempotency_key", models.CharField(max_length=255, unique=True)),
                (
                    "animal",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="administrations",
                        to="django_dosing.animal",
                    ),
                ),
                (
                    "caregiver",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="dosing_administrations",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "household",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="administrations",
                        to="django_dosing.household",
                    ),
                ),
                (
                    "regimen",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="administrations",
                        to="django_dosing.regimen",
                    ),
                ),
                (
                    "source_item",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="administrations",
                        to="django_dosing.inventoryitem",
                    ),
                ),
            ],
            options={
                "ordering": ["-recorded_at"],
                "indexes": [
                    models.Index(fields=["regimen", "recorded_at"], name="dosing_admin_regimen_rec"),
                    models.Index(fields=["household", "recorded_at"], name="dosing_admin_household_rec"),
                    models.Index(fields=["status"], name="dosing_admin_status"),
                ],
            },
        ),
        migrations.CreateModel(
            name="CoSignRequest",
            fields=_base_fields() + [
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("PENDING", "Pending"),
                            ("COMPLETED", "Completed"),
                            ("EXPIRED", "Expired"),
                        ],
                        default="PENDING",
                        max_length=20,
                    ),
                ),
                ("required_at", models.DateTimeField()),
                ("expires_at", models.DateTimeField()),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("notes", models.TextField(blank=True)),
                (
                    "administration",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="co_sign_request",
                        to="django_dosing.administration",
                    ),
                ),
                (
                    "co_signer",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="dosing_co_signs_completed",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "requested_by",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="dosing_co_signs_requested",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "indexes": [
                    models.Index(fields=["status", "expires_at"], name="dosing_cosign_status_exp"),
                ],
            },
        ),
    ]
