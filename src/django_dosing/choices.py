"""Closed value sets shared by models, the schedule calculator and services.

Kept free of model imports so the pure modules (keys, schedule) can use them
without touching the app registry.
"""
from django.db import models


class ScheduleType(models.TextChoices):
    FIXED = "FIXED", "Fixed times"
    PRN = "PRN", "As needed"
    INTERVAL = "INTERVAL", "Every N hours"
    TAPER = "TAPER", "Taper"


class AdministrationStatus(models.TextChoices):
    ON_TIME = "ON_TIME", "On time"
    LATE = "LATE", "Late"
    VERY_LATE = "VERY_LATE", "Very late"
    MISSED = "MISSED", "Missed"
    PRN = "PRN", "As needed"


class CoSignStatus(models.TextChoices):
    """Persisted co-sign states. NOT_REQUIRED is never stored."""

    PENDING = "PENDING", "Pending"
    COMPLETED = "COMPLETED", "Completed"
    EXPIRED = "EXPIRED", "Expired"


class MemberRole(models.TextChoices):
    OWNER = "OWNER", "Owner"
    CAREGIVER = "CAREGIVER", "Caregiver"
    VET_READONLY = "VET_READONLY", "Vet (read only)"


class QueueEntryStatus(models.TextChoices):
    QUEUED = "QUEUED", "Queued"
    FAILED = "FAILED", "Failed"


class Sensitivity(models.TextChoices):
    NORMAL = "normal", "Normal"
    HIGH = "high", "High"
    CRITICAL = "critical", "Critical"
