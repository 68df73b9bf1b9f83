# tests/conftest.py
"""
Pytest configuration for django-dosing tests.
"""
from datetime import date

import django
import pytest
from django.conf import settings


def pytest_configure():
    if not settings.configured:
        settings.configure(
            DEBUG=True,
            SECRET_KEY="test-secret-key-not-for-production",
            DATABASES={
                "default": {
                    "ENGINE": "django.db.backends.sqlite3",
                    "NAME": ":memory:",
                }
            },
            INSTALLED_APPS=[
                "django.contrib.contenttypes",
                "django.contrib.auth",
                "django.contrib.sessions",
                "django_dosing",
            ],
            MIDDLEWARE=[
                "django.contrib.sessions.middleware.SessionMiddleware",
                "django.contrib.auth.middleware.AuthenticationMiddleware",
            ],
            ROOT_URLCONF="tests.urls",
            DEFAULT_AUTO_FIELD="django.db.models.BigAutoField",
            USE_TZ=True,
            TIME_ZONE="UTC",
        )
    django.setup()


class RecordingEmitter:
    """Audit emitter that keeps events in memory."""

    def __init__(self):
        self.events = []

    def emit(self, action, *, household_id=None, actor_id=None, obj=None, metadata=None, sensitivity="normal"):
        self.events.append({
            "action": action,
            "household_id": household_id,
            "actor_id": actor_id,
            "obj": obj,
            "metadata": metadata or {},
            "sensitivity": sensitivity,
        })

    @property
    def actions(self):
        return [event["action"] for event in self.events]


@pytest.fixture
def audit():
    return RecordingEmitter()


@pytest.fixture
def user(db, django_user_model):
    """The caregiver recording doses."""
    return django_user_model.objects.create_user(username="caregiver", password="testpass123")


@pytest.fixture
def other_user(db, django_user_model):
    """A second caregiver in the same household."""
    return django_user_model.objects.create_user(username="second", password="testpass123")


@pytest.fixture
def vet_user(db, django_user_model):
    return django_user_model.objects.create_user(username="vet", password="testpass123")


@pytest.fixture
def outsider(db, django_user_model):
    return django_user_model.objects.create_user(username="outsider", password="testpass123")


@pytest.fixture
def household(db, user, other_user, vet_user):
    from django_dosing.models import Household, HouseholdMember

    household = Household.objects.create(name="Test Household")
    HouseholdMember.objects.create(household=household, user=user, role="OWNER")
    HouseholdMember.objects.create(household=household, user=other_user, role="CAREGIVER")
    HouseholdMember.objects.create(household=household, user=vet_user, role="VET_READONLY")
    return household


@pytest.fixture
def other_household(db):
    from django_dosing.models import Household

    return Household.objects.create(name="Other Household")


@pytest.fixture
def animal(household):
    from django_dosing.models import Animal

    return Animal.objects.create(household=household, name="Rex", species="dog", timezone="UTC")


@pytest.fixture
def ny_animal(household):
    from django_dosing.models import Animal

    return Animal.objects.create(
        household=household, name="Biscuit", species="cat", timezone="America/New_York"
    )


@pytest.fixture
def medication(db):
    from django_dosing.models import Medication

    return Medication.objects.create(generic_name="Carprofen", brand_name="Rimadyl")


@pytest.fixture
def other_medication(db):
    from django_dosing.models import Medication

    return Medication.objects.create(generic_name="Gabapentin", brand_name="Neurontin")


@pytest.fixture
def regimen(animal, medication):
    """FIXED 08:00 and 20:00 UTC, 60 minute cutoff."""
    from django_dosing.models import Regimen

    return Regimen.objects.create(
        animal=animal,
        medication=medication,
        name="Carprofen twice daily",
        schedule_type="FIXED",
        times_local=["08:00", "20:00"],
        cutoff_minutes=60,
        start_date=date(2024, 1, 1),
        dose="25mg",
    )


@pytest.fixture
def high_risk_regimen(animal, medication):
    from django_dosing.models import Regimen

    return Regimen.objects.create(
        animal=animal,
        medication=medication,
        name="Insulin",
        schedule_type="FIXED",
        times_local=["08:00"],
        cutoff_minutes=60,
        start_date=date(2024, 1, 1),
        high_risk=True,
        requires_co_sign=True,
    )


@pytest.fixture
def prn_regimen(animal, medication):
    from django_dosing.models import Regimen

    return Regimen.objects.create(
        animal=animal,
        medication=medication,
        name="Pain relief as needed",
        schedule_type="PRN",
        prn_reason="limping",
        start_date=date(2024, 1, 1),
    )


@pytest.fixture
def inventory_item(household, medication):
    from django_dosing.models import InventoryItem

    return InventoryItem.objects.create(
        household=household,
        medication=medication,
        lot="LOT-1",
        expires_on=date(2025, 1, 1),
        quantity_total=10,
        units_remaining=10,
    )
