"""Tests for management commands."""

from datetime import date, datetime, timezone as dt_timezone
from io import StringIO

import pytest
from django.core.management import call_command
from freezegun import freeze_time

from django_dosing.keys import build_key
from django_dosing.models import Administration, CoSignRequest, OfflineQueueEntry
from django_dosing.offline import DatabaseQueueStore, OfflineQueue, local_handlers
from django_dosing.services.recording import RecordAdministrationInput, record_administration


UTC = dt_timezone.utc
NOW = datetime(2024, 1, 1, 8, 5, tzinfo=UTC)


def record_high_risk(user, regimen):
    animal = regimen.animal
    return record_administration(
        RecordAdministrationInput(
            household_id=animal.household_id,
            animal_id=animal.pk,
            regimen_id=regimen.pk,
            caregiver=user,
            idempotency_key=build_key(animal.pk, regimen.pk, date(2024, 1, 1), 0),
            administered_at=NOW,
        ),
        now=NOW,
    )


@pytest.mark.django_db
class TestExpireCoSignRequestsCommand:

    def test_dry_run_changes_nothing(self, user, high_risk_regimen):
        record_high_risk(user, high_risk_regimen)
        out = StringIO()

        with freeze_time("2024-01-01 09:00:00"):
            call_command("expire_cosign_requests", "--dry-run", stdout=out)

        assert "Would expire 1 co-sign requests" in out.getvalue()
        assert CoSignRequest.objects.get().status == "PENDING"

    def test_expires_elapsed_requests(self, user, high_risk_regimen):
        record_high_risk(user, high_risk_regimen)
        out = StringIO()

        with freeze_time("2024-01-01 09:00:00"):
            call_command("expire_cosign_requests", stdout=out)

        assert "Expired 1 co-sign requests" in out.getvalue()
        assert CoSignRequest.objects.get().status == "EXPIRED"

    def test_leaves_open_requests(self, user, high_risk_regimen):
        record_high_risk(user, high_risk_regimen)
        out = StringIO()

        with freeze_time("2024-01-01 08:10:00"):
            call_command("expire_cosign_requests", stdout=out)

        assert "Expired 0 co-sign requests" in out.getvalue()
        assert CoSignRequest.objects.get().status == "PENDING"


@pytest.mark.django_db
class TestReplayOfflineQueueCommand:

    def test_replays_queued_administrations(self, user, regimen, other_household):
        animal = regimen.animal
        queue = OfflineQueue(DatabaseQueueStore(), local_handlers())
        good_key = build_key(animal.pk, regimen.pk, date(2024, 1, 1), 0)
        bad_key = build_key(animal.pk, regimen.pk, date(2024, 1, 1), 1)
        base = {
            "animal_id": str(animal.pk),
            "regimen_id": str(regimen.pk),
            "caregiver_id": user.pk,
            "administered_at": NOW.isoformat(),
        }
        queue.enqueue(
            "administration.record",
            good_key,
            dict(base, household_id=str(animal.household_id), idempotency_key=good_key),
        )
        queue.enqueue(
            "administration.record",
            bad_key,
            dict(base, household_id=str(other_household.pk), idempotency_key=bad_key),
        )
        out = StringIO()

        call_command("replay_offline_queue", "--retry-delay", "0", stdout=out)

        output = out.getvalue()
        assert "Replayed 1 entries, 0 retrying, 1 failed" in output
        assert bad_key in output
        assert Administration.objects.get().idempotency_key == good_key
        assert OfflineQueueEntry.objects.get().idempotency_key == bad_key

    def test_empty_queue(self):
        out = StringIO()

        call_command("replay_offline_queue", stdout=out)

        assert "Replayed 0 entries, 0 retrying, 0 failed" in out.getvalue()
