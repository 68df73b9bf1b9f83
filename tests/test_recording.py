"""Tests for record_administration."""

from datetime import date, datetime, timedelta, timezone as dt_timezone

import pytest
from django.test import override_settings

from django_dosing.exceptions import DosingValidationError, InventoryConflict, NotFound
from django_dosing.keys import build_key
from django_dosing.models import Administration, CoSignRequest, InventoryItem, Regimen
from django_dosing.services import recording
from django_dosing.services.recording import RecordAdministrationInput, record_administration


UTC = dt_timezone.utc
NOW = datetime(2024, 1, 1, 8, 15, tzinfo=UTC)


def make_input(user, regimen, key=None, **overrides):
    animal = regimen.animal
    values = {
        "household_id": animal.household_id,
        "animal_id": animal.pk,
        "regimen_id": regimen.pk,
        "caregiver": user,
        "idempotency_key": key or build_key(animal.pk, regimen.pk, date(2024, 1, 1), 0),
        "administered_at": NOW,
    }
    values.update(overrides)
    return RecordAdministrationInput(**values)


@pytest.mark.django_db
class TestIdempotency:
    """One administration per key, however often it is submitted."""

    def test_example_scenario(self, user, regimen, audit):
        first = record_administration(make_input(user, regimen), audit=audit, now=NOW)

        assert first.created is True
        assert first.administration.status == "ON_TIME"
        assert first.administration.scheduled_for == datetime(2024, 1, 1, 8, 0, tzinfo=UTC)
        assert first.administration.slot_local_day == date(2024, 1, 1)
        assert first.administration.slot_index == 0

        again = record_administration(make_input(user, regimen), audit=audit, now=NOW)

        assert again.created is False
        assert again.administration.pk == first.administration.pk
        assert Administration.objects.count() == 1

        evening_key = build_key(regimen.animal.pk, regimen.pk, date(2024, 1, 1), 1)
        evening_at = datetime(2024, 1, 1, 20, 5, tzinfo=UTC)
        evening = record_administration(
            make_input(user, regimen, key=evening_key, administered_at=evening_at),
            audit=audit,
            now=evening_at,
        )

        assert evening.created is True
        assert evening.administration.pk != first.administration.pk
        assert Administration.objects.count() == 2

    def test_replay_does_not_consume_inventory_twice(self, user, regimen, inventory_item):
        data = make_input(user, regimen, inventory_source_id=inventory_item.pk)

        record_administration(data, now=NOW)
        record_administration(data, now=NOW)

        inventory_item.refresh_from_db()
        assert inventory_item.units_remaining == 9

    def test_replay_after_pause_returns_original(self, user, regimen):
        first = record_administration(make_input(user, regimen), now=NOW)
        Regimen.objects.filter(pk=regimen.pk).update(paused_at=NOW)

        again = record_administration(make_input(user, regimen), now=NOW)

        assert again.created is False
        assert again.administration.pk == first.administration.pk

    def test_concurrent_insert_returns_winner(self, user, regimen, inventory_item, monkeypatch):
        """A writer that misses the committed row on lookup still converges on it."""
        data = make_input(user, regimen, inventory_source_id=inventory_item.pk)
        first = record_administration(data, now=NOW)
        monkeypatch.setattr(recording, "_find_existing", lambda key: None)

        again = record_administration(data, now=NOW)

        assert again.created is False
        assert again.administration.pk == first.administration.pk
        assert Administration.objects.count() == 1
        inventory_item.refresh_from_db()
        assert inventory_item.units_remaining == 9

    def test_prn_submissions_are_separate(self, user, prn_regimen):
        animal = prn_regimen.animal
        for _ in range(2):
            key = build_key(animal.pk, prn_regimen.pk, date(2024, 1, 1))
            result = record_administration(make_input(user, prn_regimen, key=key), now=NOW)
            assert result.administration.status == "PRN"
            assert result.administration.scheduled_for is None

        assert Administration.objects.filter(regimen=prn_regimen).count() == 2


@pytest.mark.django_db
class TestStatusGrading:

    @pytest.mark.parametrize("administered_at,expected", [
        (datetime(2024, 1, 1, 7, 30, tzinfo=UTC), "ON_TIME"),
        (datetime(2024, 1, 1, 9, 0, tzinfo=UTC), "ON_TIME"),
        (datetime(2024, 1, 1, 9, 30, tzinfo=UTC), "LATE"),
        (datetime(2024, 1, 1, 11, 30, tzinfo=UTC), "VERY_LATE"),
    ])
    def test_lateness_thresholds(self, user, regimen, administered_at, expected):
        result = record_administration(
            make_input(user, regimen, administered_at=administered_at), now=NOW
        )

        assert result.administration.status == expected

    @override_settings(DOSING_ON_TIME_MINUTES=10)
    def test_thresholds_come_from_settings(self, user, regimen):
        result = record_administration(make_input(user, regimen), now=NOW)

        assert result.administration.status == "LATE"

    def test_mark_missed(self, user, regimen, inventory_item):
        result = record_administration(
            make_input(user, regimen, mark_missed=True, inventory_source_id=inventory_item.pk),
            now=NOW,
        )

        assert result.administration.status == "MISSED"
        inventory_item.refresh_from_db()
        assert inventory_item.units_remaining == 10

    def test_late_evening_slot_keyed_to_its_own_day(self, user, ny_animal, medication):
        regimen = Regimen.objects.create(
            animal=ny_animal,
            medication=medication,
            schedule_type="FIXED",
            times_local=["23:30"],
            cutoff_minutes=30,
            start_date=date(2024, 7, 1),
        )
        recorded_at = datetime(2024, 7, 16, 4, 5, tzinfo=UTC)
        key = build_key(ny_animal.pk, regimen.pk, date(2024, 7, 15), 0)

        result = record_administration(
            make_input(user, regimen, key=key, administered_at=recorded_at), now=recorded_at
        )

        assert result.administration.scheduled_for == datetime(2024, 7, 16, 3, 30, tzinfo=UTC)
        assert result.administration.slot_local_day == date(2024, 7, 15)
        assert result.administration.status == "ON_TIME"


@pytest.mark.django_db
class TestValidation:
    """Rejected submissions leave no trace."""

    def test_malformed_key(self, user, regimen):
        with pytest.raises(DosingValidationError):
            record_administration(make_input(user, regimen, key="not-a-key"), now=NOW)
        assert Administration.objects.count() == 0

    def test_key_for_another_animal(self, user, regimen):
        key = build_key("someone-else", regimen.pk, date(2024, 1, 1), 0)

        with pytest.raises(DosingValidationError):
            record_administration(make_input(user, regimen, key=key), now=NOW)

    def test_prn_key_on_scheduled_regimen(self, user, regimen):
        key = build_key(regimen.animal.pk, regimen.pk, date(2024, 1, 1))

        with pytest.raises(DosingValidationError):
            record_administration(make_input(user, regimen, key=key), now=NOW)

    def test_naive_administered_at(self, user, regimen):
        with pytest.raises(DosingValidationError):
            record_administration(
                make_input(user, regimen, administered_at=datetime(2024, 1, 1, 8, 0)), now=NOW
            )

    def test_animal_from_another_household(self, user, regimen, other_household):
        data = make_input(user, regimen, household_id=other_household.pk)

        with pytest.raises(NotFound):
            record_administration(data, now=NOW)

    def test_paused_regimen(self, user, regimen):
        Regimen.objects.filter(pk=regimen.pk).update(paused_at=NOW)

        with pytest.raises(NotFound):
            record_administration(make_input(user, regimen), now=NOW)

    def test_future_slot_rejected(self, user, regimen):
        key = build_key(regimen.animal.pk, regimen.pk, date(2024, 1, 20), 1)

        with pytest.raises(DosingValidationError):
            record_administration(make_input(user, regimen, key=key), now=NOW)
        assert Administration.objects.count() == 0

    def test_later_slot_today_rejected_before_its_window(self, user, regimen):
        key = build_key(regimen.animal.pk, regimen.pk, date(2024, 1, 1), 1)

        with pytest.raises(DosingValidationError):
            record_administration(make_input(user, regimen, key=key, mark_missed=True), now=NOW)

    def test_slot_accepted_when_window_opens(self, user, regimen):
        opens = datetime(2024, 1, 1, 7, 0, tzinfo=UTC)

        result = record_administration(make_input(user, regimen, administered_at=opens), now=opens)

        assert result.administration.status == "ON_TIME"

    def test_null_free_text_stored_blank(self, user, regimen):
        result = record_administration(
            make_input(user, regimen, notes=None, site=None, adverse_event_description=None),
            now=NOW,
        )

        assert result.administration.notes == ""
        assert result.administration.site == ""
        assert result.administration.dose == "25mg"

    def test_non_string_free_text_rejected(self, user, regimen):
        with pytest.raises(DosingValidationError) as exc_info:
            record_administration(make_input(user, regimen, notes=42), now=NOW)

        assert exc_info.value.field == "notes"
        assert Administration.objects.count() == 0

    def test_slot_day_before_regimen_start(self, user, regimen):
        key = build_key(regimen.animal.pk, regimen.pk, date(2023, 12, 31), 0)

        with pytest.raises(NotFound):
            record_administration(make_input(user, regimen, key=key), now=NOW)


@pytest.mark.django_db
class TestInventory:

    def test_decrements_source(self, user, regimen, inventory_item):
        result = record_administration(
            make_input(user, regimen, inventory_source_id=inventory_item.pk), now=NOW
        )

        inventory_item.refresh_from_db()
        assert inventory_item.units_remaining == 9
        assert result.administration.source_item == inventory_item

    def test_expired_source_needs_override(self, user, regimen, inventory_item):
        InventoryItem.objects.filter(pk=inventory_item.pk).update(expires_on=date(2023, 12, 31))

        with pytest.raises(InventoryConflict) as exc_info:
            record_administration(
                make_input(user, regimen, inventory_source_id=inventory_item.pk), now=NOW
            )
        assert exc_info.value.overridable is True
        assert Administration.objects.count() == 0

        result = record_administration(
            make_input(user, regimen, inventory_source_id=inventory_item.pk, allow_override=True),
            now=NOW,
        )
        assert result.created is True

    def test_other_medication_needs_override(self, user, regimen, household, other_medication):
        item = InventoryItem.objects.create(
            household=household, medication=other_medication, units_remaining=5
        )

        with pytest.raises(InventoryConflict):
            record_administration(make_input(user, regimen, inventory_source_id=item.pk), now=NOW)

    def test_exhausted_source_not_overridable(self, user, regimen, inventory_item):
        InventoryItem.objects.filter(pk=inventory_item.pk).update(units_remaining=0)

        with pytest.raises(InventoryConflict) as exc_info:
            record_administration(
                make_input(user, regimen, inventory_source_id=inventory_item.pk, allow_override=True),
                now=NOW,
            )
        assert exc_info.value.overridable is False

    def test_source_from_another_household(self, user, regimen, other_household, medication):
        item = InventoryItem.objects.create(
            household=other_household, medication=medication, units_remaining=5
        )

        with pytest.raises(NotFound):
            record_administration(make_input(user, regimen, inventory_source_id=item.pk), now=NOW)

    def test_failed_decrement_rolls_back_insert(self, user, regimen, inventory_item, monkeypatch):
        """A failure between insert and decrement commits nothing."""
        def explode(item, now):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(recording, "_decrement_inventory", explode)

        with pytest.raises(RuntimeError):
            record_administration(
                make_input(user, regimen, inventory_source_id=inventory_item.pk), now=NOW
            )

        assert Administration.objects.count() == 0
        inventory_item.refresh_from_db()
        assert inventory_item.units_remaining == 10


@pytest.mark.django_db
class TestCoSignAndAudit:

    def test_high_risk_opens_co_sign_request(self, user, high_risk_regimen, audit, django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=True):
            result = record_administration(make_input(user, high_risk_regimen), audit=audit, now=NOW)

        request = result.co_sign_request
        assert request.status == "PENDING"
        assert request.requested_by == user
        assert request.expires_at == NOW + timedelta(minutes=10)
        assert audit.actions == ["high_risk.administered", "cosign.requested"]
        assert audit.events[0]["sensitivity"] == "high"

    def test_replay_returns_existing_co_sign_request(self, user, high_risk_regimen):
        first = record_administration(make_input(user, high_risk_regimen), now=NOW)
        again = record_administration(make_input(user, high_risk_regimen), now=NOW)

        assert again.co_sign_request.pk == first.co_sign_request.pk
        assert CoSignRequest.objects.count() == 1

    def test_audit_only_after_commit_and_only_once(self, user, regimen, audit, django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=True):
            record_administration(make_input(user, regimen), audit=audit, now=NOW)
            record_administration(make_input(user, regimen), audit=audit, now=NOW)

        assert audit.actions == ["administration.recorded"]
        assert audit.events[0]["actor_id"] == user.pk

    def test_nothing_emitted_on_failure(self, user, regimen, inventory_item, audit, django_capture_on_commit_callbacks):
        InventoryItem.objects.filter(pk=inventory_item.pk).update(units_remaining=0)

        with django_capture_on_commit_callbacks(execute=True):
            with pytest.raises(InventoryConflict):
                record_administration(
                    make_input(user, regimen, inventory_source_id=inventory_item.pk),
                    audit=audit,
                    now=NOW,
                )

        assert audit.events == []
