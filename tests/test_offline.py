"""Tests for the offline queue reconciler."""

from datetime import date, datetime, timezone as dt_timezone

import pytest

from django_dosing.exceptions import DosingValidationError, NotFound, TransientError
from django_dosing.keys import build_key
from django_dosing.models import Administration, OfflineQueueEntry
from django_dosing.offline import (
    DatabaseQueueStore,
    InMemoryQueueStore,
    OfflineQueue,
    local_handlers,
)


UTC = dt_timezone.utc


class Handler:
    """Records calls and raises the queued errors in order."""

    def __init__(self, errors=()):
        self.calls = []
        self.errors = list(errors)

    def __call__(self, payload):
        self.calls.append(payload["n"])
        if self.errors:
            error = self.errors.pop(0)
            if error is not None:
                raise error


def make_queue(handler, **kwargs):
    kwargs.setdefault("max_attempts", 3)
    return OfflineQueue(InMemoryQueueStore(), {"test.action": handler}, **kwargs)


class TestFifo:

    def test_replays_in_enqueue_order(self):
        handler = Handler()
        queue = make_queue(handler)
        for n in range(3):
            queue.enqueue("test.action", f"key-{n}", {"n": n})

        result = queue.replay()

        assert handler.calls == [0, 1, 2]
        assert result.succeeded == ["key-0", "key-1", "key-2"]
        assert len(queue) == 0

    def test_enqueue_same_key_keeps_original_position(self):
        handler = Handler()
        queue = make_queue(handler)
        queue.enqueue("test.action", "a", {"n": 1})
        queue.enqueue("test.action", "b", {"n": 2})
        queue.enqueue("test.action", "a", {"n": 99})

        queue.replay()

        assert handler.calls == [1, 2]

    def test_peek_and_dequeue(self):
        queue = make_queue(Handler())
        queue.enqueue("test.action", "a", {"n": 1})
        queue.enqueue("test.action", "b", {"n": 2})

        assert queue.peek().idempotency_key == "a"
        assert queue.dequeue().idempotency_key == "a"
        assert queue.peek().idempotency_key == "b"
        assert len(queue) == 1

    def test_unknown_action_rejected(self):
        queue = make_queue(Handler())

        with pytest.raises(DosingValidationError):
            queue.enqueue("nope", "a", {"n": 1})

    def test_payload_must_be_json(self):
        queue = make_queue(Handler())

        with pytest.raises(DosingValidationError):
            queue.enqueue("test.action", "a", {"n": object()})


class TestFailures:

    def test_transient_error_retried_on_next_replay(self):
        delays = []
        handler = Handler(errors=[ConnectionError("offline"), TimeoutError("slow"), None])
        queue = make_queue(handler, retry_delay=1.0, sleep=delays.append)
        queue.enqueue("test.action", "a", {"n": 1})

        assert queue.replay().retrying == ["a"]
        assert queue.replay().retrying == ["a"]
        assert queue.replay().succeeded == ["a"]
        assert delays == [1.0, 2.0]
        assert len(queue) == 0

    def test_transient_error_fails_after_max_attempts(self):
        handler = Handler(errors=[TransientError("down")] * 3)
        queue = make_queue(handler, retry_delay=0)
        queue.enqueue("test.action", "a", {"n": 1})

        queue.replay()
        queue.replay()
        result = queue.replay()

        assert result.failed == ["a"]
        failed = queue.failed()
        assert [e.idempotency_key for e in failed] == ["a"]
        assert failed[0].attempts == 3
        assert "down" in failed[0].last_error

    def test_permanent_error_fails_immediately_and_does_not_block(self):
        handler = Handler(errors=[NotFound("Regimen", "r1"), None])
        queue = make_queue(handler)
        queue.enqueue("test.action", "a", {"n": 1})
        queue.enqueue("test.action", "b", {"n": 2})

        result = queue.replay()

        assert result.failed == ["a"]
        assert result.succeeded == ["b"]
        assert queue.failed()[0].last_error.startswith("NotFound")

    def test_unexpected_error_is_kept_not_dropped(self):
        handler = Handler(errors=[KeyError("regimen_id")])
        queue = make_queue(handler)
        queue.enqueue("test.action", "a", {"n": 1})

        result = queue.replay()

        assert result.failed == ["a"]
        assert len(queue.failed()) == 1

    def test_retry_failed_and_discard(self):
        handler = Handler(errors=[NotFound("Regimen", "r1")])
        queue = make_queue(handler)
        queue.enqueue("test.action", "a", {"n": 1})
        queue.enqueue("test.action", "b", {"n": 2})
        handler.errors.append(NotFound("Regimen", "r2"))
        queue.replay()

        assert queue.retry_failed("a").attempts == 0
        assert queue.replay().succeeded == ["a"]
        assert queue.discard("b") is True
        assert queue.failed() == []
        assert queue.discard("missing") is False


class TestReplayControl:

    def test_concurrent_replay_is_skipped(self):
        queue = make_queue(None)
        nested = []

        def handler(payload):
            nested.append(queue.replay())

        queue.handlers["test.action"] = handler
        queue.enqueue("test.action", "a", {"n": 1})

        result = queue.replay()

        assert result.succeeded == ["a"]
        assert nested[0].skipped is True
        assert queue.is_replaying is False

    def test_cancel_stops_between_entries_and_resumes(self):
        queue = make_queue(None)
        seen = []

        def handler(payload):
            seen.append(payload["n"])
            if payload["n"] == 1:
                queue.cancel()

        queue.handlers["test.action"] = handler
        for n in (1, 2, 3):
            queue.enqueue("test.action", f"key-{n}", {"n": n})

        first = queue.replay()
        assert first.cancelled is True
        assert first.succeeded == ["key-1"]

        second = queue.replay()
        assert second.succeeded == ["key-2", "key-3"]
        assert seen == [1, 2, 3]


@pytest.mark.django_db
class TestDatabaseStore:

    def payload(self, user, regimen):
        animal = regimen.animal
        return {
            "household_id": str(animal.household_id),
            "animal_id": str(animal.pk),
            "regimen_id": str(regimen.pk),
            "caregiver_id": user.pk,
            "idempotency_key": build_key(animal.pk, regimen.pk, date(2024, 1, 1), 0),
            "administered_at": datetime(2024, 1, 1, 8, 10, tzinfo=UTC).isoformat(),
        }

    def test_records_administration_once_across_replays(self, user, regimen):
        queue = OfflineQueue(DatabaseQueueStore(), local_handlers(), retry_delay=0)
        payload = self.payload(user, regimen)

        queue.enqueue("administration.record", payload["idempotency_key"], payload)
        assert queue.replay().succeeded == [payload["idempotency_key"]]

        # The client queued the same dose again before hearing back
        queue.enqueue("administration.record", payload["idempotency_key"], payload)
        assert queue.replay().succeeded == [payload["idempotency_key"]]

        assert Administration.objects.count() == 1
        assert OfflineQueueEntry.objects.count() == 0

    def test_failure_persists_on_entry(self, user, regimen, other_household):
        queue = OfflineQueue(DatabaseQueueStore(), local_handlers(), retry_delay=0)
        payload = self.payload(user, regimen)
        payload["household_id"] = str(other_household.pk)

        queue.enqueue("administration.record", payload["idempotency_key"], payload)
        result = queue.replay()

        assert result.failed == [payload["idempotency_key"]]
        entry = OfflineQueueEntry.objects.get()
        assert entry.status == "FAILED"
        assert entry.last_error.startswith("NotFound")

    def test_fifo_sequence_survives_new_store_instance(self):
        OfflineQueue(DatabaseQueueStore(), local_handlers()).enqueue(
            "inventory.update", "first", {"household_id": "x", "item_id": "y", "units_remaining": 1}
        )
        OfflineQueue(DatabaseQueueStore(), local_handlers()).enqueue(
            "inventory.update", "second", {"household_id": "x", "item_id": "y", "units_remaining": 2}
        )

        pending = DatabaseQueueStore().pending()

        assert [e.idempotency_key for e in pending] == ["first", "second"]
        assert pending[0].sequence < pending[1].sequence

    def test_missing_payload_fields_fail_the_entry(self):
        queue = OfflineQueue(DatabaseQueueStore(), local_handlers(), retry_delay=0)
        queue.enqueue("administration.record", "k", {"household_id": "x"})

        result = queue.replay()

        assert result.failed == ["k"]
        assert "missing" in OfflineQueueEntry.objects.get().last_error
