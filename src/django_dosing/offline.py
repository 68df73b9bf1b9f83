"""
Offline queue reconciler.

Writes made while a client is offline are queued as (action_type,
idempotency_key, payload) entries and replayed strictly in enqueue order
once connectivity returns. Every action is idempotent on its key, so a
replay interrupted at any point can simply be run again.

Storage is pluggable:
- InMemoryQueueStore: process-local, for clients and tests
- DatabaseQueueStore: durable, backed by OfflineQueueEntry

Usage:
    queue = OfflineQueue(DatabaseQueueStore(), local_handlers())
    queue.enqueue("administration.record", key, payload)
    result = queue.replay()
"""

import copy
import json
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from django.contrib.auth import get_user_model
from django.db import transaction
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from .choices import QueueEntryStatus
from .conf import get_setting
from .exceptions import DosingError, DosingValidationError, NotFound, TransientError


logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (TransientError, ConnectionError, TimeoutError)


@dataclass
class QueueEntry:
    idempotency_key: str
    action_type: str
    payload: dict
    sequence: int
    household_id: str = ""
    status: str = QueueEntryStatus.QUEUED
    attempts: int = 0
    max_attempts: int = 3
    last_error: str = ""
    enqueued_at: Optional[datetime] = None


@dataclass
class ReplayResult:
    """Summary of one replay() call, as lists of idempotency keys."""

    succeeded: list = field(default_factory=list)
    failed: list = field(default_factory=list)
    retrying: list = field(default_factory=list)
    skipped: bool = False
    cancelled: bool = False

    @property
    def processed(self) -> int:
        return len(self.succeeded) + len(self.failed) + len(self.retrying)


# =============================================================================
# STORES
# =============================================================================

class QueueStore:
    """Storage interface for queue entries, ordered by sequence."""

    def append(self, entry: QueueEntry) -> QueueEntry:
        """Store a new entry. Returns the existing entry if the key is already queued."""
        raise NotImplementedError

    def get(self, idempotency_key: str) -> Optional[QueueEntry]:
        raise NotImplementedError

    def peek(self) -> Optional[QueueEntry]:
        pending = self.pending()
        return pending[0] if pending else None

    def pending(self) -> list:
        raise NotImplementedError

    def failed(self) -> list:
        raise NotImplementedError

    def update(self, entry: QueueEntry) -> None:
        raise NotImplementedError

    def remove(self, idempotency_key: str) -> None:
        raise NotImplementedError

    def size(self) -> int:
        return len(self.pending())

    def next_sequence(self) -> int:
        raise NotImplementedError


class InMemoryQueueStore(QueueStore):
    def __init__(self):
        self._entries = {}
        self._sequence = 0
        self._mutex = threading.Lock()

    def append(self, entry):
        with self._mutex:
            existing = self._entries.get(entry.idempotency_key)
            if existing is not None:
                return copy.deepcopy(existing)
            self._entries[entry.idempotency_key] = copy.deepcopy(entry)
            return entry

    def get(self, idempotency_key):
        entry = self._entries.get(idempotency_key)
        return copy.deepcopy(entry) if entry else None

    def _with_status(self, status):
        with self._mutex:
            entries = [e for e in self._entries.values() if e.status == status]
        return [copy.deepcopy(e) for e in sorted(entries, key=lambda e: e.sequence)]

    def pending(self):
        return self._with_status(QueueEntryStatus.QUEUED)

    def failed(self):
        return self._with_status(QueueEntryStatus.FAILED)

    def update(self, entry):
        with self._mutex:
            if entry.idempotency_key in self._entries:
                self._entries[entry.idempotency_key] = copy.deepcopy(entry)

    def remove(self, idempotency_key):
        with self._mutex:
            self._entries.pop(idempotency_key, None)

    def next_sequence(self):
        with self._mutex:
            self._sequence += 1
            return self._sequence


class DatabaseQueueStore(QueueStore):
    """Durable store backed by the OfflineQueueEntry table."""

    @staticmethod
    def _to_entry(row) -> QueueEntry:
        return QueueEntry(
            idempotency_key=row.idempotency_key,
            action_type=row.action_type,
            payload=row.payload,
            sequence=row.sequence,
            household_id=row.household_id,
            status=row.status,
            attempts=row.attempts,
            max_attempts=row.max_attempts,
            last_error=row.last_error,
            enqueued_at=row.enqueued_at,
        )

    @property
    def _rows(self):
        from .models import OfflineQueueEntry

        return OfflineQueueEntry.objects

    def append(self, entry):
        row, created = self._rows.get_or_create(
            idempotency_key=entry.idempotency_key,
            defaults={
                "action_type": entry.action_type,
                "payload": entry.payload,
                "household_id": entry.household_id or "",
                "sequence": entry.sequence,
                "status": entry.status,
                "attempts": entry.attempts,
                "max_attempts": entry.max_attempts,
                "enqueued_at": entry.enqueued_at or timezone.now(),
            },
        )
        return self._to_entry(row)

    def get(self, idempotency_key):
        row = self._rows.filter(idempotency_key=idempotency_key).first()
        return self._to_entry(row) if row else None

    def pending(self):
        rows = self._rows.filter(status=QueueEntryStatus.QUEUED).order_by("sequence")
        return [self._to_entry(row) for row in rows]

    def failed(self):
        rows = self._rows.filter(status=QueueEntryStatus.FAILED).order_by("sequence")
        return [self._to_entry(row) for row in rows]

    def update(self, entry):
        self._rows.filter(idempotency_key=entry.idempotency_key).update(
            status=entry.status,
            attempts=entry.attempts,
            max_attempts=entry.max_attempts,
            last_error=entry.last_error,
            updated_at=timezone.now(),
        )

    def remove(self, idempotency_key):
        self._rows.filter(idempotency_key=idempotency_key).delete()

    def size(self):
        return self._rows.filter(status=QueueEntryStatus.QUEUED).count()

    def next_sequence(self):
        last = self._rows.order_by("-sequence").values_list("sequence", flat=True).first()
        return (last or 0) + 1


# =============================================================================
# QUEUE
# =============================================================================

class OfflineQueue:
    """
    FIFO reconciler over a QueueStore.

    Args:
        store: QueueStore (defaults to InMemoryQueueStore)
        handlers: Mapping of action_type -> callable(payload)
        max_attempts: Transient failures tolerated per entry
        retry_delay: Seconds multiplied by prior attempts before retrying an entry
        sleep: Sleep function, injectable for tests
    """

    def __init__(
        self,
        store: QueueStore = None,
        handlers: dict = None,
        max_attempts: int = None,
        retry_delay: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store if store is not None else InMemoryQueueStore()
        self.handlers = dict(handlers or {})
        self.max_attempts = max_attempts or get_setting("OFFLINE_MAX_ATTEMPTS")
        self.retry_delay = retry_delay
        self.sleep = sleep
        self._lock = threading.Lock()
        self._cancel = threading.Event()

    def __len__(self):
        return self.store.size()

    @property
    def is_replaying(self) -> bool:
        return self._lock.locked()

    def enqueue(self, action_type: str, idempotency_key: str, payload: dict, household_id=None) -> QueueEntry:
        """
        Queue an action. Re-enqueueing a queued key is a no-op that keeps
        the original entry and position.

        Raises:
            DosingValidationError: Unknown action type, empty key or a
                payload that is not JSON serializable
        """
        if not idempotency_key:
            raise DosingValidationError("idempotency_key is required", field="idempotency_key")
        if self.handlers and action_type not in self.handlers:
            raise DosingValidationError(f"Unknown action type '{action_type}'", field="action_type")
        try:
            json.dumps(payload)
        except (TypeError, ValueError) as e:
            raise DosingValidationError(f"Payload is not JSON serializable: {e}", field="payload")

        existing = self.store.get(idempotency_key)
        if existing is not None:
            logger.debug("Key %s already queued at position %s", idempotency_key, existing.sequence)
            return existing

        entry = QueueEntry(
            idempotency_key=idempotency_key,
            action_type=action_type,
            payload=payload,
            sequence=self.store.next_sequence(),
            household_id=str(household_id) if household_id else "",
            max_attempts=self.max_attempts,
            enqueued_at=timezone.now(),
        )
        return self.store.append(entry)

    def peek(self) -> Optional[QueueEntry]:
        return self.store.peek()

    def dequeue(self) -> Optional[QueueEntry]:
        """Remove and return the head of the queue without running it."""
        entry = self.store.peek()
        if entry is not None:
            self.store.remove(entry.idempotency_key)
        return entry

    def failed(self) -> list:
        return self.store.failed()

    def retry_failed(self, idempotency_key: str) -> Optional[QueueEntry]:
        """Put a failed entry back in the queue with a fresh attempt budget."""
        entry = self.store.get(idempotency_key)
        if entry is None or entry.status != QueueEntryStatus.FAILED:
            return None
        entry.status = QueueEntryStatus.QUEUED
        entry.attempts = 0
        entry.last_error = ""
        self.store.update(entry)
        return entry

    def discard(self, idempotency_key: str) -> bool:
        """Drop a failed entry once the user has dealt with it."""
        entry = self.store.get(idempotency_key)
        if entry is None or entry.status != QueueEntryStatus.FAILED:
            return False
        self.store.remove(idempotency_key)
        return True

    def cancel(self):
        """Stop an in-flight replay after the entry currently running."""
        self._cancel.set()

    def replay(self) -> ReplayResult:
        """
        Run every queued entry in FIFO order.

        Only one replay runs at a time; a concurrent call returns immediately
        with skipped=True.
        """
        if not self._lock.acquire(blocking=False):
            return ReplayResult(skipped=True)
        try:
            self._cancel.clear()
            result = ReplayResult()
            for entry in self.store.pending():
                if self._cancel.is_set():
                    result.cancelled = True
                    break
                self._run(entry, result)
        finally:
            self._lock.release()

        logger.info(
            "Offline replay: %d succeeded, %d retrying, %d failed%s",
            len(result.succeeded), len(result.retrying), len(result.failed),
            " (cancelled)" if result.cancelled else "",
        )
        return result

    def _run(self, entry: QueueEntry, result: ReplayResult):
        handler = self.handlers.get(entry.action_type)
        if handler is None:
            self._fail(entry, f"No handler for action type '{entry.action_type}'", result)
            return

        if entry.attempts and self.retry_delay:
            self.sleep(self.retry_delay * entry.attempts)

        try:
            handler(entry.payload)
        except TRANSIENT_ERRORS as e:
            entry.attempts += 1
            entry.last_error = f"{type(e).__name__}: {e}"
            if entry.attempts >= entry.max_attempts:
                self._fail(entry, entry.last_error, result)
                return
            self.store.update(entry)
            result.retrying.append(entry.idempotency_key)
            logger.info("Entry %s failed transiently (attempt %d)", entry.idempotency_key, entry.attempts)
        except DosingError as e:
            entry.attempts += 1
            self._fail(entry, f"{type(e).__name__}: {e}", result)
        except Exception as e:
            logger.exception("Unexpected error replaying %s", entry.idempotency_key)
            entry.attempts += 1
            self._fail(entry, f"{type(e).__name__}: {e}", result)
        else:
            self.store.remove(entry.idempotency_key)
            result.succeeded.append(entry.idempotency_key)

    def _fail(self, entry: QueueEntry, error: str, result: ReplayResult):
        entry.status = QueueEntryStatus.FAILED
        entry.last_error = error
        self.store.update(entry)
        result.failed.append(entry.idempotency_key)
        logger.warning("Offline entry %s failed: %s", entry.idempotency_key, error)


# =============================================================================
# LOCAL HANDLERS
# =============================================================================

def _user(user_id):
    User = get_user_model()
    user = User.objects.filter(pk=user_id).first()
    if user is None:
        raise NotFound("User", user_id)
    return user


def _handle_record(payload: dict):
    from .services.recording import RecordAdministrationInput, record_administration

    administered_at = payload.get("administered_at")
    if administered_at:
        administered_at = parse_datetime(administered_at)
        if administered_at is None:
            raise DosingValidationError("administered_at is not an ISO datetime", field="administered_at")

    return record_administration(
        RecordAdministrationInput(
            household_id=payload["household_id"],
            animal_id=payload["animal_id"],
            regimen_id=payload["regimen_id"],
            caregiver=_user(payload["caregiver_id"]),
            idempotency_key=payload["idempotency_key"],
            administered_at=administered_at,
            inventory_source_id=payload.get("inventory_source_id"),
            allow_override=bool(payload.get("allow_override", False)),
            notes=payload.get("notes", ""),
            site=payload.get("site", ""),
            dose=payload.get("dose", ""),
            condition_tags=payload.get("condition_tags", []),
            media_urls=payload.get("media_urls", []),
            mark_missed=bool(payload.get("mark_missed", False)),
        )
    )


def _handle_inventory_update(payload: dict):
    from .services.inventory import update_inventory_quantity

    actor = _user(payload["actor_id"]) if payload.get("actor_id") else None
    return update_inventory_quantity(
        payload["household_id"],
        payload["item_id"],
        payload["units_remaining"],
        quantity_total=payload.get("quantity_total"),
        actor=actor,
    )


def _handle_mark_in_use(payload: dict):
    from .services.inventory import mark_inventory_in_use

    actor = _user(payload["actor_id"]) if payload.get("actor_id") else None
    return mark_inventory_in_use(
        payload["household_id"],
        payload["item_id"],
        animal_id=payload.get("animal_id"),
        actor=actor,
    )


def _required_keys(handler, *names):
    def wrapper(payload):
        missing = [name for name in names if name not in payload]
        if missing:
            raise DosingValidationError(f"Payload missing {', '.join(missing)}", field="payload")
        with transaction.atomic():
            return handler(payload)
    return wrapper


def local_handlers() -> dict:
    """Handlers that apply queued actions with the in-process services."""
    return {
        "administration.record": _required_keys(
            _handle_record,
            "household_id", "animal_id", "regimen_id", "caregiver_id", "idempotency_key",
        ),
        "inventory.update": _required_keys(
            _handle_inventory_update, "household_id", "item_id", "units_remaining",
        ),
        "inventory.mark_in_use": _required_keys(
            _handle_mark_in_use, "household_id", "item_id",
        ),
    }
