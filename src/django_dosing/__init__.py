"""Django Dosing - medication due-time scheduling and exactly-once administration recording."""

__version__ = "0.1.0"

__all__ = [
    # Schedule
    "Section",
    "DueStatus",
    "classify",
    # Keys
    "build_key",
    "parse_key",
    "local_day_for",
    "key_for_status",
    # Services
    "RecordAdministrationInput",
    "RecordResult",
    "record_administration",
    "complete_co_sign",
    "CoSignState",
    # Offline
    "OfflineQueue",
    "ReplayResult",
    # Audit
    "AuditEmitter",
    "Actions",
    # Exceptions
    "DosingError",
    "DosingValidationError",
    "NotFound",
    "InventoryConflict",
    "InvalidState",
    "TransientError",
]


def __getattr__(name):
    """Lazy import to avoid AppRegistryNotReady errors."""
    if name in ("Section", "DueStatus", "classify"):
        from django_dosing import schedule
        return getattr(schedule, name)
    if name in ("build_key", "parse_key", "local_day_for", "key_for_status"):
        from django_dosing import keys
        return getattr(keys, name)
    if name in (
        "RecordAdministrationInput",
        "RecordResult",
        "record_administration",
        "complete_co_sign",
        "CoSignState",
    ):
        from django_dosing import services
        return getattr(services, name)
    if name in ("OfflineQueue", "ReplayResult"):
        from django_dosing import offline
        return getattr(offline, name)
    if name in ("AuditEmitter", "Actions"):
        from django_dosing import audit
        return getattr(audit, name)
    if name in (
        "DosingError",
        "DosingValidationError",
        "NotFound",
        "InventoryConflict",
        "InvalidState",
        "TransientError",
    ):
        from django_dosing import exceptions
        return getattr(exceptions, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
