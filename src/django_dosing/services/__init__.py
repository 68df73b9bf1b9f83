"""Write operations for django-dosing."""

from .cosign import (
    CoSignState,
    complete_co_sign,
    expire_stale_co_sign_requests,
    get_co_sign_request,
    get_co_sign_state,
)
from .inventory import mark_inventory_in_use, update_inventory_quantity
from .recording import RecordAdministrationInput, RecordResult, record_administration
from .regimens import archive_regimen, pause_regimen, resume_regimen

__all__ = [
    "RecordAdministrationInput",
    "RecordResult",
    "record_administration",
    "CoSignState",
    "complete_co_sign",
    "expire_stale_co_sign_requests",
    "get_co_sign_request",
    "get_co_sign_state",
    "pause_regimen",
    "resume_regimen",
    "archive_regimen",
    "update_inventory_quantity",
    "mark_inventory_in_use",
]
