"""Custom exceptions for django-dosing.

Every error the recorder, co-sign workflow and offline reconciler can raise
derives from DosingError. Callers always see them; nothing here is swallowed.
A duplicate submission is not an error: the recorder reports it through
RecordResult.created instead.
"""


class DosingError(Exception):
    """Base exception for dosing errors."""
    pass


class DosingValidationError(DosingError):
    """Malformed input, including a badly formatted idempotency key."""

    def __init__(self, message: str, field: str = None):
        self.field = field
        super().__init__(message)


class NotFound(DosingError):
    """Animal, regimen, inventory item or co-sign request missing or inactive."""

    def __init__(self, model: str, object_id=None, reason: str = None):
        self.model = model
        self.object_id = object_id
        self.reason = reason or f"{model} '{object_id}' not found"
        super().__init__(self.reason)


class InventoryConflict(DosingError):
    """Inventory source cannot supply this dose.

    Raised for expired or wrong-medication sources (recoverable with
    allow_override) and for exhausted sources (not overridable).
    """

    def __init__(self, item_id, reason: str, overridable: bool = True):
        self.item_id = item_id
        self.reason = reason
        self.overridable = overridable
        super().__init__(reason)


class InvalidState(DosingError):
    """Operation not allowed in the current workflow state. Not retryable."""

    def __init__(self, state: str, reason: str = None):
        self.state = state
        self.reason = reason or f"Operation not allowed in state '{state}'"
        super().__init__(self.reason)


class TransientError(DosingError):
    """Temporary failure (network, timeout). The offline queue retries these."""
    pass
