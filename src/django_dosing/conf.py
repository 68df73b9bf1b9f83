"""Django Dosing configuration.

All settings can be overridden in your Django settings.py.

Example:
    # settings.py
    DOSING_CO_SIGN_WINDOW_MINUTES = 10
    DOSING_AUDIT_EMITTER = 'django_dosing.audit.DatabaseAuditEmitter'
"""

from functools import lru_cache
from importlib import import_module

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured


DEFAULTS = {
    # Minutes a second caregiver has to co-sign a high-risk administration
    "CO_SIGN_WINDOW_MINUTES": 10,
    # Lateness thresholds used to grade a scheduled administration
    "ON_TIME_MINUTES": 60,
    "LATE_MINUTES": 180,
    # Dotted path to the AuditEmitter subclass used when none is injected
    "AUDIT_EMITTER": "django_dosing.audit.LoggingAuditEmitter",
    # Transient failures tolerated per offline queue entry
    "OFFLINE_MAX_ATTEMPTS": 3,
    # Trailing window used by get_compliance()
    "COMPLIANCE_WINDOW_DAYS": 30,
}


def get_setting(name: str, default=None):
    """Get a setting with DOSING_ prefix, falling back to DEFAULTS."""
    if default is None:
        default = DEFAULTS.get(name)
    return getattr(settings, f"DOSING_{name}", default)


@lru_cache(maxsize=32)
def load_audit_emitter(dotted_path: str):
    """
    Import and instantiate an audit emitter from a dotted path.

    Raises ImproperlyConfigured for bad imports or non-subclass emitters.
    """
    from .audit import AuditEmitter

    try:
        module_path, class_name = dotted_path.rsplit(".", 1)
    except ValueError:
        raise ImproperlyConfigured(f"Invalid audit emitter path '{dotted_path}'")

    try:
        module = import_module(module_path)
    except ImportError as e:
        raise ImproperlyConfigured(f"Cannot import audit emitter module '{module_path}': {e}")

    emitter_class = getattr(module, class_name, None)
    if not isinstance(emitter_class, type) or not issubclass(emitter_class, AuditEmitter):
        raise ImproperlyConfigured(
            f"'{dotted_path}' must point to a subclass of AuditEmitter"
        )

    return emitter_class()


def get_audit_emitter():
    """Return the configured default audit emitter instance."""
    return load_audit_emitter(get_setting("AUDIT_EMITTER"))


def clear_emitter_cache():
    """Clear the emitter loading cache. Useful for testing."""
    load_audit_emitter.cache_clear()
