"""
Error taxonomy for the Police Personnel Records Service

Every core operation reports failures through one of these exceptions.
The API layer maps them to a stable JSON envelope (see api/middleware.py).
"""

from typing import Any, Dict, List, Optional

# Diagnostic attributes exposed by asyncpg / psycopg2 exceptions
_DIAGNOSTIC_ATTRIBUTES = (
    "sqlstate",
    "pgcode",
    "detail",
    "hint",
    "position",
    "where",
    "schema_name",
    "table_name",
    "column_name",
    "data_type_name",
    "constraint_name",
)


class RecordServiceError(Exception):
    """Base class for failures surfaced to API callers.

    Attributes:
        message: Human-readable message
        code: Stable error code for programmatic handling
        status_code: HTTP status the API layer responds with
        fields: Field names involved in the failure (may be empty)
        details: Store-level diagnostics, only exposed outside production
    """

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(
        self,
        message: str,
        fields: Optional[List[str]] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.fields = list(fields or [])
        self.details = details or {}
        super().__init__(message)


class ValidationError(RecordServiceError):
    """Client input is missing or malformed. Nothing was written."""

    code = "VALIDATION_ERROR"
    status_code = 400


class ConflictError(RecordServiceError):
    """A unique field (CURP, CUIP or CUP) is already registered.

    Reported with HTTP 500, the status existing clients of the service expect
    for a rejected duplicate officer.
    """

    code = "CONFLICT"
    status_code = 500


class NotFoundError(RecordServiceError):
    """A referenced record does not exist."""

    code = "NOT_FOUND"
    status_code = 404


class PersistenceError(RecordServiceError):
    """The store was unreachable or rejected a statement unexpectedly."""

    code = "PERSISTENCE_ERROR"
    status_code = 500


def extract_diagnostics(exc: BaseException) -> Dict[str, Any]:
    """Collect store diagnostics from a SQLAlchemy or DBAPI exception.

    SQLAlchemy wraps driver errors in DBAPIError; the driver exception is in
    ``exc.orig``. With asyncpg the adapted error keeps the native exception
    as ``__cause__``, which carries the richer attributes.
    """
    details: Dict[str, Any] = {"type": type(exc).__name__}

    candidates = [exc]
    orig = getattr(exc, "orig", None)
    if orig is not None:
        candidates.append(orig)
        if orig.__cause__ is not None:
            candidates.append(orig.__cause__)

    for candidate in candidates:
        for attr in _DIAGNOSTIC_ATTRIBUTES:
            value = getattr(candidate, attr, None)
            if value is not None and attr not in details:
                details[attr] = value

    if orig is not None:
        details["driver_message"] = str(orig)
    return details


def persistence_error_from(exc: BaseException, message: str) -> PersistenceError:
    """Wrap a store exception in a PersistenceError with diagnostics."""
    return PersistenceError(message, details=extract_diagnostics(exc))
