"""
Domain errors for the MindScan backend.

Every failure the ingestion pipeline can surface is one of these. Routers
turn them into an HTTPException carrying the status code and the single
message; nothing here is retried.
"""

from typing import Optional

from sqlalchemy.exc import DataError, IntegrityError, StatementError


class MindScanError(Exception):
    """Base class; `status_code` is what the API answers with."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self):
        return self.message


class Unauthenticated(MindScanError):
    """Missing or invalid caller token."""

    status_code = 401


class ValidationError(MindScanError):
    """A required input field is missing or unusable."""

    status_code = 400


class UpstreamError(MindScanError):
    """The classifier answered non-2xx or could not be reached."""

    status_code = 502

    def __init__(self, message: str, upstream_status: Optional[int] = None):
        super().__init__(message)
        self.upstream_status = upstream_status


class MalformedUpstreamResponse(MindScanError):
    """The classifier answered 2xx but the body has the wrong shape."""

    status_code = 502


class MappingFailure(MindScanError):
    """No stage could be derived from a classifier label.

    Ingestion only logs this condition and stores the visit with a null
    stage; the exception exists for callers that want strict mapping.
    """

    status_code = 422

    def __init__(self, label: Optional[str]):
        super().__init__(f"Could not map classifier label {label!r} to a dementia stage")
        self.label = label


# Violated constraint -> (HTTP status, message shown to the caller)
STORAGE_CONSTRAINTS = {
    "foreign_key": (400, "Invalid patient reference: the patient does not exist"),
    "not_null": (400, "Missing required field on visit record"),
    "unique": (400, "Record conflicts with an existing row"),
    "invalid_enum": (500, "Invalid stage value: stage normalization produced a value outside the enum"),
    "unknown": (500, "Failed to store visit"),
}


class StorageError(MindScanError):
    """The store rejected a write; `constraint` names what was violated."""

    def __init__(self, constraint: str, detail: Optional[str] = None):
        if constraint not in STORAGE_CONSTRAINTS:
            constraint = "unknown"
        status_code, message = STORAGE_CONSTRAINTS[constraint]
        super().__init__(message)
        self.constraint = constraint
        self.status_code = status_code
        self.detail = detail


def classify_storage_error(exc: Exception) -> StorageError:
    """
    Map a SQLAlchemy failure onto a StorageError.

    Matches the driver messages of both SQLite and PostgreSQL, e.g.
    "FOREIGN KEY constraint failed" / "violates foreign key constraint".
    Enum columns validate on the Python side, so a bad stage arrives as a
    StatementError wrapping LookupError before the driver ever sees it.
    """
    text = str(getattr(exc, "orig", None) or exc).lower()

    if isinstance(exc, IntegrityError):
        if "foreign key" in text:
            return StorageError("foreign_key", text)
        if "not null" in text or "not-null" in text:
            return StorageError("not_null", text)
        if "unique" in text or "duplicate key" in text:
            return StorageError("unique", text)
        return StorageError("unknown", text)

    if isinstance(exc, DataError):
        if "enum" in text:
            return StorageError("invalid_enum", text)
        return StorageError("unknown", text)

    if isinstance(exc, StatementError) and isinstance(exc.orig, LookupError):
        return StorageError("invalid_enum", text)

    return StorageError("unknown", text)
