"""
NoteFlow Backend - Custom Exception Hierarchy
===============================================

What:  Application-specific exceptions for every failure the intake pipeline,
       its providers and the record store can produce.
How:   Each exception carries a human-readable message and an optional
       context dict. Global handlers in main.py turn them into JSON error
       responses; the backfill job turns them into counters.
Who:   Raised by services and adapters; caught by handlers and the backfill job.

Exception Hierarchy:
    NoteFlowError (base)
    ├── ValidationError                 → 400 Bad Request
    ├── NotFoundError                   → 404 Not Found
    ├── DatabaseError                   → 500 Internal Server Error
    ├── FileStorageError                → 500 Internal Server Error
    ├── ConfigurationError              → startup failure / CLI exit 1
    ├── RecordStoreUnavailableError     → 503, aborts a backfill run
    ├── CompressionError
    │   ├── CompressorUnavailableError  (no working backend)
    │   └── CompressionFailedError      (backend ran, no usable output)
    ├── UploadError
    │   ├── UploadRejectedError         (remote refused the content, not retried)
    │   ├── UploadTransientError        (network / 5xx / timeout, caller may retry)
    │   └── UploadUnconfiguredError     (no credentials)
    └── IntakeError                     → terminal orchestrator outcome, kind-tagged

Adapter errors (compression, upload) never reach the HTTP layer directly:
the orchestrator converts them into an IntakeError whose `kind` tells the
route which status code to use.
"""

from enum import Enum
from typing import Any, Dict, Optional


class NoteFlowError(Exception):
    """
    Base exception for all NoteFlow application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned for 5xx errors)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(NoteFlowError):
    """
    Raised when client input fails validation.

    When:    Missing or malformed note metadata (title, subject, semester).
    HTTP:    400 Bad Request
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class NotFoundError(NoteFlowError):
    """Raised when a requested note does not exist. HTTP 404."""

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class DatabaseError(NoteFlowError):
    """
    Raised when a database operation fails unexpectedly.

    The message returned to the client is always generic; the SQL-level
    detail stays in server logs.
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class FileStorageError(NoteFlowError):
    """
    Raised when the local scratch area cannot be written.

    When:    Disk full, permission denied, scratch directory not writable.
    HTTP:    500 Internal Server Error
    """

    def __init__(
        self,
        message: str = "File storage operation failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class ConfigurationError(NoteFlowError):
    """
    Raised when required configuration is missing or inconsistent.

    When:    At startup (lifespan) or when the backfill CLI boots.
    Effect:  The HTTP service refuses to start; the CLI exits with status 1.
    """

    def __init__(
        self,
        message: str = "Configuration is incomplete",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class RecordStoreUnavailableError(NoteFlowError):
    """
    Raised when the Note Record Store cannot be reached at all.

    This is the only error that aborts a backfill run as a whole.
    """

    def __init__(
        self,
        message: str = "The note record store is unreachable",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


# ══════════════════════════════════════════════════════════════════════════
# Compression Adapter Errors
# ══════════════════════════════════════════════════════════════════════════


class CompressionError(NoteFlowError):
    """Base class for compression adapter failures."""


class CompressorUnavailableError(CompressionError):
    """
    No working compression backend is configured or reachable.

    Examples: no Ghostscript binary on PATH, iLovePDF keys missing,
    COMPRESSOR_BACKEND=none.
    """

    def __init__(
        self,
        message: str = "No PDF compressor is available",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class CompressionFailedError(CompressionError):
    """A backend ran but produced no usable output (crash, timeout, empty file)."""

    def __init__(
        self,
        message: str = "PDF compression failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


# ══════════════════════════════════════════════════════════════════════════
# Remote Object Store Errors
# ══════════════════════════════════════════════════════════════════════════


class UploadError(NoteFlowError):
    """Base class for remote object store failures."""

    retryable = False

    def __init__(
        self,
        message: str = "Remote storage upload failed",
        status_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if status_code is not None:
            ctx["status_code"] = status_code
        super().__init__(message=message, context=ctx)
        self.status_code = status_code


class UploadRejectedError(UploadError):
    """
    The remote store refused the content (size/type policy, bad request).

    Not retried: submitting the same bytes again yields the same answer.
    """


class UploadTransientError(UploadError):
    """
    Network failure, timeout, throttling or 5xx from the remote store.

    The pipeline does not retry on its own. Callers may re-submit the whole
    ingest, since every attempt mints a fresh object id.
    """

    retryable = True


class UploadUnconfiguredError(UploadError):
    """The remote store has no credentials."""

    def __init__(
        self,
        message: str = "Remote storage is not configured",
        status_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, status_code=status_code, context=context)


# ══════════════════════════════════════════════════════════════════════════
# Orchestrator Terminal Outcome
# ══════════════════════════════════════════════════════════════════════════


class IntakeFailure(str, Enum):
    """Terminal failure kinds of the upload orchestrator."""

    EMPTY_FILE = "empty_file"
    TOO_LARGE = "too_large"
    STILL_TOO_LARGE = "still_too_large"
    COMPRESSION_UNAVAILABLE = "compression_unavailable"
    UPLOAD_ERROR = "upload_error"


class IntakeError(NoteFlowError):
    """
    Raised by IntakeService.ingest when a file cannot be stored durably.

    Attributes:
        kind:   IntakeFailure tag the caller uses to pick a status code/counter
        cause:  The adapter error behind an UPLOAD_ERROR or
                COMPRESSION_UNAVAILABLE outcome, if any

    A caller that receives IntakeError must not create a note record.
    """

    def __init__(
        self,
        kind: IntakeFailure,
        message: str,
        cause: Optional[NoteFlowError] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["kind"] = kind.value
        super().__init__(message=message, context=ctx)
        self.kind = kind
        self.cause = cause

    @property
    def retryable(self) -> bool:
        """True when re-submitting the same file may succeed."""
        return isinstance(self.cause, UploadTransientError)
