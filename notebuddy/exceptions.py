"""
NoteBuddy Client - Custom Exception Hierarchy
==============================================

What:  Application-specific exceptions for every failure the client surfaces.
How:   Each exception carries a human-readable message (safe to show in the UI)
       and an optional context dict (logged, never shown). The `retryable`
       class attribute tells workflows whether an automatic retry may help.
Who:   Raised by services; caught by workflows and by the UI layer.

Exception Hierarchy:
    NoteBuddyError (base)
    ├── ValidationError           missing/invalid input, never retried
    │   └── PayloadTooLargeError  client-side size guard, never retried
    ├── BackendUnavailableError   health gate exhausted ("starting up")
    ├── SessionExpiredError       auth rejected after retries, forces re-login
    ├── TimeoutExceededError      per-call timeout after retries
    ├── NetworkError              transport failure or unreadable reply
    ├── ApiError                  non-2xx reply (retryable for 5xx, 408, 429)
    ├── TranscriptionFailedError  job failed on the backend or stalled
    └── WorkflowStateError        illegal state-machine transition
"""

from typing import Any, Dict, Optional


class NoteBuddyError(Exception):
    """
    Base exception for all NoteBuddy client errors.

    Attributes:
        message:  User-facing error description
        context:  Additional debug info (logged but NOT shown to the user)
    """

    retryable: bool = False

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(NoteBuddyError):
    """
    Raised when caller input fails validation before any request is made.

    When: empty YouTube link, empty note title, no recording, wrong file type.
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


class PayloadTooLargeError(ValidationError):
    """
    Raised when an upload exceeds its client-side size limit.

    The check happens before any network call, so an oversized blob never
    reaches the backend.
    """

    def __init__(
        self,
        size_bytes: int,
        limit_bytes: int,
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        size_mb = size_bytes / (1024 * 1024)
        limit_mb = limit_bytes / (1024 * 1024)
        message = f"File too large ({size_mb:.2f}MB). Maximum size is {limit_mb:.0f}MB."
        ctx = context or {}
        ctx.update({"size_bytes": size_bytes, "limit_bytes": limit_bytes})
        super().__init__(message=message, field=field, context=ctx)
        self.size_bytes = size_bytes
        self.limit_bytes = limit_bytes


class BackendUnavailableError(NoteBuddyError):
    """
    Raised when the health gate gave up waiting for the backend.

    Reported separately from NetworkError so the UI can say "the server is
    starting up, try again shortly" instead of a generic failure.
    """

    retryable = True

    def __init__(
        self,
        message: str = "Backend is still starting up. Please try again in a moment.",
        attempts: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if attempts is not None:
            ctx["attempts"] = attempts
        super().__init__(message=message, context=ctx)


class SessionExpiredError(NoteBuddyError):
    """
    Raised when there is no usable credential or the backend keeps rejecting it.

    Always propagates to the session layer, which clears stored credentials and
    routes the user back to login.
    """

    def __init__(
        self,
        message: str = "Your session has expired. Please log in again.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class TimeoutExceededError(NoteBuddyError):
    """Raised when a request timed out on every allowed attempt."""

    retryable = True

    def __init__(
        self,
        message: str = "Request timed out. The server might be slow to respond.",
        timeout: Optional[float] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if timeout is not None:
            ctx["timeout"] = timeout
        super().__init__(message=message, context=ctx)
        self.timeout = timeout


class NetworkError(NoteBuddyError):
    """Raised on transport failures (DNS, refused connection, reset) or a reply httpx cannot read."""

    retryable = True

    def __init__(
        self,
        message: str = "Network error. Please try again.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class ApiError(NoteBuddyError):
    """
    Raised when the backend answered but with a non-2xx status.

    `message` prefers the backend's own `error` field when it sent one.
    Only server-side failures (5xx), 408 and 429 are `retryable`. Any other
    4xx is the same on every attempt and is reported at once.
    """

    RETRYABLE_CLIENT_STATUSES = frozenset({408, 429})

    def __init__(
        self,
        status_code: int,
        message: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["status_code"] = status_code
        super().__init__(message=message or f"Request failed: {status_code}", context=ctx)
        self.status_code = status_code
        self.retryable = status_code >= 500 or status_code in self.RETRYABLE_CLIENT_STATUSES


class TranscriptionFailedError(NoteBuddyError):
    """
    Raised when a transcription job fails on the backend or stalls.

    Attributes:
        stalled: True when the polling ceiling elapsed without a terminal status
    """

    retryable = True

    def __init__(
        self,
        message: str = "Transcription failed",
        stalled: bool = False,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
        self.stalled = stalled


class WorkflowStateError(NoteBuddyError):
    """Raised when an operation is invoked in a stage that does not allow it."""

    def __init__(
        self,
        current: str,
        requested: str,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx.update({"current": current, "requested": requested})
        super().__init__(
            message=f"Cannot {requested} while the recording workflow is '{current}'",
            context=ctx,
        )
        self.current = current
        self.requested = requested
