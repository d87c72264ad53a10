"""
Structured error types for filerelay.

Every failure that crosses a component boundary is a :class:`RelayError`
carrying an :class:`ErrorKind`.  The transfer pipeline decides between
retrying, dropping and notifying by looking at the kind, never by parsing
messages.  Message matching survives only in :func:`classify_error`, as the
fallback for exceptions raised by code we do not own.

Manifesto:
    - **Typed Error Hierarchy:** One subclass per failure family
    - **Explicit Retry Semantics:** Each error knows if it's retryable
    - **Rich Context:** Errors carry item/asset metadata for logging
    - **Error Chaining:** Preserve original exceptions while adding context

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                         RelayError                               │
        │  (kind, retryable, retry_after, context, cause)                  │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  TransientError       ValidationError      AuthenticationError   │
        │  (retryable=True)     (VALIDATION)         (AUTH)                │
        │       │                                                          │
        │  TimeoutError         CircuitOpenError     UnsupportedFileError  │
        │  ConnectionResetError (CIRCUIT_OPEN)       (UNSUPPORTED_FILE)    │
        │  ComplexityBudgetError                                           │
        │  MissingPublicUrlError BusinessRuleError   PlatformAPIError      │
        │                        (BUSINESS_RULE)     (API)                 │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    >>> error = ComplexityBudgetError("Complexity budget exhausted")
    >>> error.kind
    <ErrorKind.COMPLEXITY_BUDGET: 'COMPLEXITY_BUDGET'>
    >>> error.retryable
    True

    >>> classify_error(RuntimeError("User not authenticated"))
    <ErrorKind.AUTH: 'AUTH'>

Guardrails:
    ❌ DON'T: Raise bare Exception from platform or transfer code
    ✅ DO: Raise the RelayError subclass matching the failure

    ❌ DON'T: Swallow the original exception
    ✅ DO: Pass it as cause= for error chaining

Tags:
    error-handling, exception-hierarchy, retry-logic, error-context
"""

from __future__ import annotations

import builtins
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx


class ErrorKind(str, Enum):
    """
    Failure families the transfer pipeline reacts to.

    Attributes:
        VALIDATION: Bad request payload or source value
        AUTH: Missing/invalid session or OAuth credential
        TIMEOUT: Network timeout against the platform or file host
        CONNECTION_RESET: Connection dropped mid-request
        MISSING_PUBLIC_URL: Asset has no signed URL yet
        COMPLEXITY_BUDGET: GraphQL query-cost quota exceeded
        CIRCUIT_OPEN: Call rejected by an open circuit
        UNSUPPORTED_FILE: Content type outside the allow-list
        BUSINESS_RULE: Platform refused the value (notify the user)
        API: Any other platform API error
        UNKNOWN: Uncategorized errors
    """

    VALIDATION = "VALIDATION"
    AUTH = "AUTH"

    # Transient, retried by the pipeline
    TIMEOUT = "TIMEOUT"
    CONNECTION_RESET = "CONNECTION_RESET"
    MISSING_PUBLIC_URL = "MISSING_PUBLIC_URL"
    COMPLEXITY_BUDGET = "COMPLEXITY_BUDGET"

    CIRCUIT_OPEN = "CIRCUIT_OPEN"
    UNSUPPORTED_FILE = "UNSUPPORTED_FILE"
    BUSINESS_RULE = "BUSINESS_RULE"
    API = "API"
    UNKNOWN = "UNKNOWN"


#: Kinds the pipeline keeps at the head of the queue and retries.
TRANSIENT_KINDS = frozenset(
    {
        ErrorKind.TIMEOUT,
        ErrorKind.CONNECTION_RESET,
        ErrorKind.MISSING_PUBLIC_URL,
        ErrorKind.COMPLEXITY_BUDGET,
    }
)

#: Kinds that no amount of retrying fixes; ``RetryStrategy`` re-raises them at once.
TERMINAL_KINDS = frozenset(
    {
        ErrorKind.VALIDATION,
        ErrorKind.AUTH,
        ErrorKind.CIRCUIT_OPEN,
        ErrorKind.UNSUPPORTED_FILE,
        ErrorKind.BUSINESS_RULE,
    }
)


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Known fields cover what the transfer code usually has at hand; anything
    else lands in ``metadata``.  ``to_dict()`` only emits fields that are set.
    """

    item_key: str | None = None
    scenario: str | None = None
    asset_id: str | None = None
    board_id: str | None = None
    column_id: str | None = None

    # Request context
    url: str | None = None
    http_status: int | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["item_key", "scenario", "asset_id", "board_id", "column_id",
                    "url", "http_status"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class RelayError(Exception):
    """
    Base exception for all filerelay errors.

    Subclasses set ``default_kind`` and ``default_retryable`` so call sites
    only pass a message and, when wrapping, the ``cause``.

    Examples:
        >>> error = RelayError("Something went wrong")
        >>> error.kind
        <ErrorKind.UNKNOWN: 'UNKNOWN'>
        >>> error.with_context(item_key="42").context.item_key
        '42'
    """

    default_kind: ErrorKind = ErrorKind.UNKNOWN
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind | None = None,
        retryable: bool | None = None,
        retry_after: float | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.kind = kind or self.default_kind
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.retry_after = retry_after
        self.context = context or ErrorContext()
        self.cause = cause

        # Chain the cause if provided
        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> RelayError:
        """
        Add context to this error (fluent API).

        Usage:
            raise PlatformAPIError("Upload failed").with_context(
                item_key="42", column_id="files"
            )
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "kind": self.kind.value,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, kind={self.kind.value})"


# =============================================================================
# REQUEST ERRORS (answered synchronously)
# =============================================================================


class ValidationError(RelayError):
    """
    Bad request payload or source column value.

    Never retryable - the request must be fixed.
    """

    default_kind = ErrorKind.VALIDATION

    def __init__(self, message: str, *, field: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.field = field

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.field:
            result["field"] = self.field
        return result


class AuthenticationError(RelayError):
    """Missing or invalid session token, or no usable OAuth credential."""

    default_kind = ErrorKind.AUTH


# =============================================================================
# TRANSIENT ERRORS (retried by the pipeline)
# =============================================================================


class TransientError(RelayError):
    """Temporary error that may succeed on retry."""

    default_kind = ErrorKind.TIMEOUT
    default_retryable = True


class TimeoutError(TransientError):
    """Operation timed out."""

    default_kind = ErrorKind.TIMEOUT


class ConnectionResetError(TransientError):
    """Connection was reset by the remote end."""

    default_kind = ErrorKind.CONNECTION_RESET


class ComplexityBudgetError(TransientError):
    """monday.com query-cost quota exceeded."""

    default_kind = ErrorKind.COMPLEXITY_BUDGET


class MissingPublicUrlError(TransientError):
    """The asset has no public URL yet."""

    default_kind = ErrorKind.MISSING_PUBLIC_URL

    def __init__(self, message: str = "Failed to get public URL", **kwargs: Any):
        super().__init__(message, **kwargs)


# =============================================================================
# PIPELINE ERRORS
# =============================================================================


class CircuitOpenError(RelayError):
    """Raised when a circuit is open and rejecting calls.

    ``retry_after`` holds the seconds left before the circuit half-opens.
    """

    default_kind = ErrorKind.CIRCUIT_OPEN

    def __init__(self, key: str, remaining: float, **kwargs: Any):
        self.key = key
        self.remaining = remaining
        super().__init__(
            f"Circuit breaker is open for {key}, {int(round(remaining))} seconds remaining",
            retry_after=remaining,
            **kwargs,
        )


class UnsupportedFileError(RelayError):
    """Downloaded content type is not in the allow-list."""

    default_kind = ErrorKind.UNSUPPORTED_FILE


class BusinessRuleError(RelayError):
    """The platform refused the value; the user gets a notification."""

    default_kind = ErrorKind.BUSINESS_RULE


class PlatformAPIError(RelayError):
    """Any other error reported by the platform API."""

    default_kind = ErrorKind.API


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


_MESSAGE_KINDS: list[tuple[str, ErrorKind]] = [
    ("not authenticated", ErrorKind.AUTH),
    ("complexity budget", ErrorKind.COMPLEXITY_BUDGET),
    ("failed to get public url", ErrorKind.MISSING_PUBLIC_URL),
    ("etimedout", ErrorKind.TIMEOUT),
    ("econnreset", ErrorKind.CONNECTION_RESET),
    ("value exceeded max value for column", ErrorKind.BUSINESS_RULE),
]


def classify_error(error: BaseException) -> ErrorKind:
    """Get the kind of an error.

    Structured kinds win; httpx and builtin network exceptions are mapped
    next; message matching is the last resort.
    """
    if isinstance(error, RelayError):
        return error.kind
    if isinstance(error, (httpx.TimeoutException, builtins.TimeoutError)):
        return ErrorKind.TIMEOUT
    if isinstance(error, (httpx.RemoteProtocolError, httpx.ReadError,
                          builtins.ConnectionResetError)):
        return ErrorKind.CONNECTION_RESET

    message = str(error).lower()
    for needle, kind in _MESSAGE_KINDS:
        if needle in message:
            return kind
    return ErrorKind.UNKNOWN


def is_retryable(error: BaseException) -> bool:
    """Check if the pipeline should keep a failed task at the head."""
    return classify_error(error) in TRANSIENT_KINDS


def is_terminal(error: BaseException) -> bool:
    """Check if retrying *error* is pointless."""
    return classify_error(error) in TERMINAL_KINDS


def get_retry_after(error: BaseException) -> float | None:
    """Get retry delay from error, if specified."""
    if isinstance(error, RelayError):
        return error.retry_after
    return None


__all__ = [
    "ErrorKind",
    "TRANSIENT_KINDS",
    "TERMINAL_KINDS",
    "ErrorContext",
    "RelayError",
    # Request
    "ValidationError",
    "AuthenticationError",
    # Transient
    "TransientError",
    "TimeoutError",
    "ConnectionResetError",
    "ComplexityBudgetError",
    "MissingPublicUrlError",
    # Pipeline
    "CircuitOpenError",
    "UnsupportedFileError",
    "BusinessRuleError",
    "PlatformAPIError",
    # Utilities
    "classify_error",
    "is_retryable",
    "is_terminal",
    "get_retry_after",
]
