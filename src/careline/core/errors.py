"""
Structured error types and the remote-failure classifier.

Every failure that crosses the resilience layer ends up as one of five
categories. The category decides whether the retry orchestrator may try the
operation again and tells the presentation layer which message to show.

Manifesto:
    - **Typed taxonomy:** NETWORK, AUTH, VALIDATION, BUSINESS, UNKNOWN
    - **Explicit retry semantics:** Each error knows if it is retryable
    - **Backend codes stay at the edge:** ``classify_backend_error`` maps
      data-store codes onto the taxonomy once, callers never match codes
    - **Error chaining:** The raw failure is kept as ``cause``

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────┐
        │                      CarelineError                           │
        │        (category, retryable, context, cause)                 │
        ├─────────────────────────────────────────────────────────────┤
        │                                                              │
        │  NetworkError     AuthError        ValidationError           │
        │  (retryable)      (never)          (never)                   │
        │                                         │                    │
        │                                 MutationConflictError        │
        │                                                              │
        │  BusinessError    UnknownError                               │
        │  (retryable)      (retryable, treated as business)           │
        └─────────────────────────────────────────────────────────────┘

        BackendError  ── raw data-store failure (message, code, status)
              │
              └── classify_backend_error() ──► CarelineError subclass

Examples:
    >>> err = classify_backend_error(BackendError("duplicate key", code="23505"))
    >>> type(err).__name__, err.retryable
    ('ValidationError', False)

    >>> is_non_retryable(RuntimeError("Not found"))
    True

Guardrails:
    ❌ DON'T: Match backend error codes at call sites
    ✅ DO: Raise ``classify_backend_error(error)`` from the remote call

    ❌ DON'T: Mark validation or auth failures retryable
    ✅ DO: Let the class defaults decide

Tags:
    error-handling, exception-hierarchy, retry-logic, classifier, careline
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx


class ErrorCategory(str, Enum):
    """Error categories used for retry decisions and user-facing messages."""

    NETWORK = "NETWORK"          # Connectivity lost, probe failed, transport errors
    AUTH = "AUTH"                # Unauthorized, forbidden, expired session
    VALIDATION = "VALIDATION"    # Bad input, conflicts, unique violations
    BUSINESS = "BUSINESS"        # Generic remote-operation failure
    UNKNOWN = "UNKNOWN"          # Unclassified


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Attributes:
        operation: Name of the operation that failed
        key: Cache key involved, for optimistic mutations
        step: Batch step name
        attempts: Number of attempts made before giving up
        code: Backend error code, if any
        metadata: Additional key-value pairs
    """

    operation: str | None = None
    key: Any = None
    step: str | None = None
    attempts: int | None = None
    code: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result: dict[str, Any] = {}
        for name in ("operation", "key", "step", "attempts", "code"):
            value = getattr(self, name)
            if value is not None:
                result[name] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class CarelineError(Exception):
    """
    Base exception for all resilience-layer errors.

    Subclasses set ``default_category`` and ``default_retryable``; both can
    be overridden per instance when a specific backend code says otherwise.

    Examples:
        >>> error = CarelineError("Something went wrong")
        >>> error.category
        <ErrorCategory.UNKNOWN: 'UNKNOWN'>

        >>> error = BusinessError("Save failed").with_context(operation="update_patient")
        >>> error.context.operation
        'update_patient'
    """

    default_category: ErrorCategory = ErrorCategory.UNKNOWN
    default_retryable: bool = True

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> CarelineError:
        """Add context to this error (fluent API)."""
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


class NetworkError(CarelineError):
    """Connectivity lost or probe failed. Recoverable."""

    default_category = ErrorCategory.NETWORK
    default_retryable = True


class AuthError(CarelineError):
    """Unauthorized, forbidden or expired session. Never retried."""

    default_category = ErrorCategory.AUTH
    default_retryable = False


class ValidationError(CarelineError):
    """Bad input, conflict or unique violation. Never retried."""

    default_category = ErrorCategory.VALIDATION
    default_retryable = False


class MutationConflictError(ValidationError):
    """An optimistic mutation is already pending for the same cache key."""

    def __init__(self, key: Any):
        self.key = key
        super().__init__(
            f"A mutation is already pending for {key!r}",
            context=ErrorContext(key=key),
        )


class BusinessError(CarelineError):
    """Generic remote-operation failure. Retried up to the budget."""

    default_category = ErrorCategory.BUSINESS
    default_retryable = True


class UnknownError(CarelineError):
    """Unclassified failure, retried like a business error."""

    default_category = ErrorCategory.UNKNOWN
    default_retryable = True


class BackendError(Exception):
    """A raw failure as reported by the remote data store.

    Remote call wrappers raise this (or pass it to
    :func:`classify_backend_error`) instead of inventing message strings.

    Attributes:
        message: Backend-supplied message
        code: Backend error code (``PGRST116``, ``23505``, ...)
        status_code: HTTP status of the response, when known
        details: Extra backend payload
    """

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}


# =============================================================================
# CLASSIFICATION
# =============================================================================


NON_RETRYABLE_MARKERS = (
    "unauthorized",
    "forbidden",
    "not found",
    "bad request",
    "unprocessable",
    "conflict",
    "unique violation",
)

NON_RETRYABLE_STATUS_CODES = frozenset({400, 401, 403, 404, 409, 422})

NETWORK_MARKERS = ("fetch", "network", "connection")


def _status_code(error: BaseException) -> int | None:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    status = getattr(error, "status_code", None)
    return status if isinstance(status, int) else None


def is_non_retryable(error: BaseException) -> bool:
    """Return True when retrying cannot change the outcome."""
    if isinstance(error, CarelineError) and not error.retryable:
        return True
    if _status_code(error) in NON_RETRYABLE_STATUS_CODES:
        return True
    code = getattr(error, "code", None)
    if isinstance(code, str) and code in _BACKEND_CODES:
        return not classify_backend_error(error).retryable
    message = str(error).lower()
    return any(marker in message for marker in NON_RETRYABLE_MARKERS)


def is_network_error(error: BaseException) -> bool:
    """Return True for connectivity-level failures."""
    if isinstance(error, NetworkError):
        return True
    if isinstance(error, CarelineError):
        return False
    if isinstance(error, (httpx.TransportError, ConnectionError)):
        return True
    message = str(error).lower()
    return any(marker in message for marker in NETWORK_MARKERS)


# Backend code → (error class, user-facing message, retryable override)
_BACKEND_CODES: dict[str, tuple[type[CarelineError], str, bool | None]] = {
    "PGRST116": (BusinessError, "No data found", False),             # row not found
    "PGRST301": (AuthError, "Session expired. Please log in again.", None),  # JWT expired
    "42P01": (BusinessError, "Database configuration error", False),  # missing table
    "23505": (ValidationError, "This record already exists", None),    # unique violation
    "23503": (ValidationError, "Invalid reference data", None),        # foreign key violation
}


def classify_backend_error(error: BaseException | None) -> CarelineError:
    """Map a raw remote failure onto the error taxonomy.

    Already-classified errors are returned unchanged.

    Args:
        error: The exception raised by (or returned from) the remote call

    Returns:
        A :class:`CarelineError` subclass with the original chained as cause
    """
    if error is None:
        return BusinessError("Unknown database error")
    if isinstance(error, CarelineError):
        return error

    message = str(error) or "Database operation failed"
    code = getattr(error, "code", None)

    if isinstance(code, str) and code:
        if code in _BACKEND_CODES:
            cls, friendly, retryable = _BACKEND_CODES[code]
            return cls(friendly, retryable=retryable, cause=error, context=ErrorContext(code=code))
        return BusinessError(message, cause=error, context=ErrorContext(code=code))

    status = _status_code(error)
    if status in (401, 403):
        return AuthError(message, cause=error)
    if status in (400, 409, 422):
        return ValidationError(message, cause=error)

    if is_network_error(error):
        return NetworkError(message, cause=error)

    return BusinessError(message, cause=error)


def categorize_error(error: BaseException) -> ErrorCategory:
    """Get the presentation category of an error."""
    if isinstance(error, CarelineError):
        return error.category

    message = str(error).lower()
    if is_network_error(error):
        return ErrorCategory.NETWORK
    if "validation" in message or "invalid" in message:
        return ErrorCategory.VALIDATION
    if "unauthorized" in message or "forbidden" in message or "auth" in message:
        return ErrorCategory.AUTH
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "CarelineError",
    "NetworkError",
    "AuthError",
    "ValidationError",
    "MutationConflictError",
    "BusinessError",
    "UnknownError",
    "BackendError",
    "NON_RETRYABLE_MARKERS",
    "NON_RETRYABLE_STATUS_CODES",
    "is_non_retryable",
    "is_network_error",
    "classify_backend_error",
    "categorize_error",
]
