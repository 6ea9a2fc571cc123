"""Careline Core -- errors, logging, settings, cache and notifications.

Every execution component depends on this layer and nothing here depends
on the execution layer.

Architecture::

    errors.py          CarelineError hierarchy, is_non_retryable,
                       classify_backend_error, categorize_error
    logging.py         configure_logging, get_logger, LogContext
    settings.py        ResilienceSettings, get_settings
    cache.py           QueryCache protocol, InMemoryQueryCache
    notifications.py   Notification, Notifier protocol, describe_failure
"""

from careline.core.cache import CacheKey, InMemoryQueryCache, QueryCache, key_matches, normalize_key
from careline.core.errors import (
    AuthError,
    BackendError,
    BusinessError,
    CarelineError,
    ErrorCategory,
    ErrorContext,
    MutationConflictError,
    NetworkError,
    UnknownError,
    ValidationError,
    categorize_error,
    classify_backend_error,
    is_network_error,
    is_non_retryable,
)
from careline.core.logging import LogContext, configure_logging, get_logger
from careline.core.notifications import (
    CollectingNotifier,
    LoggingNotifier,
    Notification,
    NotificationVariant,
    Notifier,
    NullNotifier,
    describe_failure,
)
from careline.core.settings import ResilienceSettings, get_settings

__all__ = [
    # cache
    "CacheKey",
    "QueryCache",
    "InMemoryQueryCache",
    "key_matches",
    "normalize_key",
    # errors
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
    "is_non_retryable",
    "is_network_error",
    "classify_backend_error",
    "categorize_error",
    # logging
    "configure_logging",
    "get_logger",
    "LogContext",
    # notifications
    "Notification",
    "NotificationVariant",
    "Notifier",
    "NullNotifier",
    "LoggingNotifier",
    "CollectingNotifier",
    "describe_failure",
    # settings
    "ResilienceSettings",
    "get_settings",
]
