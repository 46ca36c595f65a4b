"""Core configuration, errors, logging, retry and throttling."""
from .config import Settings, settings
from .errors import (
    AuthorizationError,
    CommandError,
    ConfigurationError,
    ContentAccessError,
    DevCastError,
    InvalidTransitionError,
    PayloadValidationError,
    PlatformRejectedError,
    PreconditionError,
    ProviderAuthError,
    ProviderRequestError,
    RateLimitError,
    TerminalUpstreamError,
    TransientError,
    UpstreamServerError,
    UpstreamTimeoutError,
    ValidationError,
    is_retryable,
)
from .logging import configure_logging, get_event_logger
from .rate_limiter import Throttle
from .retry import RetryPolicy, retry_async, with_retry

__all__ = [
    "Settings",
    "settings",
    "AuthorizationError",
    "CommandError",
    "ConfigurationError",
    "ContentAccessError",
    "DevCastError",
    "InvalidTransitionError",
    "PayloadValidationError",
    "PlatformRejectedError",
    "PreconditionError",
    "ProviderAuthError",
    "ProviderRequestError",
    "RateLimitError",
    "TerminalUpstreamError",
    "TransientError",
    "UpstreamServerError",
    "UpstreamTimeoutError",
    "ValidationError",
    "is_retryable",
    "configure_logging",
    "get_event_logger",
    "Throttle",
    "RetryPolicy",
    "retry_async",
    "with_retry",
]
