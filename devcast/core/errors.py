"""
Error taxonomy for DevCast.

Every error raised by the pipeline derives from DevCastError. Upstream
failures are split into TransientError (retried with backoff) and
TerminalUpstreamError (never retried).
"""
from datetime import datetime
from typing import Optional


class DevCastError(Exception):
    """Base class for all DevCast errors."""


class ConfigurationError(DevCastError):
    """Missing credentials or configuration. Fatal at construction time."""


class ValidationError(DevCastError):
    """Malformed input or an illegal request."""


class PayloadValidationError(ValidationError):
    """An inbound webhook payload is missing required fields."""


class CommandError(ValidationError):
    """A chat command could not be parsed."""


class PreconditionError(ValidationError):
    """An operation was invoked on content in the wrong state."""


class InvalidTransitionError(PreconditionError):
    """A content status transition that the lattice does not allow."""

    def __init__(self, content_id: str, current: str, target: str):
        self.content_id = content_id
        self.current = current
        self.target = target
        super().__init__(f"Cannot move content {content_id} from {current} to {target}")


class AuthorizationError(DevCastError):
    """Webhook signature did not validate."""


class ContentAccessError(DevCastError):
    """
    Content is missing or belongs to another user.

    Both cases carry the same message so callers cannot probe for ids.
    """

    def __init__(self, content_id: str):
        self.content_id = content_id
        super().__init__("Content not found or not permitted")


class TransientError(DevCastError):
    """Retryable upstream failure (network reset, timeout, 5xx, 429)."""


class RateLimitError(TransientError):
    """Upstream returned 429. ``reset_at`` is set when the upstream says when to retry."""

    def __init__(self, message: str = "Rate limited", reset_at: Optional[datetime] = None):
        self.reset_at = reset_at
        super().__init__(message)


class UpstreamServerError(TransientError):
    """Upstream returned a 5xx."""

    def __init__(self, message: str = "Upstream server error", status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class UpstreamTimeoutError(TransientError):
    """Upstream did not answer within the configured timeout."""


class TerminalUpstreamError(DevCastError):
    """Non-retryable upstream failure."""


class ProviderAuthError(TerminalUpstreamError):
    """Upstream rejected our credentials."""


class ProviderRequestError(TerminalUpstreamError):
    """Upstream rejected the request as invalid."""


class PlatformRejectedError(TerminalUpstreamError):
    """The social platform refused the post (duplicate, policy, etc)."""


def is_retryable(error: BaseException) -> bool:
    """Whether an error should be retried with backoff."""
    if isinstance(error, TransientError):
        return True
    return isinstance(error, (ConnectionError, TimeoutError))
