"""
Error taxonomy shared across the package.

Completion API failures are classified into an ``ErrorKind``. Each kind has
its own ``ApiError`` subclass so callers can either catch by class or dispatch
on ``error.kind``. ``ApiResult`` carries the same classification as a value
for call sites that prefer not to use exceptions for control flow.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar


T = TypeVar("T")


class ReplyQueueError(Exception):
    """Base class for all errors raised by this package."""


class ParseError(ReplyQueueError):
    """Raised when feed text is not recognizable RSS/Atom."""


class FeedFetchError(ReplyQueueError):
    """Raised when a feed cannot be downloaded.

    Attributes:
        url: The feed URL
        status_code: HTTP status if a response was received
    """

    def __init__(self, message: str, url: str, status_code: int | None = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class StorageQuotaError(ReplyQueueError):
    """Raised when a value exceeds the per-item byte ceiling of a storage tier."""

    def __init__(self, key: str, size: int, limit: int):
        super().__init__(f"Value for '{key}' is {size} bytes, limit is {limit}")
        self.key = key
        self.size = size
        self.limit = limit


class ErrorKind(str, Enum):
    AUTH = "auth"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    RATE_LIMIT = "rate_limit"
    SERVER = "server"
    NETWORK = "network"
    PROTOCOL = "protocol"


class ApiError(ReplyQueueError):
    """A classified completion API failure.

    Attributes:
        kind: The error classification
        status_code: HTTP status of the failing response, if any
        retryable: Whether the failure is transient
    """

    kind: ErrorKind = ErrorKind.PROTOCOL
    retryable: bool = False

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "kind": self.kind.value,
            "message": self.message,
            "status_code": self.status_code,
            "retryable": self.retryable,
        }
        return payload


class AuthError(ApiError):
    kind = ErrorKind.AUTH


class InsufficientBalanceError(ApiError):
    kind = ErrorKind.INSUFFICIENT_BALANCE

    def __init__(
        self,
        message: str,
        requested_tokens: int | None = None,
        available_tokens: int | None = None,
        status_code: int | None = 402,
    ):
        super().__init__(message, status_code)
        self.requested_tokens = requested_tokens
        self.available_tokens = available_tokens

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["requested_tokens"] = self.requested_tokens
        payload["available_tokens"] = self.available_tokens
        return payload


class RateLimitError(ApiError):
    kind = ErrorKind.RATE_LIMIT
    retryable = True

    def __init__(self, message: str, status_code: int | None = 429, retry_after: float | None = None):
        super().__init__(message, status_code)
        self.retry_after = retry_after


class ServerError(ApiError):
    kind = ErrorKind.SERVER
    retryable = True


class NetworkError(ApiError):
    kind = ErrorKind.NETWORK
    retryable = True


class ProtocolError(ApiError):
    kind = ErrorKind.PROTOCOL


# Errors that need user action and must never be masked by a fallback.
USER_ACTION_KINDS = frozenset({ErrorKind.AUTH, ErrorKind.INSUFFICIENT_BALANCE})


@dataclass
class ApiResult(Generic[T]):
    """Outcome of a completion API call: exactly one of value or error is set."""

    value: T | None = None
    error: ApiError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> ErrorKind | None:
        return self.error.kind if self.error is not None else None

    def unwrap(self) -> T:
        """Return the value or raise the carried error."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


def user_message(error: Exception) -> str:
    """Render an actionable, user-facing message for an error."""
    if isinstance(error, ParseError):
        return f"Not a valid RSS or Atom feed: {error}"
    if isinstance(error, FeedFetchError):
        return f"Could not fetch feed {error.url}: {error}"
    if not isinstance(error, ApiError):
        return str(error) or type(error).__name__

    if error.kind is ErrorKind.AUTH:
        return "Invalid or expired API key. Please re-enter your OpenRouter API key."
    if isinstance(error, InsufficientBalanceError):
        if error.requested_tokens is not None and error.available_tokens is not None:
            return (
                "Insufficient OpenRouter credits: the request needed up to "
                f"{error.requested_tokens} tokens but only {error.available_tokens} are affordable. "
                "Please add credits to your account."
            )
        return "Insufficient OpenRouter credits. Please add credits to your account."
    if error.kind is ErrorKind.RATE_LIMIT:
        return "Rate limit exceeded. Please try again later."
    if error.kind is ErrorKind.SERVER:
        return f"OpenRouter server error ({error.status_code}). Please try again later."
    if error.kind is ErrorKind.NETWORK:
        return "Network error. Please check your internet connection."
    return error.message
