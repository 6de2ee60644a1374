"""Error taxonomy for record-store traffic and local validation.

Every failure the data layer can produce is a ``FetchError``. The subclass
decides how the failure is treated:

- ``AuthError`` (401): never retried; the whole dashboard drops to "please log in".
- ``ValidationError`` (400 or local pre-flight): never retried; carries field messages.
- ``NotFoundCondition`` (404): a legitimate empty state, not a failure banner.
- ``RateLimitError`` (429): never retried; carries the server's Retry-After.
- ``TransientServerError`` (5xx, network, timeout): retried with backoff.
- ``ParseError`` (malformed JSON): never retried.
"""

from __future__ import annotations


class FetchError(Exception):
    """Base error for any failed record-store call."""

    retryable = False
    user_message = "Something went wrong. Please try again."

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        # Error text the record store sent back, when it sent any
        self.server_message: str | None = None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(status={self.status!r}, message={self.message!r})"


class AuthError(FetchError):
    user_message = "Please log in."


class ValidationError(FetchError):
    user_message = "Some fields are invalid."

    def __init__(
        self,
        message: str,
        status: int | None = 400,
        fields: dict[str, str] | None = None,
    ) -> None:
        super().__init__(message, status)
        self.fields = fields or {}


class NotFoundCondition(FetchError):
    user_message = "Not currently participating."


class RateLimitError(FetchError):
    user_message = "Too many requests. Try again in a few moments."

    def __init__(self, message: str, status: int | None = 429, retry_after: float | None = None) -> None:
        super().__init__(message, status)
        self.retry_after = retry_after


class TransientServerError(FetchError):
    retryable = True
    user_message = "The server is having trouble. Please try again."


class ParseError(FetchError):
    user_message = "Invalid response from server."


def error_for_status(status: int, message: str, retry_after: float | None = None) -> FetchError:
    """Map a non-2xx HTTP status to the matching error type."""
    if status == 401:
        return AuthError(message, status)
    if status == 400:
        return ValidationError(message, status)
    if status == 404:
        return NotFoundCondition(message, status)
    if status == 429:
        return RateLimitError(message, status, retry_after=retry_after)
    if status >= 500:
        return TransientServerError(message, status)
    return FetchError(message, status)
