"""Exception hierarchy for castor."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator


class CastorError(Exception):
    """Base exception for all castor errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(CastorError):
    """Configuration validation or resolution failed."""


class UnsupportedOperationError(CastorError):
    """The called operation has no Anthropic equivalent.

    Raised before any network I/O. Callers feature-detect by catching this
    class; ``operation`` names what was called and ``alternative`` (when set)
    names the supported replacement.
    """

    def __init__(
        self,
        operation: str,
        *,
        alternative: str | None = None,
        hint: str | None = None,
    ) -> None:
        message = f"{operation} is not supported by the Anthropic backend"
        if alternative:
            message = f"{message}; use {alternative} instead"
        super().__init__(message, hint=hint)
        self.operation = operation
        self.alternative = alternative


class ValidationError(CastorError):
    """A request cannot be translated (e.g. no messages left after filtering)."""


class FormatError(CastorError):
    """Malformed input data such as an invalid image data URL."""


class AuthError(CastorError):
    """OAuth token exchange or refresh failed.

    ``body`` carries the upstream response body verbatim.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.status_code = status_code
        self.body = body


class APIError(CastorError):
    """API call failed.

    Carries retry metadata so callers can decide on retries without
    substring matching.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        retryable: bool | None = None,
        status_code: int | None = None,
        retry_after_s: float | None = None,
        provider: str | None = None,
        phase: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.retryable = retryable
        self.status_code = status_code
        self.retry_after_s = retry_after_s
        self.provider = provider
        self.phase = phase


class RateLimitError(APIError):
    """Rate limit exceeded (HTTP 429)."""


class StreamError(APIError):
    """The backend reported an error in the middle of a stream."""


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)
