"""Mapping of Anthropic SDK and transport failures onto castor errors.

The SDK raises its own exception types; callers of castor only ever see
``APIError`` (or a subclass) with stable retry metadata attached.
"""

from __future__ import annotations

import asyncio

import httpx

from castor.errors import (
    APIError,
    AuthError,
    RateLimitError,
    StreamError,
    _walk_exception_chain,
)

RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 409, 429, 500, 502, 503, 504, 529})


def extract_status_code(exc: BaseException) -> int | None:
    """Walk the exception chain to find an HTTP status code."""
    for e in _walk_exception_chain(exc):
        for attr in ("status_code", "status"):
            value = getattr(e, attr, None)
            if isinstance(value, int) and 100 <= value <= 599:
                return value
        response = getattr(e, "response", None)
        value = getattr(response, "status_code", None)
        if isinstance(value, int) and 100 <= value <= 599:
            return value
    return None


def extract_retry_after_s(exc: BaseException) -> float | None:
    """Walk the exception chain to find a retry-after delay in seconds."""
    for e in _walk_exception_chain(exc):
        value = getattr(e, "retry_after", None)
        if isinstance(value, (int, float)) and value >= 0:
            return float(value)

        response = getattr(e, "response", None)
        headers = getattr(response, "headers", None)
        if headers is None:
            continue
        raw = headers.get("retry-after")
        if not isinstance(raw, str) or not raw.strip():
            continue
        try:
            seconds = float(raw)
        except ValueError:
            continue
        if seconds >= 0:
            return seconds
    return None


def _auth_hint(status_code: int | None) -> str | None:
    if status_code in {401, 403}:
        return (
            "Check credentials (set ANTHROPIC_API_KEY, or refresh the OAuth "
            "credentials file at CASTOR_CREDENTIALS_PATH)."
        )
    return None


def wrap_provider_error(
    exc: BaseException,
    *,
    phase: str,
    provider: str = "anthropic",
    message: str | None = None,
    hint: str | None = None,
) -> APIError:
    """Map SDK exceptions into APIError with stable retry metadata."""
    if isinstance(exc, asyncio.CancelledError):
        raise exc

    # Already wrapped: fill in missing context only.
    if isinstance(exc, APIError):
        if exc.provider is None:
            exc.provider = provider
        if exc.phase is None:
            exc.phase = phase
        if hint is not None and exc.hint is None:
            exc.hint = hint
        return exc

    status_code = extract_status_code(exc)
    retry_after_s = extract_retry_after_s(exc)

    retryable = retry_after_s is not None
    if isinstance(status_code, int) and status_code in RETRYABLE_STATUS_CODES:
        retryable = True
    else:
        for e in _walk_exception_chain(exc):
            if isinstance(e, (httpx.TimeoutException, httpx.RequestError)):
                retryable = True
                break

    msg = message or f"{provider} {phase} failed"

    err_cls: type[APIError] = APIError
    if status_code == 429:
        err_cls = RateLimitError
    elif phase == "stream":
        err_cls = StreamError

    status_note = f" (status={status_code})" if isinstance(status_code, int) else ""
    cause = str(exc)
    return err_cls(
        f"{msg}{status_note}: {cause}" if cause else f"{msg}{status_note}",
        hint=hint if hint is not None else _auth_hint(status_code),
        retryable=retryable,
        status_code=status_code,
        retry_after_s=retry_after_s,
        provider=provider,
        phase=phase,
    )


def find_auth_error(exc: BaseException) -> AuthError | None:
    """Return the token refresh failure buried in *exc*'s chain, if any.

    The SDK wraps exceptions raised inside the httpx auth flow into its own
    connection errors; the original ``AuthError`` is recovered from the chain.
    """
    for e in _walk_exception_chain(exc):
        if isinstance(e, AuthError):
            return e
    return None
