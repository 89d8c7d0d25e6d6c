"""Map vendor SDK exceptions onto the modelgate error taxonomy.

Classification walks the exception chain instead of matching messages, so it
works for any SDK that exposes a status code or wraps an httpx error.
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx

from modelgate.config import API_KEY_ENV_VARS
from modelgate.errors import (
    APIError,
    AuthenticationError,
    RateLimitError,
    RequestTimeoutError,
    _walk_exception_chain,
)

# Timeout classes raised by the openai and anthropic SDKs.
_SDK_TIMEOUT_CLASS_NAMES = frozenset({"APITimeoutError"})


def extract_status_code(exc: BaseException) -> int | None:
    """Walk the exception chain to find an HTTP status code."""
    for e in _walk_exception_chain(exc):
        for attr in ("status_code", "status", "code"):
            value = getattr(e, attr, None)
            if isinstance(value, int) and not isinstance(value, bool) and 100 <= value <= 599:
                return value
        response = getattr(e, "response", None)
        value = getattr(response, "status_code", None)
        if isinstance(value, int) and 100 <= value <= 599:
            return value
    return None


def extract_retry_after_s(exc: BaseException) -> float | None:
    """Walk the exception chain to find a ``Retry-After`` delay in seconds."""
    for e in _walk_exception_chain(exc):
        value = getattr(e, "retry_after", None)
        if isinstance(value, (int, float)) and not isinstance(value, bool) and value >= 0:
            return float(value)

        response = getattr(e, "response", None)
        headers: Any = getattr(response, "headers", None)
        if headers is None:
            continue
        try:
            raw = headers.get("Retry-After")
        except (AttributeError, TypeError):
            raw = None
        if isinstance(raw, str) and raw.strip():
            try:
                seconds = float(raw)
            except ValueError:
                continue
            if seconds >= 0:
                return seconds
    return None


def is_timeout(exc: BaseException) -> bool:
    for e in _walk_exception_chain(exc):
        if isinstance(e, (httpx.TimeoutException, TimeoutError)):
            return True
        if type(e).__name__ in _SDK_TIMEOUT_CLASS_NAMES:
            return True
    return False


def _auth_hint(provider: str, status_code: int | None) -> str | None:
    if status_code not in {401, 403}:
        return None
    env_var = API_KEY_ENV_VARS.get(provider, "the provider API key")
    return f"Check credentials/permissions (try setting {env_var} or api_key=...)."


def map_provider_error(
    exc: BaseException,
    *,
    provider: str,
    phase: str,
    message: str | None = None,
) -> APIError:
    """Classify a vendor SDK exception.

    401 becomes ``AuthenticationError``, 429 ``RateLimitError`` (with
    ``retry_after_s`` when the vendor sent ``Retry-After``), timeouts
    ``RequestTimeoutError``, and anything else ``APIError``. Errors that are
    already ``APIError`` get missing context filled in and are returned as-is.
    """
    if isinstance(exc, asyncio.CancelledError):
        raise exc

    if isinstance(exc, APIError):
        if exc.provider is None:
            exc.provider = provider
        if exc.phase is None:
            exc.phase = phase
        return exc

    status_code = extract_status_code(exc)
    retry_after_s = extract_retry_after_s(exc)

    err_cls: type[APIError] = APIError
    if status_code == 401:
        err_cls = AuthenticationError
    elif status_code == 429:
        err_cls = RateLimitError
    elif status_code is None and is_timeout(exc):
        err_cls = RequestTimeoutError

    msg = message or f"{provider} {phase} failed"
    status_note = f" (status={status_code})" if isinstance(status_code, int) else ""
    cause = str(exc)
    return err_cls(
        f"{msg}{status_note}: {cause}" if cause else f"{msg}{status_note}",
        hint=_auth_hint(provider, status_code),
        status_code=status_code,
        retry_after_s=retry_after_s,
        provider=provider,
        phase=phase,
    )
