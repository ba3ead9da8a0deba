"""Translation of backend SDK failures into ``BackendError``.

Each SDK family has a reader that knows where that SDK keeps the HTTP status,
the server's retry hint and whether the failure is transient:

- ``openai`` (OpenAI and Grok): ``APIConnectionError`` and its
  ``APITimeoutError`` subclass never reached a server and are transient;
  ``APIStatusError`` carries ``status_code`` and the raw response headers.
- ``google-genai`` (Gemini): ``errors.APIError`` carries ``code``, a
  canonical ``status`` such as ``RESOURCE_EXHAUSTED`` and the decoded error
  body in ``details``, where a ``google.rpc.RetryInfo`` entry may name a delay.

Failures no reader recognizes fall back to duck-typed attributes found along
the exception chain, so the retry layer never inspects SDK types itself.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import re
from typing import TYPE_CHECKING, Any

import httpx

from switchyard._http import RETRYABLE_STATUS_CODES
from switchyard.errors import BackendError, RateLimitError, _walk_exception_chain

if TYPE_CHECKING:
    from collections.abc import Callable

log = logging.getLogger(__name__)

_API_KEY_ENV_VARS = {
    "openai": "OPENAI_API_KEY",
    "grok": "XAI_API_KEY",
    "gemini": "GEMINI_API_KEY",
}

#: google.rpc.Code names that signal a transient condition.
_TRANSIENT_GOOGLE_STATUSES = frozenset(
    {"RESOURCE_EXHAUSTED", "UNAVAILABLE", "DEADLINE_EXCEEDED", "ABORTED"}
)

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)s\s*$")


@dataclass(frozen=True)
class Failure:
    """What a failed backend call tells us about retrying it."""

    status_code: int | None = None
    retry_after_s: float | None = None
    transient: bool = False


def _http_status(value: Any) -> int | None:
    return value if isinstance(value, int) and 100 <= value <= 599 else None


def _header(headers: Any, name: str) -> str | None:
    """Case-insensitive header lookup on httpx headers or a plain mapping."""
    if headers is None:
        return None
    value = headers.get(name)
    if value is None and isinstance(headers, dict):
        lowered = name.lower()
        value = next((v for k, v in headers.items() if k.lower() == lowered), None)
    return value if isinstance(value, str) else None


def retry_after_from_headers(headers: Any) -> float | None:
    """Seconds from ``retry-after-ms`` or numeric ``Retry-After`` headers."""
    for name, scale in (("retry-after-ms", 1000.0), ("Retry-After", 1.0)):
        raw = _header(headers, name)
        if raw is None:
            continue
        try:
            seconds = float(raw) / scale
        except ValueError:
            continue
        if seconds >= 0:
            return seconds
    return None


def google_retry_delay_s(details: Any) -> float | None:
    """Read the ``RetryInfo`` delay (``"retryDelay": "8s"``) from a Google error body."""
    if not isinstance(details, dict):
        return None
    error = details.get("error", details)
    entries = error.get("details") if isinstance(error, dict) else None
    if not isinstance(entries, list):
        return None
    for entry in entries:
        if not isinstance(entry, dict) or "RetryInfo" not in str(entry.get("@type", "")):
            continue
        m = _DURATION_RE.match(str(entry.get("retryDelay", "")))
        if m:
            return float(m.group(1))
    return None


def _openai_failure(exc: BaseException) -> Failure | None:
    import openai

    if isinstance(exc, openai.APIConnectionError):
        return Failure(transient=True)
    if not isinstance(exc, openai.APIStatusError):
        return None
    headers = getattr(exc.response, "headers", None)
    retry_after = retry_after_from_headers(headers)
    transient = exc.status_code in RETRYABLE_STATUS_CODES or retry_after is not None
    should_retry = _header(headers, "x-should-retry")
    if should_retry in {"true", "false"}:
        transient = should_retry == "true"
    return Failure(_http_status(exc.status_code), retry_after, transient)


def _genai_failure(exc: BaseException) -> Failure | None:
    from google.genai import errors

    if not isinstance(exc, errors.APIError):
        return None
    status_code = _http_status(exc.code)
    retry_after = google_retry_delay_s(exc.details)
    transient = (
        status_code in RETRYABLE_STATUS_CODES
        or exc.status in _TRANSIENT_GOOGLE_STATUSES
        or retry_after is not None
    )
    return Failure(status_code, retry_after, transient)


_SDK_READERS: dict[str, Callable[[BaseException], Failure | None]] = {
    "openai": _openai_failure,
    "grok": _openai_failure,
    "gemini": _genai_failure,
}


def extract_status_code(exc: BaseException) -> int | None:
    """First HTTP status found along the exception chain."""
    for e in _walk_exception_chain(exc):
        for value in (
            getattr(e, "status_code", None),
            getattr(e, "status", None),
            getattr(e, "code", None),
            getattr(getattr(e, "response", None), "status_code", None),
        ):
            status = _http_status(value)
            if status is not None:
                return status
    return None


def extract_retry_after_s(exc: BaseException) -> float | None:
    """First server-provided retry delay found along the exception chain."""
    for e in _walk_exception_chain(exc):
        value = getattr(e, "retry_after", None)
        if isinstance(value, (int, float)) and value >= 0:
            return float(value)
        delay = retry_after_from_headers(getattr(getattr(e, "response", None), "headers", None))
        if delay is None:
            delay = google_retry_delay_s(getattr(e, "details", None))
        if delay is not None:
            return delay
    return None


def classify_failure(exc: BaseException, provider: str) -> Failure:
    """Describe *exc* using the provider's SDK reader, else the chain attributes."""
    reader = _SDK_READERS.get(provider)
    if reader is not None:
        for e in _walk_exception_chain(exc):
            failure = reader(e)
            if failure is not None:
                return failure

    status_code = extract_status_code(exc)
    retry_after = extract_retry_after_s(exc)
    transport = any(
        isinstance(e, (httpx.TimeoutException, httpx.TransportError))
        for e in _walk_exception_chain(exc)
    )
    return Failure(
        status_code,
        retry_after,
        transport or retry_after is not None or status_code in RETRYABLE_STATUS_CODES,
    )


def _credentials_hint(provider: str, status_code: int | None, cause: str) -> str | None:
    mentions_key = "api key" in cause.lower() or "api_key" in cause.lower()
    if status_code in {401, 403} or (status_code == 400 and mentions_key):
        env_var = _API_KEY_ENV_VARS.get(provider, "the API key variable")
        return f"Check credentials/permissions (try setting {env_var} or Config.api_key)."
    return None


def wrap_provider_error(
    exc: BaseException,
    *,
    provider: str,
    phase: str,
    message: str | None = None,
    hint: str | None = None,
) -> BackendError:
    """Return a ``BackendError`` for *exc* carrying status and retry metadata.

    An existing ``BackendError`` is returned as-is with missing provider,
    phase and hint filled in. Cancellation is never wrapped.
    """
    if isinstance(exc, asyncio.CancelledError):
        raise exc

    if isinstance(exc, BackendError):
        exc.provider = exc.provider or provider
        exc.phase = exc.phase or phase
        exc.hint = exc.hint or hint
        return exc

    failure = classify_failure(exc, provider)
    cause = str(exc)
    log.debug(
        "%s %s failed: %s status=%s transient=%s",
        provider,
        phase,
        type(exc).__name__,
        failure.status_code,
        failure.transient,
    )

    text = message or f"{provider} {phase} failed"
    if failure.status_code is not None:
        text += f" (status={failure.status_code})"
    if cause:
        text += f": {cause}"
    err_cls = RateLimitError if failure.status_code == 429 else BackendError
    return err_cls(
        text,
        hint=hint or _credentials_hint(provider, failure.status_code, cause),
        retryable=failure.transient,
        status_code=failure.status_code,
        retry_after_s=failure.retry_after_s,
        provider=provider,
        phase=phase,
    )
