"""Exception hierarchy for Switchyard."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator


class SwitchyardError(Exception):
    """Base exception for all Switchyard errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(SwitchyardError):
    """Configuration validation or resolution failed."""


class ValidationError(SwitchyardError):
    """Caller input is malformed; no backend call was attempted."""


class ParseError(SwitchyardError):
    """A model-authored payload could not be parsed.

    Raised inside extraction only to be recorded as a warning; it never
    escapes a response normalization pass.
    """


class UnsupportedOperation(SwitchyardError):
    """The selected backend does not offer this capability.

    Distinct from BackendError so callers never confuse a missing feature
    with a transient failure.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        provider: str | None = None,
        operation: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.provider = provider
        self.operation = operation


class BackendError(SwitchyardError):
    """A backend call failed.

    Providers attach retry metadata so retry logic can stay bounded and
    deterministic without substring matching.
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


class RateLimitError(BackendError):
    """Rate limit exceeded (HTTP 429)."""


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
