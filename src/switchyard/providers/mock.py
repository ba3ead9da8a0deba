"""Mock provider for testing."""

from __future__ import annotations

from typing import TYPE_CHECKING

from switchyard.cancellation import check_cancelled, is_cancelled
from switchyard.content import FinishReason, GenerationResponse, TextPart, Usage
from switchyard.errors import UnsupportedOperation
from switchyard.providers._translate import estimate_request_tokens, prepare_turns
from switchyard.providers.base import ProviderCapabilities
from switchyard.providers.toolcalls import (
    StreamingToolCallExtractor,
    ToolCallIdFactory,
    extract_tool_calls,
)
from switchyard.tokens import estimate_tokens

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from switchyard.cancellation import CancellationToken
    from switchyard.content import GenerationRequest, Part


class MockProvider:
    """Mock provider for testing without API calls.

    Replies with a fixed ``reply`` when given, otherwise echoes the last user
    turn. Reply text goes through the same embedded tool-call extraction as
    a text-encoding backend, so scripted replies can exercise tool calls.
    """

    name = "mock"

    def __init__(self, reply: str | None = None, *, chunk_size: int = 8) -> None:
        self.reply = reply
        self.chunk_size = max(1, chunk_size)

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return supported feature flags."""
        return ProviderCapabilities(
            streaming=True,
            native_token_count=False,
            embeddings=False,
            native_tool_calls=False,
            text_tool_calls=True,
        )

    def _reply_text(self, request: GenerationRequest) -> str:
        prepared = prepare_turns(request)
        if self.reply is not None:
            return self.reply
        last_user = next((m for m in reversed(prepared.turns) if m.role == "user"), None)
        text = last_user.text if last_user is not None else ""
        return f"echo: {text[:100]}"

    def _usage(self, request: GenerationRequest, reply: str) -> Usage:
        prompt = estimate_request_tokens(request)
        completion = estimate_tokens(reply)
        return Usage(
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=prompt + completion,
        )

    async def generate_content(
        self,
        request: GenerationRequest,
        *,
        cancel: CancellationToken | None = None,
    ) -> GenerationResponse:
        """Return a deterministic mock response."""
        check_cancelled(cancel)
        reply = self._reply_text(request)
        extraction = extract_tool_calls(reply, ToolCallIdFactory("mock"))
        parts: list[Part] = []
        if extraction.text:
            parts.append(TextPart(extraction.text))
        parts.extend(extraction.calls)
        return GenerationResponse(
            parts=tuple(parts),
            finish_reason=FinishReason.STOP,
            usage=self._usage(request, reply),
            raw_finish_reason="stop",
        )

    async def generate_content_stream(
        self,
        request: GenerationRequest,
        *,
        cancel: CancellationToken | None = None,
    ) -> AsyncIterator[GenerationResponse]:
        """Stream the reply in ``chunk_size`` pieces."""
        reply = self._reply_text(request)
        extractor = StreamingToolCallExtractor(ToolCallIdFactory("mock"))
        held: tuple[Part, ...] = ()
        for start in range(0, len(reply), self.chunk_size):
            if is_cancelled(cancel):
                return
            extraction = extractor.feed(reply[start : start + self.chunk_size])
            parts: list[Part] = []
            if extraction.text:
                parts.append(TextPart(extraction.text))
            parts.extend(extraction.calls)
            if not parts:
                continue
            if held:
                yield GenerationResponse(parts=held)
            held = tuple(parts)

        extraction = extractor.finish()
        parts = list(held)
        if extraction.text:
            parts.append(TextPart(extraction.text))
        parts.extend(extraction.calls)
        if parts:
            yield GenerationResponse(
                parts=tuple(parts),
                finish_reason=FinishReason.STOP,
                usage=self._usage(request, reply),
                raw_finish_reason="stop",
            )

    async def count_tokens(self, request: GenerationRequest) -> int:
        return estimate_request_tokens(request)

    async def embed_content(self, text: str, *, model: str | None = None) -> list[float]:  # noqa: ARG002
        raise UnsupportedOperation(
            "Embeddings are not supported by the mock backend",
            provider="mock",
            operation="embed_content",
        )

    async def aclose(self) -> None:
        return None
