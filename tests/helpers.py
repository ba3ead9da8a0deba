"""Test helpers (small, reusable doubles).

Fake SDK objects are plain namespaces shaped like the fields the adapters
read, so assertions never depend on MagicMock auto-attributes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import SimpleNamespace
from typing import Any


def usage(prompt: int = 3, completion: int = 5) -> SimpleNamespace:
    return SimpleNamespace(
        prompt_tokens=prompt, completion_tokens=completion, total_tokens=prompt + completion
    )


def native_call(
    call_id: str | None, name: str | None, arguments: str | None, *, index: int = 0
) -> SimpleNamespace:
    return SimpleNamespace(
        index=index,
        id=call_id,
        type="function",
        function=SimpleNamespace(name=name, arguments=arguments),
    )


def chat_completion(
    content: str | None = "",
    *,
    reasoning: str | None = None,
    tool_calls: list[SimpleNamespace] | None = None,
    finish_reason: str = "stop",
    usage_: SimpleNamespace | None = None,
) -> SimpleNamespace:
    message = SimpleNamespace(
        content=content, reasoning_content=reasoning, tool_calls=tool_calls
    )
    return SimpleNamespace(
        choices=[SimpleNamespace(message=message, finish_reason=finish_reason)],
        usage=usage_,
    )


def chat_chunk(
    content: str | None = None,
    *,
    reasoning: str | None = None,
    tool_calls: list[SimpleNamespace] | None = None,
    finish_reason: str | None = None,
    usage_: SimpleNamespace | None = None,
) -> SimpleNamespace:
    delta = SimpleNamespace(content=content, reasoning_content=reasoning, tool_calls=tool_calls)
    return SimpleNamespace(
        choices=[SimpleNamespace(delta=delta, finish_reason=finish_reason)],
        usage=usage_,
    )


def text_chunks(text: str, size: int) -> list[SimpleNamespace]:
    """Split *text* into content chunks with a terminal ``stop`` chunk."""
    chunks = [chat_chunk(text[i : i + size]) for i in range(0, len(text), size)]
    chunks.append(chat_chunk(finish_reason="stop"))
    return chunks


@dataclass
class FakeChatStream:
    """Async iterator over scripted chunks that records consumption and close()."""

    chunks: list[Any]
    pulled: int = 0
    closed: bool = False

    def __aiter__(self) -> FakeChatStream:
        return self

    async def __anext__(self) -> Any:
        if self.pulled >= len(self.chunks):
            raise StopAsyncIteration
        item = self.chunks[self.pulled]
        self.pulled += 1
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True


@dataclass
class FakeCompletions:
    """Stands in for ``client.chat.completions``."""

    script: list[Any] = field(default_factory=list)
    calls: list[dict[str, Any]] = field(default_factory=list)

    async def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        if kwargs.get("stream"):
            return item if isinstance(item, FakeChatStream) else FakeChatStream(item)
        return item


@dataclass
class FakeEmbeddings:
    vector: list[float] = field(default_factory=lambda: [0.1, 0.2, 0.3])
    calls: list[dict[str, Any]] = field(default_factory=list)

    async def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        return SimpleNamespace(data=[SimpleNamespace(embedding=list(self.vector))])


def fake_openai_client(
    completions: FakeCompletions, embeddings: FakeEmbeddings | None = None
) -> Any:
    async def close() -> None:
        return None

    return SimpleNamespace(
        chat=SimpleNamespace(completions=completions),
        embeddings=embeddings or FakeEmbeddings(),
        close=close,
    )


@dataclass
class FakeGeminiModels:
    """Stands in for ``client.aio.models``."""

    responses: list[Any] = field(default_factory=list)
    stream_chunks: list[Any] = field(default_factory=list)
    calls: list[dict[str, Any]] = field(default_factory=list)
    total_tokens: int = 7

    async def generate_content(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def generate_content_stream(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)

        async def _gen() -> Any:
            for chunk in self.stream_chunks:
                yield chunk

        return _gen()

    async def count_tokens(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        return SimpleNamespace(total_tokens=self.total_tokens)

    async def embed_content(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        return SimpleNamespace(embeddings=[SimpleNamespace(values=[0.5, 0.25])])


def gemini_part(
    text: str | None = None,
    *,
    thought: bool = False,
    function_call: SimpleNamespace | None = None,
) -> SimpleNamespace:
    return SimpleNamespace(text=text, thought=thought, function_call=function_call)


def gemini_response(
    parts: list[SimpleNamespace],
    *,
    finish_reason: Any = "STOP",
    usage_metadata: SimpleNamespace | None = None,
) -> SimpleNamespace:
    candidate = SimpleNamespace(
        content=SimpleNamespace(parts=parts), finish_reason=finish_reason
    )
    return SimpleNamespace(candidates=[candidate], usage_metadata=usage_metadata)


def fake_gemini_client(models: FakeGeminiModels) -> Any:
    return SimpleNamespace(aio=SimpleNamespace(models=models))
