"""OpenAI Chat Completions providers (OpenAI and the OpenAI-compatible xAI Grok API)."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import json
import logging
from typing import TYPE_CHECKING, Any

from switchyard._http import XAI_BASE_URL
from switchyard.cancellation import is_cancelled
from switchyard.content import (
    FinishReason,
    FunctionCallPart,
    GenerationResponse,
    TextPart,
    ThoughtPart,
    Usage,
    map_finish_reason,
    raw_finish_reason,
    render_parts_as_text,
)
from switchyard.errors import BackendError, UnsupportedOperation
from switchyard.providers._errors import wrap_provider_error
from switchyard.providers._translate import estimate_request_tokens, prepare_turns
from switchyard.providers.base import ProviderCapabilities
from switchyard.providers.toolcalls import (
    StreamingToolCallExtractor,
    ToolCallIdFactory,
    extract_tool_calls,
)
from switchyard.retry import RetryPolicy, retry_async

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from switchyard.cancellation import CancellationToken
    from switchyard.content import GenerationRequest, Part, ToolDeclaration

log = logging.getLogger(__name__)


def _as_int(value: Any) -> int:
    return value if isinstance(value, int) else 0


def _parse_usage(raw: Any) -> Usage | None:
    usage = getattr(raw, "usage", None)
    if usage is None:
        return None
    return Usage(
        prompt_tokens=_as_int(getattr(usage, "prompt_tokens", 0)),
        completion_tokens=_as_int(getattr(usage, "completion_tokens", 0)),
        total_tokens=_as_int(getattr(usage, "total_tokens", 0)),
    )


def _tool_definitions(tools: tuple[ToolDeclaration, ...]) -> list[dict[str, Any]]:
    definitions: list[dict[str, Any]] = []
    for tool in tools:
        function: dict[str, Any] = {"name": tool.name, "description": tool.description}
        if tool.parameters is not None:
            function["parameters"] = tool.parameters
        definitions.append({"type": "function", "function": function})
    return definitions


def _native_call(
    call_id: str | None, name: str | None, arguments: str | None, ids: Callable[[], str]
) -> FunctionCallPart | None:
    if not name:
        log.warning("Dropped native tool call without a function name (id=%s)", call_id)
        return None
    try:
        args = json.loads(arguments or "{}")
    except json.JSONDecodeError:
        log.warning("Native tool call %r carried malformed JSON arguments", name)
        args = {}
    if not isinstance(args, dict):
        log.warning("Native tool call %r arguments are not an object", name)
        args = {}
    return FunctionCallPart(id=call_id or ids(), name=name, args=args)


@dataclass
class _StreamedCall:
    """Native tool call fragments accumulated across stream chunks."""

    id: str | None = None
    name: str = ""
    arguments: str = ""


class OpenAIProvider:
    """OpenAI Chat Completions provider."""

    name = "openai"
    default_base_url: str | None = None

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str | None = None,
        retry: RetryPolicy | None = None,
        embedding_model: str | None = "text-embedding-3-small",
    ) -> None:
        """Initialize with an API key."""
        self.api_key = api_key
        self.base_url = base_url or self.default_base_url
        self.embedding_model = embedding_model
        self._retry = retry or RetryPolicy()
        self._client: Any = None

    def _get_client(self) -> Any:
        """Lazily initialize and return the OpenAI client."""
        if self._client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError as e:
                raise BackendError(
                    "openai package not installed",
                    hint="pip install openai",
                ) from e
            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url)
        return self._client

    @property
    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            streaming=True,
            native_token_count=False,
            embeddings=True,
            native_tool_calls=True,
            text_tool_calls=False,
        )

    def _build_request(self, request: GenerationRequest) -> dict[str, Any]:
        """Translate a canonical request into Chat Completions kwargs."""
        prepared = prepare_turns(request)

        messages: list[dict[str, Any]] = []
        if prepared.system_text:
            messages.append({"role": "system", "content": prepared.system_text})
        for turn in prepared.turns:
            role = "assistant" if turn.role == "model" else "user"
            messages.append({"role": role, "content": render_parts_as_text(turn.parts)})

        kwargs: dict[str, Any] = {"model": request.model, "messages": messages}
        if request.temperature is not None:
            kwargs["temperature"] = request.temperature
        if request.max_output_tokens is not None:
            kwargs["max_tokens"] = request.max_output_tokens
        if request.top_p is not None:
            kwargs["top_p"] = request.top_p
        if prepared.tools:
            kwargs["tools"] = _tool_definitions(prepared.tools)
            kwargs["tool_choice"] = "auto"

        log.debug(
            "%s request: model=%s messages=%d tools=%d",
            self.name,
            request.model,
            len(messages),
            len(prepared.tools),
        )
        return kwargs

    async def generate_content(
        self,
        request: GenerationRequest,
        *,
        cancel: CancellationToken | None = None,
    ) -> GenerationResponse:
        """Generate a complete response through ``chat.completions.create``."""
        kwargs = self._build_request(request)
        client = self._get_client()

        async def _call() -> Any:
            try:
                return await client.chat.completions.create(**kwargs)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                raise wrap_provider_error(
                    e,
                    provider=self.name,
                    phase="generate",
                    message=f"{self.name} generate failed",
                ) from e

        response = await retry_async(_call, policy=self._retry, cancel=cancel)
        return self._parse_response(response)

    def _parse_response(self, response: Any) -> GenerationResponse:
        """Normalize a ChatCompletion into a GenerationResponse."""
        choices = getattr(response, "choices", None) or []
        if not choices:
            raise BackendError(
                f"{self.name} returned no choices", provider=self.name, phase="generate"
            )
        choice = choices[0]
        message = choice.message
        ids = ToolCallIdFactory(self.name)

        parts: list[Part] = []
        reasoning = getattr(message, "reasoning_content", None)
        if isinstance(reasoning, str) and reasoning:
            parts.append(ThoughtPart(reasoning))

        content = message.content or ""
        embedded: list[FunctionCallPart] = []
        if self.capabilities.text_tool_calls:
            extraction = extract_tool_calls(content, ids)
            content, embedded = extraction.text, extraction.calls
        if content:
            parts.append(TextPart(content))
        parts.extend(embedded)

        native: list[FunctionCallPart] = []
        for tc in getattr(message, "tool_calls", None) or []:
            if getattr(tc, "type", "function") != "function":
                continue
            fn = tc.function
            call = _native_call(tc.id, fn.name, fn.arguments, ids)
            if call is not None:
                native.append(call)
        if native and embedded:
            log.debug(
                "%s reply carried %d native and %d text-encoded calls; keeping both",
                self.name,
                len(native),
                len(embedded),
            )
        parts.extend(native)

        return GenerationResponse(
            parts=tuple(parts),
            finish_reason=map_finish_reason(choice.finish_reason),
            usage=_parse_usage(response),
            raw_finish_reason=raw_finish_reason(choice.finish_reason),
        )

    async def generate_content_stream(
        self,
        request: GenerationRequest,
        *,
        cancel: CancellationToken | None = None,
    ) -> AsyncIterator[GenerationResponse]:
        """Yield normalized deltas as the backend streams chunks.

        One delta is held back so the terminal delta carries the finish
        reason, usage, and any native tool calls assembled from fragments.
        """
        kwargs = self._build_request(request)
        kwargs["stream"] = True
        kwargs["stream_options"] = {"include_usage": True}
        if is_cancelled(cancel):
            return
        client = self._get_client()

        try:
            stream = await client.chat.completions.create(**kwargs)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_provider_error(
                e, provider=self.name, phase="stream", message=f"{self.name} stream failed"
            ) from e

        ids = ToolCallIdFactory(self.name)
        extractor = (
            StreamingToolCallExtractor(ids) if self.capabilities.text_tool_calls else None
        )
        streamed_calls: dict[int, _StreamedCall] = {}
        held: tuple[Part, ...] = ()
        finish_raw: Any = None
        usage: Usage | None = None

        iterator = stream.__aiter__()
        try:
            while True:
                if is_cancelled(cancel):
                    log.debug("%s stream cancelled; closing transport", self.name)
                    return
                try:
                    chunk = await iterator.__anext__()
                except StopAsyncIteration:
                    break
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    raise wrap_provider_error(
                        e,
                        provider=self.name,
                        phase="stream",
                        message=f"{self.name} stream failed",
                    ) from e

                usage = _parse_usage(chunk) or usage
                choices = getattr(chunk, "choices", None) or []
                if not choices:
                    continue
                choice = choices[0]
                if choice.finish_reason is not None:
                    finish_raw = choice.finish_reason
                delta = choice.delta

                parts: list[Part] = []
                reasoning = getattr(delta, "reasoning_content", None)
                if isinstance(reasoning, str) and reasoning:
                    parts.append(ThoughtPart(reasoning))

                content = getattr(delta, "content", None) or ""
                if extractor is not None:
                    extraction = extractor.feed(content)
                    if extraction.text:
                        parts.append(TextPart(extraction.text))
                    parts.extend(extraction.calls)
                elif content:
                    parts.append(TextPart(content))

                for tc in getattr(delta, "tool_calls", None) or []:
                    index = tc.index if isinstance(tc.index, int) else len(streamed_calls)
                    pending = streamed_calls.setdefault(index, _StreamedCall())
                    if tc.id:
                        pending.id = tc.id
                    fn = getattr(tc, "function", None)
                    if fn is not None:
                        if fn.name:
                            pending.name += fn.name
                        if fn.arguments:
                            pending.arguments += fn.arguments

                if not parts:
                    continue
                if held:
                    yield GenerationResponse(parts=held)
                held = tuple(parts)

            parts = list(held)
            if extractor is not None:
                extraction = extractor.finish()
                if extraction.text:
                    parts.append(TextPart(extraction.text))
                parts.extend(extraction.calls)
            for index in sorted(streamed_calls):
                pending = streamed_calls[index]
                call = _native_call(pending.id, pending.name, pending.arguments, ids)
                if call is not None:
                    parts.append(call)
            if parts:
                yield GenerationResponse(
                    parts=tuple(parts),
                    finish_reason=(
                        map_finish_reason(finish_raw)
                        if finish_raw is not None
                        else FinishReason.OTHER
                    ),
                    usage=usage,
                    raw_finish_reason=raw_finish_reason(finish_raw),
                )
        finally:
            close = getattr(stream, "close", None)
            if callable(close):
                await close()

    async def count_tokens(self, request: GenerationRequest) -> int:
        """Estimate prompt tokens; Chat Completions has no counting endpoint."""
        return estimate_request_tokens(request)

    async def embed_content(self, text: str, *, model: str | None = None) -> list[float]:
        """Embed *text* with the embeddings endpoint."""
        model = model or self.embedding_model
        if not self.capabilities.embeddings or not model:
            raise UnsupportedOperation(
                f"Embeddings are not supported by the {self.name} backend",
                hint="Configure a provider with embedding support, such as 'gemini' or 'openai'.",
                provider=self.name,
                operation="embed_content",
            )
        client = self._get_client()
        try:
            response = await client.embeddings.create(model=model, input=text)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_provider_error(e, provider=self.name, phase="embed") from e
        return list(response.data[0].embedding)

    async def aclose(self) -> None:
        """Close underlying async client resources."""
        client = self._client
        if client is None:
            return
        self._client = None
        await client.close()


class GrokProvider(OpenAIProvider):
    """xAI Grok through its OpenAI-compatible endpoint.

    Grok models may encode tool calls in reply text, stream reasoning as
    ``reasoning_content``, and have no embeddings endpoint.
    """

    name = "grok"
    default_base_url = XAI_BASE_URL

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str | None = None,
        retry: RetryPolicy | None = None,
        embedding_model: str | None = None,
    ) -> None:
        super().__init__(
            api_key, base_url=base_url, retry=retry, embedding_model=embedding_model
        )

    @property
    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            streaming=True,
            native_token_count=False,
            embeddings=False,
            native_tool_calls=True,
            text_tool_calls=True,
        )
