"""Gemini provider implementation."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from switchyard.cancellation import is_cancelled
from switchyard.content import (
    FinishReason,
    FunctionCallPart,
    FunctionResponsePart,
    GenerationResponse,
    InlineDataPart,
    TextPart,
    ThoughtPart,
    Usage,
    map_finish_reason,
    raw_finish_reason,
)
from switchyard.errors import BackendError, UnsupportedOperation
from switchyard.providers._errors import wrap_provider_error
from switchyard.providers._translate import prepare_turns
from switchyard.providers.base import ProviderCapabilities
from switchyard.providers.toolcalls import ToolCallIdFactory
from switchyard.retry import RetryPolicy, retry_async
from switchyard.tokens import estimate_tokens

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from switchyard.cancellation import CancellationToken
    from switchyard.content import GenerationRequest, Message, Part

log = logging.getLogger(__name__)


def _as_int(value: Any) -> int:
    return value if isinstance(value, int) else 0


class GeminiProvider:
    """Google Gemini API provider."""

    name = "gemini"

    def __init__(
        self,
        api_key: str,
        *,
        retry: RetryPolicy | None = None,
        embedding_model: str | None = "gemini-embedding-001",
    ) -> None:
        """Create provider with an API key."""
        self.api_key = api_key
        self.embedding_model = embedding_model
        self._retry = retry or RetryPolicy()
        self._client: Any = None

    def _get_client(self) -> Any:
        """Lazy-initialize the Gemini client."""
        if self._client is None:
            try:
                from google import genai
            except ImportError as e:
                raise BackendError(
                    "google-genai package not installed",
                    hint="pip install google-genai",
                ) from e
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return supported feature flags."""
        return ProviderCapabilities(
            streaming=True,
            native_token_count=True,
            embeddings=True,
            native_tool_calls=True,
            text_tool_calls=False,
        )

    @staticmethod
    def _convert_part(part: Part) -> Any:
        """Convert a canonical part into a google-genai ``types.Part``."""
        from google.genai import types

        if isinstance(part, TextPart):
            return types.Part.from_text(text=part.text)
        if isinstance(part, ThoughtPart):
            return types.Part(text=part.text, thought=True)
        if isinstance(part, FunctionCallPart):
            return types.Part(
                function_call=types.FunctionCall(
                    id=part.id, name=part.name, args=dict(part.args)
                )
            )
        if isinstance(part, FunctionResponsePart):
            response = part.response
            if not isinstance(response, dict):
                response = {"result": response}
            return types.Part.from_function_response(name=part.name, response=response)
        if isinstance(part, InlineDataPart):
            return types.Part.from_bytes(data=part.data, mime_type=part.mime_type)
        raise TypeError(f"Unsupported part type: {type(part).__name__}")

    def _convert_turns(self, turns: tuple[Message, ...]) -> list[Any]:
        from google.genai import types

        return [
            types.Content(
                role="model" if turn.role == "model" else "user",
                parts=[self._convert_part(p) for p in turn.parts],
            )
            for turn in turns
        ]

    def _build_request(self, request: GenerationRequest) -> dict[str, Any]:
        """Translate a canonical request into ``generate_content`` kwargs."""
        from google.genai import types

        prepared = prepare_turns(request)

        config_kwargs: dict[str, Any] = {}
        if prepared.system_text:
            config_kwargs["system_instruction"] = prepared.system_text
        if request.temperature is not None:
            config_kwargs["temperature"] = request.temperature
        if request.max_output_tokens is not None:
            config_kwargs["max_output_tokens"] = request.max_output_tokens
        if request.top_p is not None:
            config_kwargs["top_p"] = request.top_p
        if prepared.tools:
            config_kwargs["tools"] = [
                types.Tool(
                    function_declarations=[
                        types.FunctionDeclaration(
                            name=t.name,
                            description=t.description,
                            parameters_json_schema=t.parameters,
                        )
                        for t in prepared.tools
                    ]
                )
            ]
            config_kwargs["tool_config"] = {"function_calling_config": {"mode": "AUTO"}}

        log.debug(
            "gemini request: model=%s turns=%d tools=%d",
            request.model,
            len(prepared.turns),
            len(prepared.tools),
        )
        return {
            "model": request.model,
            "contents": self._convert_turns(prepared.turns),
            "config": types.GenerateContentConfig(**config_kwargs),
        }

    async def generate_content(
        self,
        request: GenerationRequest,
        *,
        cancel: CancellationToken | None = None,
    ) -> GenerationResponse:
        """Generate content from the Gemini model."""
        kwargs = self._build_request(request)
        client = self._get_client()

        async def _call() -> Any:
            try:
                response = await client.aio.models.generate_content(**kwargs)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                raise wrap_provider_error(
                    e,
                    provider="gemini",
                    phase="generate",
                    message="Gemini generate failed",
                ) from e
            if not response:
                raise BackendError(
                    "Gemini returned an empty response.", provider="gemini", phase="generate"
                )
            return response

        response = await retry_async(_call, policy=self._retry, cancel=cancel)
        parts, finish_raw = self._parse_chunk(response, ToolCallIdFactory("gemini"))
        return GenerationResponse(
            parts=parts,
            finish_reason=map_finish_reason(finish_raw),
            usage=self._parse_usage(response),
            raw_finish_reason=raw_finish_reason(finish_raw),
        )

    @staticmethod
    def _parse_usage(response: Any) -> Usage | None:
        um = getattr(response, "usage_metadata", None)
        if um is None:
            return None
        return Usage(
            prompt_tokens=_as_int(getattr(um, "prompt_token_count", 0)),
            completion_tokens=_as_int(getattr(um, "candidates_token_count", 0)),
            total_tokens=_as_int(getattr(um, "total_token_count", 0)),
        )

    @staticmethod
    def _parse_chunk(
        response: Any, ids: Callable[[], str]
    ) -> tuple[tuple[Part, ...], Any]:
        """Return the first candidate's parts and its raw finish reason."""
        candidates = getattr(response, "candidates", None) or []
        if not candidates:
            feedback = getattr(response, "prompt_feedback", None)
            return (), getattr(feedback, "block_reason", None)

        candidate = candidates[0]
        content = getattr(candidate, "content", None)
        parts: list[Part] = []
        for part in getattr(content, "parts", None) or []:
            fc = getattr(part, "function_call", None)
            if fc is not None and getattr(fc, "name", None):
                parts.append(
                    FunctionCallPart(id=fc.id or ids(), name=fc.name, args=dict(fc.args or {}))
                )
                continue
            text = getattr(part, "text", None)
            if not isinstance(text, str) or not text:
                continue
            if getattr(part, "thought", False):
                parts.append(ThoughtPart(text))
            else:
                parts.append(TextPart(text))
        return tuple(parts), getattr(candidate, "finish_reason", None)

    async def generate_content_stream(
        self,
        request: GenerationRequest,
        *,
        cancel: CancellationToken | None = None,
    ) -> AsyncIterator[GenerationResponse]:
        """Yield normalized deltas from ``generate_content_stream``.

        Deltas are emitted one chunk behind so the last one can carry the
        finish reason and usage.
        """
        kwargs = self._build_request(request)
        if is_cancelled(cancel):
            return
        client = self._get_client()

        try:
            stream = await client.aio.models.generate_content_stream(**kwargs)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_provider_error(
                e, provider="gemini", phase="stream", message="Gemini stream failed"
            ) from e

        ids = ToolCallIdFactory("gemini")
        held: tuple[Part, ...] = ()
        finish_raw: Any = None
        usage: Usage | None = None

        iterator = stream.__aiter__()
        try:
            while True:
                if is_cancelled(cancel):
                    log.debug("gemini stream cancelled; closing transport")
                    return
                try:
                    chunk = await iterator.__anext__()
                except StopAsyncIteration:
                    break
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    raise wrap_provider_error(
                        e, provider="gemini", phase="stream", message="Gemini stream failed"
                    ) from e

                parts, chunk_finish = self._parse_chunk(chunk, ids)
                if chunk_finish is not None:
                    finish_raw = chunk_finish
                usage = self._parse_usage(chunk) or usage
                if not parts:
                    continue
                if held:
                    yield GenerationResponse(parts=held)
                held = parts

            if held:
                yield GenerationResponse(
                    parts=held,
                    finish_reason=(
                        map_finish_reason(finish_raw)
                        if finish_raw is not None
                        else FinishReason.OTHER
                    ),
                    usage=usage,
                    raw_finish_reason=raw_finish_reason(finish_raw),
                )
        finally:
            close = getattr(stream, "aclose", None)
            if callable(close):
                await close()

    async def count_tokens(self, request: GenerationRequest) -> int:
        """Count prompt tokens with the native endpoint.

        The counting endpoint takes no system instruction, so system text is
        estimated and added.
        """
        if not request.messages:
            return 0
        prepared = prepare_turns(request)
        contents = self._convert_turns(prepared.turns)
        client = self._get_client()

        async def _call() -> Any:
            try:
                return await client.aio.models.count_tokens(
                    model=request.model, contents=contents
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                raise wrap_provider_error(e, provider="gemini", phase="count_tokens") from e

        response = await retry_async(_call, policy=self._retry)
        return _as_int(getattr(response, "total_tokens", 0)) + estimate_tokens(
            prepared.system_text or ""
        )

    async def embed_content(self, text: str, *, model: str | None = None) -> list[float]:
        """Embed *text* with the Gemini embedding model."""
        model = model or self.embedding_model
        if not model:
            raise UnsupportedOperation(
                "No embedding model configured for gemini",
                hint="Pass model=... or Config(embedding_model=...).",
                provider="gemini",
                operation="embed_content",
            )
        client = self._get_client()
        try:
            response = await client.aio.models.embed_content(model=model, contents=text)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_provider_error(e, provider="gemini", phase="embed") from e
        embeddings = getattr(response, "embeddings", None) or []
        if not embeddings:
            raise BackendError(
                "Gemini returned no embeddings", provider="gemini", phase="embed"
            )
        return list(embeddings[0].values or [])

    async def aclose(self) -> None:
        """Close underlying async client resources."""
        client = self._client
        if client is None:
            return
        self._client = None
        aio = getattr(client, "aio", None)
        close = getattr(aio, "aclose", None)
        if callable(close):
            await close()
