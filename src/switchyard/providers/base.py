"""Provider protocol: the capability set every backend adapter offers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from switchyard.cancellation import CancellationToken
    from switchyard.content import GenerationRequest, GenerationResponse


@dataclass(frozen=True)
class ProviderCapabilities:
    """Feature flags exposed by providers."""

    streaming: bool = True
    native_token_count: bool = False
    embeddings: bool = False
    native_tool_calls: bool = True
    #: Tool calls may arrive encoded in the reply text.
    text_tool_calls: bool = False


@runtime_checkable
class Provider(Protocol):
    """Generate, stream, count tokens and embed through one backend."""

    name: str

    async def generate_content(
        self,
        request: GenerationRequest,
        *,
        cancel: CancellationToken | None = None,
    ) -> GenerationResponse:
        """Generate a complete response."""
        ...

    def generate_content_stream(
        self,
        request: GenerationRequest,
        *,
        cancel: CancellationToken | None = None,
    ) -> AsyncIterator[GenerationResponse]:
        """Lazily yield partial responses; each carries at least one part."""
        ...

    async def count_tokens(self, request: GenerationRequest) -> int:
        """Count (or estimate) the prompt tokens of *request*."""
        ...

    async def embed_content(self, text: str, *, model: str | None = None) -> list[float]:
        """Return an embedding vector or raise UnsupportedOperation."""
        ...

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Feature capabilities of this backend."""
        ...

    async def aclose(self) -> None:
        """Release SDK client resources."""
        ...
