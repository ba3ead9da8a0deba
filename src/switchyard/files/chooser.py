"""Model-assisted narrowing of a large candidate set."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Protocol

from switchyard.content import GenerationRequest, Message

if TYPE_CHECKING:
    from collections.abc import Sequence

    from switchyard.cancellation import CancellationToken
    from switchyard.providers.base import Provider

_NUMBER_RE = re.compile(r"\d+")


class ModelChooser(Protocol):
    """Ask a model one question and return its reply text."""

    async def choose(
        self, prompt: str, *, cancel: CancellationToken | None = None
    ) -> str: ...


class ProviderChooser:
    """``ModelChooser`` backed by a provider's ``generate_content``."""

    def __init__(
        self,
        provider: Provider,
        model: str,
        *,
        temperature: float = 0.1,
        max_output_tokens: int = 200,
    ) -> None:
        self.provider = provider
        self.model = model
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens

    async def choose(
        self, prompt: str, *, cancel: CancellationToken | None = None
    ) -> str:
        request = GenerationRequest(
            model=self.model,
            messages=(Message.user(prompt),),
            temperature=self.temperature,
            max_output_tokens=self.max_output_tokens,
        )
        response = await self.provider.generate_content(request, cancel=cancel)
        return response.text


def build_selection_prompt(
    previews: Sequence[str],
    *,
    min_selected: int,
    max_selected: int,
    query: str | None = None,
) -> str:
    """Build the one-shot prompt listing numbered previews."""
    lines = [
        f"Based on the user's query and these file previews, select the "
        f"{min_selected}-{max_selected} most relevant files by their numbers "
        f"(1-{len(previews)}).",
        "",
    ]
    if query:
        lines += [f"User query: {query}", ""]
    lines += ["File previews:", *previews, ""]
    lines.append(
        'Return only the numbers separated by commas (e.g., "1,5,12,25"). Focus on '
        "files that would best answer the user's question about the codebase flow."
    )
    return "\n".join(lines)


def parse_selection(text: str, *, upper: int = 100, cap: int = 20) -> list[int]:
    """Pull 1-based indices out of free-form text.

    Every integer in ``1..upper`` counts, in order of appearance, without
    duplicates and at most *cap* of them.

    Example:
        >>> parse_selection("I'd pick 2, 5 and 9")
        [2, 5, 9]
    """
    picked: list[int] = []
    for token in _NUMBER_RE.findall(text):
        number = int(token)
        if 1 <= number <= upper and number not in picked:
            picked.append(number)
            if len(picked) >= cap:
                break
    return picked
