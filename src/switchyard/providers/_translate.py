"""Backend-independent request translation rules.

Every adapter runs its request through ``prepare_turns`` so the streaming and
non-streaming paths (and all backends) agree on which turns are sent.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from switchyard.content import Message, render_parts_as_text
from switchyard.errors import ValidationError
from switchyard.tokens import estimate_tokens

if TYPE_CHECKING:
    from switchyard.content import GenerationRequest, ToolDeclaration


@dataclass(frozen=True)
class PreparedTurns:
    """Conversation turns split from the system channel."""

    system_text: str | None
    turns: tuple[Message, ...]
    tools: tuple[ToolDeclaration, ...]


def validate_request(request: GenerationRequest) -> None:
    """Reject degenerate requests before any network normalization."""
    if not request.messages:
        raise ValidationError(
            "GenerationRequest.messages must not be empty",
            hint="Pass at least one Message, e.g. Message.user('Hello').",
        )
    if not isinstance(request.model, str) or not request.model:
        raise ValidationError("GenerationRequest.model must be a non-empty string")


def _system_instruction_text(request: GenerationRequest) -> str:
    instruction = request.system_instruction
    if instruction is None:
        return ""
    if isinstance(instruction, str):
        return instruction
    return render_parts_as_text(instruction.parts)


def prepare_turns(request: GenerationRequest) -> PreparedTurns:
    """Split system content out of the turn order and drop empty model turns."""
    validate_request(request)

    system_chunks: list[str] = []
    instruction = _system_instruction_text(request)
    if instruction:
        system_chunks.append(instruction)

    turns: list[Message] = []
    for message in request.messages:
        if message.role == "system":
            text = render_parts_as_text(message.parts)
            if text:
                system_chunks.append(text)
            continue
        if message.role == "model" and not render_parts_as_text(message.parts):
            continue
        turns.append(message)

    return PreparedTurns(
        system_text="\n\n".join(system_chunks) if system_chunks else None,
        turns=tuple(turns),
        tools=tuple(request.tools or ()),
    )


def estimate_request_tokens(request: GenerationRequest) -> int:
    """Estimator fallback for backends without a counting endpoint."""
    chunks: list[str] = []
    instruction = _system_instruction_text(request)
    if instruction:
        chunks.append(instruction)
    chunks.extend(render_parts_as_text(m.parts) for m in request.messages)
    return estimate_tokens(" ".join(c for c in chunks if c))
