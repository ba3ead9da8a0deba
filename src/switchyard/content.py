"""Canonical content model shared by every backend adapter.

Messages, parts, requests and responses are plain frozen dataclasses. Each
provider translates *from* ``GenerationRequest`` and *to*
``GenerationResponse``; nothing downstream ever sees a backend-native shape.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import enum
from typing import TYPE_CHECKING, Any, Literal, Union

from switchyard.errors import ValidationError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from pydantic import BaseModel

Role = Literal["user", "model", "system"]

#: Opaque JSON payload: function arguments, function results, parameter schemas.
JSONValue = Union[
    None, bool, int, float, str, list["JSONValue"], dict[str, "JSONValue"]
]
JSONObject = dict[str, JSONValue]


@dataclass(frozen=True)
class TextPart:
    """Plain visible text."""

    text: str


@dataclass(frozen=True)
class FunctionCallPart:
    """A tool invocation requested by the model."""

    id: str
    name: str
    args: JSONObject = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name:
            raise ValidationError(
                "FunctionCallPart.name must be a non-empty string",
                hint="Every tool invocation needs the name of the tool to run.",
            )
        if self.args is None:
            object.__setattr__(self, "args", {})


@dataclass(frozen=True)
class FunctionResponsePart:
    """The result of a tool invocation, sent back to the model."""

    name: str
    response: JSONValue = None


@dataclass(frozen=True)
class ThoughtPart:
    """A reasoning fragment surfaced by the backend."""

    text: str


@dataclass(frozen=True)
class InlineDataPart:
    """Binary payload (image, PDF) carried inline."""

    mime_type: str
    data: bytes


Part = Union[TextPart, FunctionCallPart, FunctionResponsePart, ThoughtPart, InlineDataPart]


@dataclass(frozen=True)
class Message:
    """One conversation turn; ``parts`` are kept in reading order."""

    role: Role
    parts: tuple[Part, ...] = ()

    def __post_init__(self) -> None:
        if self.role not in ("user", "model", "system"):
            raise ValidationError(
                f"Unknown message role: {self.role!r}",
                hint="Roles are 'user', 'model' or 'system'.",
            )
        object.__setattr__(self, "parts", tuple(self.parts))

    @classmethod
    def user(cls, text: str) -> Message:
        return cls(role="user", parts=(TextPart(text),))

    @classmethod
    def model(cls, text: str) -> Message:
        return cls(role="model", parts=(TextPart(text),))

    @classmethod
    def system(cls, text: str) -> Message:
        return cls(role="system", parts=(TextPart(text),))

    @property
    def text(self) -> str:
        """Concatenated text parts, without separators."""
        return "".join(p.text for p in self.parts if isinstance(p, TextPart))


@dataclass(frozen=True)
class ToolDeclaration:
    """A tool the model may call; ``parameters`` is passed through as-is."""

    name: str
    description: str = ""
    parameters: JSONObject | None = None

    @classmethod
    def from_model(
        cls, name: str, model: type[BaseModel], *, description: str = ""
    ) -> ToolDeclaration:
        """Build a declaration whose parameters come from a pydantic model."""
        return cls(
            name=name,
            description=description or (model.__doc__ or "").strip(),
            parameters=model.model_json_schema(),
        )


@dataclass(frozen=True)
class GenerationRequest:
    """A backend-independent generation request."""

    model: str
    messages: tuple[Message, ...]
    system_instruction: Message | str | None = None
    tools: tuple[ToolDeclaration, ...] | None = None
    temperature: float | None = None
    max_output_tokens: int | None = None
    top_p: float | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "messages", tuple(self.messages))
        if self.tools is not None:
            object.__setattr__(self, "tools", tuple(self.tools))


class FinishReason(enum.Enum):
    """Terminal state of a generation call.

    Deliberately two-valued: richer backend vocabularies collapse to OTHER
    and the verbatim value is kept on ``GenerationResponse.raw_finish_reason``.
    """

    STOP = "stop"
    OTHER = "other"


@dataclass(frozen=True)
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(frozen=True)
class GenerationResponse:
    """A normalized reply, or one partial delta of a streamed reply.

    Deltas carry ``finish_reason=None`` until the terminal delta.
    """

    parts: tuple[Part, ...] = ()
    finish_reason: FinishReason | None = None
    usage: Usage | None = None
    raw_finish_reason: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "parts", tuple(self.parts))

    @property
    def text(self) -> str:
        return "".join(p.text for p in self.parts if isinstance(p, TextPart))

    @property
    def function_calls(self) -> list[FunctionCallPart]:
        return [p for p in self.parts if isinstance(p, FunctionCallPart)]

    @property
    def thoughts(self) -> list[ThoughtPart]:
        return [p for p in self.parts if isinstance(p, ThoughtPart)]


def map_finish_reason(raw: Any) -> FinishReason:
    """Collapse a backend finish reason into the canonical enum.

    Accepts strings and enum members (``STOP``, ``"stop"``,
    ``FinishReason.STOP``); anything that is not a normal stop is OTHER.
    """
    value = getattr(raw, "name", raw)
    if isinstance(value, str) and value.lower() == "stop":
        return FinishReason.STOP
    return FinishReason.OTHER


def raw_finish_reason(raw: Any) -> str | None:
    """Return a stable string for a backend finish reason, if any."""
    if raw is None:
        return None
    value = getattr(raw, "name", raw)
    return value if isinstance(value, str) else str(value)


def render_part_as_text(part: Part) -> str:
    """Render one part as descriptive text for text-only backends.

    Lossy and one-directional: structured calls and results become prose that
    cannot be parsed back into their original shape.
    """
    if isinstance(part, TextPart):
        return part.text
    if isinstance(part, FunctionResponsePart):
        return f"Function {part.name} executed"
    if isinstance(part, FunctionCallPart):
        return f"Calling function {part.name}"
    return ""


def render_parts_as_text(parts: Iterable[Part]) -> str:
    """Join the non-empty text renderings of *parts* with single spaces."""
    return " ".join(t for t in (render_part_as_text(p) for p in parts) if t)
