"""Extraction of tool calls that backends encode inside reply text.

Some backends emit tool invocations as free text instead of (or next to) a
structured tool-call list. Three encodings are recognized, in precedence
order:

1. ``[function_call]{"action": NAME, "action_input": {...}}[/function_call]``
2. ``[tool_call: NAME for PARAM 'VALUE']`` (single or double quotes)
3. ``Calling function NAME`` (no arguments)

Each encoding is an independent matcher returning ``CallMatch`` records: the
call (or a warning when the payload is malformed), the marker's own span, and
the wider span stripped from visible text. A later matcher never claims text
already claimed by an earlier one.

``StreamingToolCallExtractor`` applies the same matchers to an accumulating
buffer and only finalizes text that no future chunk can change, so the
streamed text and calls equal those of a one-shot ``extract_tool_calls`` on
the whole reply.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import itertools
import json
import logging
import re
import secrets
from typing import TYPE_CHECKING, Any

from switchyard.content import FunctionCallPart
from switchyard.errors import ParseError

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

log = logging.getLogger(__name__)

BLOCK_OPEN = "[function_call]"
BLOCK_CLOSE = "[/function_call]"
INLINE_OPEN = "[tool_call:"
NATURAL_MARKER = "Calling function "

_BLOCK_RE = re.compile(r"\[function_call\](.*?)\[/function_call\]", re.DOTALL)
_INLINE_RE = re.compile(r"(\s*)(\[tool_call:([^\]]+)\])(\s*)")
_INLINE_GRAMMAR_RE = re.compile(r"""\s*(\w+)\s+for\s+(\w+)\s+['"]([^'"]+)['"]\s*""")
_NATURAL_RE = re.compile(r"(\s*)(Calling function (\w+))(\s*)")

DEFAULT_MAX_PENDING_CHARS = 65_536


class ToolCallIdFactory:
    """Issues call ids unique within one response or stream."""

    def __init__(self, prefix: str = "call") -> None:
        self._prefix = f"{prefix}_{secrets.token_hex(4)}"
        self._counter = itertools.count(1)

    def __call__(self) -> str:
        return f"{self._prefix}_{next(self._counter)}"


@dataclass(frozen=True)
class CallMatch:
    """One recognized marker occurrence."""

    #: Span removed from visible text (marker plus any absorbed whitespace).
    start: int
    end: int
    #: Span of the marker itself; used for ordering and precedence.
    anchor: int
    anchor_end: int
    form: str
    name: str | None = None
    args: dict[str, Any] = field(default_factory=dict)
    warning: str | None = None

    def overlaps(self, other: CallMatch) -> bool:
        return self.anchor < other.anchor_end and other.anchor < self.anchor_end


def _parse_block_payload(payload: str) -> tuple[str, dict[str, Any]]:
    try:
        data = json.loads(payload.strip())
    except json.JSONDecodeError as e:
        raise ParseError(f"invalid JSON in function_call block: {e}") from e
    if not isinstance(data, dict):
        raise ParseError("function_call block must contain a JSON object")
    name = data.get("action")
    if not isinstance(name, str) or not name:
        raise ParseError("function_call block is missing a string 'action'")
    args = data.get("action_input") or {}
    if not isinstance(args, dict):
        raise ParseError("function_call 'action_input' must be a JSON object")
    return name, args


def match_blocks(text: str) -> list[CallMatch]:
    """Match ``[function_call]{JSON}[/function_call]`` blocks."""
    matches: list[CallMatch] = []
    for m in _BLOCK_RE.finditer(text):
        try:
            name, args = _parse_block_payload(m.group(1))
        except ParseError as e:
            matches.append(
                CallMatch(m.start(), m.end(), m.start(), m.end(), "block", warning=str(e))
            )
            continue
        matches.append(
            CallMatch(m.start(), m.end(), m.start(), m.end(), "block", name=name, args=args)
        )
    return matches


def match_inline(text: str) -> list[CallMatch]:
    """Match ``[tool_call: NAME for PARAM 'VALUE']`` markers."""
    matches: list[CallMatch] = []
    for m in _INLINE_RE.finditer(text):
        grammar = _INLINE_GRAMMAR_RE.fullmatch(m.group(3))
        if grammar is None:
            matches.append(
                CallMatch(
                    m.start(),
                    m.end(),
                    m.start(2),
                    m.end(2),
                    "inline",
                    warning=f"unrecognized tool_call marker: {m.group(2)!r}",
                )
            )
            continue
        name, param, value = grammar.groups()
        matches.append(
            CallMatch(
                m.start(),
                m.end(),
                m.start(2),
                m.end(2),
                "inline",
                name=name,
                args={param: value},
            )
        )
    return matches


def match_natural(text: str) -> list[CallMatch]:
    """Match the literal ``Calling function NAME``; lowest confidence."""
    return [
        CallMatch(m.start(), m.end(), m.start(2), m.end(2), "natural", name=m.group(3))
        for m in _NATURAL_RE.finditer(text)
    ]


MATCHERS: tuple[Callable[[str], list[CallMatch]], ...] = (
    match_blocks,
    match_inline,
    match_natural,
)


def scan(
    text: str, matchers: Sequence[Callable[[str], list[CallMatch]]] = MATCHERS
) -> list[CallMatch]:
    """Run *matchers* in precedence order; return accepted matches in source order."""
    accepted: list[CallMatch] = []
    for matcher in matchers:
        for candidate in matcher(text):
            if any(candidate.overlaps(a) for a in accepted):
                continue
            accepted.append(candidate)
    accepted.sort(key=lambda m: m.anchor)
    return accepted


def remove_spans(text: str, matches: Sequence[CallMatch]) -> str:
    """Return *text* without the (possibly overlapping) strip spans of *matches*."""
    if not matches:
        return text
    spans = sorted((m.start, m.end) for m in matches)
    pieces: list[str] = []
    cursor = 0
    for start, end in spans:
        if start > cursor:
            pieces.append(text[cursor:start])
        cursor = max(cursor, end)
    pieces.append(text[cursor:])
    return "".join(pieces)


@dataclass
class Extraction:
    """Visible text and the calls pulled out of it."""

    text: str = ""
    calls: list[FunctionCallPart] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def _materialize(
    matches: Sequence[CallMatch], ids: Callable[[], str], extraction: Extraction
) -> None:
    for m in matches:
        if m.name is None:
            log.warning("Dropped malformed tool call (%s form): %s", m.form, m.warning)
            extraction.warnings.append(m.warning or f"malformed {m.form} tool call")
            continue
        extraction.calls.append(FunctionCallPart(id=ids(), name=m.name, args=dict(m.args)))


def _leads_with_call(prefix: str) -> bool:
    return not prefix.strip()


def extract_tool_calls(text: str, ids: Callable[[], str] | None = None) -> Extraction:
    """Extract every embedded call from a complete reply.

    Text without markers passes through unchanged. Once a span is removed,
    trailing whitespace is dropped, and so is leading whitespace when a call
    comes before any visible text.
    """
    ids = ids or ToolCallIdFactory()
    matches = scan(text)
    visible = remove_spans(text, matches)
    if matches:
        if _leads_with_call(text[: min(m.start for m in matches)]):
            visible = visible.lstrip()
        visible = visible.rstrip()
    extraction = Extraction(text=visible)
    _materialize(matches, ids, extraction)
    return extraction


class StreamingToolCallExtractor:
    """Incremental counterpart of ``extract_tool_calls``.

    Text is held back while a future chunk could still change how it is
    read: an opened marker without its closer, a partial marker at the buffer
    end, a whitespace-absorbing match that touches the buffer end, and
    trailing whitespace. Consumed spans leave the buffer as soon as they are
    finalized, so a call is never emitted twice. An unterminated marker longer
    than ``max_pending_chars`` is released as plain text.
    """

    def __init__(
        self,
        ids: Callable[[], str] | None = None,
        *,
        max_pending_chars: int = DEFAULT_MAX_PENDING_CHARS,
    ) -> None:
        self._ids = ids or ToolCallIdFactory()
        self._max_pending = max_pending_chars
        self._buffer = ""
        self._started = False
        self._pending_ws = ""
        self._matched = False
        self._drop_leading = False

    @property
    def pending(self) -> str:
        """Text received but not yet finalized."""
        return self._buffer

    def feed(self, chunk: str) -> Extraction:
        """Add *chunk* and return whatever became final."""
        if not chunk:
            return Extraction()
        self._buffer += chunk
        matches = scan(self._buffer)
        hold = self._hold_index(matches)
        return self._release(hold, matches)

    def finish(self) -> Extraction:
        """Finalize the remaining buffer at end of stream."""
        matches = scan(self._buffer)
        extraction = self._release(len(self._buffer), matches)
        if not self._matched:
            extraction.text += self._pending_ws
        self._pending_ws = ""
        return extraction

    def _hold_index(self, matches: list[CallMatch]) -> int:
        buf = self._buffer
        n = len(buf)
        hold = n

        for m in matches:
            if m.form != "block" and m.end >= n:
                hold = min(hold, m.start)

        for marker, closer in ((BLOCK_OPEN, BLOCK_CLOSE), (INLINE_OPEN, "]")):
            idx = buf.find(marker)
            while idx != -1:
                claimed = any(m.anchor <= idx < m.anchor_end for m in matches)
                if not claimed and buf.find(closer, idx + len(marker)) == -1:
                    hold = min(hold, idx)
                    break
                idx = buf.find(marker, idx + 1)

        for marker in (BLOCK_OPEN, INLINE_OPEN, NATURAL_MARKER):
            for k in range(len(marker), 0, -1):
                if buf.endswith(marker[:k]):
                    hold = min(hold, n - k)
                    break

        hold = self._settle(hold, matches)

        if n - hold > self._max_pending:
            log.warning(
                "Unterminated tool-call marker exceeded %d buffered characters; "
                "releasing it as plain text",
                self._max_pending,
            )
            hold = self._settle(n, matches)
        return hold

    def _settle(self, hold: int, matches: list[CallMatch]) -> int:
        buf = self._buffer
        while True:
            while hold > 0 and buf[hold - 1].isspace():
                hold -= 1
            crossing = [m.start for m in matches if m.start < hold < m.end]
            if not crossing:
                return hold
            hold = min(crossing)

    def _release(self, hold: int, matches: list[CallMatch]) -> Extraction:
        final = [m for m in matches if m.end <= hold]
        if final:
            if not self._started and _leads_with_call(
                self._buffer[: min(m.start for m in final)]
            ):
                self._drop_leading = True
            self._matched = True
        visible = remove_spans(self._buffer[:hold], final)
        self._buffer = self._buffer[hold:]

        extraction = Extraction(text=self._smooth(visible))
        _materialize(final, self._ids, extraction)
        return extraction

    def _smooth(self, visible: str) -> str:
        """Apply the one-shot whitespace trimming incrementally.

        Whitespace after the last visible character stays pending until more
        text arrives; ``finish`` drops it only if a span was removed.
        """
        if not self._started and self._drop_leading:
            self._pending_ws = ""
            visible = visible.lstrip()
        body = visible.rstrip()
        if not body:
            self._pending_ws += visible
            return ""
        out = self._pending_ws + body
        self._pending_ws = visible[len(body):]
        self._started = True
        return out
