"""Bulk file reading with optional model-assisted narrowing.

A run moves through explicit states, each handled by one method that
returns the next state::

    DISCOVER -> DECIDE -> STANDARD_READ -> DONE
                       -> PREVIEW -> CHOOSE -> BUDGETED_READ -> DONE

Any exception raised in PREVIEW, CHOOSE or BUDGETED_READ diverts the run to
FALLBACK, a plain read of the first few candidates. Every run owns its own
``SelectionBudget``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field
import enum
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Literal

from switchyard.cancellation import is_cancelled
from switchyard.config import SelectionLimits
from switchyard.content import TextPart
from switchyard.errors import ConfigurationError, ValidationError
from switchyard.files import filetypes
from switchyard.files.chooser import build_selection_prompt, parse_selection
from switchyard.files.discovery import DEFAULT_EXCLUDES, FileDiscovery
from switchyard.tokens import estimate_tokens, is_low_capacity, tokens_to_chars

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from switchyard.cancellation import CancellationToken
    from switchyard.content import Part
    from switchyard.files.chooser import ModelChooser

log = logging.getLogger(__name__)

SEPARATOR_FORMAT = "--- {path} ---"
TRUNCATION_MARKER = "[Content truncated due to token limits]"
NO_CONTENT_MESSAGE = "No files matching the criteria were found or all were skipped."

SelectionMode = Literal["standard", "smart", "fallback"]


def _string_tuple(value: object, field_name: str) -> tuple[str, ...]:
    if isinstance(value, str) or not isinstance(value, Sequence):
        raise ValidationError(
            f'"{field_name}" must be a list of strings/glob patterns',
            hint=f"Pass {field_name}=['src/**/*.py'] rather than a bare string.",
        )
    if not all(isinstance(item, str) for item in value):
        raise ValidationError(f'Every item in "{field_name}" must be a string')
    return tuple(value)


@dataclass(frozen=True)
class ReadManyFilesParams:
    """Caller input for one pipeline run."""

    paths: Sequence[str]
    include: Sequence[str] = ()
    exclude: Sequence[str] = ()
    use_default_excludes: bool = True
    respect_ignore_file: bool = True
    #: Optional question forwarded to the chooser to steer selection.
    query: str | None = None

    def __post_init__(self) -> None:
        paths = _string_tuple(self.paths, "paths")
        if not paths:
            raise ValidationError(
                'The "paths" parameter is required and must be a non-empty list',
                hint="Pass paths=['src/'] or another glob pattern.",
            )
        if any(not p.strip() for p in paths):
            raise ValidationError('Each item in "paths" must be a non-empty string/glob pattern')
        object.__setattr__(self, "paths", paths)
        object.__setattr__(self, "include", _string_tuple(self.include, "include"))
        object.__setattr__(self, "exclude", _string_tuple(self.exclude, "exclude"))


@dataclass(frozen=True)
class SkipRecord:
    """A candidate (or group of candidates) that produced no content, and why."""

    path: str
    reason: str


@dataclass
class SelectionBudget:
    """Running token count of one BudgetedRead."""

    limit_tokens: int
    spent_tokens: int = 0

    @property
    def remaining(self) -> int:
        return max(0, self.limit_tokens - self.spent_tokens)

    def fits(self, tokens: int) -> bool:
        return self.spent_tokens + tokens <= self.limit_tokens

    def spend(self, tokens: int) -> None:
        self.spent_tokens += tokens


@dataclass
class ReadManyFilesResult:
    """Content parts in reading order plus the skip report."""

    content_parts: list[Part]
    skipped: list[SkipRecord]
    display: str
    mode: SelectionMode
    processed: list[str] = field(default_factory=list)
    tokens_used: int = 0
    cancelled: bool = False

    @property
    def llm_content(self) -> list[Part]:
        """Content to hand to a model; never empty."""
        return self.content_parts or [TextPart(NO_CONTENT_MESSAGE)]


class _State(enum.Enum):
    DISCOVER = "discover"
    DECIDE = "decide"
    STANDARD_READ = "standard_read"
    PREVIEW = "preview"
    CHOOSE = "choose"
    BUDGETED_READ = "budgeted_read"
    FALLBACK = "fallback"
    DONE = "done"


_SMART_STATES = frozenset({_State.PREVIEW, _State.CHOOSE, _State.BUDGETED_READ})


@dataclass
class _Run:
    """Mutable state of a single run."""

    params: ReadManyFilesParams
    budget: SelectionBudget
    cancel: CancellationToken | None = None
    mode: SelectionMode = "standard"
    candidates: list[Path] = field(default_factory=list)
    previews: list[str] = field(default_factory=list)
    chosen: list[Path] = field(default_factory=list)
    content_parts: list[Part] = field(default_factory=list)
    processed: list[str] = field(default_factory=list)
    skipped: list[SkipRecord] = field(default_factory=list)
    #: Skip records written before the smart path started.
    discovery_skips: int = 0
    notes: list[str] = field(default_factory=list)
    cancelled: bool = False

    def stop_if_cancelled(self) -> bool:
        if is_cancelled(self.cancel):
            self.cancelled = True
        return self.cancelled


class FileSelectionPipeline:
    """Read many files under ``root`` for a model with a known context window.

    Example:
        pipeline = FileSelectionPipeline(
            "/repo", model="grok-3-latest", chooser=ProviderChooser(provider, "grok-3-latest")
        )
        result = await pipeline.run(ReadManyFilesParams(paths=["src/"]))
    """

    def __init__(
        self,
        root: str | Path,
        *,
        model: str,
        chooser: ModelChooser | None = None,
        limits: SelectionLimits | None = None,
        discovery: FileDiscovery | None = None,
    ) -> None:
        self.discovery = discovery or FileDiscovery(root)
        self.root = self.discovery.root
        self.model = model
        self.chooser = chooser
        self.limits = limits or SelectionLimits()

    def should_use_smart_selection(self, candidate_count: int) -> bool:
        return (
            self.chooser is not None
            and is_low_capacity(self.model)
            and candidate_count > self.limits.fan_out_threshold
        )

    async def run(
        self,
        params: ReadManyFilesParams,
        *,
        cancel: CancellationToken | None = None,
    ) -> ReadManyFilesResult:
        """Discover, optionally narrow, and read files."""
        run = _Run(
            params=params,
            budget=SelectionBudget(self.limits.token_budget),
            cancel=cancel,
        )
        handlers: dict[_State, Callable[[_Run], Awaitable[_State]]] = {
            _State.DISCOVER: self._discover,
            _State.DECIDE: self._decide,
            _State.STANDARD_READ: self._standard_read,
            _State.PREVIEW: self._preview,
            _State.CHOOSE: self._choose,
            _State.BUDGETED_READ: self._budgeted_read,
            _State.FALLBACK: self._fallback,
        }

        state = _State.DISCOVER
        while state is not _State.DONE:
            log.debug("File selection state: %s", state.value)
            try:
                state = await handlers[state](run)
            except asyncio.CancelledError:
                if not is_cancelled(cancel):
                    raise
                run.cancelled = True
                state = _State.DONE
            except Exception as e:
                if state not in _SMART_STATES:
                    raise
                log.warning(
                    "Smart file selection failed in %s (%s); falling back to a plain read",
                    state.value,
                    e,
                )
                run.notes.append(f"Smart selection failed: {e}")
                state = _State.FALLBACK

        return ReadManyFilesResult(
            content_parts=run.content_parts,
            skipped=run.skipped,
            display=self._display(run),
            mode=run.mode,
            processed=run.processed,
            tokens_used=run.budget.spent_tokens,
            cancelled=run.cancelled,
        )

    # -- states -------------------------------------------------------------

    async def _discover(self, run: _Run) -> _State:
        params = run.params
        excludes = (
            (*DEFAULT_EXCLUDES, *params.exclude)
            if params.use_default_excludes
            else tuple(params.exclude)
        )
        found = await asyncio.to_thread(
            self.discovery.resolve, (*params.paths, *params.include), excludes
        )

        inside: list[Path] = []
        for path in found:
            if not self.discovery.contains(path):
                run.skipped.append(
                    SkipRecord(
                        path.as_posix(),
                        f"Security: path outside target directory (root: {self.root})",
                    )
                )
                continue
            inside.append(path)

        if params.respect_ignore_file:
            kept = await asyncio.to_thread(self.discovery.filter_by_ignore_rules, inside)
            ignored = len(inside) - len(kept)
            if ignored:
                run.skipped.append(SkipRecord(f"{ignored} file(s)", "ignored"))
            inside = kept

        run.candidates = sorted(set(inside))
        log.info("Discovered %d candidate file(s) under %s", len(run.candidates), self.root)
        return _State.DECIDE

    async def _decide(self, run: _Run) -> _State:
        if self.should_use_smart_selection(len(run.candidates)):
            run.mode = "smart"
            run.discovery_skips = len(run.skipped)
            return _State.PREVIEW
        return _State.STANDARD_READ

    async def _standard_read(self, run: _Run) -> _State:
        for path in run.candidates:
            if run.stop_if_cancelled():
                break
            await self._read_into(run, path, allow_assets=True)
        return _State.DONE

    async def _preview(self, run: _Run) -> _State:
        for index, path in enumerate(run.candidates[: self.limits.max_preview_files], start=1):
            if run.stop_if_cancelled():
                return _State.DONE
            preview = await asyncio.to_thread(self._preview_line, path)
            run.previews.append(f"{index}. {preview}")
        return _State.CHOOSE

    async def _choose(self, run: _Run) -> _State:
        if self.chooser is None:
            raise ConfigurationError(
                "Smart file selection needs a chooser",
                hint="Pass chooser=ProviderChooser(provider, model) to FileSelectionPipeline.",
            )
        prompt = build_selection_prompt(
            run.previews,
            min_selected=self.limits.min_selected,
            max_selected=self.limits.max_selected,
            query=run.params.query,
        )
        reply = await self.chooser.choose(prompt, cancel=run.cancel)
        picked = parse_selection(
            reply, upper=len(run.previews), cap=self.limits.max_selected
        )
        run.chosen = [run.candidates[n - 1] for n in picked]
        if not run.chosen:
            log.info(
                "No usable file numbers in selection reply; using the first %d candidates",
                self.limits.fallback_file_count,
            )
            run.notes.append(
                f"Selection reply named no files; read the first "
                f"{self.limits.fallback_file_count} candidates instead."
            )
            run.chosen = run.candidates[: self.limits.fallback_file_count]
        return _State.BUDGETED_READ

    async def _budgeted_read(self, run: _Run) -> _State:
        budget = run.budget
        for position, path in enumerate(run.chosen):
            if run.stop_if_cancelled():
                break
            rel = self.discovery.relative(path)
            try:
                file_type = await asyncio.to_thread(filetypes.detect_file_type, path)
                if file_type != "text":
                    run.skipped.append(
                        SkipRecord(rel, f"{file_type} file is not read during smart selection")
                    )
                    continue
                content = await asyncio.to_thread(filetypes.read_text, path)
            except OSError as e:
                run.skipped.append(SkipRecord(rel, f"Read error: {e}"))
                continue

            tokens = estimate_tokens(content)
            if budget.fits(tokens):
                run.content_parts.append(TextPart(_framed(rel, content)))
                run.processed.append(rel)
                budget.spend(tokens)
                continue

            remaining = budget.remaining
            if remaining > 0 or run.processed:
                truncated = content[: tokens_to_chars(remaining)]
                run.content_parts.append(
                    TextPart(_framed(rel, truncated, suffix=TRUNCATION_MARKER))
                )
                run.processed.append(rel)
                budget.spend(estimate_tokens(truncated))
                run.skipped.append(SkipRecord(rel, "truncated: token budget exhausted"))
            else:
                run.skipped.append(SkipRecord(rel, "not read: token budget exhausted"))
            for rest in run.chosen[position + 1 :]:
                run.skipped.append(
                    SkipRecord(self.discovery.relative(rest), "not read: token budget exhausted")
                )
            log.info(
                "Token budget of %d reached after %d file(s)",
                budget.limit_tokens,
                len(run.processed),
            )
            break
        return _State.DONE

    async def _fallback(self, run: _Run) -> _State:
        run.mode = "fallback"
        del run.skipped[run.discovery_skips :]
        run.content_parts.clear()
        run.processed.clear()
        run.budget = SelectionBudget(self.limits.token_budget)

        for path in run.candidates[: self.limits.fallback_file_count]:
            if run.stop_if_cancelled():
                break
            await self._read_into(run, path, allow_assets=False)
        return _State.DONE

    # -- helpers ------------------------------------------------------------

    def _requested_explicitly(self, params: ReadManyFilesParams, path: Path) -> bool:
        ext = path.suffix.lower()
        stem = path.stem
        return any(
            (ext and ext in pattern.lower()) or (stem and stem in pattern)
            for pattern in params.paths
        )

    async def _read_into(self, run: _Run, path: Path, *, allow_assets: bool) -> None:
        """Read one candidate into ``run``, recording a skip instead of raising."""
        rel = self.discovery.relative(path)
        try:
            file_type = await asyncio.to_thread(filetypes.detect_file_type, path)
            if file_type in ("image", "pdf"):
                if not allow_assets or not self._requested_explicitly(run.params, path):
                    run.skipped.append(
                        SkipRecord(
                            rel,
                            "asset file (image/pdf) was not explicitly requested "
                            "by name or extension",
                        )
                    )
                    return
                part: Part = await asyncio.to_thread(filetypes.read_inline, path)
            elif file_type == "binary":
                run.skipped.append(SkipRecord(rel, "binary file"))
                return
            else:
                content = await asyncio.to_thread(filetypes.read_text, path)
                part = TextPart(_framed(rel, content))
        except OSError as e:
            run.skipped.append(SkipRecord(rel, f"Read error: {e}"))
            return
        run.content_parts.append(part)
        run.processed.append(rel)

    def _preview_line(self, path: Path) -> str:
        rel = self.discovery.relative(path)
        try:
            file_type = filetypes.detect_file_type(path)
            if file_type != "text":
                return f"{rel}: [{file_type} file]"
            lines = filetypes.read_head(path, self.limits.preview_lines)
        except OSError:
            return f"{rel}: [error reading file]"
        return f"{rel}: {' | '.join(lines)}"

    # -- display ------------------------------------------------------------

    def _display(self, run: _Run) -> str:
        if run.mode == "smart":
            body = self._smart_summary(run)
        elif run.mode == "fallback":
            body = (
                "### ReadManyFiles Result (Fallback Mode)\n\n"
                f"Processed {len(run.processed)} files due to context limitations."
            )
        else:
            body = f"### ReadManyFiles Result (Target Dir: `{self.root}`)\n\n"
            body += _processed_section(run.processed)

        sections = [body.rstrip()]
        if not run.processed:
            sections.append("No files were read and concatenated based on the criteria.")
        if run.skipped:
            sections.append(_skipped_section(run.skipped).rstrip())
        sections.extend(f"*{note}*" for note in run.notes)
        if run.cancelled:
            sections.append("*Reading was cancelled; results are partial.*")
        return "\n\n".join(sections)

    def _smart_summary(self, run: _Run) -> str:
        processed = len(run.processed)
        outcome = (
            "Successfully read and concatenated content."
            if processed
            else "No files could be processed within token limits."
        )
        return (
            f"### ReadManyFiles Result (Target Dir: `{self.root}`)\n\n"
            f"**Smart Selection Applied**: Analyzed {len(run.candidates)} files, "
            f"selected {len(run.chosen)} most relevant files, "
            f"successfully processed {processed} files.\n\n"
            f"**Token Usage**: ~{run.budget.spent_tokens:,} tokens used out of "
            f"{run.budget.limit_tokens:,} budget.\n\n"
            f"**Files processed**: {outcome}\n\n"
            "*Note: Smart file selection was used to fit a small context window. "
            "Some files may have been excluded or truncated.*"
        )


def _framed(rel: str, content: str, *, suffix: str | None = None) -> str:
    separator = SEPARATOR_FORMAT.format(path=rel)
    if suffix is None:
        return f"{separator}\n\n{content}\n\n"
    return f"{separator}\n\n{content}\n\n{suffix}\n\n"


def _processed_section(processed: list[str]) -> str:
    if not processed:
        return ""
    text = f"Successfully read and concatenated content from **{len(processed)} file(s)**.\n"
    if len(processed) <= 10:
        text += "\n**Processed Files:**\n"
    else:
        text += "\n**Processed Files (first 10 shown):**\n"
    text += "".join(f"- `{p}`\n" for p in processed[:10])
    if len(processed) > 10:
        text += f"- ...and {len(processed) - 10} more.\n"
    return text


def _skipped_section(skipped: list[SkipRecord]) -> str:
    if len(skipped) <= 5:
        text = f"**Skipped {len(skipped)} item(s):**\n"
    else:
        text = f"**Skipped {len(skipped)} item(s) (first 5 shown):**\n"
    text += "".join(f"- `{s.path}` (Reason: {s.reason})\n" for s in skipped[:5])
    if len(skipped) > 5:
        text += f"- ...and {len(skipped) - 5} more.\n"
    return text
