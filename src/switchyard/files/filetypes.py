"""File type detection and blocking read helpers.

The helpers here are synchronous; the pipeline runs them with
``asyncio.to_thread`` so file I/O never blocks the event loop.
"""

from __future__ import annotations

import mimetypes
from pathlib import Path
from typing import Literal

from switchyard.content import InlineDataPart

FileType = Literal["text", "image", "pdf", "binary"]

_SNIFF_BYTES = 4096
#: Share of non-text bytes above which a file without a known type is binary.
_BINARY_RATIO = 0.3

_TEXT_MIME_PREFIXES = ("text/",)
_TEXT_MIME_TYPES = {
    "application/json",
    "application/javascript",
    "application/x-sh",
    "application/xml",
    "application/toml",
    "application/x-yaml",
    "image/svg+xml",
}
_TEXT_CONTROL_BYTES = {7, 8, 9, 10, 12, 13, 27}


def guess_mime_type(path: str | Path) -> str:
    return mimetypes.guess_type(str(path))[0] or "application/octet-stream"


def _looks_binary(sample: bytes) -> bool:
    if not sample:
        return False
    if b"\x00" in sample:
        return True
    odd = sum(1 for b in sample if b < 32 and b not in _TEXT_CONTROL_BYTES)
    return odd / len(sample) > _BINARY_RATIO


def detect_file_type(path: str | Path) -> FileType:
    """Classify *path* by extension, sniffing content when the extension is unknown."""
    p = Path(path)
    mime = mimetypes.guess_type(str(p))[0]
    if mime is not None:
        if mime in _TEXT_MIME_TYPES or mime.startswith(_TEXT_MIME_PREFIXES):
            return "text"
        if mime.startswith("image/"):
            return "image"
        if mime == "application/pdf":
            return "pdf"

    with p.open("rb") as fh:
        sample = fh.read(_SNIFF_BYTES)
    return "binary" if _looks_binary(sample) else "text"


def read_text(path: str | Path) -> str:
    """Read a text file as UTF-8, replacing undecodable bytes."""
    return Path(path).read_text(encoding="utf-8", errors="replace")


def read_head(path: str | Path, lines: int) -> list[str]:
    """Return up to *lines* leading lines of a text file, without newlines."""
    head: list[str] = []
    with Path(path).open(encoding="utf-8", errors="replace") as fh:
        for line in fh:
            if len(head) >= lines:
                break
            head.append(line.rstrip("\r\n"))
    return head


def read_inline(path: str | Path) -> InlineDataPart:
    """Load an image or PDF as an inline data part."""
    p = Path(path)
    return InlineDataPart(mime_type=guess_mime_type(p), data=p.read_bytes())
