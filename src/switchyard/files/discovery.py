"""Candidate file discovery: glob resolution, default exclusions and ignore files.

Exclusions and ignore files both use git's wildmatch rules via ``pathspec``:
``*`` stays within one path segment, ``**/`` also matches zero directories,
and a pattern with an inner ``/`` is anchored at the root.
"""

from __future__ import annotations

from collections.abc import Iterable
import logging
from pathlib import Path

import pathspec

log = logging.getLogger(__name__)

#: Dependency directories, VCS and editor metadata, and common binary formats.
DEFAULT_EXCLUDES: tuple[str, ...] = (
    "**/node_modules/**",
    "**/.git/**",
    "**/.vscode/**",
    "**/.idea/**",
    "**/dist/**",
    "**/build/**",
    "**/coverage/**",
    "**/__pycache__/**",
    "**/*.pyc",
    "**/*.pyo",
    "**/*.bin",
    "**/*.exe",
    "**/*.dll",
    "**/*.so",
    "**/*.dylib",
    "**/*.class",
    "**/*.jar",
    "**/*.war",
    "**/*.zip",
    "**/*.tar",
    "**/*.gz",
    "**/*.bz2",
    "**/*.rar",
    "**/*.7z",
    "**/*.doc",
    "**/*.docx",
    "**/*.xls",
    "**/*.xlsx",
    "**/*.ppt",
    "**/*.pptx",
    "**/*.odt",
    "**/*.ods",
    "**/*.odp",
    "**/*.DS_Store",
    "**/.env",
)

DEFAULT_IGNORE_FILE_NAMES: tuple[str, ...] = (".gitignore", ".switchyardignore")


def exclusion_spec(patterns: Iterable[str]) -> pathspec.PathSpec:
    """Compile exclusion globs; match them against lowercased relative paths."""
    return pathspec.PathSpec.from_lines(
        pathspec.patterns.GitWildMatchPattern, [p.lower() for p in patterns]
    )


class FileDiscovery:
    """Resolve path patterns to files under ``root``."""

    def __init__(
        self,
        root: str | Path,
        ignore_file_names: tuple[str, ...] = DEFAULT_IGNORE_FILE_NAMES,
    ) -> None:
        self.root = Path(root).resolve()
        self.ignore_file_names = ignore_file_names
        self._ignore_spec: pathspec.GitIgnoreSpec | None = None

    def contains(self, path: Path) -> bool:
        """Whether *path* lies within the root."""
        return path == self.root or self.root in path.parents

    def relative(self, path: Path) -> str:
        """Display path relative to the root; absolute when outside it."""
        if not self.contains(path):
            return path.as_posix()
        return path.relative_to(self.root).as_posix()

    def _expand(self, pattern: str) -> Iterable[Path]:
        if pattern.endswith("**"):
            # A bare trailing ``**`` only yields directories.
            pattern += "/*"
        candidate = Path(pattern)
        base = candidate if candidate.is_absolute() else self.root / candidate
        if base.is_file():
            return [base]
        if base.is_dir():
            return base.glob("**/*")
        if candidate.is_absolute():
            anchor = Path(candidate.anchor)
            return anchor.glob(str(candidate.relative_to(anchor)))
        return self.root.glob(pattern)

    def resolve(
        self, patterns: Iterable[str], exclude_patterns: Iterable[str] = ()
    ) -> list[Path]:
        """Return sorted, de-duplicated absolute files matching *patterns*.

        Exclusions are matched case-insensitively against root-relative paths.
        Matches outside the root are returned as-is so the caller can report
        them.
        """
        excludes = exclusion_spec(exclude_patterns)
        found: set[Path] = set()
        for pattern in patterns:
            for match in self._expand(pattern):
                if not match.is_file():
                    continue
                path = match.resolve()
                if self.contains(path) and excludes.match_file(self.relative(path).lower()):
                    continue
                found.add(path)
        log.debug("Resolved %d file(s) under %s", len(found), self.root)
        return sorted(found)

    def _load_ignore_spec(self) -> pathspec.GitIgnoreSpec:
        if self._ignore_spec is None:
            lines: list[str] = []
            for name in self.ignore_file_names:
                ignore_file = self.root / name
                if ignore_file.is_file():
                    text = ignore_file.read_text(encoding="utf-8", errors="replace")
                    lines.extend(text.splitlines())
            self._ignore_spec = pathspec.GitIgnoreSpec.from_lines(lines)
            log.debug("Loaded %d ignore pattern(s) under %s", len(self._ignore_spec), self.root)
        return self._ignore_spec

    def is_ignored(self, path: Path) -> bool:
        if not self.contains(path):
            return False
        return self._load_ignore_spec().match_file(self.relative(path))

    def filter_by_ignore_rules(self, paths: Iterable[Path]) -> list[Path]:
        """Drop paths matched by the root's ignore files; last matching rule wins."""
        return [p for p in paths if not self.is_ignored(p)]
