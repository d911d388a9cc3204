from __future__ import annotations

import fnmatch
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Iterator, Sequence

_SKIP_DIRS = {".git", ".hg", ".svn", "node_modules", "__pycache__"}


@dataclass(frozen=True)
class FetchOptions:
    """How a single fetch should be performed."""

    shallow: bool = True
    ref: str = "main"
    timeout_seconds: int = 600
    max_attempts: int = 3
    backoff_seconds: float = 1.0


def matches_any(rel_path: str, patterns: Sequence[str]) -> bool:
    """Glob match where a leading ``**/`` also matches the tree root."""
    for pattern in patterns:
        if fnmatch.fnmatchcase(rel_path, pattern):
            return True
        if pattern.startswith("**/") and fnmatch.fnmatchcase(rel_path, pattern[3:]):
            return True
    return False


@dataclass(frozen=True)
class SourceTree:
    """Read-only handle over a materialized source tree."""

    root: Path

    def iter_files(
        self,
        include: Sequence[str] = ("**/*",),
        exclude: Sequence[str] = (),
    ) -> Iterator[Path]:
        """Yield files under the root in a stable order."""
        for path in sorted(self.root.rglob("*")):
            if not path.is_file():
                continue
            rel = self.relative(path)
            if any(part in _SKIP_DIRS for part in Path(rel).parts[:-1]):
                continue
            if include and not matches_any(rel, include):
                continue
            if exclude and matches_any(rel, exclude):
                continue
            yield path

    def relative(self, path: Path) -> str:
        return path.relative_to(self.root).as_posix()

    def read_text(self, path: Path | str) -> str:
        target = path if isinstance(path, Path) else self.root / path
        return target.read_text(encoding="utf-8", errors="replace")


@dataclass(frozen=True)
class FetchResult:
    """Materialized source plus its provenance."""

    source_name: str
    commit_hash: str
    fetched_at: datetime
    ref: str
    tree: SourceTree = field(repr=False)
