from __future__ import annotations

import asyncio
import hashlib
from datetime import datetime, timezone
from pathlib import Path

from metricatlas.core.errors import FetchError
from metricatlas.domain.models import SourceDescriptor
from metricatlas.fetch.base import Fetcher
from metricatlas.fetch.models import FetchOptions, FetchResult, SourceTree


def _strip_scheme(location: str) -> Path:
    if location.startswith("file://"):
        location = location[len("file://"):]
    return Path(location).expanduser()


def content_digest(root: Path) -> str:
    """SHA-1 over relative paths and file contents, in sorted order."""
    digest = hashlib.sha1()
    tree = SourceTree(root)
    for path in tree.iter_files():
        digest.update(tree.relative(path).encode())
        digest.update(b"\0")
        digest.update(path.read_bytes())
        digest.update(b"\0")
    return digest.hexdigest()


class LocalFetcher(Fetcher):
    """Serve an already checked-out directory in place.

    The directory is only read. Its commit hash is ``HEAD`` when it is a git
    checkout, otherwise a digest of its contents.
    """

    def __init__(self, git_binary: str = "git") -> None:
        self._git = git_binary

    @property
    def name(self) -> str:
        return "local"

    async def _fetch_once(
        self,
        descriptor: SourceDescriptor,
        options: FetchOptions,
        workspace: Path,
    ) -> FetchResult:
        root = _strip_scheme(descriptor.repository_location)
        if not root.is_dir():
            raise FetchError(
                "Local source directory does not exist",
                {"source": descriptor.name, "path": str(root)},
            )

        commit = await self._git_head(root)
        if commit is None:
            commit = await asyncio.to_thread(content_digest, root)

        return FetchResult(
            source_name=descriptor.name,
            commit_hash=commit,
            fetched_at=datetime.now(timezone.utc),
            ref=options.ref,
            tree=SourceTree(root.resolve()),
        )

    async def _git_head(self, root: Path) -> str | None:
        if not (root / ".git").exists():
            return None
        try:
            proc = await asyncio.create_subprocess_exec(
                self._git,
                "rev-parse",
                "HEAD",
                cwd=str(root),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except FileNotFoundError:
            return None
        stdout, _ = await proc.communicate()
        if proc.returncode != 0:
            return None
        return stdout.decode().strip() or None
