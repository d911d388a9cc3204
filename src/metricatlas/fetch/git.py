from __future__ import annotations

import asyncio
import os
import re
from datetime import datetime, timezone
from pathlib import Path

import structlog

from metricatlas.core.errors import FetchError, FetchTimeoutError, NetworkError, RefNotFoundError
from metricatlas.domain.models import SourceDescriptor
from metricatlas.fetch.base import Fetcher
from metricatlas.fetch.models import FetchOptions, FetchResult, SourceTree

logger = structlog.get_logger()

_SHA_RE = re.compile(r"^[0-9a-f]{40}$")

_REF_MISSING = (
    "couldn't find remote ref",
    "not our ref",
    "unknown revision",
    "invalid refspec",
    "no such ref",
)
_NETWORK = (
    "could not resolve host",
    "unable to access",
    "connection refused",
    "connection timed out",
    "failed to connect",
    "could not read from remote repository",
    "early eof",
    "the remote end hung up",
    "tls",
    "ssl",
)


def classify_git_error(stderr: str, source: str) -> FetchError:
    """Map git stderr output onto the fetch failure taxonomy."""
    text = stderr.lower()
    details = {"source": source, "stderr": stderr.strip()[-500:]}
    if any(marker in text for marker in _REF_MISSING):
        return RefNotFoundError("Ref not found", details)
    if "repository" in text and "not found" in text:
        return RefNotFoundError("Repository not found", details)
    if any(marker in text for marker in _NETWORK):
        return NetworkError("Network error while fetching", details)
    return FetchError("git command failed", details)


class GitFetcher(Fetcher):
    """Fetch a single ref with the git CLI.

    The ref is fetched directly (``git fetch origin <ref>``) so branches, tags
    and full commit SHAs are all pinned the same way.
    """

    def __init__(self, git_binary: str = "git") -> None:
        self._git = git_binary

    @property
    def name(self) -> str:
        return "git"

    async def _fetch_once(
        self,
        descriptor: SourceDescriptor,
        options: FetchOptions,
        workspace: Path,
    ) -> FetchResult:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + options.timeout_seconds
        source = descriptor.name

        await self._git_cmd(["init", "--quiet", str(workspace)], None, deadline, source)
        await self._git_cmd(
            ["remote", "add", "origin", descriptor.repository_location], workspace, deadline, source
        )
        fetch_args = ["fetch", "--quiet", "--no-tags"]
        if options.shallow:
            fetch_args += ["--depth", "1"]
        fetch_args += ["origin", options.ref]
        await self._git_cmd(fetch_args, workspace, deadline, source)
        await self._git_cmd(["checkout", "--quiet", "FETCH_HEAD"], workspace, deadline, source)
        commit = (await self._git_cmd(["rev-parse", "HEAD"], workspace, deadline, source)).strip()

        if not _SHA_RE.match(commit):
            raise FetchError("Unexpected commit hash from git", {"source": source, "commit": commit})

        return FetchResult(
            source_name=source,
            commit_hash=commit,
            fetched_at=datetime.now(timezone.utc),
            ref=options.ref,
            tree=SourceTree(workspace),
        )

    async def _git_cmd(
        self,
        args: list[str],
        cwd: Path | None,
        deadline: float,
        source: str,
    ) -> str:
        env = {**os.environ, "GIT_TERMINAL_PROMPT": "0", "GIT_ASKPASS": "echo"}
        try:
            proc = await asyncio.create_subprocess_exec(
                self._git,
                *args,
                cwd=str(cwd) if cwd else None,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except FileNotFoundError as e:
            raise FetchError("git executable not found", {"source": source, "git": self._git}) from e

        remaining = deadline - asyncio.get_running_loop().time()
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=max(remaining, 0.001))
        except asyncio.TimeoutError:
            await _terminate(proc)
            raise FetchTimeoutError(
                "git fetch timed out", {"source": source, "command": args[0]}
            ) from None
        except asyncio.CancelledError:
            await _terminate(proc)
            raise

        if proc.returncode != 0:
            error = classify_git_error(stderr.decode(errors="replace"), source)
            logger.debug("git_command_failed", source=source, command=args[0], error=error.message)
            raise error
        return stdout.decode(errors="replace")


async def _terminate(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            return
        await proc.wait()
