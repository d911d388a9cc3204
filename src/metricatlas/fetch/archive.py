from __future__ import annotations

import asyncio
import re
import tarfile
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Any

import httpx
import structlog

from metricatlas.core.errors import FetchError, FetchTimeoutError, NetworkError, RefNotFoundError
from metricatlas.domain.models import SourceDescriptor
from metricatlas.fetch.base import Fetcher
from metricatlas.fetch.models import FetchOptions, FetchResult, SourceTree

logger = structlog.get_logger()

_GITHUB_RE = re.compile(r"github\.com[/:](?P<owner>[^/]+)/(?P<repo>[^/]+?)(?:\.git)?/?$")


def parse_github_location(location: str) -> tuple[str, str]:
    """Return ``(owner, repo)`` for a GitHub repository URL."""
    match = _GITHUB_RE.search(location.strip())
    if not match:
        raise FetchError("Not a GitHub repository location", {"repository": location})
    return match.group("owner"), match.group("repo")


def is_retryable_status(status_code: int) -> bool:
    return status_code in (408, 429, 500, 502, 503, 504)


def _extract_tarball(archive: Path, dest: Path) -> int:
    """Extract regular files and directories, dropping the top-level folder."""
    count = 0
    dest.mkdir(parents=True, exist_ok=True)
    with tarfile.open(archive, "r:gz") as tar:
        for member in tar:
            parts = PurePosixPath(member.name).parts[1:]
            if not parts or any(p in ("..", "") for p in parts) or member.name.startswith("/"):
                continue
            target = dest.joinpath(*parts)
            if member.isdir():
                target.mkdir(parents=True, exist_ok=True)
            elif member.isfile():
                target.parent.mkdir(parents=True, exist_ok=True)
                fileobj = tar.extractfile(member)
                if fileobj is None:
                    continue
                with fileobj, open(target, "wb") as out:
                    while chunk := fileobj.read(1 << 16):
                        out.write(chunk)
                count += 1
    return count


class ArchiveFetcher(Fetcher):
    """Download a GitHub tarball for one ref over HTTP.

    The ref is first resolved to a commit SHA so the tarball and the recorded
    provenance always agree.
    """

    def __init__(
        self,
        api_url: str = "https://api.github.com",
        token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._token = token
        self._transport = transport

    @property
    def name(self) -> str:
        return "archive"

    def _headers(self) -> dict[str, str]:
        headers = {"User-Agent": "metricatlas", "X-GitHub-Api-Version": "2022-11-28"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def _fetch_once(
        self,
        descriptor: SourceDescriptor,
        options: FetchOptions,
        workspace: Path,
    ) -> FetchResult:
        owner, repo = parse_github_location(descriptor.repository_location)
        source = descriptor.name
        details: dict[str, Any] = {"source": source, "ref": options.ref}

        try:
            async with httpx.AsyncClient(
                base_url=self._api_url,
                headers=self._headers(),
                timeout=options.timeout_seconds,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                async with asyncio.timeout(options.timeout_seconds):
                    commit = await self._resolve_commit(client, owner, repo, options.ref, details)
                    archive = workspace / "source.tar.gz"
                    await self._download(client, f"/repos/{owner}/{repo}/tarball/{commit}", archive, details)
        except TimeoutError as e:
            raise FetchTimeoutError("Archive download timed out", details) from e
        except httpx.TimeoutException as e:
            raise FetchTimeoutError("Archive download timed out", details) from e
        except httpx.TransportError as e:
            raise NetworkError(f"Network error: {e}", details) from e

        tree_root = workspace / "tree"
        try:
            files = await asyncio.to_thread(_extract_tarball, archive, tree_root)
        except (tarfile.TarError, OSError) as e:
            raise FetchError(f"Cannot unpack archive: {e}", details) from e
        finally:
            archive.unlink(missing_ok=True)

        logger.debug("archive_extracted", source=source, files=files)
        return FetchResult(
            source_name=source,
            commit_hash=commit,
            fetched_at=datetime.now(timezone.utc),
            ref=options.ref,
            tree=SourceTree(tree_root),
        )

    async def _resolve_commit(
        self,
        client: httpx.AsyncClient,
        owner: str,
        repo: str,
        ref: str,
        details: dict[str, Any],
    ) -> str:
        response = await client.get(
            f"/repos/{owner}/{repo}/commits/{ref}",
            headers={"Accept": "application/vnd.github.sha"},
        )
        self._check(response, details)
        commit = response.text.strip()
        if not re.fullmatch(r"[0-9a-f]{40}", commit):
            raise FetchError("Unexpected commit hash from API", {**details, "commit": commit[:80]})
        return commit

    async def _download(
        self,
        client: httpx.AsyncClient,
        path: str,
        target: Path,
        details: dict[str, Any],
    ) -> None:
        async with client.stream("GET", path) as response:
            if response.status_code >= 400:
                await response.aread()
            self._check(response, details)
            with open(target, "wb") as out:
                async for chunk in response.aiter_bytes():
                    out.write(chunk)

    def _check(self, response: httpx.Response, details: dict[str, Any]) -> None:
        status = response.status_code
        if status < 400:
            return
        if status in (404, 422):
            raise RefNotFoundError("Ref or repository not found", {**details, "status": status})
        if is_retryable_status(status):
            raise NetworkError(f"HTTP {status}", {**details, "status": status})
        raise FetchError(f"HTTP {status}", {**details, "status": status})
