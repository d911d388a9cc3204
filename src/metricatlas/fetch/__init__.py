"""Fetchers that materialize source repositories into scoped workspaces."""

from __future__ import annotations

from metricatlas.config.settings import Settings
from metricatlas.config.sources import FetcherKind
from metricatlas.fetch.archive import ArchiveFetcher
from metricatlas.fetch.base import Fetcher
from metricatlas.fetch.git import GitFetcher
from metricatlas.fetch.local import LocalFetcher
from metricatlas.fetch.models import FetchOptions, FetchResult, SourceTree
from metricatlas.fetch.workspace import scoped_workspace


def create_fetcher(kind: FetcherKind, settings: Settings) -> Fetcher:
    """Build the fetcher for a configured fetcher kind."""
    if kind == FetcherKind.GIT:
        return GitFetcher(git_binary=settings.git_binary)
    if kind == FetcherKind.ARCHIVE:
        return ArchiveFetcher(api_url=settings.github_api_url, token=settings.github_token)
    if kind == FetcherKind.LOCAL:
        return LocalFetcher(git_binary=settings.git_binary)
    raise ValueError(f"Unsupported fetcher: {kind}")


__all__ = [
    "ArchiveFetcher",
    "FetchOptions",
    "FetchResult",
    "Fetcher",
    "GitFetcher",
    "LocalFetcher",
    "SourceTree",
    "create_fetcher",
    "scoped_workspace",
]
