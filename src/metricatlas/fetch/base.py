from __future__ import annotations

import shutil
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from metricatlas.core.errors import FetchError
from metricatlas.domain.models import SourceDescriptor
from metricatlas.fetch.models import FetchOptions, FetchResult
from metricatlas.fetch.workspace import scoped_workspace

logger = structlog.get_logger()


def is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, FetchError) and exc.retryable


def _clear(workspace: Path) -> None:
    for child in workspace.iterdir():
        if child.is_dir() and not child.is_symlink():
            shutil.rmtree(child, ignore_errors=True)
        else:
            child.unlink(missing_ok=True)


class Fetcher(ABC):
    """Materializes a source repository into a scoped workspace.

    Retryable failures (network errors and timeouts) are retried with
    exponential backoff up to ``options.max_attempts``; anything else is
    raised on the first occurrence.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Fetcher identifier used in logs."""

    async def fetch(
        self,
        descriptor: SourceDescriptor,
        options: FetchOptions,
        workspace: Path,
    ) -> FetchResult:
        def _log_retry(state: RetryCallState) -> None:
            exc = state.outcome.exception() if state.outcome else None
            logger.warning(
                "fetch_retry",
                source=descriptor.name,
                fetcher=self.name,
                attempt=state.attempt_number,
                error=str(exc),
            )

        retrying = AsyncRetrying(
            retry=retry_if_exception(is_retryable),
            stop=stop_after_attempt(max(1, options.max_attempts)),
            wait=wait_exponential(multiplier=options.backoff_seconds, min=0, max=60),
            before_sleep=_log_retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                _clear(workspace)
                result = await self._fetch_once(descriptor, options, workspace)

        logger.info(
            "source_fetched",
            source=descriptor.name,
            fetcher=self.name,
            ref=result.ref,
            commit=result.commit_hash,
        )
        return result

    @asynccontextmanager
    async def acquire(
        self,
        descriptor: SourceDescriptor,
        options: FetchOptions,
        base_dir: str | Path | None = None,
    ) -> AsyncIterator[FetchResult]:
        """Fetch into a fresh workspace that is removed when the block exits."""
        async with scoped_workspace(descriptor.name, base_dir) as workspace:
            yield await self.fetch(descriptor, options, workspace)

    @abstractmethod
    async def _fetch_once(
        self,
        descriptor: SourceDescriptor,
        options: FetchOptions,
        workspace: Path,
    ) -> FetchResult:
        """Perform a single fetch attempt."""
