from __future__ import annotations

import re
import shutil
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import structlog

logger = structlog.get_logger()

_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]+")


@asynccontextmanager
async def scoped_workspace(source_name: str, base_dir: str | Path | None = None) -> AsyncIterator[Path]:
    """Create an ephemeral directory for one source and always remove it.

    Removal happens on every exit path: normal completion, a raised error, and
    task cancellation.
    """
    if base_dir is not None:
        Path(base_dir).mkdir(parents=True, exist_ok=True)
    prefix = f"metricatlas-{_UNSAFE.sub('-', source_name)}-"
    path = Path(tempfile.mkdtemp(prefix=prefix, dir=str(base_dir) if base_dir else None))
    logger.debug("workspace_created", source=source_name, path=str(path))
    try:
        yield path
    finally:
        shutil.rmtree(path, ignore_errors=True)
        logger.debug("workspace_released", source=source_name, path=str(path))
