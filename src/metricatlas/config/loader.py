"""
Sources file loading.

Search order:
1. Explicit path (--sources flag or METRICATLAS_SOURCES_FILE)
2. .metricatlas/sources.yaml (project root)
3. ~/.metricatlas/sources.yaml (user home)
4. Built-in source list
"""

from __future__ import annotations

from pathlib import Path

import structlog
import yaml

from metricatlas.config.sources import SourcesConfig
from metricatlas.core.errors import ConfigurationError

logger = structlog.get_logger()


def get_sources_path(explicit_path: str | Path | None = None) -> Path | None:
    """
    Find the sources file to use.

    An explicit path that does not exist is an error rather than a silent
    fallback to the built-in sources.
    """
    if explicit_path:
        path = Path(explicit_path).expanduser()
        if not path.exists():
            raise ConfigurationError("Sources file not found", {"path": str(path)})
        return path

    cwd_config = Path.cwd() / ".metricatlas" / "sources.yaml"
    if cwd_config.exists():
        return cwd_config

    home_config = Path.home() / ".metricatlas" / "sources.yaml"
    if home_config.exists():
        return home_config

    return None


def load_sources_file(path: Path) -> SourcesConfig:
    """Parse a sources YAML file."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML: {e}", {"path": str(path)}) from e
    except OSError as e:
        raise ConfigurationError(f"Cannot read sources file: {e}", {"path": str(path)}) from e

    config = SourcesConfig.from_dict(data, origin=str(path))
    logger.debug("loaded_sources", path=str(path), count=len(config.sources))
    return config


def load_sources(path: str | Path | None = None) -> SourcesConfig:
    """
    Load the configured sources, falling back to the built-in list.

    Args:
        path: Optional explicit sources file path

    Returns:
        SourcesConfig instance
    """
    from metricatlas.sources.builtin import builtin_sources

    sources_path = get_sources_path(path)
    if sources_path is None:
        logger.info("using_builtin_sources")
        return builtin_sources()
    return load_sources_file(sources_path)
