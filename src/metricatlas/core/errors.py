"""
Error taxonomy and exit codes for MetricAtlas.

Every failure the pipeline can report is a :class:`MetricAtlasError`
subclass carrying the exit code a CLI command should return when the error
escapes it.

Exit Codes:
- 0: Success (run complete)
- 1: Partial (run finished, at least one source failed or enrichment skipped)
- 2: Fatal (run aborted, e.g. the store became unavailable)
- 10: Configuration error
- 11: Store error
- 12: Validation error
- 127: Unknown/internal error
"""

from __future__ import annotations

import functools
import sys
import traceback
from enum import IntEnum
from typing import Any, Callable, TypeVar

import structlog

logger = structlog.get_logger()


class ExitCode(IntEnum):
    """Standardized exit codes for CLI commands."""

    SUCCESS = 0
    PARTIAL = 1
    FATAL = 2
    CONFIG_ERROR = 10
    STORE_ERROR = 11
    VALIDATION_ERROR = 12
    UNKNOWN_ERROR = 127


class MetricAtlasError(Exception):
    """Base exception for MetricAtlas errors with exit code support."""

    exit_code: ExitCode = ExitCode.UNKNOWN_ERROR
    show_traceback: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(MetricAtlasError):
    """Raised for invalid settings or source configuration files."""

    exit_code = ExitCode.CONFIG_ERROR


class DuplicateSourceError(ConfigurationError):
    """Raised when a source name is registered twice."""

    def __init__(self, name: str):
        super().__init__(f"Source already registered: {name}", {"source": name})
        self.name = name


class FetchError(MetricAtlasError):
    """Raised when a source repository cannot be materialized."""

    exit_code = ExitCode.PARTIAL
    retryable: bool = False


class NetworkError(FetchError):
    """Transport-level failure reaching the source host."""

    retryable = True


class RefNotFoundError(FetchError):
    """The requested branch, tag or commit does not exist."""

    retryable = False


class FetchTimeoutError(FetchError):
    """The fetch did not finish within its time budget."""

    retryable = True


class ExtractionError(MetricAtlasError):
    """Raised when an extractor cannot process a source at all."""

    exit_code = ExitCode.PARTIAL


class NormalizationError(MetricAtlasError):
    """Raised when a raw metric cannot be mapped to the canonical schema."""

    exit_code = ExitCode.VALIDATION_ERROR


class StoreError(MetricAtlasError):
    """Raised when the metric store cannot be read or written."""

    exit_code = ExitCode.STORE_ERROR


class CatalogLoadError(MetricAtlasError):
    """Raised when the semantic convention catalog cannot be loaded."""

    exit_code = ExitCode.PARTIAL


F = TypeVar("F", bound=Callable[..., int])


def main_with_error_handling(
    *,
    show_traceback: bool = False,
    log_errors: bool = True,
) -> Callable[[F], F]:
    """
    Decorator for CLI command functions that provides unified error handling.

    Args:
        show_traceback: If True, show full traceback for unexpected errors
        log_errors: If True, log errors to structlog

    Exit codes:
        - MetricAtlasError subclasses: Uses the error's exit_code
        - KeyboardInterrupt: Returns 130 (standard for SIGINT)
        - Other exceptions: Returns 127 (unknown error)
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> int:
            try:
                return func(*args, **kwargs)
            except MetricAtlasError as e:
                if log_errors:
                    logger.error(
                        "command_error",
                        error_type=type(e).__name__,
                        message=e.message,
                        exit_code=int(e.exit_code),
                        **e.details,
                    )
                if e.show_traceback or show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return int(e.exit_code)
            except KeyboardInterrupt:
                if log_errors:
                    logger.info("command_interrupted")
                return 130
            except Exception as e:
                if log_errors:
                    logger.error(
                        "unexpected_error",
                        error_type=type(e).__name__,
                        message=str(e),
                        exit_code=int(ExitCode.UNKNOWN_ERROR),
                    )
                if show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return int(ExitCode.UNKNOWN_ERROR)

        return wrapper  # type: ignore[return-value]

    return decorator


def format_error_message(error: MetricAtlasError) -> str:
    """Format an error message for display to users."""
    msg = error.message
    if error.details:
        detail_str = ", ".join(f"{k}={v}" for k, v in error.details.items())
        msg = f"{msg} ({detail_str})"
    return msg
