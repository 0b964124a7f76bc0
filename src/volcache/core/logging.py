"""Structured logging for volcache.

Every step of the restore and snapshot phases emits one structured,
timestamped event through structlog. Events carry the job correlation
fields (repository, git ref, mount point, phase) automatically when a
``JobContext`` is active.

Example usage:
    from volcache.core.logging import JobContext, configure_logging, get_logger, with_context

    configure_logging(level="INFO", format="console")

    logger = get_logger("snapshot.locator")
    with with_context(JobContext(repository="acme/app", ref="refs/heads/main")):
        logger.info("snapshot_found", snapshot_id="snap-0123")
"""

from __future__ import annotations

import logging
import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Literal

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

# Field names whose values are never written to the log
SENSITIVE_PATTERNS = frozenset({
    "access_key",
    "secret",
    "session_token",
    "token",
    "password",
    "credential",
    "authorization",
})


@dataclass(frozen=True)
class JobContext:
    """Immutable correlation context for one volcache invocation.

    Attributes:
        repository: ``owner/name`` of the repository the job runs for.
        ref: Git ref the cache key is derived from.
        mount_point: Mount point being restored or snapshotted.
        phase: ``restore`` or ``snapshot`` (None outside a phase).
        run_id: Unique id of this process invocation.
    """

    repository: str
    ref: str
    mount_point: str | None = None
    phase: str | None = None
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    def for_mount_point(self, mount_point: str, phase: str) -> JobContext:
        """Return a copy scoped to one mount point and phase."""
        return replace(self, mount_point=mount_point, phase=phase)

    def to_dict(self) -> dict[str, Any]:
        """Convert context to a dictionary for logging (None values dropped)."""
        result: dict[str, Any] = {
            "repository": self.repository,
            "ref": self.ref,
            "run_id": self.run_id,
        }
        if self.mount_point is not None:
            result["mount_point"] = self.mount_point
        if self.phase is not None:
            result["phase"] = self.phase
        return result


_current_context: ContextVar[JobContext | None] = ContextVar(
    "volcache_context", default=None
)


def get_current_context() -> JobContext | None:
    """Get the active JobContext, if any."""
    return _current_context.get()


@contextmanager
def with_context(ctx: JobContext) -> Iterator[JobContext]:
    """Make ``ctx`` the active JobContext for the duration of a block."""
    token = _current_context.set(ctx)
    try:
        yield ctx
    finally:
        _current_context.reset(token)


def _sanitize_value(key: str, value: Any) -> Any:
    key_lower = key.lower()
    for pattern in SENSITIVE_PATTERNS:
        if pattern in key_lower:
            return "[REDACTED]"
    return value


def _sanitize_event_dict(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor that redacts sensitive fields (one level deep)."""
    sanitized: EventDict = {}
    for key, value in event_dict.items():
        if isinstance(value, dict):
            sanitized[key] = {k: _sanitize_value(k, v) for k, v in value.items()}
        else:
            sanitized[key] = _sanitize_value(key, value)
    return sanitized


def _add_timestamp(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    event_dict["timestamp"] = datetime.now(UTC).isoformat()
    return event_dict


def _add_context(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor that merges the active JobContext.

    Explicitly bound fields take precedence over context fields.
    """
    ctx = get_current_context()
    if ctx is not None:
        for key, value in ctx.to_dict().items():
            event_dict.setdefault(key, value)
    return event_dict


class VolcacheLogger:
    """Component logger wrapping structlog.

    The underlying structlog logger is fetched lazily on every call so that
    loggers created at import time honour a later ``configure_logging()``.
    """

    def __init__(self, component: str, **initial_context: Any) -> None:
        self._component = component
        self._context: dict[str, Any] = {"component": component, **initial_context}

    def _get_logger(self) -> structlog.stdlib.BoundLogger:
        logger: structlog.stdlib.BoundLogger = structlog.get_logger().bind(**self._context)
        return logger

    def debug(self, event: str, **kw: Any) -> None:
        self._get_logger().debug(event, **kw)

    def info(self, event: str, **kw: Any) -> None:
        self._get_logger().info(event, **kw)

    def warning(self, event: str, **kw: Any) -> None:
        self._get_logger().warning(event, **kw)

    def error(self, event: str, **kw: Any) -> None:
        self._get_logger().error(event, **kw)


def _build_processors(renderer: Processor, include_timestamps: bool) -> list[Processor]:
    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        _sanitize_event_dict,
        _add_context,
    ]
    if include_timestamps:
        processors.append(_add_timestamp)
    processors.extend([
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        renderer,
    ])
    return processors


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO",
    format: Literal["json", "console"] = "console",  # noqa: A002
    file_path: Path | None = None,
    max_file_size_mb: int = 20,
    backup_count: int = 3,
    include_timestamps: bool = True,
) -> None:
    """Configure structured logging. Call once at process start.

    Args:
        level: Minimum log level to emit.
        format: ``console`` for coloured human-readable lines on stderr,
            ``json`` for one JSON object per line on stdout.
        file_path: Also write log lines to this file (rotated).
        max_file_size_mb: Rotation threshold for the log file.
        backup_count: Number of rotated log files to keep.
        include_timestamps: Add ISO-8601 UTC timestamps to every event.

    Raises:
        ValueError: If ``level`` or ``format`` is not recognised.
    """
    if format not in ("json", "console"):
        raise ValueError(f"Unknown log format '{format}': expected 'json' or 'console'")
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        raise ValueError(f"Unknown log level '{level}'")

    handlers: list[logging.Handler] = []
    stream = sys.stderr if format == "console" else sys.stdout
    stream_handler = logging.StreamHandler(stream)
    stream_handler.setLevel(log_level)
    handlers.append(stream_handler)

    if file_path is not None:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            file_path,
            maxBytes=max_file_size_mb * 1024 * 1024,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(log_level)
        handlers.append(file_handler)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in handlers:
        root_logger.addHandler(handler)

    # botocore is chatty at DEBUG
    logging.getLogger("botocore").setLevel(max(log_level, logging.INFO))

    if format == "json":
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=stream.isatty())

    # cache_logger_on_first_use=False so import-time loggers pick up this config
    structlog.configure(
        processors=_build_processors(renderer, include_timestamps),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


def get_logger(component: str, **initial_context: Any) -> VolcacheLogger:
    """Get a logger bound to a component name (e.g. ``snapshot.finalizer``)."""
    return VolcacheLogger(component, **initial_context)


__all__ = [
    "JobContext",
    "SENSITIVE_PATTERNS",
    "VolcacheLogger",
    "configure_logging",
    "get_current_context",
    "get_logger",
    "with_context",
]
