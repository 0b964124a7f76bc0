"""Core building blocks: configuration, errors, logging and polling."""

from volcache.core.config import SnapshotterConfig, load_config
from volcache.core.errors import VolcacheError
from volcache.core.logging import configure_logging, get_logger

__all__ = [
    "SnapshotterConfig",
    "VolcacheError",
    "configure_logging",
    "get_logger",
    "load_config",
]
