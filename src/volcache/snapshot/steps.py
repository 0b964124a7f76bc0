"""Per-step failure policy for the restore and snapshot sequences.

Each host or cloud step is declared with a ``StepPolicy``. ``REQUIRED``
steps propagate their error; ``BEST_EFFORT`` steps log a warning and let
the sequence continue. Exceptions other than ``VolcacheError`` always
propagate.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

from volcache.core.errors import VolcacheError
from volcache.core.logging import VolcacheLogger

T = TypeVar("T")


class StepPolicy(str, Enum):
    REQUIRED = "required"
    BEST_EFFORT = "best_effort"


@dataclass(frozen=True)
class Step:
    """A named step of a sequence and what happens when it fails."""

    name: str
    policy: StepPolicy = StepPolicy.REQUIRED

    @classmethod
    def required(cls, name: str) -> Step:
        return cls(name, StepPolicy.REQUIRED)

    @classmethod
    def best_effort(cls, name: str) -> Step:
        return cls(name, StepPolicy.BEST_EFFORT)


async def run_step(
    step: Step,
    action: Callable[[], Awaitable[T]],
    logger: VolcacheLogger,
    **fields: Any,
) -> T | None:
    """Run ``action`` under ``step``'s policy.

    Returns:
        The action's result, or None if a best-effort step failed.

    Raises:
        VolcacheError: If a required step failed.
    """
    logger.info("step_started", step=step.name, **fields)
    try:
        result = await action()
    except VolcacheError as e:
        if step.policy is StepPolicy.REQUIRED:
            logger.error("step_failed", step=step.name, **{**fields, **e.to_log_fields()})
            raise
        logger.warning("step_skipped", step=step.name, **{**fields, **e.to_log_fields()})
        return None
    logger.info("step_completed", step=step.name, **fields)
    return result
