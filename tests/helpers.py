"""Shared test doubles for volcache tests."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime

from volcache.host.commands import CommandResult, raise_for_result

FIXED_NOW = datetime(2026, 3, 14, 9, 26, 53, tzinfo=UTC)


@dataclass
class _Response:
    prefix: tuple[str, ...]
    exit_code: int
    output: str
    times: int | None


class FakeCommandRunner:
    """Records every command; answers from scripted responses.

    Responses match on an argv prefix with any leading ``sudo`` removed.
    The most recently scripted matching response wins; ``times`` limits how
    often it is used. Unscripted commands succeed with empty output.
    """

    def __init__(self) -> None:
        self.commands: list[list[str]] = []
        self._responses: list[_Response] = []

    @staticmethod
    def _unprivileged(argv: Sequence[str]) -> list[str]:
        return list(argv[1:]) if argv and argv[0] == "sudo" else list(argv)

    def respond(
        self,
        prefix: Sequence[str],
        exit_code: int = 0,
        output: str = "",
        times: int | None = None,
    ) -> None:
        self._responses.append(_Response(tuple(prefix), exit_code, output, times))

    async def run(self, argv: Sequence[str], *, check: bool = True) -> CommandResult:
        cmd = list(argv)
        self.commands.append(cmd)
        bare = self._unprivileged(cmd)

        exit_code, output = 0, ""
        for response in reversed(self._responses):
            if tuple(bare[: len(response.prefix)]) != response.prefix:
                continue
            if response.times is not None:
                if response.times <= 0:
                    continue
                response.times -= 1
            exit_code, output = response.exit_code, response.output
            break

        result = CommandResult(argv=cmd, exit_code=exit_code, output=output, duration_seconds=0.0)
        if check:
            raise_for_result(result)
        return result

    def ran(self, *prefix: str) -> list[list[str]]:
        """Commands (sudo stripped) starting with ``prefix``."""
        return [
            self._unprivileged(c) for c in self.commands
            if tuple(self._unprivileged(c)[: len(prefix)]) == prefix
        ]

    def index_of(self, *prefix: str) -> int:
        """Position of the last command starting with ``prefix``."""
        for i in range(len(self.commands) - 1, -1, -1):
            if tuple(self._unprivileged(self.commands[i])[: len(prefix)]) == prefix:
                return i
        raise AssertionError(f"{' '.join(prefix)} was never run")


class FakeClock:
    """Monotonic clock that only moves when ``sleep`` is awaited."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
