"""Phase timing: wall-clock duration, soft warnings and hard deadlines."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, TypeVar

from v4compat.core.errors import PhaseTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")

SOFT_WARNING_SECONDS = 30.0


class TimeoutTracker:
    """Tracks one operation's elapsed time and warns once it runs long.

    The warning is scheduled on the running loop and never aborts the
    operation; ``finish`` cancels it and returns the elapsed milliseconds.
    """

    def __init__(self, operation: str, warning_after: float = SOFT_WARNING_SECONDS, probe: str = "") -> None:
        self.operation = operation
        self.warning_after = warning_after
        self.probe = probe
        self.warned = False
        self._start = time.perf_counter()
        self._handle: asyncio.TimerHandle | None = None
        self._finished_ms: float | None = None

    def start(self) -> "TimeoutTracker":
        self._start = time.perf_counter()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.warning_after, self._warn)
        return self

    def _warn(self) -> None:
        self.warned = True
        logger.warning(
            "%s is taking longer than expected (%.0fms)...",
            self.operation,
            self.elapsed_ms(),
            extra={"probe": self.probe, "duration_ms": self.elapsed_ms()},
        )

    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self._start) * 1000.0

    def finish(self) -> float:
        if self._finished_ms is not None:
            return self._finished_ms
        if self._handle is not None:
            self._handle.cancel()
        self._finished_ms = self.elapsed_ms()
        if self.warned:
            logger.info(
                "%s completed after %.0fms",
                self.operation,
                self._finished_ms,
                extra={"probe": self.probe, "duration_ms": self._finished_ms},
            )
        return self._finished_ms


async def run_phase(
    awaitable: Awaitable[T],
    *,
    phase: str,
    timeout: float,
    tracker: TimeoutTracker,
) -> T:
    """Await ``awaitable`` under a hard deadline, converting expiry to ``PhaseTimeout``.

    Expiry abandons the wait only; work already handed to the target (a
    submitted transaction) is not cancelled on the remote side.
    """
    tracker.start()
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise PhaseTimeout(phase, timeout) from exc
    finally:
        tracker.finish()
