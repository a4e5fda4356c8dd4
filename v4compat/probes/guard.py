"""Guarded callback state machine.

Two independent guards live on one explicit ``LockContext``:

* the **unlock lock** — ``UNLOCKED`` → ``LOCKED`` while an unlock callback
  runs, back to ``UNLOCKED`` on every exit path. Re-entering ``unlock`` while
  ``LOCKED`` is a ``LockStateViolation``.
* the **reentrancy depth** — protected operations bump the depth on entry,
  reject with ``ReentrancyDetected`` when they observe another protected
  operation in flight, and always restore the depth on exit.

Inside an unlock callback, lock-scoped operations (``take``/``settle``) record
per-currency deltas; the callback must leave every delta at zero.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Callable, TypeVar

from v4compat.core.errors import (
    CurrencyNotSettled,
    LockNotHeld,
    LockStateViolation,
    ReentrancyDetected,
)
from v4compat.probes.gas import G_TRANSIENT, GasMeter

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Internal operations a well-behaved unlock callback performs.
CALLBACK_OPERATIONS = 2


class LockState(str, enum.Enum):
    UNLOCKED = "unlocked"
    LOCKED = "locked"


@dataclass
class LockContext:
    """Lock flag and reentrancy depth for one execution session."""

    locked: bool = False
    reentrancy_depth: int = 0

    @property
    def state(self) -> LockState:
        return LockState.LOCKED if self.locked else LockState.UNLOCKED

    @property
    def is_clean(self) -> bool:
        return not self.locked and self.reentrancy_depth == 0


class GuardedCallbackMachine:
    """Drives a ``LockContext`` through unlock and protected-call transitions."""

    def __init__(self, context: LockContext | None = None, meter: GasMeter | None = None) -> None:
        self.context = context or LockContext()
        self._meter = meter or GasMeter()
        self._deltas: dict[str, int] = {}
        self.operations_in_callback = 0

    # ── Unlock / callback ────────────────────────────────────────────────────

    def unlock(self, callback: Callable[["GuardedCallbackMachine"], T]) -> T:
        """Lock, run ``callback`` synchronously, release unconditionally."""
        if self.context.locked:
            raise LockStateViolation()

        self._meter.charge(G_TRANSIENT)
        self.context.locked = True
        self._deltas.clear()
        self.operations_in_callback = 0
        try:
            result = callback(self)
            outstanding = sum(1 for delta in self._deltas.values() if delta != 0)
            if outstanding:
                raise CurrencyNotSettled(outstanding)
            return result
        finally:
            self.context.locked = False
            self._deltas.clear()
            self._meter.charge(G_TRANSIENT)

    def require_lock(self) -> None:
        if not self.context.locked:
            raise LockNotHeld()

    def take(self, currency: str, amount: int) -> None:
        """Debit the caller: the pool owes nothing, the caller owes ``amount``."""
        self._apply_delta(currency, -amount)

    def settle(self, currency: str, amount: int) -> None:
        """Credit the caller for ``amount`` paid in."""
        self._apply_delta(currency, amount)

    def _apply_delta(self, currency: str, amount: int) -> None:
        self.require_lock()
        self._meter.charge(2 * G_TRANSIENT)
        self._deltas[currency] = self._deltas.get(currency, 0) + amount
        self.operations_in_callback += 1

    def delta(self, currency: str) -> int:
        return self._deltas.get(currency, 0)

    # ── Reentrancy guard ─────────────────────────────────────────────────────

    def protected(self, operation: Callable[[], T]) -> T:
        """Run ``operation`` under the non-reentrant guard.

        The depth is incremented before the check so that the rejected path
        exercises the same restore as the successful one.
        """
        self._meter.charge(G_TRANSIENT)
        self.context.reentrancy_depth += 1
        try:
            if self.context.reentrancy_depth > 1:
                logger.debug("Rejected nested protected call at depth %d", self.context.reentrancy_depth)
                raise ReentrancyDetected()
            return operation()
        finally:
            self.context.reentrancy_depth -= 1
