"""Gas accounting for the in-process tester."""

from __future__ import annotations

from dataclasses import dataclass

from v4compat.core.errors import OutOfGas

# Post-Berlin schedule, rounded to the opcodes the probes touch.
G_TX_BASE = 21_000
G_COLD_SLOAD = 2_100
G_WARM_ACCESS = 100
G_SSTORE_SET = 20_000
G_SSTORE_RESET = 2_900
G_TRANSIENT = 100
G_CALL = 2_600
G_LOG = 375
G_HASH = 36


@dataclass
class GasMeter:
    """Accumulates gas; raises ``OutOfGas`` once ``limit`` is exceeded."""

    limit: int | None = None
    used: int = 0

    def charge(self, amount: int) -> None:
        self.used += amount
        if self.limit is not None and self.used > self.limit:
            raise OutOfGas(self.limit, self.used)

    def reset(self, limit: int | None = None) -> None:
        self.limit = limit
        self.used = 0
