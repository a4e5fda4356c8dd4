"""Target environment interface consumed by the probe executor."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class Operation:
    """A call against the compatibility tester (function name + arguments)."""

    function: str
    args: tuple[Any, ...] = ()

    @property
    def signature(self) -> str:
        arg_str = ", ".join(repr(a) for a in self.args)
        return f"{self.function}({arg_str})"


@dataclass(frozen=True)
class ProbeOutcome:
    """What a probe call reports about itself: (success, gasUsed, details)."""

    success: bool
    gas_used: int = 0
    details: str = ""


@dataclass(frozen=True)
class Receipt:
    """Confirmation of a committed operation."""

    status: int
    gas_used: int
    tx_hash: str = ""
    block_number: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == 1


@runtime_checkable
class TargetEnvironment(Protocol):
    """Opaque, fallible, RPC-style ledger that executes tester operations.

    Every method is a suspension point and may raise or hang; the executor
    owns timeouts.
    """

    async def simulate(self, operation: Operation) -> ProbeOutcome:
        """Execute without committing state."""
        ...

    async def estimate_cost(self, operation: Operation) -> int:
        ...

    async def submit(self, operation: Operation, cost_limit: int) -> Receipt:
        """Commit the operation and wait for its receipt."""
        ...

    async def query(self, operation: Operation) -> Any:
        """Read-only view call."""
        ...

    async def read_slot(self, slot: int) -> bytes:
        ...

    async def read_slots(self, start: int, count: int) -> list[bytes]:
        ...

    async def describe(self) -> str:
        """Human-readable network label."""
        ...
