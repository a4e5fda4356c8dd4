"""In-process target environment backed by ``CompatibilityTester``.

Behaves like a local dev chain:
  - ``simulate`` runs against a deep copy and discards it (``eth_call``)
  - ``estimate_cost`` runs against a deep copy and returns gas used
  - ``submit`` runs against a copy that replaces live state only if the
    call succeeds within ``cost_limit``; a revert still yields a mined
    receipt with ``status == 0``
"""

from __future__ import annotations

import asyncio
import copy
import hashlib
import logging
from typing import Any

from v4compat.core.errors import CommitError, ExecutionReverted, GuardViolation, LedgerError, SimulationError
from v4compat.environments.base import Operation, ProbeOutcome, Receipt
from v4compat.probes.storage import to_word
from v4compat.probes.tester import CompatibilityTester, NetworkProfile

logger = logging.getLogger(__name__)


class InMemoryEnvironment:
    """Target environment that executes probes in-process."""

    def __init__(
        self,
        tester: CompatibilityTester | None = None,
        profile: NetworkProfile | None = None,
        latency: float = 0.0,
    ) -> None:
        self._tester = tester or CompatibilityTester(profile)
        self._latency = latency
        self._block_number = 0
        self.submitted: list[Operation] = []

    @property
    def tester(self) -> CompatibilityTester:
        return self._tester

    async def _round_trip(self) -> None:
        # Every call yields to the loop like a network round trip would.
        await asyncio.sleep(self._latency)

    def _execute_on_copy(self, operation: Operation, gas_limit: int | None = None) -> tuple[CompatibilityTester, ProbeOutcome]:
        fork = copy.deepcopy(self._tester)
        outcome = fork.call(operation.function, gas_limit=gas_limit)
        return fork, outcome

    # ── TargetEnvironment ────────────────────────────────────────────────────

    async def simulate(self, operation: Operation) -> ProbeOutcome:
        await self._round_trip()
        try:
            _, outcome = self._execute_on_copy(operation)
        except (GuardViolation, LedgerError):
            raise
        except Exception as exc:
            raise SimulationError(f"execution reverted: {exc}") from exc
        return outcome

    async def estimate_cost(self, operation: Operation) -> int:
        await self._round_trip()
        try:
            _, outcome = self._execute_on_copy(operation)
        except Exception as exc:
            raise SimulationError(f"gas estimation failed: {exc}") from exc
        return outcome.gas_used

    async def submit(self, operation: Operation, cost_limit: int) -> Receipt:
        await self._round_trip()
        block_gas_limit = self._tester.profile.block_gas_limit
        if cost_limit > block_gas_limit:
            raise CommitError(f"gas limit {cost_limit} exceeds block gas limit {block_gas_limit}")

        self.submitted.append(operation)
        self._block_number += 1
        tx_hash = "0x" + hashlib.sha256(f"{operation.signature}:{self._block_number}".encode()).hexdigest()

        try:
            fork, outcome = self._execute_on_copy(operation, gas_limit=cost_limit)
        except ExecutionReverted as exc:
            logger.info("Transaction %s reverted: %s", tx_hash[:10], exc.reason)
            return Receipt(
                status=0,
                gas_used=exc.gas_used or cost_limit,
                tx_hash=tx_hash,
                block_number=self._block_number,
                metadata={"revert_reason": exc.reason},
            )
        except Exception as exc:
            logger.info("Transaction %s reverted: %s", tx_hash[:10], exc)
            return Receipt(
                status=0,
                gas_used=cost_limit,
                tx_hash=tx_hash,
                block_number=self._block_number,
                metadata={"revert_reason": str(exc)},
            )

        self._tester = fork
        return Receipt(
            status=1,
            gas_used=outcome.gas_used,
            tx_hash=tx_hash,
            block_number=self._block_number,
            metadata={"details": outcome.details},
        )

    async def query(self, operation: Operation) -> Any:
        await self._round_trip()
        return self._tester.view(operation.function, *operation.args)

    async def read_slot(self, slot: int) -> bytes:
        await self._round_trip()
        return to_word(self._tester.view("extsload", slot))

    async def read_slots(self, start: int, count: int) -> list[bytes]:
        await self._round_trip()
        return [to_word(self._tester.view("extsload", start + offset)) for offset in range(count)]

    async def describe(self) -> str:
        return self._tester.profile.name
