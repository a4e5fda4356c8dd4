"""Shared fixtures for the V4 compatibility engine test suite."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from v4compat.core.types import FailureKind, ProbeResult, Tier
from v4compat.environments.base import Operation, ProbeOutcome, Receipt
from v4compat.environments.memory import InMemoryEnvironment
from v4compat.probes.catalog import Postcondition, Probe, default_catalog
from v4compat.probes.tester import CompatibilityTester, NetworkProfile


# ── Fake target environment ──────────────────────────────────────────────────


class FakeEnvironment:
    """Scriptable target environment that records every call it receives."""

    def __init__(
        self,
        outcome: ProbeOutcome | None = None,
        estimate: int = 60_000,
        receipt_status: int = 1,
        receipt_gas: int = 55_000,
        query_value: Any = 1,
        errors: dict[str, BaseException] | None = None,
        delays: dict[str, float] | None = None,
    ) -> None:
        self.outcome = outcome or ProbeOutcome(success=True, gas_used=50_000, details="ok")
        self.estimate = estimate
        self.receipt_status = receipt_status
        self.receipt_gas = receipt_gas
        self.query_value = query_value
        self.errors = errors or {}
        self.delays = delays or {}
        self.calls: list[str] = []
        self.cost_limits: list[int] = []

    async def _enter(self, method: str) -> None:
        self.calls.append(method)
        delay = self.delays.get(method, 0.0)
        if delay:
            await asyncio.sleep(delay)
        error = self.errors.get(method)
        if error is not None:
            raise error

    async def simulate(self, operation: Operation) -> ProbeOutcome:
        await self._enter("simulate")
        return self.outcome

    async def estimate_cost(self, operation: Operation) -> int:
        await self._enter("estimate_cost")
        return self.estimate

    async def submit(self, operation: Operation, cost_limit: int) -> Receipt:
        self.cost_limits.append(cost_limit)
        await self._enter("submit")
        return Receipt(status=self.receipt_status, gas_used=self.receipt_gas, tx_hash="0xfeed", block_number=1)

    async def query(self, operation: Operation) -> Any:
        await self._enter("query")
        return self.query_value

    async def read_slot(self, slot: int) -> bytes:
        await self._enter("read_slot")
        return bytes(32)

    async def read_slots(self, start: int, count: int) -> list[bytes]:
        await self._enter("read_slots")
        return [bytes(32)] * count

    async def describe(self) -> str:
        return "fake-net"


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def fake_env() -> FakeEnvironment:
    return FakeEnvironment()


@pytest.fixture
def memory_env() -> InMemoryEnvironment:
    return InMemoryEnvironment()


@pytest.fixture
def no_transient_env() -> InMemoryEnvironment:
    """Network without EIP-1153 transient storage."""
    return InMemoryEnvironment(profile=NetworkProfile(name="pre-cancun", transient_storage=False))


@pytest.fixture
def tester() -> CompatibilityTester:
    return CompatibilityTester()


@pytest.fixture
def sample_probe() -> Probe:
    return Probe(
        name="sample",
        tier=Tier.CRITICAL,
        operation=Operation("testSample"),
        description="Sample probe for executor tests",
    )


@pytest.fixture
def probe_with_postcondition() -> Probe:
    return Probe(
        name="sample_with_check",
        tier=Tier.CRITICAL,
        operation=Operation("testSample"),
        description="Sample probe with a pool-count postcondition",
        postcondition=Postcondition(query=Operation("poolCount"), minimum=1, description="pool count increased"),
    )


@pytest.fixture
def catalog() -> tuple[Probe, ...]:
    return default_catalog()


def make_results(
    critical: int,
    important: int,
    performance: int = 0,
    catalog: tuple[Probe, ...] | None = None,
) -> dict[str, ProbeResult]:
    """Results where the first N probes of each tier pass and the rest fail."""
    wanted = {Tier.CRITICAL: critical, Tier.IMPORTANT: important, Tier.PERFORMANCE: performance}
    seen = {tier: 0 for tier in Tier}
    results: dict[str, ProbeResult] = {}
    for probe in catalog or default_catalog():
        seen[probe.tier] += 1
        if seen[probe.tier] <= wanted[probe.tier]:
            results[probe.name] = ProbeResult(success=True, cost=42_000, detail="ok")
        else:
            results[probe.name] = ProbeResult.failed("Simulation failed: nope", FailureKind.SIMULATION)
    return results


@pytest.fixture
def results_factory():
    return make_results
