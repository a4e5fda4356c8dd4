"""Probe catalog and aggregation thresholds.

The catalog is the fixed, ordered list of feature probes run against a
target network. Tiers and thresholds are the only externally meaningful
configuration surface.
"""

from __future__ import annotations

from dataclasses import dataclass

from v4compat.core.types import Tier
from v4compat.environments.base import Operation

# A network is compatible enough with 3 of the 4 critical probes passing.
CRITICAL_PASS_THRESHOLD = 3
IMPORTANT_PASS_THRESHOLD = 1

# Committed calls get twice the estimated gas.
COMMIT_COST_MULTIPLIER = 2


@dataclass(frozen=True)
class Postcondition:
    """Read-only check evaluated after a successful commit."""

    query: Operation
    minimum: int = 1
    description: str = ""


@dataclass(frozen=True)
class Probe:
    """A single named check of one network feature."""

    name: str
    tier: Tier
    operation: Operation
    description: str
    commit_timeout: float | None = None
    postcondition: Postcondition | None = None


def default_catalog(
    commit_timeout: float | None = None,
    extended_commit_timeout: float | None = None,
) -> tuple[Probe, ...]:
    """Build the standard seven-probe catalog.

    ``extended_commit_timeout`` applies to the two heaviest critical probes
    (singleton pools, hooks lifecycle); ``commit_timeout`` to the rest. Either
    may be ``None`` to fall back to the executor default.
    """
    extended = extended_commit_timeout if extended_commit_timeout is not None else commit_timeout
    return (
        Probe(
            name="singleton_pools",
            tier=Tier.CRITICAL,
            operation=Operation("testSingletonPools"),
            description="Multiple pools register in one shared registry; duplicates are rejected",
            commit_timeout=extended,
            postcondition=Postcondition(
                query=Operation("poolCount"),
                minimum=1,
                description="pool count increased",
            ),
        ),
        Probe(
            name="hooks_lifecycle",
            tier=Tier.CRITICAL,
            operation=Operation("testHooksLifecycle"),
            description="Hook permissions are encoded in the hook address and callbacks fire in order",
            commit_timeout=extended,
        ),
        Probe(
            name="unlock_callbacks",
            tier=Tier.CRITICAL,
            operation=Operation("testUnlockCallbacks"),
            description="Unlock callback settles its deltas, nested unlock is rejected, lock always releases",
            commit_timeout=commit_timeout,
        ),
        Probe(
            name="erc_standards",
            tier=Tier.CRITICAL,
            operation=Operation("testERCStandards"),
            description="ERC-6909 mint/approve/transferFrom leave exact balances and allowances",
            commit_timeout=commit_timeout,
        ),
        Probe(
            name="storage_optimization",
            tier=Tier.IMPORTANT,
            operation=Operation("testStorageOptimization"),
            description="Raw slots readable via extsload; transient storage available",
            commit_timeout=commit_timeout,
        ),
        Probe(
            name="protocol_fees",
            tier=Tier.IMPORTANT,
            operation=Operation("testProtocolFees"),
            description="Protocol fees accrue and collect through a reentrancy-guarded call",
            commit_timeout=commit_timeout,
        ),
        Probe(
            name="stack_depth",
            tier=Tier.PERFORMANCE,
            operation=Operation("testStackDepth"),
            description="Nested calls reach the target call depth",
            commit_timeout=commit_timeout,
        ),
    )


def probes_in_tier(catalog: tuple[Probe, ...], tier: Tier) -> tuple[Probe, ...]:
    return tuple(probe for probe in catalog if probe.tier == tier)
