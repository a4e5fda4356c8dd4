"""Probe executor — two-phase (simulate, then commit) execution of one probe.

Flow for every probe:
  1. DRY_RUN  — ``simulate``; a rejection or a self-reported failure ends the
                probe here with zero cost.
  2. ESTIMATE — ``estimate_cost``; the commit gets twice the estimate.
  3. COMMIT   — ``submit`` and wait for the receipt. A failed receipt after
                a successful dry-run is reported distinctly.
  4. VERIFY   — optional read-only postcondition.

Every phase runs under its own hard deadline and a soft warning timer.
Nothing raised by the target environment escapes ``run``: failures become
``ProbeResult`` values.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, TypeVar

from v4compat.core.config import Settings, get_settings
from v4compat.core.errors import ExecutionReverted, GuardViolation, LedgerError, PhaseTimeout
from v4compat.core.types import FailureKind, Phase, ProbeResult
from v4compat.environments.base import TargetEnvironment
from v4compat.executor.timing import SOFT_WARNING_SECONDS, TimeoutTracker, run_phase
from v4compat.probes.catalog import COMMIT_COST_MULTIPLIER, Probe

logger = logging.getLogger(__name__)

T = TypeVar("T")

REVERTED_AFTER_SIMULATION = "committed execution reverted after successful simulation"


@dataclass(frozen=True)
class PhaseTimeouts:
    """Hard deadlines per phase, in seconds."""

    dry_run: float = 15.0
    estimate: float = 10.0
    commit: float = 45.0
    verify: float = 15.0
    soft_warning: float = SOFT_WARNING_SECONDS

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> PhaseTimeouts:
        settings = settings or get_settings()
        return cls(
            dry_run=settings.dry_run_timeout_seconds,
            estimate=settings.estimate_timeout_seconds,
            commit=settings.commit_timeout_seconds,
            verify=settings.dry_run_timeout_seconds,
            soft_warning=settings.soft_warning_seconds,
        )


class _ProbeFailed(Exception):
    """Internal short-circuit carrying a classified failure."""

    def __init__(self, detail: str, kind: FailureKind) -> None:
        super().__init__(detail)
        self.detail = detail
        self.kind = kind


def _classify(exc: BaseException, phase: Phase) -> tuple[str, FailureKind]:
    """Map an exception raised during ``phase`` onto a diagnostic + kind."""
    message = str(exc) or type(exc).__name__
    if isinstance(exc, PhaseTimeout):
        return f"Timeout: {message}", FailureKind.TIMEOUT
    if isinstance(exc, GuardViolation):
        return f"Guard violation: {message}", FailureKind.GUARD_VIOLATION
    if isinstance(exc, LedgerError):
        return f"Ledger violation: {message}", FailureKind.LEDGER
    if phase == Phase.DRY_RUN:
        return f"Simulation failed: {message}", FailureKind.SIMULATION
    if phase == Phase.COMMIT and isinstance(exc, ExecutionReverted):
        return f"{REVERTED_AFTER_SIMULATION}: {message}", FailureKind.REVERTED_AFTER_SIMULATION
    return f"Transaction failed: {message}", FailureKind.COMMIT


class ProbeExecutor:
    """Runs probes one at a time against a target environment."""

    def __init__(
        self,
        environment: TargetEnvironment,
        timeouts: PhaseTimeouts | None = None,
        cost_multiplier: int = COMMIT_COST_MULTIPLIER,
    ) -> None:
        self._env = environment
        self._timeouts = timeouts or PhaseTimeouts()
        self._cost_multiplier = cost_multiplier

    async def _phase(
        self,
        probe: Probe,
        phase: Phase,
        awaitable: Awaitable[T],
        timeout: float,
        timings: dict[str, float],
        warnings: list[str],
    ) -> T:
        tracker = TimeoutTracker(
            f"{phase.value} for {probe.name}",
            warning_after=self._timeouts.soft_warning,
            probe=probe.name,
        )
        try:
            return await run_phase(awaitable, phase=phase.value, timeout=timeout, tracker=tracker)
        finally:
            timings[phase.value] = round(tracker.finish(), 3)
            if tracker.warned:
                warnings.append(f"{phase.value} exceeded {self._timeouts.soft_warning:.0f}s soft limit")

    async def run(self, probe: Probe) -> ProbeResult:
        """Execute ``probe`` through the two-phase protocol."""
        timings: dict[str, float] = {}
        warnings: list[str] = []
        phase = Phase.DRY_RUN

        logger.info("Running probe", extra={"probe": probe.name, "tier": probe.tier.value})
        try:
            # ── Phase 1: dry-run ─────────────────────────────────────────────
            outcome = await self._phase(
                probe, phase, self._env.simulate(probe.operation),
                self._timeouts.dry_run, timings, warnings,
            )
            logger.info(
                "Dry-run %s (%d gas): %s",
                "passed" if outcome.success else "failed",
                outcome.gas_used,
                outcome.details,
                extra={"probe": probe.name, "phase": phase.value},
            )
            if not outcome.success:
                raise _ProbeFailed(outcome.details or "dry-run reported failure", FailureKind.SIMULATION)

            # ── Phase 2: cost estimate ───────────────────────────────────────
            phase = Phase.ESTIMATE
            estimate = await self._phase(
                probe, phase, self._env.estimate_cost(probe.operation),
                self._timeouts.estimate, timings, warnings,
            )
            cost_limit = max(int(estimate), 0) * self._cost_multiplier

            # ── Phase 3: commit ──────────────────────────────────────────────
            phase = Phase.COMMIT
            receipt = await self._phase(
                probe, phase, self._env.submit(probe.operation, cost_limit),
                probe.commit_timeout or self._timeouts.commit, timings, warnings,
            )
            logger.info(
                "Transaction confirmed in block %d (status %d, %d gas)",
                receipt.block_number,
                receipt.status,
                receipt.gas_used,
                extra={"probe": probe.name, "phase": phase.value, "cost": receipt.gas_used},
            )
            if not receipt.succeeded:
                raise _ProbeFailed(REVERTED_AFTER_SIMULATION, FailureKind.REVERTED_AFTER_SIMULATION)

            # ── Phase 4: postcondition ───────────────────────────────────────
            if probe.postcondition is not None:
                phase = Phase.VERIFY
                observed = await self._phase(
                    probe, phase, self._env.query(probe.postcondition.query),
                    self._timeouts.verify, timings, warnings,
                )
                if int(observed) < probe.postcondition.minimum:
                    raise _ProbeFailed(
                        f"Postcondition failed: {probe.postcondition.description or probe.postcondition.query.signature}"
                        f" (observed {observed}, expected >= {probe.postcondition.minimum})",
                        FailureKind.COMMIT,
                    )
        except _ProbeFailed as failed:
            return self._failure(probe, failed.detail, failed.kind, phase, timings, warnings)
        except Exception as exc:
            detail, kind = _classify(exc, phase)
            logger.warning("%s", detail, exc_info=exc, extra={"probe": probe.name, "phase": phase.value})
            return self._failure(probe, detail, kind, phase, timings, warnings)

        return ProbeResult(
            success=True,
            cost=receipt.gas_used,
            detail=outcome.details,
            timings=timings,
            warnings=tuple(warnings),
        )

    def _failure(
        self,
        probe: Probe,
        detail: str,
        kind: FailureKind,
        phase: Phase,
        timings: dict[str, float],
        warnings: list[str],
    ) -> ProbeResult:
        logger.info(
            "Probe failed during %s: %s",
            phase.value,
            detail,
            extra={"probe": probe.name, "phase": phase.value},
        )
        return ProbeResult.failed(detail, kind, timings=timings, warnings=tuple(warnings))


def result_summary(result: ProbeResult) -> dict[str, Any]:
    """Log-friendly view of a result including timings."""
    data = result.summary()
    data["timings_ms"] = dict(result.timings)
    if result.failure is not None:
        data["failure"] = result.failure.value
    return data
