"""Full-catalog driver: runs every probe in order and aggregates the results."""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path

from v4compat.assessment.aggregator import aggregate
from v4compat.core.types import AssessmentReport, ProbeResult
from v4compat.environments.base import TargetEnvironment
from v4compat.executor.probe_executor import PhaseTimeouts, ProbeExecutor, result_summary
from v4compat.probes.catalog import Probe, default_catalog

logger = logging.getLogger(__name__)


class CompatibilityAssessment:
    """Coordinates one assessment run against a target environment.

    Probes execute strictly sequentially; the accumulating results mapping is
    only touched from this coroutine.
    """

    def __init__(
        self,
        environment: TargetEnvironment,
        catalog: tuple[Probe, ...] | None = None,
        timeouts: PhaseTimeouts | None = None,
    ) -> None:
        self._env = environment
        self.catalog = catalog if catalog is not None else default_catalog()
        self._executor = ProbeExecutor(environment, timeouts=timeouts)

    async def run(self) -> AssessmentReport:
        start = time.monotonic()
        try:
            network = await self._env.describe()
        except Exception as exc:
            logger.warning("Could not describe target network: %s", exc)
            network = "unknown"

        logger.info("Assessing %s with %d probes", network, len(self.catalog), extra={"network": network})
        results: dict[str, ProbeResult] = {}
        for probe in self.catalog:
            result = await self._executor.run(probe)
            results[probe.name] = result
            logger.info(
                "%s: %s (%d gas) %s",
                probe.name,
                "PASS" if result.success else "FAIL",
                result.cost,
                result.detail,
                extra={"probe": probe.name, "tier": probe.tier.value, "cost": result.cost},
            )
            logger.debug("Result detail: %s", result_summary(result), extra={"probe": probe.name})

        report = aggregate(results, catalog=self.catalog, network=network)
        logger.info(
            "Assessment finished in %.1fs",
            time.monotonic() - start,
            extra={"duration_ms": (time.monotonic() - start) * 1000.0},
        )
        return report


def write_report(report: AssessmentReport, path: str | Path) -> Path:
    """Persist the flat report as JSON for CI consumers."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(json.dumps(report.to_flat_dict(), indent=2, default=str))
    logger.info("Results saved to: %s", target)
    return target


async def snapshot_slots(environment: TargetEnvironment, start: int, count: int) -> dict[int, bytes]:
    """Raw storage words of the tester, read after a run for diagnostics."""
    if count < 1:
        raise ValueError(f"slot count must be positive, got {count}")
    if count == 1:
        words = [await environment.read_slot(start)]
    else:
        words = await environment.read_slots(start, count)
    return {start + offset: word for offset, word in enumerate(words)}
