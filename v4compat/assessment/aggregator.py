"""Assessment aggregator — tiered verdict over a full set of probe results."""

from __future__ import annotations

import logging
from typing import Mapping

from v4compat.core.errors import IncompatibleEnvironmentError
from v4compat.core.types import AssessmentReport, ProbeResult, Tier, TierCount, Verdict
from v4compat.probes.catalog import (
    CRITICAL_PASS_THRESHOLD,
    IMPORTANT_PASS_THRESHOLD,
    Probe,
    default_catalog,
)

logger = logging.getLogger(__name__)


def decide_verdict(
    critical_passed: int,
    important_passed: int,
    critical_threshold: int = CRITICAL_PASS_THRESHOLD,
    important_threshold: int = IMPORTANT_PASS_THRESHOLD,
) -> Verdict:
    """Threshold rule; performance results never reach this function."""
    if critical_passed < critical_threshold:
        return Verdict.INCOMPATIBLE
    if important_passed >= important_threshold:
        return Verdict.COMPATIBLE
    return Verdict.PARTIAL


def aggregate(
    results: Mapping[str, ProbeResult],
    catalog: tuple[Probe, ...] | None = None,
    network: str = "",
) -> AssessmentReport:
    """Count successes per tier and build the final report.

    Probes that appear in the catalog but not in ``results`` count as not
    passed; results for names outside the catalog are kept in the report but
    carry no tier weight.
    """
    catalog = catalog if catalog is not None else default_catalog()
    tiers = {probe.name: probe.tier for probe in catalog}

    passed = {tier: 0 for tier in Tier}
    totals = {tier: 0 for tier in Tier}
    for probe in catalog:
        totals[probe.tier] += 1
        result = results.get(probe.name)
        if result is not None and result.success:
            passed[probe.tier] += 1

    verdict = decide_verdict(passed[Tier.CRITICAL], passed[Tier.IMPORTANT])
    unknown = sorted(set(results) - set(tiers))
    if unknown:
        logger.warning("Results outside the catalog carry no tier weight: %s", ", ".join(unknown))

    report = AssessmentReport(
        per_probe=dict(results),
        verdict=verdict,
        network=network,
        tier_counts={tier: TierCount(passed=passed[tier], total=totals[tier]) for tier in Tier},
    )
    logger.info(
        "Overall status: %s (critical %d/%d, important %d/%d, performance %d/%d)",
        verdict.value,
        passed[Tier.CRITICAL], totals[Tier.CRITICAL],
        passed[Tier.IMPORTANT], totals[Tier.IMPORTANT],
        passed[Tier.PERFORMANCE], totals[Tier.PERFORMANCE],
        extra={"verdict": verdict.value, "network": network},
    )
    return report


def ensure_compatible(report: AssessmentReport) -> AssessmentReport:
    """Hand the report to the caller, raising if the critical threshold is unmet."""
    critical = report.tier_counts.get(Tier.CRITICAL, TierCount())
    if critical.passed < CRITICAL_PASS_THRESHOLD:
        raise IncompatibleEnvironmentError(critical.total - critical.passed, report=report)
    return report
