"""Shared enums and report types used across the engine."""

from __future__ import annotations

import enum
from types import MappingProxyType
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

# Top-level keys of the flat report that probe names may not take.
RESERVED_REPORT_KEYS = frozenset({"verdict", "network", "storage"})


def _read_only(value: Mapping[Any, Any]) -> Mapping[Any, Any]:
    return MappingProxyType(dict(value))


# ── Enums ────────────────────────────────────────────────────────────────────


class Tier(str, enum.Enum):
    """Severity tier of a probe; governs aggregation weight."""

    CRITICAL = "critical"
    IMPORTANT = "important"
    PERFORMANCE = "performance"


class Verdict(str, enum.Enum):
    """Overall compatibility verdict."""

    COMPATIBLE = "COMPATIBLE"
    PARTIAL = "PARTIAL"
    INCOMPATIBLE = "INCOMPATIBLE"


class FailureKind(str, enum.Enum):
    """Why a probe failed."""

    SIMULATION = "simulation"
    COMMIT = "commit"
    REVERTED_AFTER_SIMULATION = "reverted_after_simulation"
    TIMEOUT = "timeout"
    GUARD_VIOLATION = "guard_violation"
    LEDGER = "ledger"


class Phase(str, enum.Enum):
    """Executor phases, in order."""

    DRY_RUN = "dry_run"
    ESTIMATE = "estimate"
    COMMIT = "commit"
    VERIFY = "verify"


# ── Schemas ──────────────────────────────────────────────────────────────────


class ProbeResult(BaseModel):
    """Outcome of running one probe through the executor."""

    model_config = ConfigDict(frozen=True)

    success: bool
    cost: int = Field(default=0, ge=0)
    detail: str = ""
    failure: FailureKind | None = None
    timings: Mapping[str, float] = Field(default_factory=dict)
    warnings: tuple[str, ...] = ()

    @field_validator("timings")
    @classmethod
    def freeze_timings(cls, value: Mapping[str, float]) -> Mapping[str, float]:
        return _read_only(value)

    @field_serializer("timings")
    def dump_timings(self, value: Mapping[str, float]) -> dict[str, float]:
        return dict(value)

    @classmethod
    def failed(
        cls,
        detail: str,
        failure: FailureKind,
        timings: Mapping[str, float] | None = None,
        warnings: tuple[str, ...] = (),
    ) -> "ProbeResult":
        """Failed result; failures never carry committed cost."""
        return cls(
            success=False,
            cost=0,
            detail=detail,
            failure=failure,
            timings=timings or {},
            warnings=warnings,
        )

    def summary(self) -> dict[str, Any]:
        return {"success": self.success, "cost": self.cost, "detail": self.detail}


class TierCount(BaseModel):
    """Passed/total counter for one tier."""

    model_config = ConfigDict(frozen=True)

    passed: int = 0
    total: int = 0


class AssessmentReport(BaseModel):
    """Result of a full catalog run."""

    model_config = ConfigDict(frozen=True)

    per_probe: Mapping[str, ProbeResult] = Field(default_factory=dict)
    verdict: Verdict
    network: str = ""
    tier_counts: Mapping[Tier, TierCount] = Field(default_factory=dict)

    @field_validator("tier_counts")
    @classmethod
    def freeze_tier_counts(cls, value: Mapping[Tier, TierCount]) -> Mapping[Tier, TierCount]:
        return _read_only(value)

    @field_validator("per_probe")
    @classmethod
    def check_probe_names(cls, value: Mapping[str, ProbeResult]) -> Mapping[str, ProbeResult]:
        clashing = sorted(RESERVED_REPORT_KEYS.intersection(value))
        if clashing:
            raise ValueError(f"probe names clash with report keys: {', '.join(clashing)}")
        return _read_only(value)

    @field_serializer("per_probe", "tier_counts")
    def dump_mappings(self, value: Mapping[Any, Any]) -> dict[Any, Any]:
        return dict(value)

    def passed(self, tier: Tier) -> int:
        count = self.tier_counts.get(tier)
        return count.passed if count else 0

    def to_flat_dict(self) -> dict[str, Any]:
        """Flat mapping of probe name → {success, cost, detail} plus verdict."""
        flat: dict[str, Any] = {name: result.summary() for name, result in self.per_probe.items()}
        flat["verdict"] = self.verdict.value
        if self.network:
            flat["network"] = self.network
        return flat
