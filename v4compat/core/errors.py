"""Exception hierarchy for probe execution and assessment.

Probe failures never leave the executor as exceptions; these types exist so
environments and primitives can signal *why* something failed, and so the
executor can classify the failure into a ``FailureKind``.
"""

from __future__ import annotations


class CompatError(Exception):
    """Base exception for the compatibility engine."""


# ── Execution phases ─────────────────────────────────────────────────────────


class SimulationError(CompatError):
    """The dry-run call was rejected by the target environment."""


class CommitError(CompatError):
    """The committed call was rejected or could not be confirmed."""


class ExecutionReverted(CommitError):
    """The environment reverted an operation."""

    def __init__(self, reason: str = "execution reverted", gas_used: int = 0) -> None:
        super().__init__(reason)
        self.reason = reason
        self.gas_used = gas_used


class OutOfGas(ExecutionReverted):
    """Execution consumed more than its cost limit."""

    def __init__(self, limit: int, required: int) -> None:
        super().__init__(f"out of gas: limit {limit}, required {required}", gas_used=limit)
        self.limit = limit
        self.required = required


class PhaseTimeout(CompatError):
    """A phase exceeded its hard deadline."""

    def __init__(self, phase: str, timeout: float) -> None:
        super().__init__(f"{phase} timed out after {timeout:.1f}s")
        self.phase = phase
        self.timeout = timeout


# ── Guard violations ─────────────────────────────────────────────────────────


class GuardViolation(CompatError):
    """Lock-state or reentrancy-depth invariant violated."""


class LockStateViolation(GuardViolation):
    """Attempted to unlock while the context is already unlocked."""

    def __init__(self, message: str = "already unlocked") -> None:
        super().__init__(message)


class LockNotHeld(GuardViolation):
    """A lock-scoped operation ran outside an unlock callback."""

    def __init__(self, message: str = "manager locked: operation requires an active unlock") -> None:
        super().__init__(message)


class ReentrancyDetected(GuardViolation):
    """A protected operation was entered while another one was in flight."""

    def __init__(self, message: str = "reentrancy detected") -> None:
        super().__init__(message)


class CurrencyNotSettled(GuardViolation):
    """An unlock callback returned with outstanding currency deltas."""

    def __init__(self, outstanding: int) -> None:
        super().__init__(f"currency not settled: {outstanding} non-zero delta(s)")
        self.outstanding = outstanding


# ── Ledger ───────────────────────────────────────────────────────────────────


class LedgerError(CompatError):
    """Expected, recoverable ledger rejection."""


class InsufficientBalance(LedgerError):
    def __init__(self, holder: str, asset_id: int, balance: int, amount: int) -> None:
        super().__init__(
            f"insufficient balance: {holder} holds {balance} of asset {asset_id}, needs {amount}"
        )
        self.holder = holder
        self.asset_id = asset_id
        self.balance = balance
        self.amount = amount


class InsufficientAllowance(LedgerError):
    def __init__(self, owner: str, spender: str, asset_id: int, allowance: int, amount: int) -> None:
        super().__init__(
            f"insufficient allowance: {spender} may spend {allowance} of {owner}'s asset {asset_id}, needs {amount}"
        )
        self.owner = owner
        self.spender = spender
        self.asset_id = asset_id
        self.allowance = allowance
        self.amount = amount


# ── Assessment ───────────────────────────────────────────────────────────────


class IncompatibleEnvironmentError(CompatError):
    """Raised at the final hand-off when the critical threshold is unmet."""

    def __init__(self, failed_critical: int, report: object | None = None) -> None:
        super().__init__(f"Critical V4 features missing: {failed_critical} tests failed")
        self.failed_critical = failed_critical
        self.report = report
