"""In-process model of the on-chain compatibility tester.

Each ``test_*`` method mirrors one entry point of the deployed tester
contract and returns ``(success, details)``; ``call`` wraps it with gas
metering into a ``ProbeOutcome``. Expected rejections (duplicate pools,
nested unlocks, reentrant collects, over-spends) are asserted inside the
probe. Anything unexpected propagates and reverts the call.

Identifiers (pool salts, hook addresses, asset ids) derive from a per-call
nonce so repeated runs never collide with earlier state.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from v4compat.core.errors import (
    CompatError,
    ExecutionReverted,
    InsufficientAllowance,
    InsufficientBalance,
    LockStateViolation,
    ReentrancyDetected,
)
from v4compat.environments.base import ProbeOutcome
from v4compat.probes.gas import G_CALL, G_HASH, G_LOG, G_SSTORE_SET, G_TX_BASE, GasMeter
from v4compat.probes.guard import CALLBACK_OPERATIONS, GuardedCallbackMachine
from v4compat.probes.ledger import MultiTokenLedger
from v4compat.probes.storage import SlotStore, from_word

logger = logging.getLogger(__name__)

TESTER = "0x00000000000000000000000000000000000074e5"
FEE_RECIPIENT = "0x000000000000000000000000000000000000fee5"

# Hook permission flags live in the lowest bits of the hook address.
BEFORE_INITIALIZE_FLAG = 1 << 13
AFTER_INITIALIZE_FLAG = 1 << 12
BEFORE_ADD_LIQUIDITY_FLAG = 1 << 11
AFTER_ADD_LIQUIDITY_FLAG = 1 << 10
BEFORE_REMOVE_LIQUIDITY_FLAG = 1 << 9
AFTER_REMOVE_LIQUIDITY_FLAG = 1 << 8
BEFORE_SWAP_FLAG = 1 << 7
AFTER_SWAP_FLAG = 1 << 6
BEFORE_DONATE_FLAG = 1 << 5
AFTER_DONATE_FLAG = 1 << 4
ALL_HOOK_MASK = (1 << 14) - 1

MAX_PROTOCOL_FEE_PIPS = 1_000
STACK_DEPTH_TARGET = 128
STORAGE_PROBE_BASE_SLOT = 0x1000
STORAGE_PROBE_SLOTS = 4
NONZERO_DELTA_COUNT_SLOT = 0x7d4b3164c6e45b97e7d87b7125a44c5828d005af88f9d751cfd78729c5d99a0b


class PoolError(CompatError):
    """Pool-manager level rejection."""


# ── Pools & hooks ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PoolKey:
    currency0: str
    currency1: str
    fee: int
    tick_spacing: int
    hooks: int = 0

    def pool_id(self) -> str:
        encoded = f"{self.currency0}:{self.currency1}:{self.fee}:{self.tick_spacing}:{self.hooks:#x}"
        return "0x" + hashlib.sha256(encoded.encode()).hexdigest()


@dataclass
class RecordingHook:
    """Hook contract that records which callbacks fired."""

    address: int
    implements: int
    calls: list[str] = field(default_factory=list)

    @property
    def flags(self) -> int:
        return self.address & ALL_HOOK_MASK

    def dispatch(self, callback: str) -> None:
        self.calls.append(callback)


_HOOK_CALLBACKS = (
    (BEFORE_INITIALIZE_FLAG, "beforeInitialize"),
    (AFTER_INITIALIZE_FLAG, "afterInitialize"),
    (BEFORE_SWAP_FLAG, "beforeSwap"),
    (AFTER_SWAP_FLAG, "afterSwap"),
)


class PoolManager:
    """Singleton registry: every pool lives in one mapping."""

    def __init__(self, meter: GasMeter) -> None:
        self._meter = meter
        self._pools: dict[str, PoolKey] = {}
        self._hooks: dict[int, RecordingHook] = {}

    @property
    def pool_count(self) -> int:
        return len(self._pools)

    def register_hook(self, hook: RecordingHook) -> None:
        if hook.flags != hook.implements:
            raise PoolError(f"hook address not valid: {hook.address:#x}")
        self._hooks[hook.address] = hook

    def _call_hook(self, key: PoolKey, flag: int, callback: str) -> None:
        if not key.hooks or not key.hooks & flag:
            return
        hook = self._hooks.get(key.hooks)
        if hook is None:
            raise PoolError(f"hook not deployed: {key.hooks:#x}")
        self._meter.charge(G_CALL)
        hook.dispatch(callback)

    def initialize(self, key: PoolKey) -> str:
        if key.currency0 >= key.currency1:
            raise PoolError("currencies out of order or equal")
        if key.tick_spacing <= 0:
            raise PoolError("tick spacing too small")
        self._meter.charge(G_HASH)
        pool_id = key.pool_id()
        if pool_id in self._pools:
            raise PoolError("pool already initialized")
        self._call_hook(key, BEFORE_INITIALIZE_FLAG, "beforeInitialize")
        self._meter.charge(G_SSTORE_SET + G_LOG)
        self._pools[pool_id] = key
        self._call_hook(key, AFTER_INITIALIZE_FLAG, "afterInitialize")
        return pool_id

    def swap(self, key: PoolKey) -> None:
        if key.pool_id() not in self._pools:
            raise PoolError("pool not initialized")
        self._call_hook(key, BEFORE_SWAP_FLAG, "beforeSwap")
        self._meter.charge(G_LOG)
        self._call_hook(key, AFTER_SWAP_FLAG, "afterSwap")


# ── Network profile ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class NetworkProfile:
    """Capabilities of the emulated network."""

    name: str = "in-memory"
    transient_storage: bool = True
    max_call_depth: int = 1024
    block_gas_limit: int = 30_000_000


# ── Tester ───────────────────────────────────────────────────────────────────


class CompatibilityTester:
    """Python model of the deployed V4 compatibility tester."""

    def __init__(self, profile: NetworkProfile | None = None) -> None:
        self.profile = profile or NetworkProfile()
        self.meter = GasMeter()
        self.storage = SlotStore(self.meter, transient_supported=self.profile.transient_storage)
        self.ledger = MultiTokenLedger(self.meter)
        self.guard = GuardedCallbackMachine(meter=self.meter)
        self.pools = PoolManager(self.meter)
        self.protocol_fees: dict[str, int] = {}
        self.nonce = 0

    # ── Dispatch ─────────────────────────────────────────────────────────────

    def entry_points(self) -> dict[str, Callable[[], tuple[bool, str]]]:
        return {
            "testSingletonPools": self.test_singleton_pools,
            "testHooksLifecycle": self.test_hooks_lifecycle,
            "testUnlockCallbacks": self.test_unlock_callbacks,
            "testERCStandards": self.test_erc_standards,
            "testStorageOptimization": self.test_storage_optimization,
            "testProtocolFees": self.test_protocol_fees,
            "testStackDepth": self.test_stack_depth,
        }

    def call(self, function: str, gas_limit: int | None = None) -> ProbeOutcome:
        """Execute one entry point as a transaction."""
        entry = self.entry_points().get(function)
        if entry is None:
            raise ExecutionReverted(f"unknown function selector: {function}")

        self.meter.reset(gas_limit)
        self.nonce += 1
        try:
            self.meter.charge(G_TX_BASE)
            success, details = entry()
        finally:
            self.storage.end_transaction()
        logger.debug("%s -> success=%s gas=%d", function, success, self.meter.used)
        return ProbeOutcome(success=success, gas_used=self.meter.used, details=details)

    def view(self, function: str, *args: Any) -> Any:
        views: dict[str, Callable[..., Any]] = {
            "poolCount": lambda: self.pools.pool_count,
            "protocolFeesAccrued": lambda currency: self.protocol_fees.get(currency, 0),
            "extsload": lambda slot: from_word(self.storage.extsload(slot)),
        }
        view = views.get(function)
        if view is None:
            raise ExecutionReverted(f"unknown view: {function}")
        self.meter.reset()
        try:
            return view(*args)
        finally:
            self.storage.end_transaction()

    def _salt(self, label: str) -> str:
        return f"{label}-{self.nonce}"

    def _currency_pair(self) -> tuple[str, str]:
        a = "0x" + hashlib.sha256(self._salt("currency-a").encode()).hexdigest()[:40]
        b = "0x" + hashlib.sha256(self._salt("currency-b").encode()).hexdigest()[:40]
        return (a, b) if a < b else (b, a)

    # ── Critical probes ──────────────────────────────────────────────────────

    def test_singleton_pools(self) -> tuple[bool, str]:
        c0, c1 = self._currency_pair()
        before = self.pools.pool_count
        first = self.pools.initialize(PoolKey(c0, c1, fee=3_000, tick_spacing=60))
        second = self.pools.initialize(PoolKey(c0, c1, fee=500, tick_spacing=10))
        if first == second:
            return False, "distinct pool keys mapped to the same pool id"

        try:
            self.pools.initialize(PoolKey(c0, c1, fee=3_000, tick_spacing=60))
            return False, "duplicate initialize was accepted"
        except PoolError:
            pass
        try:
            self.pools.initialize(PoolKey(c1, c0, fee=100, tick_spacing=1))
            return False, "unordered currencies were accepted"
        except PoolError:
            pass

        created = self.pools.pool_count - before
        if created != 2:
            return False, f"expected 2 new pools in the singleton registry, found {created}"
        return True, f"2 pools share one registry ({self.pools.pool_count} total)"

    def test_hooks_lifecycle(self) -> tuple[bool, str]:
        flags = BEFORE_INITIALIZE_FLAG | AFTER_INITIALIZE_FLAG | BEFORE_SWAP_FLAG | AFTER_SWAP_FLAG
        address = (self.nonce << 14) | flags
        hook = RecordingHook(address=address, implements=flags)
        self.pools.register_hook(hook)

        mismatched = RecordingHook(address=(self.nonce << 14) | BEFORE_SWAP_FLAG, implements=flags)
        try:
            self.pools.register_hook(mismatched)
            return False, "hook with mismatched permission bits was accepted"
        except PoolError:
            pass

        c0, c1 = self._currency_pair()
        key = PoolKey(c0, c1, fee=3_000, tick_spacing=60, hooks=address)
        self.pools.initialize(key)
        self.pools.swap(key)

        expected = [name for flag, name in _HOOK_CALLBACKS if flags & flag]
        if hook.calls != expected:
            return False, f"hook callbacks out of order: {hook.calls}"
        return True, f"{len(hook.calls)} hook callbacks fired in order"

    def test_unlock_callbacks(self) -> tuple[bool, str]:
        currency = self._salt("unlock-currency")
        observations: dict[str, Any] = {}

        def callback(machine: GuardedCallbackMachine) -> str:
            self.storage.tstore(NONZERO_DELTA_COUNT_SLOT, 1)
            machine.take(currency, 1_000)
            machine.settle(currency, 1_000)
            self.storage.tstore(NONZERO_DELTA_COUNT_SLOT, 0)
            try:
                machine.unlock(lambda _: None)
                observations["nested"] = "accepted"
            except LockStateViolation as exc:
                observations["nested"] = str(exc)
            return "callback-ok"

        result = self.guard.unlock(callback)
        if result != "callback-ok":
            return False, f"unexpected callback result: {result!r}"
        if self.guard.operations_in_callback != CALLBACK_OPERATIONS:
            return False, f"callback performed {self.guard.operations_in_callback} operations"
        if observations.get("nested") != "already unlocked":
            return False, "nested unlock was not rejected"

        def failing(machine: GuardedCallbackMachine) -> None:
            machine.take(currency, 1)
            raise RuntimeError("callback signalled failure")

        try:
            self.guard.unlock(failing)
            return False, "failing callback did not propagate"
        except RuntimeError:
            pass
        if not self.guard.context.is_clean:
            return False, "lock not released after failing callback"

        return True, "unlock callback settled 2 deltas; nested unlock rejected; lock released"

    def test_erc_standards(self) -> tuple[bool, str]:
        holder = self._salt("holder")
        asset_id = self.nonce
        amount = 1_000

        self.ledger.mint(holder, asset_id, amount)
        self.ledger.approve(holder, TESTER, asset_id, amount)
        self.ledger.transfer_from(TESTER, holder, TESTER, asset_id, amount // 2)

        balance = self.ledger.balance_of(holder, asset_id)
        allowance = self.ledger.allowance(holder, TESTER, asset_id)
        if balance != amount // 2 or allowance != amount // 2:
            return False, f"unexpected balance/allowance after transferFrom: {balance}/{allowance}"

        try:
            self.ledger.transfer_from(TESTER, holder, TESTER, asset_id, amount)
            return False, "over-balance transferFrom accepted"
        except InsufficientBalance:
            pass

        self.ledger.approve(holder, TESTER, asset_id, 1)
        try:
            self.ledger.transfer_from(TESTER, holder, TESTER, asset_id, 2)
            return False, "over-allowance transferFrom accepted"
        except InsufficientAllowance:
            pass

        if self.ledger.balance_of(holder, asset_id) != amount // 2:
            return False, "rejected transfer left a partial update"
        return True, "ERC-6909 mint/approve/transferFrom consistent"

    # ── Important probes ─────────────────────────────────────────────────────

    def test_storage_optimization(self) -> tuple[bool, str]:
        base = STORAGE_PROBE_BASE_SLOT + self.nonce * STORAGE_PROBE_SLOTS
        values = [self.nonce * 1_000 + i + 1 for i in range(STORAGE_PROBE_SLOTS)]
        for offset, value in enumerate(values):
            self.storage.sstore(base + offset, value)

        if from_word(self.storage.extsload(base)) != values[0]:
            return False, "single-slot extsload mismatch"
        ranged = [from_word(raw) for raw in self.storage.extsload_range(base, STORAGE_PROBE_SLOTS)]
        if ranged != values:
            return False, f"ranged extsload mismatch: {ranged}"

        self.storage.tstore(base, 0xBEEF)
        if self.storage.tload(base) != 0xBEEF:
            return False, "transient slot did not round-trip"
        return True, f"{STORAGE_PROBE_SLOTS} slots readable via extsload; transient storage available"

    def test_protocol_fees(self) -> tuple[bool, str]:
        currency = self._salt("fee-currency")
        fee_pips = MAX_PROTOCOL_FEE_PIPS // 2
        volume = 2_000_000
        accrued = volume * fee_pips // 1_000_000
        self.protocol_fees[currency] = self.protocol_fees.get(currency, 0) + accrued
        self.meter.charge(G_SSTORE_SET)

        observations: dict[str, Any] = {}

        def collect(recipient: str, amount: int, on_transfer: Callable[[], None] | None = None) -> int:
            def body() -> int:
                available = self.protocol_fees.get(currency, 0)
                take = available if amount == 0 else min(amount, available)
                self.protocol_fees[currency] = available - take
                self.ledger.mint(recipient, self.nonce, take)
                if on_transfer is not None:
                    on_transfer()
                return take

            return self.guard.protected(body)

        def reenter() -> None:
            depth_before = self.guard.context.reentrancy_depth
            try:
                collect(FEE_RECIPIENT, 0)
                observations["reentry"] = "accepted"
            except ReentrancyDetected as exc:
                observations["reentry"] = str(exc)
            observations["depth_restored"] = self.guard.context.reentrancy_depth == depth_before

        collected = collect(FEE_RECIPIENT, 0, on_transfer=reenter)

        if observations.get("reentry") != "reentrancy detected":
            return False, "reentrant fee collection was not rejected"
        if not observations.get("depth_restored"):
            return False, "reentrancy depth corrupted by rejected call"
        if collected != accrued or self.protocol_fees[currency] != 0:
            return False, f"collected {collected} of {accrued} accrued fees"
        if self.ledger.balance_of(FEE_RECIPIENT, self.nonce) != accrued:
            return False, "fee recipient balance mismatch"
        return True, f"collected {collected} protocol fee units; reentrant collect rejected"

    # ── Performance probes ───────────────────────────────────────────────────

    def test_stack_depth(self) -> tuple[bool, str]:
        def descend(depth: int) -> int:
            if depth >= self.profile.max_call_depth:
                raise ExecutionReverted(f"call depth exceeded at {depth}")
            self.meter.charge(G_CALL)
            if depth + 1 >= STACK_DEPTH_TARGET:
                return depth + 1
            return descend(depth + 1)

        reached = descend(0)
        return reached >= STACK_DEPTH_TARGET, f"reached call depth {reached}"
