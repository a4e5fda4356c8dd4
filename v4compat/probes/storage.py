"""Raw storage-slot access (``extsload``) and transient storage.

V4 exposes pool state through ``extsload`` rather than per-field getters,
and keeps its unlock flag and delta counters in EIP-1153 transient slots.
This module models both for the storage-optimization probe.
"""

from __future__ import annotations

from v4compat.core.errors import ExecutionReverted
from v4compat.probes.gas import (
    G_COLD_SLOAD,
    G_SSTORE_RESET,
    G_SSTORE_SET,
    G_TRANSIENT,
    G_WARM_ACCESS,
    GasMeter,
)

WORD_BYTES = 32
MAX_WORD = 2**256 - 1


def to_word(value: int) -> bytes:
    """Big-endian 32-byte encoding of a uint256."""
    return value.to_bytes(WORD_BYTES, "big")


def from_word(raw: bytes) -> int:
    return int.from_bytes(raw, "big")


class SlotStore:
    """Persistent + transient uint256 slots with warm/cold gas accounting."""

    def __init__(self, meter: GasMeter | None = None, transient_supported: bool = True) -> None:
        self._meter = meter or GasMeter()
        self._slots: dict[int, int] = {}
        self._transient: dict[int, int] = {}
        self._warm: set[int] = set()
        self.transient_supported = transient_supported

    # ── Persistent storage ───────────────────────────────────────────────────

    def _access(self, slot: int) -> None:
        if not 0 <= slot <= MAX_WORD:
            raise ValueError(f"slot out of range: {slot}")
        if slot in self._warm:
            self._meter.charge(G_WARM_ACCESS)
        else:
            self._warm.add(slot)
            self._meter.charge(G_COLD_SLOAD)

    def sload(self, slot: int) -> int:
        self._access(slot)
        return self._slots.get(slot, 0)

    def sstore(self, slot: int, value: int) -> None:
        if not 0 <= value <= MAX_WORD:
            raise ValueError(f"value does not fit in a word: {value}")
        self._access(slot)
        previous = self._slots.get(slot, 0)
        self._meter.charge(G_SSTORE_SET if previous == 0 and value != 0 else G_SSTORE_RESET)
        if value == 0:
            self._slots.pop(slot, None)
        else:
            self._slots[slot] = value

    def extsload(self, slot: int) -> bytes:
        return to_word(self.sload(slot))

    def extsload_range(self, start: int, count: int) -> list[bytes]:
        if count < 0:
            raise ValueError("count must be non-negative")
        return [self.extsload(start + offset) for offset in range(count)]

    # ── Transient storage (EIP-1153) ─────────────────────────────────────────

    def _require_transient(self, opcode: str) -> None:
        if not self.transient_supported:
            raise ExecutionReverted(f"invalid opcode: {opcode}")

    def tload(self, slot: int) -> int:
        self._require_transient("TLOAD")
        self._meter.charge(G_TRANSIENT)
        return self._transient.get(slot, 0)

    def tstore(self, slot: int, value: int) -> None:
        self._require_transient("TSTORE")
        if not 0 <= value <= MAX_WORD:
            raise ValueError(f"value does not fit in a word: {value}")
        self._meter.charge(G_TRANSIENT)
        self._transient[slot] = value

    def end_transaction(self) -> None:
        """Transient slots and the warm set do not survive the transaction."""
        self._transient.clear()
        self._warm.clear()
