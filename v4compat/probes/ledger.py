"""Minimal ERC-6909 multi-token ledger.

Balances are keyed by ``(holder, asset_id)`` and allowances by
``(owner, spender, asset_id)``. Entries are never deleted; a zero balance is
a valid terminal state.
"""

from __future__ import annotations

from v4compat.core.errors import InsufficientAllowance, InsufficientBalance
from v4compat.probes.gas import G_LOG, G_SSTORE_RESET, G_WARM_ACCESS, GasMeter

UNLIMITED_ALLOWANCE = 2**256 - 1


class MultiTokenLedger:
    """Balance/allowance/operator book for many asset ids."""

    def __init__(self, meter: GasMeter | None = None) -> None:
        self._meter = meter or GasMeter()
        self._balances: dict[tuple[str, int], int] = {}
        self._allowances: dict[tuple[str, str, int], int] = {}
        self._operators: dict[tuple[str, str], bool] = {}

    @staticmethod
    def _check_amount(amount: int) -> None:
        if amount < 0:
            raise ValueError(f"amount must be non-negative, got {amount}")

    # ── Views ────────────────────────────────────────────────────────────────

    def balance_of(self, holder: str, asset_id: int) -> int:
        return self._balances.get((holder, asset_id), 0)

    def allowance(self, owner: str, spender: str, asset_id: int) -> int:
        return self._allowances.get((owner, spender, asset_id), 0)

    def is_operator(self, owner: str, operator: str) -> bool:
        return self._operators.get((owner, operator), False)

    # ── Mutations ────────────────────────────────────────────────────────────

    def mint(self, holder: str, asset_id: int, amount: int) -> None:
        self._check_amount(amount)
        self._meter.charge(G_SSTORE_RESET + G_LOG)
        key = (holder, asset_id)
        self._balances[key] = self._balances.get(key, 0) + amount

    def approve(self, owner: str, spender: str, asset_id: int, amount: int) -> None:
        """Set (not add) the allowance, overwriting any prior value."""
        self._check_amount(amount)
        self._meter.charge(G_SSTORE_RESET + G_LOG)
        self._allowances[(owner, spender, asset_id)] = amount

    def set_operator(self, owner: str, operator: str, approved: bool) -> None:
        self._meter.charge(G_SSTORE_RESET + G_LOG)
        self._operators[(owner, operator)] = approved

    def transfer(self, sender: str, receiver: str, asset_id: int, amount: int) -> None:
        self._move(sender, receiver, asset_id, amount)

    def transfer_from(
        self,
        spender: str,
        sender: str,
        receiver: str,
        asset_id: int,
        amount: int,
    ) -> None:
        """Move ``amount`` of ``sender``'s asset on behalf of ``spender``.

        Balance is checked before allowance. All three updates (sender
        balance, allowance, receiver balance) are applied together only after
        both checks pass.
        """
        self._check_amount(amount)
        self._meter.charge(2 * G_WARM_ACCESS)

        balance = self.balance_of(sender, asset_id)
        if balance < amount:
            raise InsufficientBalance(sender, asset_id, balance, amount)

        new_allowance: int | None = None
        if spender != sender and not self.is_operator(sender, spender):
            allowed = self.allowance(sender, spender, asset_id)
            if allowed < amount:
                raise InsufficientAllowance(sender, spender, asset_id, allowed, amount)
            if allowed != UNLIMITED_ALLOWANCE:
                new_allowance = allowed - amount

        self._move(sender, receiver, asset_id, amount)
        if new_allowance is not None:
            self._allowances[(sender, spender, asset_id)] = new_allowance

    def _move(self, sender: str, receiver: str, asset_id: int, amount: int) -> None:
        self._check_amount(amount)
        balance = self.balance_of(sender, asset_id)
        if balance < amount:
            raise InsufficientBalance(sender, asset_id, balance, amount)
        self._meter.charge(2 * G_SSTORE_RESET + G_LOG)
        self._balances[(sender, asset_id)] = balance - amount
        self._balances[(receiver, asset_id)] = self.balance_of(receiver, asset_id) + amount
