"""JSON-RPC target environment for a deployed compatibility tester.

Maps the executor's phases onto standard node calls:

    simulate      → eth_call
    estimate_cost → eth_estimateGas
    submit        → eth_sendTransaction / eth_sendRawTransaction + receipt poll
    read_slot(s)  → eth_getStorageAt
"""

from __future__ import annotations

import logging
from typing import Any

from eth_account import Account
from web3 import AsyncWeb3, Web3
from web3.exceptions import ContractLogicError

from v4compat.core.config import Settings, get_settings
from v4compat.core.errors import CommitError, ExecutionReverted, SimulationError
from v4compat.environments.base import Operation, ProbeOutcome, Receipt
from v4compat.probes.storage import WORD_BYTES

logger = logging.getLogger(__name__)


# ── Tester ABI ───────────────────────────────────────────────────────────────

PROBE_FUNCTIONS = (
    "testSingletonPools",
    "testHooksLifecycle",
    "testUnlockCallbacks",
    "testERCStandards",
    "testStorageOptimization",
    "testProtocolFees",
    "testStackDepth",
)

_PROBE_RESULT = {
    "name": "result",
    "type": "tuple",
    "components": [
        {"name": "success", "type": "bool"},
        {"name": "gasUsed", "type": "uint256"},
        {"name": "details", "type": "string"},
    ],
}

TESTER_ABI: list[dict[str, Any]] = [
    {
        "inputs": [],
        "name": name,
        "outputs": [_PROBE_RESULT],
        "stateMutability": "nonpayable",
        "type": "function",
    }
    for name in PROBE_FUNCTIONS
] + [
    {
        "inputs": [],
        "name": "poolCount",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"name": "currency", "type": "address"}],
        "name": "protocolFeesAccrued",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
]


def _revert_reason(exc: ContractLogicError) -> str:
    # web3 v7 stringifies as an (message, data) tuple.
    return getattr(exc, "message", None) or str(exc)


class RpcEnvironment:
    """Target environment reached over HTTP JSON-RPC via ``web3``."""

    def __init__(
        self,
        rpc_url: str,
        tester_address: str,
        sender_address: str = "",
        private_key: str = "",
        receipt_timeout: float = 120.0,
        w3: AsyncWeb3 | None = None,
    ) -> None:
        if not tester_address:
            raise ValueError("tester_address is required for RPC runs")
        self._w3 = w3 or AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))
        self._address = Web3.to_checksum_address(tester_address)
        self._contract = self._w3.eth.contract(address=self._address, abi=TESTER_ABI)
        self._account = Account.from_key(private_key) if private_key else None
        self._sender = Web3.to_checksum_address(sender_address) if sender_address else None
        self._receipt_timeout = receipt_timeout

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> RpcEnvironment:
        settings = settings or get_settings()
        return cls(
            rpc_url=settings.rpc_url,
            tester_address=settings.tester_address,
            sender_address=settings.sender_address,
            private_key=settings.private_key,
            receipt_timeout=settings.extended_commit_timeout_seconds * 2,
        )

    async def _sender_address(self) -> str:
        if self._account is not None:
            return self._account.address
        if self._sender is None:
            accounts = await self._w3.eth.accounts
            if not accounts:
                raise CommitError("node exposes no accounts; configure a private key")
            self._sender = accounts[0]
        return self._sender

    def _function(self, operation: Operation) -> Any:
        return getattr(self._contract.functions, operation.function)(*operation.args)

    # ── TargetEnvironment ────────────────────────────────────────────────────

    async def simulate(self, operation: Operation) -> ProbeOutcome:
        sender = await self._sender_address()
        try:
            success, gas_used, details = await self._function(operation).call({"from": sender})
        except ContractLogicError as exc:
            raise SimulationError(_revert_reason(exc)) from exc
        return ProbeOutcome(success=bool(success), gas_used=int(gas_used), details=str(details))

    async def estimate_cost(self, operation: Operation) -> int:
        sender = await self._sender_address()
        return int(await self._function(operation).estimate_gas({"from": sender}))

    async def submit(self, operation: Operation, cost_limit: int) -> Receipt:
        sender = await self._sender_address()
        fn = self._function(operation)

        # Automining dev nodes reject a reverting transaction at send time
        # instead of mining it with status 0.
        try:
            if self._account is not None:
                tx = await fn.build_transaction({
                    "from": sender,
                    "gas": cost_limit,
                    "nonce": await self._w3.eth.get_transaction_count(sender, "pending"),
                    "chainId": await self._w3.eth.chain_id,
                })
                signed = self._account.sign_transaction(tx)
                tx_hash = await self._w3.eth.send_raw_transaction(signed.raw_transaction)
            else:
                tx_hash = await fn.transact({"from": sender, "gas": cost_limit})
        except ContractLogicError as exc:
            raise ExecutionReverted(_revert_reason(exc)) from exc

        logger.info("Transaction sent: %s", Web3.to_hex(tx_hash))
        receipt = await self._w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self._receipt_timeout)
        return Receipt(
            status=int(receipt["status"]),
            gas_used=int(receipt["gasUsed"]),
            tx_hash=Web3.to_hex(tx_hash),
            block_number=int(receipt["blockNumber"]),
        )

    async def query(self, operation: Operation) -> Any:
        return await self._function(operation).call()

    async def read_slot(self, slot: int) -> bytes:
        raw = await self._w3.eth.get_storage_at(self._address, slot)
        return bytes(raw).rjust(WORD_BYTES, b"\x00")

    async def read_slots(self, start: int, count: int) -> list[bytes]:
        return [await self.read_slot(start + offset) for offset in range(count)]

    async def describe(self) -> str:
        chain_id = await self._w3.eth.chain_id
        return f"chain {chain_id}"

    async def close(self) -> None:
        await self._w3.provider.disconnect()
