"""Tests for the JSON-RPC environment with a mocked ``AsyncWeb3``."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from web3.exceptions import ContractLogicError

from v4compat.core.errors import ExecutionReverted, SimulationError
from v4compat.core.types import FailureKind
from v4compat.environments.base import Operation, TargetEnvironment
from v4compat.environments.rpc import TESTER_ABI, RpcEnvironment
from v4compat.executor.probe_executor import REVERTED_AFTER_SIMULATION, ProbeExecutor
from v4compat.probes.catalog import default_catalog

TESTER_ADDRESS = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
SENDER = "0xf39fd6e51aad88f6f4ce6ab8827279cfffb92266"
SENDER_CHECKSUM = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
# First well-known local dev chain key; never holds real funds.
DEV_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"

PROBE = Operation("testSingletonPools")


def _resolved(value):
    future = asyncio.get_running_loop().create_future()
    future.set_result(value)
    return future


@pytest.fixture
def w3() -> MagicMock:
    mock = MagicMock()
    mock.eth.wait_for_transaction_receipt = AsyncMock(
        return_value={"status": 1, "gasUsed": 61_000, "blockNumber": 7}
    )
    mock.eth.get_storage_at = AsyncMock(return_value=b"\x01")
    mock.provider.disconnect = AsyncMock()
    return mock


def _probe_fn(w3: MagicMock, name: str = "testSingletonPools") -> MagicMock:
    return getattr(w3.eth.contract.return_value.functions, name).return_value


class TestConstruction:
    def test_requires_tester(self, w3: MagicMock):
        with pytest.raises(ValueError, match="tester_address"):
            RpcEnvironment("http://x", "", w3=w3)

    def test_checksums_tester(self, w3: MagicMock):
        RpcEnvironment("http://x", TESTER_ADDRESS.lower(), sender_address=SENDER, w3=w3)
        kwargs = w3.eth.contract.call_args.kwargs
        assert kwargs["address"] == TESTER_ADDRESS
        assert kwargs["abi"] is TESTER_ABI

    def test_satisfies_protocol(self, w3: MagicMock):
        env = RpcEnvironment("http://x", TESTER_ADDRESS, sender_address=SENDER, w3=w3)
        assert isinstance(env, TargetEnvironment)

    def test_abi_lists_every_probe(self):
        names = {entry["name"] for entry in TESTER_ABI}
        assert {"testSingletonPools", "testStackDepth", "poolCount"} <= names


class TestCalls:
    @pytest.mark.asyncio
    async def test_simulate_decodes_tuple(self, w3: MagicMock):
        _probe_fn(w3).call = AsyncMock(return_value=(True, 48_000, "2 pools"))
        env = RpcEnvironment("http://x", TESTER_ADDRESS, sender_address=SENDER, w3=w3)
        outcome = await env.simulate(PROBE)
        assert outcome.success is True
        assert outcome.gas_used == 48_000
        assert outcome.details == "2 pools"
        _probe_fn(w3).call.assert_awaited_once_with({"from": SENDER_CHECKSUM})

    @pytest.mark.asyncio
    async def test_simulate_revert(self, w3: MagicMock):
        _probe_fn(w3).call = AsyncMock(side_effect=ContractLogicError("execution reverted: nope"))
        env = RpcEnvironment("http://x", TESTER_ADDRESS, sender_address=SENDER, w3=w3)
        with pytest.raises(SimulationError) as exc_info:
            await env.simulate(PROBE)
        assert str(exc_info.value) == "execution reverted: nope"

    @pytest.mark.asyncio
    async def test_estimate(self, w3: MagicMock):
        _probe_fn(w3).estimate_gas = AsyncMock(return_value=52_000)
        env = RpcEnvironment("http://x", TESTER_ADDRESS, sender_address=SENDER, w3=w3)
        assert await env.estimate_cost(PROBE) == 52_000

    @pytest.mark.asyncio
    async def test_submit_via_node_account(self, w3: MagicMock):
        _probe_fn(w3).transact = AsyncMock(return_value=b"\x12" * 32)
        env = RpcEnvironment("http://x", TESTER_ADDRESS, sender_address=SENDER, w3=w3)
        receipt = await env.submit(PROBE, 120_000)
        _probe_fn(w3).transact.assert_awaited_once_with({"from": SENDER_CHECKSUM, "gas": 120_000})
        assert receipt.succeeded
        assert receipt.gas_used == 61_000
        assert receipt.block_number == 7
        assert receipt.tx_hash == "0x" + "12" * 32

    @pytest.mark.asyncio
    async def test_submit_signs_locally_with_key(self, w3: MagicMock):
        w3.eth.chain_id = _resolved(31337)
        w3.eth.get_transaction_count = AsyncMock(return_value=0)
        w3.eth.send_raw_transaction = AsyncMock(return_value=b"\xab" * 32)
        _probe_fn(w3).build_transaction = AsyncMock(
            return_value={
                "to": TESTER_ADDRESS,
                "data": "0x",
                "value": 0,
                "gas": 120_000,
                "gasPrice": 1_000_000_000,
                "nonce": 0,
                "chainId": 31337,
            }
        )
        env = RpcEnvironment("http://x", TESTER_ADDRESS, private_key=DEV_KEY, w3=w3)
        receipt = await env.submit(PROBE, 120_000)
        tx_params = _probe_fn(w3).build_transaction.call_args.args[0]
        assert tx_params["from"] == SENDER_CHECKSUM
        assert tx_params["gas"] == 120_000
        w3.eth.send_raw_transaction.assert_awaited_once()
        assert receipt.succeeded

    @pytest.mark.asyncio
    async def test_node_account_fallback(self, w3: MagicMock):
        w3.eth.accounts = _resolved([SENDER_CHECKSUM])
        _probe_fn(w3).estimate_gas = AsyncMock(return_value=1)
        env = RpcEnvironment("http://x", TESTER_ADDRESS, w3=w3)
        await env.estimate_cost(PROBE)
        _probe_fn(w3).estimate_gas.assert_awaited_once_with({"from": SENDER_CHECKSUM})

    @pytest.mark.asyncio
    async def test_query(self, w3: MagicMock):
        _probe_fn(w3, "poolCount").call = AsyncMock(return_value=3)
        env = RpcEnvironment("http://x", TESTER_ADDRESS, sender_address=SENDER, w3=w3)
        assert await env.query(Operation("poolCount")) == 3


class TestStorage:
    @pytest.mark.asyncio
    async def test_read_slot_padded(self, w3: MagicMock):
        env = RpcEnvironment("http://x", TESTER_ADDRESS, sender_address=SENDER, w3=w3)
        word = await env.read_slot(5)
        assert len(word) == 32
        assert word[-1] == 1
        w3.eth.get_storage_at.assert_awaited_once_with(TESTER_ADDRESS, 5)

    @pytest.mark.asyncio
    async def test_read_slots(self, w3: MagicMock):
        env = RpcEnvironment("http://x", TESTER_ADDRESS, sender_address=SENDER, w3=w3)
        words = await env.read_slots(10, 3)
        assert len(words) == 3
        assert w3.eth.get_storage_at.await_count == 3

    @pytest.mark.asyncio
    async def test_describe_and_close(self, w3: MagicMock):
        w3.eth.chain_id = _resolved(31337)
        env = RpcEnvironment("http://x", TESTER_ADDRESS, sender_address=SENDER, w3=w3)
        assert await env.describe() == "chain 31337"
        await env.close()
        w3.provider.disconnect.assert_awaited_once()


def test_from_settings_builds_provider():
    from v4compat.core.config import Settings

    env = RpcEnvironment.from_settings(Settings(tester_address=TESTER_ADDRESS, sender_address=SENDER))
    assert isinstance(env, RpcEnvironment)


class TestRevertAtSend:
    """Automining nodes reject a reverting transaction instead of mining it."""

    @pytest.mark.asyncio
    async def test_transact_revert_raises_execution_reverted(self, w3: MagicMock):
        _probe_fn(w3).transact = AsyncMock(side_effect=ContractLogicError("execution reverted: boom"))
        env = RpcEnvironment("http://x", TESTER_ADDRESS, sender_address=SENDER, w3=w3)
        with pytest.raises(ExecutionReverted) as exc_info:
            await env.submit(PROBE, 2_000)
        assert exc_info.value.reason == "execution reverted: boom"
        w3.eth.wait_for_transaction_receipt.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_signed_send_revert_raises_execution_reverted(self, w3: MagicMock):
        w3.eth.chain_id = _resolved(31337)
        w3.eth.get_transaction_count = AsyncMock(return_value=0)
        _probe_fn(w3).build_transaction = AsyncMock(side_effect=ContractLogicError("execution reverted: nope"))
        env = RpcEnvironment("http://x", TESTER_ADDRESS, private_key=DEV_KEY, w3=w3)
        with pytest.raises(ExecutionReverted, match="nope"):
            await env.submit(PROBE, 2_000)

    @pytest.mark.asyncio
    async def test_executor_reports_reverted_after_simulation(self, w3: MagicMock):
        _probe_fn(w3).call = AsyncMock(return_value=(True, 1, "ok"))
        _probe_fn(w3).estimate_gas = AsyncMock(return_value=1_000)
        _probe_fn(w3).transact = AsyncMock(side_effect=ContractLogicError("execution reverted: boom"))
        env = RpcEnvironment("http://x", TESTER_ADDRESS, sender_address=SENDER, w3=w3)

        result = await ProbeExecutor(env).run(default_catalog()[0])

        assert result.success is False
        assert result.cost == 0
        assert result.failure == FailureKind.REVERTED_AFTER_SIMULATION
        assert result.detail == f"{REVERTED_AFTER_SIMULATION}: execution reverted: boom"
