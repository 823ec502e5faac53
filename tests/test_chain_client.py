"""
Tests for chain_client.py
"""
import asyncio
import time
import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from eth_account import Account
from hexbytes import HexBytes
from web3.exceptions import ContractLogicError, TimeExhausted

from flash_arb.chain_client import ChainClient, RateLimiter
from flash_arb.errors import ExecutionRevertedError, ExecutionSubmissionError

PRIMARY = "https://primary.example/v2/secret-key"
FALLBACK = "https://fallback.example/rpc"


class TestRateLimiter:
    @pytest.mark.asyncio
    async def test_spaces_requests(self):
        limiter = RateLimiter(requests_per_second=20)
        started = time.monotonic()
        for _ in range(3):
            await limiter.acquire()
        # Two full intervals between three requests
        assert time.monotonic() - started >= 0.09

    @pytest.mark.asyncio
    async def test_disabled(self):
        limiter = RateLimiter(requests_per_second=0)
        assert limiter.min_interval == 0.0
        await limiter.acquire()


class TestChainClient:
    """Tests for ChainClient class."""

    @pytest.fixture
    def account(self):
        return Account.create()

    @pytest.fixture
    def client(self, account):
        return ChainClient(
            PRIMARY,
            account=account,
            fallback_rpc_url=FALLBACK,
            chain_id=1,
            requests_per_second=0,
            max_retries=2,
            retry_delay_seconds=0.0
        )

    @pytest.fixture
    def client_no_fallback(self):
        return ChainClient(PRIMARY, requests_per_second=0, max_retries=2, retry_delay_seconds=0.0)

    def test_address(self, client, account, client_no_fallback):
        assert client.address == account.address
        assert client_no_fallback.address is None

    @pytest.mark.parametrize("error,expected", [
        (ContractLogicError("execution reverted"), False),
        (asyncio.TimeoutError(), True),
        (ConnectionError("refused"), True),
        (Exception("429 Too Many Requests"), True),
        (Exception("request timed out"), True),
        (ValueError("invalid argument"), False),
    ])
    def test_is_retryable_error(self, client, error, expected):
        assert client._is_retryable_error(error) is expected

    @pytest.mark.asyncio
    async def test_failover_to_fallback(self, client):
        call = AsyncMock(side_effect=[ConnectionError("refused"), 42])

        assert await client._with_failover(call) == 42
        assert client._active_rpc_url == FALLBACK
        assert client.w3.provider.endpoint_uri == FALLBACK
        assert call.await_count == 2

    @pytest.mark.asyncio
    async def test_retry_without_fallback(self, client_no_fallback):
        call = AsyncMock(side_effect=[ConnectionError("refused"), 7])

        assert await client_no_fallback._with_failover(call) == 7
        assert client_no_fallback._active_rpc_url == PRIMARY

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, client_no_fallback):
        call = AsyncMock(side_effect=ConnectionError("refused"))

        with pytest.raises(ConnectionError):
            await client_no_fallback._with_failover(call)
        assert call.await_count == 3

    @pytest.mark.asyncio
    async def test_non_retryable_raises_immediately(self, client):
        call = AsyncMock(side_effect=ContractLogicError("execution reverted"))

        with pytest.raises(ContractLogicError):
            await client._with_failover(call)
        assert call.await_count == 1
        assert client._active_rpc_url == PRIMARY

    @pytest.mark.asyncio
    async def test_call_passes_params(self, client):
        fn = MagicMock()
        fn.call = AsyncMock(return_value=5)

        assert await client.call(fn, {'from': client.address}) == 5
        fn.call.assert_awaited_once_with({'from': client.address})

    @pytest.mark.asyncio
    async def test_simulate_revert(self, client):
        fn = MagicMock()
        fn.call = AsyncMock(side_effect=ContractLogicError("execution reverted: Insufficient profit"))

        with pytest.raises(ExecutionRevertedError, match="Insufficient profit") as exc_info:
            await client.simulate_transaction(fn, {'gas': 500_000})
        assert isinstance(exc_info.value.__cause__, ContractLogicError)
        params = fn.call.await_args.args[0]
        assert params['from'] == client.address
        assert params['chainId'] == 1

    @pytest.mark.asyncio
    async def test_send_without_wallet(self, client_no_fallback):
        with pytest.raises(ExecutionSubmissionError):
            await client_no_fallback.send_transaction(MagicMock(), {'gas': 500_000})

    @pytest.mark.asyncio
    async def test_send_build_failure_wrapped(self, client):
        fn = MagicMock()
        fn.build_transaction = AsyncMock(side_effect=ValueError("gas required exceeds allowance"))

        with patch.object(client.w3.eth, 'get_transaction_count', AsyncMock(return_value=3)):
            with pytest.raises(ExecutionSubmissionError) as exc_info:
                await client.send_transaction(fn, {'gas': 500_000})
        assert "gas required exceeds allowance" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_send_transaction(self, client):
        fn = MagicMock()
        fn.build_transaction = AsyncMock(return_value={
            'to': "0x1111111111111111111111111111111111111111",
            'value': 0,
            'data': "0x",
            'gas': 500_000,
            'maxFeePerGas': 100 * 10**9,
            'maxPriorityFeePerGas': 10**9,
            'nonce': 3,
            'chainId': 1,
        })
        tx_hash = HexBytes(b'\x12' * 32)

        with patch.object(client.w3.eth, 'get_transaction_count', AsyncMock(return_value=3)), \
                patch.object(client.w3.eth, 'send_raw_transaction', AsyncMock(return_value=tx_hash)) as send:
            result = await client.send_transaction(fn, {'gas': 500_000})

        assert result == "0x" + "12" * 32
        send.assert_awaited_once()
        assert fn.build_transaction.await_args.args[0]['nonce'] == 3

    @pytest.mark.asyncio
    async def test_wait_for_receipt_timeout(self, client):
        with patch.object(client.w3.eth, 'wait_for_transaction_receipt', AsyncMock(side_effect=TimeExhausted())):
            assert await client.wait_for_receipt("0xabc", timeout=1) is None
