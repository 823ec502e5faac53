"""
EVM JSON-RPC client: rate limiting, bounded retries, failover and transaction sending.
"""
import asyncio
import logging
import time
from typing import Any, Dict, Optional

from eth_account.signers.local import LocalAccount
from web3 import AsyncWeb3, Web3
from web3.exceptions import ContractLogicError, TimeExhausted

from .errors import ExecutionRevertedError, ExecutionSubmissionError

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Minimum-interval rate limiter for RPC requests.

    Spaces requests so that no more than `requests_per_second` are issued,
    keeping the scanner under provider rate limits.
    """

    def __init__(self, requests_per_second: float = 10.0):
        """
        Initialize rate limiter.

        Args:
            requests_per_second: Maximum requests per second (0 disables limiting)
        """
        self.requests_per_second = requests_per_second
        self.min_interval = 1.0 / requests_per_second if requests_per_second > 0 else 0.0
        self._last_request_time = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self):
        """Wait until a request can be made (respecting rate limit)."""
        async with self._lock:
            current_time = time.monotonic()
            time_since_last = current_time - self._last_request_time

            if time_since_last < self.min_interval:
                await asyncio.sleep(self.min_interval - time_since_last)

            self._last_request_time = time.monotonic()


class ChainClient:
    """Client for EVM RPC operations with retry and failover support."""

    def __init__(
        self,
        rpc_url: str,
        account: Optional[LocalAccount] = None,
        fallback_rpc_url: Optional[str] = None,
        chain_id: Optional[int] = None,
        requests_per_second: float = 10.0,
        max_retries: int = 3,
        retry_delay_seconds: float = 1.0
    ):
        self.rpc_url_primary = rpc_url
        self.rpc_url_fallback = fallback_rpc_url
        self._active_rpc_url = rpc_url
        self._failover_used = False
        self.w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))
        self.account = account
        self.chain_id = chain_id
        self.rate_limiter = RateLimiter(requests_per_second=requests_per_second)
        self.max_retries = max_retries
        self.retry_delay_seconds = retry_delay_seconds

    @property
    def address(self) -> Optional[str]:
        return self.account.address if self.account else None

    def _switch_to_fallback(self, reason: str) -> bool:
        """
        Switch to fallback RPC if available.

        Contracts created from this client keep working: they resolve the
        provider through `self.w3` on every call.

        Returns:
            True if switched to fallback, False if no fallback available
        """
        if self.rpc_url_fallback and self._active_rpc_url == self.rpc_url_primary:
            if not self._failover_used:
                # Log the host only, never the full URL (may carry an API key)
                primary_host = self.rpc_url_primary.split('//')[-1].split('/')[0]
                fallback_host = self.rpc_url_fallback.split('//')[-1].split('/')[0]
                logger.warning(
                    f"RPC failover: PRIMARY ({primary_host}) -> FALLBACK ({fallback_host}), reason: {reason}"
                )
                self._failover_used = True

            self._active_rpc_url = self.rpc_url_fallback
            self.w3.provider = AsyncWeb3.AsyncHTTPProvider(self.rpc_url_fallback)
            return True
        return False

    def _is_retryable_error(self, error: Exception) -> bool:
        """
        Check if an error is transport-level (rate limit, timeout, connection).

        Contract reverts are never retryable: the same call reverts again.
        """
        if isinstance(error, ContractLogicError):
            return False
        if isinstance(error, (asyncio.TimeoutError, ConnectionError)):
            return True

        error_str = str(error).lower()
        error_type = type(error).__name__

        if '429' in error_str or 'rate limit' in error_str or 'too many requests' in error_str:
            return True
        if 'timeout' in error_str or 'timed out' in error_str:
            return True
        if error_type in ('ClientConnectorError', 'ServerDisconnectedError', 'ClientOSError'):
            return True
        if 'connection' in error_str or 'network' in error_str:
            return True

        return False

    async def _with_failover(self, coro_func, *args, **kwargs):
        """
        Execute a read coroutine with rate limiting, retries and failover.

        The first retryable failure switches to the fallback RPC (if any) and
        retries immediately; later ones wait `retry_delay_seconds`.

        Raises:
            Exception: the last error once retries are exhausted, or any
                non-retryable error immediately
        """
        attempt = 0
        while True:
            await self.rate_limiter.acquire()
            try:
                return await coro_func(*args, **kwargs)
            except Exception as e:
                if not self._is_retryable_error(e) or attempt >= self.max_retries:
                    raise
                attempt += 1
                if self._switch_to_fallback(str(e)):
                    continue
                logger.debug(
                    f"RPC call failed ({type(e).__name__}: {e}), "
                    f"retry {attempt}/{self.max_retries} in {self.retry_delay_seconds:.1f}s"
                )
                await asyncio.sleep(self.retry_delay_seconds)

    async def call(self, fn, tx_params: Optional[Dict[str, Any]] = None) -> Any:
        """
        Run a contract function as eth_call (read-only, no state change).

        Args:
            fn: Bound contract function, e.g. `contract.functions.getPool(a, b, fee)`
            tx_params: Optional call parameters (from, gas, ...)
        """
        if tx_params:
            return await self._with_failover(fn.call, tx_params)
        return await self._with_failover(fn.call)

    async def get_gas_price(self) -> int:
        """Current gas price in wei."""
        async def _gas_price():
            return await self.w3.eth.gas_price
        return await self._with_failover(_gas_price)

    async def get_block_number(self) -> int:
        async def _block_number():
            return await self.w3.eth.block_number
        return await self._with_failover(_block_number)

    def contract(self, address: str, abi: list):
        return self.w3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)

    def _tx_params(self, tx_options: Dict[str, Any]) -> Dict[str, Any]:
        if self.account is None:
            raise ExecutionSubmissionError("No wallet configured for sending transactions")
        params = {'from': self.account.address, **tx_options}
        if self.chain_id is not None:
            params['chainId'] = self.chain_id
        return params

    async def simulate_transaction(self, fn, tx_options: Dict[str, Any]) -> None:
        """
        Simulate a state-changing call with eth_call from the wallet address.

        Raises:
            ExecutionRevertedError: if the simulation reverts
        """
        params = self._tx_params(tx_options)
        try:
            await self._with_failover(fn.call, params)
        except ContractLogicError as e:
            raise ExecutionRevertedError(f"Simulation reverted: {e}") from e

    async def send_transaction(self, fn, tx_options: Dict[str, Any]) -> str:
        """
        Build, sign and broadcast a contract transaction.

        Broadcast is attempted once: resending a signed transaction after an
        ambiguous failure could double-submit.

        Args:
            fn: Bound contract function
            tx_options: gas, maxFeePerGas, maxPriorityFeePerGas

        Returns:
            Transaction hash (0x-prefixed hex)

        Raises:
            ExecutionSubmissionError: if building, signing or sending fails
        """
        params = self._tx_params(tx_options)
        try:
            params['nonce'] = await self._with_failover(
                self.w3.eth.get_transaction_count, self.account.address, 'pending'
            )
            tx = await fn.build_transaction(params)
            signed = self.account.sign_transaction(tx)
            await self.rate_limiter.acquire()
            tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except ExecutionSubmissionError:
            raise
        except Exception as e:
            raise ExecutionSubmissionError(f"{type(e).__name__}: {e}") from e

        tx_hash_hex = Web3.to_hex(tx_hash)
        logger.debug(f"Transaction sent: {tx_hash_hex}")
        return tx_hash_hex

    async def wait_for_receipt(self, tx_hash: str, timeout: float = 120.0) -> Optional[Dict[str, Any]]:
        """
        Wait for a transaction receipt.

        Returns:
            Receipt dict, or None if not mined within `timeout` seconds
        """
        try:
            return await self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
        except TimeExhausted:
            logger.warning(f"Transaction {tx_hash} not mined within {timeout:.0f}s")
            return None

    async def close(self):
        """Close the provider session."""
        try:
            await self.w3.provider.disconnect()
        except Exception as e:
            logger.debug(f"Error closing RPC provider: {e}")
