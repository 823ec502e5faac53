"""
Market Data Gateway: read-only chain access for pools, quotes, gas and oracle prices,
plus the settlement contract adapter.

Every external contract is wrapped in a small typed capability class
(PoolFactory, Quoter, OracleFeed, SettlementContract) so the scan logic never
builds raw call descriptors itself.
"""
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .abis import (
    CHAINLINK_AGGREGATOR_ABI,
    SETTLEMENT_ABI,
    UNISWAP_V2_FACTORY_ABI,
    UNISWAP_V2_PAIR_ABI,
    UNISWAP_V2_ROUTER_ABI,
    UNISWAP_V3_FACTORY_ABI,
    UNISWAP_V3_POOL_ABI,
    UNISWAP_V3_QUOTER_ABI,
)
from .chain_client import ChainClient
from .errors import InsufficientLiquidityError, OracleUnavailableError, TransientQuoteError
from .registry import VENUE_KIND_V3, Venue

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


@dataclass
class LiquidityReading:
    """Liquidity snapshot of one pool, from the point of view of one asset."""
    pool: str
    liquidity: int = 0  # v3: active in-range liquidity
    reserve_asset: int = 0  # v2: reserve of the queried asset
    reserve_reference: int = 0  # v2: reserve of the other token


class PoolFactory:
    """Pool lookup and liquidity reads for one venue."""

    def __init__(self, chain: ChainClient, venue: Venue):
        self.chain = chain
        self.venue = venue
        if venue.kind == VENUE_KIND_V3:
            self.factory = chain.contract(venue.factory, UNISWAP_V3_FACTORY_ABI)
        else:
            self.factory = chain.contract(venue.factory, UNISWAP_V2_FACTORY_ABI)

    async def get_pool(self, asset_a: str, asset_b: str, fee_tier: int) -> Optional[str]:
        """Return the canonical pool address, or None if the venue has no such pool."""
        if self.venue.kind == VENUE_KIND_V3:
            pool = await self.chain.call(self.factory.functions.getPool(asset_a, asset_b, fee_tier))
        else:
            pool = await self.chain.call(self.factory.functions.getPair(asset_a, asset_b))
        if not pool or pool == ZERO_ADDRESS:
            return None
        return pool

    async def get_liquidity(self, pool: str, asset: str) -> LiquidityReading:
        if self.venue.kind == VENUE_KIND_V3:
            contract = self.chain.contract(pool, UNISWAP_V3_POOL_ABI)
            liquidity = await self.chain.call(contract.functions.liquidity())
            return LiquidityReading(pool=pool, liquidity=int(liquidity))

        contract = self.chain.contract(pool, UNISWAP_V2_PAIR_ABI)
        reserve0, reserve1, _ = await self.chain.call(contract.functions.getReserves())
        token0 = await self.chain.call(contract.functions.token0())
        if token0.lower() == asset.lower():
            return LiquidityReading(pool=pool, reserve_asset=int(reserve0), reserve_reference=int(reserve1))
        return LiquidityReading(pool=pool, reserve_asset=int(reserve1), reserve_reference=int(reserve0))


class Quoter:
    """Swap simulation (exact input) for one venue."""

    def __init__(self, chain: ChainClient, venue: Venue):
        self.chain = chain
        self.venue = venue
        if venue.kind == VENUE_KIND_V3:
            self.contract = chain.contract(venue.quoter, UNISWAP_V3_QUOTER_ABI)
        else:
            self.contract = chain.contract(venue.router, UNISWAP_V2_ROUTER_ABI)

    async def quote(self, asset_in: str, asset_out: str, fee_tier: int, amount_in: int) -> int:
        if self.venue.kind == VENUE_KIND_V3:
            return int(await self.chain.call(
                self.contract.functions.quoteExactInputSingle(asset_in, asset_out, fee_tier, amount_in, 0)
            ))
        amounts = await self.chain.call(
            self.contract.functions.getAmountsOut(amount_in, [asset_in, asset_out])
        )
        return int(amounts[-1])


class OracleFeed:
    """Chainlink-style aggregator reader."""

    def __init__(self, chain: ChainClient, max_age_seconds: float = 3600.0):
        self.chain = chain
        self.max_age_seconds = max_age_seconds
        self._decimals: Dict[str, int] = {}  # feed decimals are immutable

    async def latest_price(self, feed: str) -> float:
        """
        Latest USD price reported by `feed`.

        Raises:
            OracleUnavailableError: call failure, non-positive or stale answer
        """
        contract = self.chain.contract(feed, CHAINLINK_AGGREGATOR_ABI)
        try:
            if feed not in self._decimals:
                self._decimals[feed] = int(await self.chain.call(contract.functions.decimals()))
            _, answer, _, updated_at, _ = await self.chain.call(contract.functions.latestRoundData())
        except Exception as e:
            raise OracleUnavailableError(f"Feed {feed} lookup failed: {e}") from e

        if answer <= 0:
            raise OracleUnavailableError(f"Feed {feed} returned non-positive answer {answer}")
        if self.max_age_seconds and updated_at and time.time() - updated_at > self.max_age_seconds:
            raise OracleUnavailableError(
                f"Feed {feed} is stale ({time.time() - updated_at:.0f}s > {self.max_age_seconds:.0f}s)"
            )
        return answer / (10 ** self._decimals[feed])


class SettlementContract:
    """Adapter for the external flash-loan settlement contract."""

    def __init__(self, chain: ChainClient, address: str):
        self.chain = chain
        self.address = address
        self.contract = chain.contract(address, SETTLEMENT_ABI)

    def _execute_fn(
        self,
        asset_in: str,
        amount_in: int,
        buy_router: str,
        sell_router: str,
        asset_out: str,
        fee_tier: int,
        slippage_percent: int
    ):
        # The borrowed asset is also the first leg's input token
        return self.contract.functions.executeArbitrage(
            asset_in, amount_in, buy_router, sell_router, asset_in, asset_out, fee_tier, slippage_percent
        )

    async def simulate_arbitrage(self, tx_options: Dict[str, Any], **kwargs) -> None:
        """eth_call executeArbitrage; raises ExecutionRevertedError on revert."""
        await self.chain.simulate_transaction(self._execute_fn(**kwargs), tx_options)

    async def execute_arbitrage(self, tx_options: Dict[str, Any], **kwargs) -> str:
        """Submit executeArbitrage; returns the transaction hash."""
        return await self.chain.send_transaction(self._execute_fn(**kwargs), tx_options)

    async def rescue_tokens(self, token: str, tx_options: Dict[str, Any]) -> str:
        """Owner-only: sweep a stranded token balance back to the owner."""
        return await self.chain.send_transaction(self.contract.functions.rescueTokens(token), tx_options)

    async def owner(self) -> str:
        return await self.chain.call(self.contract.functions.owner())

    async def wait_for_receipt(self, tx_hash: str, timeout: float = 120.0) -> Optional[Dict[str, Any]]:
        return await self.chain.wait_for_receipt(tx_hash, timeout=timeout)


class MarketDataGateway:
    """Venue-scoped read access used by the scanner."""

    def __init__(self, chain: ChainClient, venues: List[Venue], oracle_max_age_seconds: float = 3600.0):
        self.chain = chain
        self.factories = {venue.name: PoolFactory(chain, venue) for venue in venues}
        self.quoters = {venue.name: Quoter(chain, venue) for venue in venues}
        self.oracle = OracleFeed(chain, max_age_seconds=oracle_max_age_seconds)

    async def get_pool(self, venue: Venue, asset_a: str, asset_b: str, fee_tier: int) -> Optional[str]:
        """
        Raises:
            InsufficientLiquidityError: if the lookup call itself fails
        """
        try:
            return await self.factories[venue.name].get_pool(asset_a, asset_b, fee_tier)
        except Exception as e:
            raise InsufficientLiquidityError(f"{venue.name} pool lookup failed: {e}") from e

    async def get_liquidity(self, venue: Venue, pool: str, asset: str) -> LiquidityReading:
        try:
            return await self.factories[venue.name].get_liquidity(pool, asset)
        except Exception as e:
            raise InsufficientLiquidityError(f"{venue.name} liquidity read failed for {pool}: {e}") from e

    async def quote(self, venue: Venue, asset_in: str, asset_out: str, fee_tier: int, amount_in: int) -> int:
        """
        Simulated output for an exact-input swap. Never changes chain state.

        Raises:
            TransientQuoteError: reverted simulation, unsupported pair or zero output
        """
        try:
            amount_out = await self.quoters[venue.name].quote(asset_in, asset_out, fee_tier, amount_in)
        except Exception as e:
            raise TransientQuoteError(f"{venue.name} fee={fee_tier} quote failed: {e}") from e
        if amount_out <= 0:
            raise TransientQuoteError(f"{venue.name} fee={fee_tier} returned zero output")
        return amount_out

    async def get_gas_price(self) -> int:
        return await self.chain.get_gas_price()

    async def get_block_number(self) -> int:
        return await self.chain.get_block_number()

    async def get_oracle_price(self, feed: str) -> float:
        return await self.oracle.latest_price(feed)
