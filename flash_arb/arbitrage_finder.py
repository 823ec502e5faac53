"""
Arbitrage opportunity finder.
Probes every scheduled pair across venues and fee tiers for a cross-venue spread
that survives liquidity, impact, significance and profitability filters.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from itertools import permutations
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from .errors import (
    BelowProfitThresholdError,
    InsufficientLiquidityError,
    TransientQuoteError,
)
from .market_data import MarketDataGateway
from .pricing import PriceBook
from .registry import VENUE_KIND_V3, Asset, Registry, Venue, schedule_pairs
from .risk_manager import GasEnvironment, ProfitEstimate, RiskManager
from .utils import from_base_units, get_terminal_colors, short_address, to_base_units

logger = logging.getLogger(__name__)
colors = get_terminal_colors()


@dataclass(frozen=True)
class QuoteSample:
    """Simulated exact-input swap output on one venue and fee tier."""
    asset_in: Asset
    asset_out: Asset
    venue: Venue
    fee_tier: int
    amount_in: int
    amount_out: int


@dataclass(frozen=True)
class SpreadCandidate:
    """Two samples for the same input on distinct venues; `buy` yields more asset_out."""
    buy: QuoteSample
    sell: QuoteSample

    @property
    def asset_in(self) -> Asset:
        return self.buy.asset_in

    @property
    def asset_out(self) -> Asset:
        return self.buy.asset_out

    @property
    def amount_in(self) -> int:
        return self.buy.amount_in

    @property
    def fee_tier(self) -> int:
        return self.buy.fee_tier

    @property
    def price_diff(self) -> int:
        """Spread in asset_out base units."""
        return self.buy.amount_out - self.sell.amount_out

    @property
    def price_impact(self) -> float:
        return abs(self.buy.amount_out - self.sell.amount_out) / self.buy.amount_out

    @property
    def spread_percent(self) -> float:
        return self.price_impact * 100


@dataclass
class ArbitrageOpportunity:
    """An accepted candidate, consumed once by the dispatcher and then discarded."""
    asset_in: Asset
    asset_out: Asset
    buy_venue: Venue
    sell_venue: Venue
    fee_tier: int
    amount_in: int
    gross_spread: int  # asset_out base units
    spread_percent: float
    price_impact: float
    net_profit_usd: float  # after fees, gas and safety margin
    profit: Optional[ProfitEstimate] = None
    slippage_bound_percent: Optional[float] = None  # set by the dispatcher
    timestamp: float = field(default_factory=time.time)

    def describe(self) -> str:
        return (
            f"{self.asset_in.symbol}->{self.asset_out.symbol} "
            f"buy@{self.buy_venue.name} sell@{self.sell_venue.name} fee={self.fee_tier} "
            f"in={from_base_units(self.amount_in, self.asset_in.decimals):.4f} {self.asset_in.symbol} "
            f"spread={self.spread_percent:.3f}% net=${self.net_profit_usd:.2f}"
        )


OpportunityCallback = Callable[[ArbitrageOpportunity], Awaitable[Optional[bool]]]


class ArbitrageFinder:
    """Finds cross-venue arbitrage opportunities through the Market Data Gateway."""

    def __init__(
        self,
        gateway: MarketDataGateway,
        registry: Registry,
        risk_manager: RiskManager,
        quote_timeout: float = 5.0,
        round_trip_check: bool = True
    ):
        self.gateway = gateway
        self.registry = registry
        self.risk_manager = risk_manager
        self.quote_timeout = quote_timeout
        self.round_trip_check = round_trip_check
        self.pairs_scanned = 0  # reset by every find_opportunities call

    async def find_opportunities(
        self,
        gas: GasEnvironment,
        prices: PriceBook,
        on_opportunity_found: Optional[OpportunityCallback] = None
    ) -> List[ArbitrageOpportunity]:
        """
        Scan every scheduled pair once.

        Args:
            gas: This cycle's gas environment (read-only)
            prices: This cycle's price book
            on_opportunity_found: Awaited for each opportunity before the scan
                continues; returning False stops the scan

        Returns:
            Opportunities found this cycle, in discovery order
        """
        opportunities = []
        self.pairs_scanned = 0

        for asset_in, asset_out in schedule_pairs(self.registry.assets):
            self.pairs_scanned += 1
            try:
                opportunity = await self.scan_pair(asset_in, asset_out, gas, prices)
            except Exception as e:
                # Pair-level failures never abort the cycle
                logger.error(
                    f"Error scanning {asset_in.symbol}->{asset_out.symbol}: {type(e).__name__}: {e}",
                    exc_info=True
                )
                continue

            if opportunity is None:
                continue

            opportunities.append(opportunity)
            logger.info(f"{colors['GREEN']}Opportunity found{colors['RESET']}: {opportunity.describe()}")

            if on_opportunity_found:
                try:
                    should_continue = await on_opportunity_found(opportunity)
                except Exception as e:
                    logger.error(f"Error in on_opportunity_found callback: {e}", exc_info=True)
                    should_continue = True
                if should_continue is False:
                    logger.info("Callback requested to stop searching")
                    break

        return opportunities

    def scan_amount(self, asset: Asset, price_usd: float) -> int:
        """Probe size in base units: tier notional (USD) converted at the cycle price."""
        notional_usd = self.registry.scan_notional_usd(asset, self.risk_manager.config.max_loan_usd)
        return to_base_units(notional_usd / price_usd, asset.decimals)

    async def scan_pair(
        self,
        asset_in: Asset,
        asset_out: Asset,
        gas: GasEnvironment,
        prices: PriceBook
    ) -> Optional[ArbitrageOpportunity]:
        """
        Run liquidity -> quotes -> spread -> profitability for one pair.

        Returns:
            The most profitable accepted opportunity, or None
        """
        price_in = await prices.sizing_price(asset_in)
        if price_in is None:
            logger.debug(f"Skipping {asset_in.symbol}->{asset_out.symbol}: no usable {asset_in.symbol} price")
            return None
        amount_in = self.scan_amount(asset_in, price_in)
        if amount_in <= 0:
            return None

        # (venue name, asset address) -> passed; valid for this pair scan only
        liquidity_memo: Dict[Tuple[str, str], bool] = {}

        async def side_ok(asset: Asset, reference: Asset, venue: Venue) -> bool:
            key = (venue.name, asset.address)
            if key not in liquidity_memo:
                liquidity_memo[key] = await self.has_liquidity(asset, reference, venue, prices)
            return liquidity_memo[key]

        venue_pairs = []
        for buy_venue, sell_venue in permutations(self.registry.venues, 2):
            buy_ok, sell_ok = await asyncio.gather(
                side_ok(asset_in, asset_out, buy_venue),
                side_ok(asset_out, asset_in, sell_venue),
            )
            if buy_ok and sell_ok:
                venue_pairs.append((buy_venue, sell_venue))

        if not venue_pairs:
            logger.debug(f"{asset_in.symbol}->{asset_out.symbol}: insufficient liquidity on every venue pair")
            return None

        venues = [v for v in self.registry.venues if any(v in pair for pair in venue_pairs)]
        samples = await self.collect_quotes(asset_in, asset_out, venues, amount_in)
        by_key = {(s.venue.name, s.fee_tier): s for s in samples}

        best: Optional[ArbitrageOpportunity] = None
        for buy_venue, sell_venue in venue_pairs:
            for fee_tier in buy_venue.fee_tiers:
                buy = by_key.get((buy_venue.name, fee_tier))
                sell = by_key.get((sell_venue.name, fee_tier))
                if buy is None or sell is None:
                    continue

                candidate = self.evaluate_spread(buy, sell)
                if candidate is None:
                    continue

                opportunity = await self._assess_candidate(candidate, gas, prices)
                if opportunity and (best is None or opportunity.net_profit_usd > best.net_profit_usd):
                    best = opportunity

        return best

    async def has_liquidity(self, asset: Asset, reference: Asset, venue: Venue, prices: PriceBook) -> bool:
        """
        Whether `venue` has a usable pool for (asset, reference) on any fee tier.

        Fails closed: no pool, a failed call or a timeout all count as no liquidity.
        """
        for fee_tier in venue.fee_tiers:
            try:
                if await self._pool_has_liquidity(asset, reference, venue, fee_tier, prices):
                    return True
            except (InsufficientLiquidityError, asyncio.TimeoutError) as e:
                logger.debug(f"{venue.name} {asset.symbol}/{reference.symbol} fee={fee_tier}: {str(e) or 'timeout'}")
        return False

    async def _pool_has_liquidity(
        self,
        asset: Asset,
        reference: Asset,
        venue: Venue,
        fee_tier: int,
        prices: PriceBook
    ) -> bool:
        pool = await asyncio.wait_for(
            self.gateway.get_pool(venue, asset.address, reference.address, fee_tier),
            timeout=self.quote_timeout
        )
        if pool is None:
            return False

        reading = await asyncio.wait_for(
            self.gateway.get_liquidity(venue, pool, asset.address),
            timeout=self.quote_timeout
        )
        if venue.kind == VENUE_KIND_V3:
            return reading.liquidity > 0

        floor = self.risk_manager.config.min_liquidity_usd
        asset_usd = from_base_units(reading.reserve_asset, asset.decimals) * await prices.usd_price(asset)
        reference_usd = from_base_units(reading.reserve_reference, reference.decimals) * await prices.usd_price(reference)
        if asset_usd < floor or reference_usd < floor:
            logger.debug(
                f"{venue.name} pool {short_address(pool)} below liquidity floor: "
                f"{asset.symbol}=${asset_usd:,.0f} {reference.symbol}=${reference_usd:,.0f} (min ${floor:,.0f})"
            )
            return False
        return True

    async def collect_quotes(
        self,
        asset_in: Asset,
        asset_out: Asset,
        venues: List[Venue],
        amount_in: int
    ) -> List[QuoteSample]:
        """
        Quote every (venue, fee tier) combination, sequentially.

        Failed combinations are skipped; there is no retry within a cycle.
        """
        samples = []
        for venue in venues:
            for fee_tier in venue.fee_tiers:
                try:
                    amount_out = await asyncio.wait_for(
                        self.gateway.quote(venue, asset_in.address, asset_out.address, fee_tier, amount_in),
                        timeout=self.quote_timeout
                    )
                except asyncio.TimeoutError:
                    logger.debug(f"Quote timeout: {venue.name} fee={fee_tier} {asset_in.symbol}->{asset_out.symbol}")
                    continue
                except TransientQuoteError as e:
                    logger.debug(f"Quote skipped: {e}")
                    continue

                samples.append(QuoteSample(
                    asset_in=asset_in,
                    asset_out=asset_out,
                    venue=venue,
                    fee_tier=fee_tier,
                    amount_in=amount_in,
                    amount_out=amount_out,
                ))
        return samples

    def evaluate_spread(self, buy: QuoteSample, sell: QuoteSample) -> Optional[SpreadCandidate]:
        """
        Build a SpreadCandidate if the two samples form a tradable spread.

        Rejects different fee tiers or the same venue, a non-positive spread,
        impact above the maximum and spreads below the significance threshold.
        """
        if buy.venue.name == sell.venue.name or buy.fee_tier != sell.fee_tier:
            return None
        if buy.amount_out <= sell.amount_out:
            return None

        candidate = SpreadCandidate(buy=buy, sell=sell)
        if not self.risk_manager.check_price_impact(candidate.price_impact):
            logger.debug(
                f"Rejected {buy.venue.name}/{sell.venue.name}: impact {candidate.price_impact:.2%} > "
                f"{self.risk_manager.config.max_price_impact_percent:.2f}%"
            )
            return None
        if not self.risk_manager.is_significant_spread(candidate.spread_percent):
            return None
        return candidate

    async def confirm_round_trip(self, candidate: SpreadCandidate) -> bool:
        """
        Quote the sell leg back (asset_out -> asset_in on the sell venue).

        Passes only if the round trip repays the loan plus the flash-loan fee.
        """
        try:
            amount_back = await asyncio.wait_for(
                self.gateway.quote(
                    candidate.sell.venue,
                    candidate.asset_out.address,
                    candidate.asset_in.address,
                    candidate.fee_tier,
                    candidate.buy.amount_out
                ),
                timeout=self.quote_timeout
            )
        except (TransientQuoteError, asyncio.TimeoutError) as e:
            logger.debug(f"Round-trip quote failed: {str(e) or 'timeout'}")
            return False

        repay = candidate.amount_in * (1 + self.risk_manager.config.flash_loan_fee_percent / 100)
        if amount_back <= repay:
            logger.debug(
                f"Round trip {candidate.asset_in.symbol}->{candidate.asset_out.symbol}->{candidate.asset_in.symbol} "
                f"returns {amount_back} <= {repay:.0f} needed"
            )
            return False
        return True

    async def _assess_candidate(
        self,
        candidate: SpreadCandidate,
        gas: GasEnvironment,
        prices: PriceBook
    ) -> Optional[ArbitrageOpportunity]:
        out_price = await prices.usd_price(candidate.asset_out)
        native_price = await prices.native_price_usd()
        estimate = self.risk_manager.assess_profit(candidate, gas, out_price, native_price)
        try:
            self.risk_manager.require_profitable(estimate)
        except BelowProfitThresholdError as e:
            logger.debug(f"{candidate.buy.venue.name}/{candidate.sell.venue.name} fee={candidate.fee_tier}: {e}")
            return None

        if self.round_trip_check and not await self.confirm_round_trip(candidate):
            return None

        return ArbitrageOpportunity(
            asset_in=candidate.asset_in,
            asset_out=candidate.asset_out,
            buy_venue=candidate.buy.venue,
            sell_venue=candidate.sell.venue,
            fee_tier=candidate.fee_tier,
            amount_in=candidate.amount_in,
            gross_spread=candidate.price_diff,
            spread_percent=candidate.spread_percent,
            price_impact=candidate.price_impact,
            net_profit_usd=estimate.margined_profit_usd,
            profit=estimate,
        )
