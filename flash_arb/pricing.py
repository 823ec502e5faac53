"""
Per-cycle USD price book.

Prices are time-sensitive: a PriceBook lives for exactly one scan cycle and
memoizes oracle reads only within that cycle.
"""
import logging
from typing import Dict, Optional, Set

from .errors import OracleUnavailableError
from .registry import Asset
from .utils import get_terminal_colors

logger = logging.getLogger(__name__)
colors = get_terminal_colors()

# Conservative fallback when an asset's oracle fails: never overstates profit
FALLBACK_ASSET_PRICE_USD = 1.0


class PriceBook:
    """USD prices for assets and the native gas token, scoped to one cycle."""

    def __init__(self, gateway, native_price_feed: Optional[str] = None, native_fallback_usd: float = 2000.0):
        self.gateway = gateway
        self.native_price_feed = native_price_feed
        self.native_fallback_usd = native_fallback_usd
        self._prices: Dict[str, float] = {}
        self._fallbacks: Set[str] = set()
        self._native_price_usd: Optional[float] = None

    async def usd_price(self, asset: Asset) -> float:
        """
        USD price of one whole unit of `asset`.

        Stable assets are 1.0. Oracle failures fall back to 1.0.
        """
        if asset.address in self._prices:
            return self._prices[asset.address]

        if asset.is_stable:
            price = 1.0
        elif not asset.price_feed:
            price = FALLBACK_ASSET_PRICE_USD
            self._fallbacks.add(asset.address)
        else:
            try:
                price = await self.gateway.get_oracle_price(asset.price_feed)
            except OracleUnavailableError as e:
                logger.warning(
                    f"{colors['RED']}Oracle unavailable for {asset.symbol}{colors['RESET']}: {e}. "
                    f"Using fallback price ${FALLBACK_ASSET_PRICE_USD:.2f}"
                )
                price = FALLBACK_ASSET_PRICE_USD
                self._fallbacks.add(asset.address)

        self._prices[asset.address] = price
        return price

    async def sizing_price(self, asset: Asset) -> Optional[float]:
        """
        Price used to size a probe in `asset` units.

        Returns None when only the fallback is known: sizing a WETH probe at
        $1 would borrow thousands of times the intended notional.
        """
        price = await self.usd_price(asset)
        if asset.address in self._fallbacks:
            return None
        return price

    async def native_price_usd(self) -> float:
        """USD price of the native gas token, falling back to the configured value."""
        if self._native_price_usd is not None:
            return self._native_price_usd

        price = self.native_fallback_usd
        if self.native_price_feed:
            try:
                price = await self.gateway.get_oracle_price(self.native_price_feed)
            except OracleUnavailableError as e:
                logger.warning(
                    f"Native price oracle unavailable: {e}. "
                    f"Using configured value ${self.native_fallback_usd:.2f}"
                )
        self._native_price_usd = price
        return price
