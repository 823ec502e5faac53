"""
Tests for pricing.py
"""
import pytest
from flash_arb.errors import OracleUnavailableError
from flash_arb.pricing import FALLBACK_ASSET_PRICE_USD, PriceBook
from flash_arb.registry import Asset


class TestPriceBook:
    """Tests for the per-cycle PriceBook."""

    @pytest.mark.asyncio
    async def test_stable_priced_at_one_without_oracle(self, mock_gateway, usdc):
        prices = PriceBook(mock_gateway)

        assert await prices.usd_price(usdc) == 1.0
        mock_gateway.get_oracle_price.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_oracle_price_cached_for_cycle(self, mock_gateway, weth):
        mock_gateway.get_oracle_price.return_value = 2500.0
        prices = PriceBook(mock_gateway)

        assert await prices.usd_price(weth) == 2500.0
        assert await prices.sizing_price(weth) == 2500.0
        mock_gateway.get_oracle_price.assert_awaited_once_with(weth.price_feed)

    @pytest.mark.asyncio
    async def test_oracle_failure_falls_back(self, mock_gateway, weth):
        mock_gateway.get_oracle_price.side_effect = OracleUnavailableError("stale")
        prices = PriceBook(mock_gateway)

        assert await prices.usd_price(weth) == FALLBACK_ASSET_PRICE_USD
        # Fallback prices are never used to size a probe
        assert await prices.sizing_price(weth) is None

    @pytest.mark.asyncio
    async def test_missing_feed_falls_back(self, mock_gateway):
        token = Asset("XYZ", "0x514910771AF9Ca656af840dff83E8264EcF986CA", 18, 3, price_source="oracle")
        prices = PriceBook(mock_gateway)

        assert await prices.usd_price(token) == FALLBACK_ASSET_PRICE_USD
        assert await prices.sizing_price(token) is None
        mock_gateway.get_oracle_price.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_native_price_without_feed_uses_configured_value(self, mock_gateway):
        prices = PriceBook(mock_gateway, native_fallback_usd=1800.0)

        assert await prices.native_price_usd() == 1800.0
        mock_gateway.get_oracle_price.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_native_price_from_feed(self, mock_gateway):
        mock_gateway.get_oracle_price.return_value = 3100.0
        prices = PriceBook(mock_gateway, native_price_feed="0xfeed", native_fallback_usd=1800.0)

        assert await prices.native_price_usd() == 3100.0
        assert await prices.native_price_usd() == 3100.0
        mock_gateway.get_oracle_price.assert_awaited_once_with("0xfeed")

    @pytest.mark.asyncio
    async def test_native_feed_failure_uses_configured_value(self, mock_gateway):
        mock_gateway.get_oracle_price.side_effect = OracleUnavailableError("down")
        prices = PriceBook(mock_gateway, native_price_feed="0xfeed", native_fallback_usd=1800.0)

        assert await prices.native_price_usd() == 1800.0
