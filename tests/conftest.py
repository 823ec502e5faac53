"""
Pytest configuration and fixtures for arbitrage scanner tests.
"""
import pytest
from unittest.mock import AsyncMock

from flash_arb.registry import Asset, Registry, Venue
from flash_arb.risk_manager import RiskConfig, RiskManager


@pytest.fixture
def usdc():
    """USDC (stable, tier 1)."""
    return Asset("USDC", "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48", 6, 1, price_source="stable")


@pytest.fixture
def usdt():
    """USDT (stable, tier 1)."""
    return Asset("USDT", "0xdAC17F958D2ee523a2206206994597C13D831ec7", 6, 1, price_source="stable")


@pytest.fixture
def weth():
    """WETH (major, tier 2) priced by the ETH/USD feed."""
    return Asset(
        "WETH", "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2", 18, 2,
        price_source="oracle", price_feed="0x5f4eC3Df9cbd43714FE2740f5E3616155c5b8419"
    )


@pytest.fixture
def link():
    """LINK (volatile, tier 3) priced by the LINK/USD feed."""
    return Asset(
        "LINK", "0x514910771AF9Ca656af840dff83E8264EcF986CA", 18, 3,
        price_source="oracle", price_feed="0x2c1d072e956AFFC0D435Cb7AC38EF18d24d9127c"
    )


@pytest.fixture
def venue_a():
    """Concentrated-liquidity venue with a single 0.3% tier."""
    return Venue(
        name="VenueA",
        kind="v3",
        router="0xE592427A0AEce92De3Edee1F18E0157C05861564",
        factory="0x1F98431c8aD98523631AE4a59f267346ea31F984",
        quoter="0xb27308f9F90D607463bb33eA1BeBb41C27CE5AB6",
        fee_tiers=(3000,)
    )


@pytest.fixture
def venue_b():
    """Second concentrated-liquidity venue with a single 0.3% tier."""
    return Venue(
        name="VenueB",
        kind="v3",
        router="0xd9e1cE17f2641f24aE83637ab66a2cca9C378B9F",
        factory="0xC0AEe478e3658e2610c5F7A4A2E1777cE9e4f2Ac",
        quoter="0x61fFE014bA17989E743c5F6cB21bF9697530B21e",
        fee_tiers=(3000,)
    )


@pytest.fixture
def registry(usdc, usdt, venue_a, venue_b):
    """Two stables on two venues: schedules USDC->USDT and USDT->USDC."""
    return Registry(assets=[usdc, usdt], venues=[venue_a, venue_b])


@pytest.fixture
def risk_config():
    """Default RiskConfig for testing."""
    return RiskConfig()


@pytest.fixture
def risk_manager(risk_config):
    return RiskManager(risk_config)


@pytest.fixture
def gas_env(risk_manager):
    """20 gwei at block 100 (ceiling 100 gwei)."""
    return risk_manager.build_gas_environment(20 * 10**9, block_number=100)


@pytest.fixture
def mock_gateway():
    """Create a mock MarketDataGateway for testing."""
    return AsyncMock()
