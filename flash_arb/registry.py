"""
Asset & venue registry and pair scheduling.

The registry is loaded once at startup from config.json (or the built-in
mainnet defaults) and is read-only afterwards.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple

from web3 import Web3

from .errors import ConfigError

logger = logging.getLogger(__name__)

TIER_STABLE = 1
TIER_MAJOR = 2
TIER_VOLATILE = 3

# Scan order: stable x stable, then stable x major, then major x volatile.
# Each group is scanned in both directions; other combinations are never scheduled.
SCAN_TIER_ORDER: Tuple[Tuple[int, int], ...] = (
    (TIER_STABLE, TIER_STABLE),
    (TIER_STABLE, TIER_MAJOR),
    (TIER_MAJOR, TIER_VOLATILE),
)

# Larger probes for stables, smaller for volatile assets (USD notional)
DEFAULT_NOTIONAL_USD_BY_TIER: Dict[int, float] = {
    TIER_STABLE: 10_000.0,
    TIER_MAJOR: 5_000.0,
    TIER_VOLATILE: 1_000.0,
}

VENUE_KIND_V3 = 'v3'
VENUE_KIND_V2 = 'v2'
V2_FEE_TIER = 3000  # 0.3%, fixed for constant-product pairs


@dataclass(frozen=True)
class Asset:
    """A tradable token."""
    symbol: str
    address: str
    decimals: int
    tier: int
    price_source: str = 'oracle'  # 'stable' (pegged to 1.0) or 'oracle'
    price_feed: Optional[str] = None  # Chainlink aggregator for 'oracle'

    @property
    def is_stable(self) -> bool:
        return self.price_source == 'stable'


@dataclass(frozen=True)
class Venue:
    """A DEX venue with its quoting and pool-lookup contracts."""
    name: str
    kind: str  # 'v3' or 'v2'
    router: str
    factory: str
    quoter: Optional[str] = None  # required for 'v3'
    fee_tiers: Tuple[int, ...] = (V2_FEE_TIER,)


DEFAULT_ASSETS: List[Dict[str, Any]] = [
    {"symbol": "USDC", "address": "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48", "decimals": 6,
     "tier": 1, "price_source": "stable"},
    {"symbol": "USDT", "address": "0xdAC17F958D2ee523a2206206994597C13D831ec7", "decimals": 6,
     "tier": 1, "price_source": "stable"},
    {"symbol": "DAI", "address": "0x6B175474E89094C44Da98b954EedeAC495271d0F", "decimals": 18,
     "tier": 1, "price_source": "stable"},
    {"symbol": "WETH", "address": "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2", "decimals": 18,
     "tier": 2, "price_source": "oracle", "price_feed": "0x5f4eC3Df9cbd43714FE2740f5E3616155c5b8419"},
    {"symbol": "WBTC", "address": "0x2260FAC5E5542a773Aa44fBCfeDf7C193bc2C599", "decimals": 8,
     "tier": 2, "price_source": "oracle", "price_feed": "0xF4030086522a5bEEa4988F8cA5B36dbC97BeE88c"},
    {"symbol": "LINK", "address": "0x514910771AF9Ca656af840dff83E8264EcF986CA", "decimals": 18,
     "tier": 3, "price_source": "oracle", "price_feed": "0x2c1d072e956AFFC0D435Cb7AC38EF18d24d9127c"},
    {"symbol": "CRV", "address": "0xD533a949740bb3306d119CC777fa900bA034cd52", "decimals": 18,
     "tier": 3, "price_source": "oracle", "price_feed": "0xCd627aA160A6fA45Eb793D19Ef54f5062F20f33f"},
]

DEFAULT_VENUES: List[Dict[str, Any]] = [
    {"name": "UniswapV3", "kind": "v3",
     "router": "0xE592427A0AEce92De3Edee1F18E0157C05861564",
     "quoter": "0xb27308f9F90D607463bb33eA1BeBb41C27CE5AB6",
     "factory": "0x1F98431c8aD98523631AE4a59f267346ea31F984",
     "fee_tiers": [500, 3000, 10000]},
    {"name": "UniswapV2", "kind": "v2",
     "router": "0x7a250d5630B4cF539739dF2C5dAcb4c659F2488D",
     "factory": "0x5C69bEe701ef814a2B6a3EDD4B1652CB9cc5aA6f"},
    {"name": "SushiSwap", "kind": "v2",
     "router": "0xd9e1cE17f2641f24aE83637ab66a2cca9C378B9F",
     "factory": "0xC0AEe478e3658e2610c5F7A4A2E1777cE9e4f2Ac"},
]


def _checksum(value: Any, what: str) -> str:
    if not isinstance(value, str) or not Web3.is_address(value):
        raise ConfigError(f"Invalid address for {what}: {value!r}")
    return Web3.to_checksum_address(value)


def parse_asset(raw: Dict[str, Any]) -> Asset:
    """Build an Asset from a config entry, validating every field."""
    symbol = raw.get('symbol')
    if not symbol:
        raise ConfigError(f"Asset entry without symbol: {raw}")
    try:
        decimals = int(raw['decimals'])
        tier = int(raw['tier'])
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigError(f"Asset {symbol}: decimals and tier are required integers ({e})") from e
    if tier not in (TIER_STABLE, TIER_MAJOR, TIER_VOLATILE):
        raise ConfigError(f"Asset {symbol}: tier must be 1, 2 or 3, got {tier}")

    price_source = raw.get('price_source', 'stable' if tier == TIER_STABLE else 'oracle')
    if price_source not in ('stable', 'oracle'):
        raise ConfigError(f"Asset {symbol}: unknown price_source {price_source!r}")
    price_feed = raw.get('price_feed')
    if price_feed is not None:
        price_feed = _checksum(price_feed, f"{symbol} price_feed")
    elif price_source == 'oracle':
        logger.warning(f"Asset {symbol} has no price_feed; its USD price will fall back to 1.0")

    return Asset(
        symbol=symbol,
        address=_checksum(raw.get('address'), f"asset {symbol}"),
        decimals=decimals,
        tier=tier,
        price_source=price_source,
        price_feed=price_feed,
    )


def parse_venue(raw: Dict[str, Any]) -> Venue:
    """Build a Venue from a config entry, validating every field."""
    name = raw.get('name')
    if not name:
        raise ConfigError(f"Venue entry without name: {raw}")
    kind = raw.get('kind', VENUE_KIND_V2)
    if kind not in (VENUE_KIND_V3, VENUE_KIND_V2):
        raise ConfigError(f"Venue {name}: kind must be 'v3' or 'v2', got {kind!r}")

    quoter = raw.get('quoter')
    if kind == VENUE_KIND_V3:
        if not quoter:
            raise ConfigError(f"Venue {name}: v3 venues need a quoter address")
        quoter = _checksum(quoter, f"{name} quoter")
        fee_tiers = tuple(int(f) for f in raw.get('fee_tiers', [500, 3000, 10000]))
    else:
        quoter = None
        fee_tiers = tuple(int(f) for f in raw.get('fee_tiers', [V2_FEE_TIER]))
    if not fee_tiers:
        raise ConfigError(f"Venue {name}: at least one fee tier is required")

    return Venue(
        name=name,
        kind=kind,
        router=_checksum(raw.get('router'), f"{name} router"),
        factory=_checksum(raw.get('factory'), f"{name} factory"),
        quoter=quoter,
        fee_tiers=fee_tiers,
    )


@dataclass
class Registry:
    """Immutable-by-convention set of assets and venues plus sizing policy."""
    assets: List[Asset]
    venues: List[Venue]
    notional_usd_by_tier: Dict[int, float] = field(
        default_factory=lambda: dict(DEFAULT_NOTIONAL_USD_BY_TIER)
    )

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'Registry':
        """
        Load the registry from the parsed config.json.

        Falls back to the built-in mainnet assets/venues for any missing section.

        Raises:
            ConfigError: on invalid entries or an unusable registry
        """
        raw_assets = config.get('assets') or DEFAULT_ASSETS
        raw_venues = config.get('venues') or DEFAULT_VENUES

        assets = [parse_asset(a) for a in raw_assets]
        venues = [parse_venue(v) for v in raw_venues]

        addresses = [a.address for a in assets]
        if len(set(addresses)) != len(addresses):
            raise ConfigError("Duplicate asset addresses in registry")
        if len(assets) < 2:
            raise ConfigError("Registry needs at least two assets")
        if len(venues) < 2:
            raise ConfigError("Registry needs at least two venues")

        notional = dict(DEFAULT_NOTIONAL_USD_BY_TIER)
        for tier, usd in (config.get('scan', {}).get('notional_usd_by_tier') or {}).items():
            notional[int(tier)] = float(usd)

        return cls(assets=assets, venues=venues, notional_usd_by_tier=notional)

    def get_asset(self, symbol_or_address: str) -> Optional[Asset]:
        for asset in self.assets:
            if asset.symbol == symbol_or_address or asset.address.lower() == symbol_or_address.lower():
                return asset
        return None

    def scan_notional_usd(self, asset: Asset, max_loan_usd: float) -> float:
        """USD notional for probing pairs that start in `asset`, capped by the loan limit."""
        notional = self.notional_usd_by_tier.get(asset.tier, DEFAULT_NOTIONAL_USD_BY_TIER[TIER_VOLATILE])
        return min(notional, max_loan_usd)


def schedule_pairs(assets: List[Asset]) -> Iterator[Tuple[Asset, Asset]]:
    """
    Yield (asset_in, asset_out) pairs in scan-priority order.

    Within a cross-tier group every forward pair comes first, then the same
    pairs reversed, so both directions of each combination are probed.

    Stateless: every call restarts from the top, so each cycle gets a fresh scan.
    """
    by_tier: Dict[int, List[Asset]] = {}
    for asset in assets:
        by_tier.setdefault(asset.tier, []).append(asset)

    for tier_in, tier_out in SCAN_TIER_ORDER:
        forward = [
            (asset_in, asset_out)
            for asset_in in by_tier.get(tier_in, [])
            for asset_out in by_tier.get(tier_out, [])
            if asset_in.address != asset_out.address
        ]
        yield from forward
        if tier_in != tier_out:
            # Same-tier groups already hold both directions
            for asset_in, asset_out in forward:
                yield asset_out, asset_in
