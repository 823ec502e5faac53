"""
Main entry point for the flash-loan arbitrage scanner.
"""
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import dotenv
from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3

from .arbitrage_finder import ArbitrageFinder
from .chain_client import ChainClient
from .errors import ConfigError
from .market_data import MarketDataGateway, SettlementContract
from .pricing import PriceBook
from .registry import Registry
from .risk_manager import RiskConfig, RiskManager
from .scheduler import ScanLoop
from .trader import MODES, Trader
from .utils import get_terminal_colors, short_address

logger = logging.getLogger(__name__)
colors = get_terminal_colors()

PROJECT_ROOT = Path(__file__).parent.parent


def setup_logging(level: str = 'INFO') -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler('arbitrage_bot.log')
        ]
    )


def load_config(base_dir: Optional[Path] = None) -> dict:
    """Load configuration from .env and config.json."""
    base_dir = base_dir or PROJECT_ROOT

    # Load .env (never overrides variables already set in the environment)
    env_path = base_dir / '.env'
    if env_path.exists():
        dotenv.load_dotenv(env_path)
    else:
        logger.warning(f".env file not found at {env_path}")

    config_path = base_dir / 'config.json'
    if config_path.exists():
        with open(config_path, 'r') as f:
            try:
                config = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigError(f"Invalid config.json: {e}") from e
    else:
        logger.warning(f"config.json not found at {config_path}, using built-in defaults")
        config = {}

    return config


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')


def get_setting(
    config_section: Dict[str, Any],
    env_name: str,
    default: Any,
    cast: Callable[[Any], Any] = str
) -> Any:
    """
    Resolve one option: environment first, then config.json, then default.

    The config.json key is the lower-cased env name (MIN_PROFIT_USD -> min_profit_usd).

    Raises:
        ConfigError: if the value cannot be converted
    """
    raw = os.getenv(env_name)
    if raw is None or raw.strip() == '':
        raw = config_section.get(env_name.lower())
    if raw is None:
        return default
    try:
        return cast(raw)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for {env_name}: {raw!r}") from e


def build_risk_config(config: dict) -> RiskConfig:
    """Risk limits from env > config.json 'arbitrage' section > defaults."""
    section = config.get('arbitrage', {})
    defaults = RiskConfig()
    try:
        return RiskConfig(
            min_profit_usd=get_setting(section, 'MIN_PROFIT_USD', defaults.min_profit_usd, float),
            max_loan_usd=get_setting(section, 'MAX_LOAN_AMOUNT_USD', defaults.max_loan_usd, float),
            min_price_difference_percent=get_setting(
                section, 'MIN_PRICE_DIFFERENCE_PERCENT', defaults.min_price_difference_percent, float
            ),
            max_price_impact_percent=get_setting(
                section, 'MAX_PRICE_IMPACT_PERCENT', defaults.max_price_impact_percent, float
            ),
            min_slippage_percent=get_setting(section, 'MIN_SLIPPAGE_PERCENT', defaults.min_slippage_percent, float),
            max_slippage_percent=get_setting(section, 'MAX_SLIPPAGE_PERCENT', defaults.max_slippage_percent, float),
            slippage_spread_share=get_setting(section, 'SLIPPAGE_SPREAD_SHARE', defaults.slippage_spread_share, float),
            max_gas_price_gwei=get_setting(section, 'MAX_GAS_PRICE_GWEI', defaults.max_gas_price_gwei, float),
            gas_limit=get_setting(section, 'GAS_LIMIT', defaults.gas_limit, int),
            gas_estimate_units=get_setting(section, 'GAS_ESTIMATE_UNITS', defaults.gas_estimate_units, int),
            priority_fee_gwei=get_setting(section, 'PRIORITY_FEE_GWEI', defaults.priority_fee_gwei, float),
            flash_loan_fee_percent=get_setting(
                section, 'FLASH_LOAN_FEE_PERCENT', defaults.flash_loan_fee_percent, float
            ),
            dex_fee_percent=get_setting(section, 'DEX_FEE_PERCENT', defaults.dex_fee_percent, float),
            safety_margin_percent=get_setting(section, 'SAFETY_MARGIN_PERCENT', defaults.safety_margin_percent, float),
            min_liquidity_usd=get_setting(section, 'MIN_LIQUIDITY_USD', defaults.min_liquidity_usd, float),
            max_tx_per_block=get_setting(section, 'MAX_TX_PER_BLOCK', defaults.max_tx_per_block, int),
        )
    except ValueError as e:
        raise ConfigError(str(e)) from e


def load_wallet(private_key_str: Optional[str] = None) -> Optional[LocalAccount]:
    """Load wallet from a hex private key."""
    if not private_key_str:
        private_key_str = os.getenv('WALLET_PRIVATE_KEY')

    if not private_key_str:
        logger.warning("No wallet private key provided")
        return None

    try:
        return Account.from_key(private_key_str)
    except (ValueError, TypeError) as e:
        # Never log the key itself
        logger.error(f"Error loading wallet: {type(e).__name__}")
        return None


async def verify_owner(settlement: SettlementContract, wallet_address: str) -> None:
    """
    executeArbitrage and rescueTokens are owner-only; refuse to start against
    a contract this wallet does not own.

    Raises:
        ConfigError: if the wallet is not the contract owner
    """
    owner = await settlement.owner()
    if owner.lower() != wallet_address.lower():
        raise ConfigError(
            f"Wallet {short_address(wallet_address)} is not the owner of settlement contract "
            f"{short_address(settlement.address)} (owner: {short_address(owner)})"
        )
    logger.info(f"Settlement contract {colors['CYAN']}{short_address(settlement.address)}{colors['RESET']} owned by wallet")


async def main(mode: Optional[str] = None, rescue_token: Optional[str] = None, max_cycles: Optional[int] = None):
    """
    Main function.

    Raises:
        ConfigError: on unrecoverable misconfiguration (fatal)
    """
    config = load_config()
    setup_logging(os.getenv('LOG_LEVEL', config.get('log_level', 'INFO')))
    logger.info("Starting flash-loan arbitrage scanner")

    network = config.get('network', {})
    arbitrage = config.get('arbitrage', {})

    mode = (mode or os.getenv('MODE') or 'scan').lower()
    if mode not in MODES:
        raise ConfigError(f"Unknown mode: {mode}. Use: {', '.join(MODES)}")

    rpc_url = get_setting(network, 'RPC_URL', None)
    if not rpc_url:
        raise ConfigError("RPC_URL is required")
    fallback_rpc_url = get_setting(network, 'FALLBACK_RPC_URL', None)
    chain_id = get_setting(network, 'CHAIN_ID', 1, int)

    registry = Registry.from_config(config)
    risk_config = build_risk_config(config)

    wallet = load_wallet()
    contract_address = get_setting(network, 'FLASH_LOAN_CONTRACT', None)
    if mode != 'scan':
        if wallet is None:
            raise ConfigError(f"Wallet (WALLET_PRIVATE_KEY) required for {mode} mode")
        if not contract_address:
            raise ConfigError(f"FLASH_LOAN_CONTRACT required for {mode} mode")
    if contract_address:
        if not Web3.is_address(contract_address):
            raise ConfigError(f"Invalid FLASH_LOAN_CONTRACT address: {contract_address!r}")
        contract_address = Web3.to_checksum_address(contract_address)

    scan_interval = get_setting(arbitrage, 'SCAN_INTERVAL_SECONDS', 12.0, float)
    error_backoff = get_setting(arbitrage, 'ERROR_BACKOFF_SECONDS', 1.0, float)
    native_price_usd = get_setting(arbitrage, 'NATIVE_PRICE_USD', 2000.0, float)
    native_price_feed = get_setting(network, 'NATIVE_PRICE_FEED', None)
    oracle_max_age = get_setting(network, 'ORACLE_MAX_AGE_SECONDS', 3600.0, float)
    quote_timeout = get_setting(arbitrage, 'QUOTE_TIMEOUT', 5.0, float)
    round_trip_check = get_setting(arbitrage, 'ROUND_TRIP_CHECK', True, _to_bool)

    logger.info(
        f"Mode: {colors['CYAN']}{mode.upper()}{colors['RESET']} | chain {chain_id} | "
        f"{colors['GREEN']}{len(registry.assets)}{colors['RESET']} assets, "
        f"{colors['GREEN']}{len(registry.venues)}{colors['RESET']} venues"
    )
    logger.info(
        f"Limits: min profit ${risk_config.min_profit_usd:.2f}, max gas {risk_config.max_gas_price_gwei:.0f} gwei, "
        f"slippage [{risk_config.min_slippage_percent}%, {risk_config.max_slippage_percent}%], "
        f"max impact {risk_config.max_price_impact_percent}%"
    )
    if wallet:
        logger.info(f"Wallet: {colors['CYAN']}{short_address(wallet.address)}{colors['RESET']}")

    chain = ChainClient(
        rpc_url,
        account=wallet,
        fallback_rpc_url=fallback_rpc_url,
        chain_id=chain_id,
        requests_per_second=get_setting(network, 'RPC_REQUESTS_PER_SECOND', 10.0, float),
        max_retries=get_setting(arbitrage, 'MAX_RETRIES', 3, int),
        retry_delay_seconds=get_setting(arbitrage, 'RETRY_DELAY_SECONDS', 1.0, float)
    )
    gateway = MarketDataGateway(chain, registry.venues, oracle_max_age_seconds=oracle_max_age)
    risk_manager = RiskManager(risk_config)
    settlement = SettlementContract(chain, contract_address) if contract_address else None
    trader = Trader(settlement, risk_manager, mode=mode)

    try:
        if mode != 'scan':
            await verify_owner(settlement, wallet.address)

        if mode == 'rescue':
            token = rescue_token or os.getenv('RESCUE_TOKEN')
            asset = registry.get_asset(token) if token else None
            token_address = asset.address if asset else token
            if not token_address or not Web3.is_address(token_address):
                raise ConfigError(f"rescue mode needs a registry symbol or token address, got {token!r}")

            gas = risk_manager.build_gas_environment(
                await gateway.get_gas_price(), await gateway.get_block_number()
            )
            await trader.rescue_tokens(Web3.to_checksum_address(token_address), gas)
            return

        if mode == 'live':
            # STRICT WARNING: Live mode sends real transactions
            logger.warning("=" * 60)
            logger.warning("LIVE MODE ENABLED - REAL TRANSACTIONS WILL BE SENT!")
            logger.warning("=" * 60)
            logger.warning("Starting live mode in 3 seconds... Press Ctrl+C to cancel")
            await asyncio.sleep(3)

        finder = ArbitrageFinder(
            gateway,
            registry,
            risk_manager,
            quote_timeout=quote_timeout,
            round_trip_check=round_trip_check
        )
        loop = ScanLoop(
            gateway,
            finder,
            trader,
            risk_manager,
            price_book_factory=lambda: PriceBook(gateway, native_price_feed, native_price_usd),
            scan_interval_seconds=scan_interval,
            error_backoff_seconds=error_backoff
        )
        await loop.run(max_cycles=max_cycles)

    finally:
        await chain.close()
        logger.info("Bot stopped")


if __name__ == '__main__':
    asyncio.run(main())
