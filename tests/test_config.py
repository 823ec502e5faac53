"""
Tests for configuration loading - precedence, validation and fatal startup errors.
"""
import json
import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from eth_account import Account

from flash_arb.errors import ConfigError
from flash_arb.main import build_risk_config, get_setting, load_config, load_wallet, main, verify_owner

TEST_KEY = '0x' + '11' * 32
CONTRACT = '0x' + '33' * 20

ENV_KEYS = (
    'MODE', 'RPC_URL', 'FALLBACK_RPC_URL', 'CHAIN_ID', 'WALLET_PRIVATE_KEY', 'FLASH_LOAN_CONTRACT',
    'MIN_PROFIT_USD', 'MIN_SLIPPAGE_PERCENT', 'MAX_SLIPPAGE_PERCENT', 'MAX_TX_PER_BLOCK', 'LOG_LEVEL',
    'ORACLE_MAX_AGE_SECONDS', 'RESCUE_TOKEN',
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    # setenv first so teardown also removes values loaded from .env files
    for key in ENV_KEYS:
        monkeypatch.setenv(key, '')
        monkeypatch.delenv(key)


class TestGetSetting:
    def test_default(self):
        assert get_setting({}, 'MIN_PROFIT_USD', 100.0, float) == 100.0

    def test_config_over_default(self):
        assert get_setting({'min_profit_usd': 250}, 'MIN_PROFIT_USD', 100.0, float) == 250.0

    def test_env_over_config(self, monkeypatch):
        monkeypatch.setenv('MIN_PROFIT_USD', '500')
        assert get_setting({'min_profit_usd': 250}, 'MIN_PROFIT_USD', 100.0, float) == 500.0

    def test_blank_env_ignored(self, monkeypatch):
        monkeypatch.setenv('MIN_PROFIT_USD', '  ')
        assert get_setting({'min_profit_usd': 250}, 'MIN_PROFIT_USD', 100.0, float) == 250.0

    def test_bad_value(self, monkeypatch):
        monkeypatch.setenv('MAX_TX_PER_BLOCK', 'three')
        with pytest.raises(ConfigError, match="MAX_TX_PER_BLOCK"):
            get_setting({}, 'MAX_TX_PER_BLOCK', 3, int)


class TestBuildRiskConfig:
    def test_defaults(self):
        config = build_risk_config({})
        assert config.min_profit_usd == 100.0
        assert config.max_tx_per_block == 3

    def test_sections_and_env(self, monkeypatch):
        monkeypatch.setenv('MAX_TX_PER_BLOCK', '1')
        config = build_risk_config({'arbitrage': {'min_profit_usd': 50, 'max_loan_amount_usd': 250000}})

        assert config.min_profit_usd == 50.0
        assert config.max_loan_usd == 250000.0
        assert config.max_tx_per_block == 1

    def test_inverted_slippage_bounds(self, monkeypatch):
        monkeypatch.setenv('MIN_SLIPPAGE_PERCENT', '1.0')
        monkeypatch.setenv('MAX_SLIPPAGE_PERCENT', '0.5')
        with pytest.raises(ConfigError):
            build_risk_config({})


class TestLoadConfig:
    def test_missing_files(self, tmp_path):
        assert load_config(tmp_path) == {}

    def test_reads_config_json(self, tmp_path):
        (tmp_path / 'config.json').write_text(json.dumps({'arbitrage': {'min_profit_usd': 75}}))
        assert load_config(tmp_path)['arbitrage']['min_profit_usd'] == 75

    def test_invalid_json(self, tmp_path):
        (tmp_path / 'config.json').write_text("{not json")
        with pytest.raises(ConfigError):
            load_config(tmp_path)

    def test_env_file(self, tmp_path, monkeypatch):
        (tmp_path / '.env').write_text("MIN_PROFIT_USD=321\n")
        load_config(tmp_path)
        assert get_setting({}, 'MIN_PROFIT_USD', 100.0, float) == 321.0


class TestLoadWallet:
    def test_valid_key(self):
        account = load_wallet(TEST_KEY)
        assert account is not None
        assert account.address.startswith('0x')

    def test_invalid_key(self):
        assert load_wallet('not-a-key') is None

    def test_missing_key(self):
        assert load_wallet() is None


class TestStartupValidation:
    """Misconfiguration is fatal before any RPC traffic."""

    @pytest.fixture(autouse=True)
    def no_files(self):
        with patch('flash_arb.main.load_config', return_value={}), patch('flash_arb.main.setup_logging'):
            yield

    @pytest.mark.asyncio
    async def test_unknown_mode(self, monkeypatch):
        monkeypatch.setenv('RPC_URL', 'http://localhost:8545')
        with pytest.raises(ConfigError, match="Unknown mode"):
            await main(mode='yolo')

    @pytest.mark.asyncio
    async def test_missing_rpc_url(self):
        with pytest.raises(ConfigError, match="RPC_URL"):
            await main(mode='scan')

    @pytest.mark.asyncio
    async def test_live_without_wallet(self, monkeypatch):
        monkeypatch.setenv('RPC_URL', 'http://localhost:8545')
        with pytest.raises(ConfigError, match="WALLET_PRIVATE_KEY"):
            await main(mode='live')

    @pytest.mark.asyncio
    async def test_live_without_contract(self, monkeypatch):
        monkeypatch.setenv('RPC_URL', 'http://localhost:8545')
        monkeypatch.setenv('WALLET_PRIVATE_KEY', TEST_KEY)
        with pytest.raises(ConfigError, match="FLASH_LOAN_CONTRACT"):
            await main(mode='live')

    @pytest.mark.asyncio
    async def test_invalid_contract_address(self, monkeypatch):
        monkeypatch.setenv('RPC_URL', 'http://localhost:8545')
        monkeypatch.setenv('FLASH_LOAN_CONTRACT', '0x1234')
        with pytest.raises(ConfigError, match="Invalid FLASH_LOAN_CONTRACT"):
            await main(mode='scan')

    @pytest.mark.asyncio
    async def test_max_slippage_above_contract_limit(self, monkeypatch):
        monkeypatch.setenv('RPC_URL', 'http://localhost:8545')
        monkeypatch.setenv('MAX_SLIPPAGE_PERCENT', '11')
        with pytest.raises(ConfigError, match="settlement contract limit"):
            await main(mode='scan')

    @pytest.mark.asyncio
    async def test_wallet_not_contract_owner(self, monkeypatch):
        monkeypatch.setenv('RPC_URL', 'http://localhost:8545')
        monkeypatch.setenv('WALLET_PRIVATE_KEY', TEST_KEY)
        monkeypatch.setenv('FLASH_LOAN_CONTRACT', CONTRACT)
        settlement = MagicMock(address=CONTRACT)
        settlement.owner = AsyncMock(return_value='0x' + '22' * 20)

        with patch('flash_arb.main.SettlementContract', return_value=settlement), \
                patch('flash_arb.main.ScanLoop') as scan_loop:
            with pytest.raises(ConfigError, match="not the owner"):
                await main(mode='live')

        scan_loop.assert_not_called()

    @pytest.mark.asyncio
    async def test_oracle_max_age_passed_to_gateway(self, monkeypatch):
        monkeypatch.setenv('RPC_URL', 'http://localhost:8545')
        monkeypatch.setenv('ORACLE_MAX_AGE_SECONDS', '600')

        with patch('flash_arb.main.MarketDataGateway') as gateway, \
                patch('flash_arb.main.ScanLoop') as scan_loop:
            scan_loop.return_value.run = AsyncMock()
            await main(mode='scan', max_cycles=1)

        assert gateway.call_args.kwargs['oracle_max_age_seconds'] == 600.0
        scan_loop.return_value.run.assert_awaited_once_with(max_cycles=1)


class TestVerifyOwner:
    @pytest.mark.asyncio
    async def test_owner_matches_ignoring_case(self):
        wallet = Account.from_key(TEST_KEY)
        settlement = MagicMock(address=CONTRACT)
        settlement.owner = AsyncMock(return_value=wallet.address.lower())

        await verify_owner(settlement, wallet.address)
        settlement.owner.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_foreign_owner(self):
        settlement = MagicMock(address=CONTRACT)
        settlement.owner = AsyncMock(return_value='0x' + '22' * 20)

        with pytest.raises(ConfigError):
            await verify_owner(settlement, Account.from_key(TEST_KEY).address)
