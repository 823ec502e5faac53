"""
Error taxonomy for the arbitrage scanner.

Each error maps to the scope it is allowed to abort:
combination (one venue/fee-tier quote), pair, cycle, or process startup.
"""


class ArbitrageError(Exception):
    """Base class for all scanner errors."""


class ConfigError(ArbitrageError):
    """Unrecoverable startup misconfiguration (missing address, bad registry)."""


class TransientQuoteError(ArbitrageError):
    """A single quote simulation failed; skip that venue/fee-tier combination."""


class InsufficientLiquidityError(ArbitrageError):
    """No pool, or pool liquidity below the configured floor; skip the venue for this pair."""


class GasPriceTooHighError(ArbitrageError):
    """Current gas price exceeds the ceiling; defer the whole cycle."""

    def __init__(self, gas_price_wei: int, max_gas_price_wei: int):
        self.gas_price_wei = gas_price_wei
        self.max_gas_price_wei = max_gas_price_wei
        super().__init__(
            f"Gas price {gas_price_wei / 1e9:.2f} gwei exceeds ceiling "
            f"{max_gas_price_wei / 1e9:.2f} gwei"
        )


class BelowProfitThresholdError(ArbitrageError):
    """Candidate does not clear the minimum profit. Used as a silent filter."""

    def __init__(self, profit_usd: float, min_profit_usd: float):
        self.profit_usd = profit_usd
        self.min_profit_usd = min_profit_usd
        super().__init__(f"Profit ${profit_usd:.4f} <= minimum ${min_profit_usd:.2f}")


class ExecutionSubmissionError(ArbitrageError):
    """The settlement transaction could not be built, signed or broadcast."""


class ExecutionRevertedError(ArbitrageError):
    """The settlement call reverted in simulation (eth_call). Mined reverts are reported by receipt status."""


class OracleUnavailableError(ArbitrageError):
    """Price feed lookup failed or returned a non-positive answer."""
