"""
Risk management: gas gate, profitability model, slippage policy and submission caps.
"""
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Optional, Tuple

from .errors import BelowProfitThresholdError, GasPriceTooHighError
from .utils import clamp, get_terminal_colors, gwei_to_wei

if TYPE_CHECKING:
    from .arbitrage_finder import SpreadCandidate

colors = get_terminal_colors()
logger = logging.getLogger(__name__)

WEI_PER_NATIVE = 10**18

# executeArbitrage rejects slippage above this (whole percent)
SETTLEMENT_MAX_SLIPPAGE_PERCENT = 10


@dataclass
class RiskConfig:
    """Risk management configuration.

    All absolute limits are in USD; percentages are plain percent (0.3 == 0.3%).
    """
    min_profit_usd: float = 100.0
    max_loan_usd: float = 1_000_000.0
    min_price_difference_percent: float = 0.2
    max_price_impact_percent: float = 2.0
    min_slippage_percent: float = 0.05
    max_slippage_percent: float = 0.5
    slippage_spread_share: float = 0.5  # share of the spread allowed to slip
    max_gas_price_gwei: float = 100.0
    gas_limit: int = 500_000  # per settlement transaction
    gas_estimate_units: int = 300_000  # used for cost estimation only
    priority_fee_gwei: float = 1.5
    flash_loan_fee_percent: float = 0.09
    dex_fee_percent: float = 0.3  # per swap; a round trip pays it twice
    safety_margin_percent: float = 20.0
    min_liquidity_usd: float = 100_000.0
    max_tx_per_block: int = 3

    def __post_init__(self):
        if self.min_slippage_percent > self.max_slippage_percent:
            raise ValueError(
                f"min_slippage_percent ({self.min_slippage_percent}) exceeds "
                f"max_slippage_percent ({self.max_slippage_percent})"
            )
        if self.max_slippage_percent > SETTLEMENT_MAX_SLIPPAGE_PERCENT:
            raise ValueError(
                f"max_slippage_percent ({self.max_slippage_percent}) exceeds the settlement contract limit "
                f"of {SETTLEMENT_MAX_SLIPPAGE_PERCENT}%"
            )
        if not 0 <= self.safety_margin_percent < 100:
            raise ValueError("safety_margin_percent must be in [0, 100)")


@dataclass(frozen=True)
class GasEnvironment:
    """Gas conditions for one cycle, shared read-only by every pair scan."""
    gas_price_wei: int
    priority_fee_wei: int
    max_gas_price_wei: int
    block_number: int = 0

    @property
    def acceptable(self) -> bool:
        return self.gas_price_wei <= self.max_gas_price_wei

    def tx_options(self, gas_limit: int) -> Dict[str, Any]:
        """EIP-1559 transaction options; the fee cap is the configured ceiling."""
        return {
            'gas': gas_limit,
            'maxFeePerGas': self.max_gas_price_wei,
            'maxPriorityFeePerGas': min(self.priority_fee_wei, self.max_gas_price_wei),
        }


@dataclass(frozen=True)
class ProfitEstimate:
    """Breakdown of a profitability decision (all values in USD)."""
    raw_spread_usd: float
    gas_cost_usd: float
    flash_loan_fee_usd: float
    dex_fees_usd: float
    net_profit_usd: float  # before safety margin
    margined_profit_usd: float
    accepted: bool


def estimate_profit(
    candidate: 'SpreadCandidate',
    gas: GasEnvironment,
    out_price_usd: float,
    native_price_usd: float,
    config: RiskConfig
) -> ProfitEstimate:
    """
    Net-of-costs USD profit for a spread candidate.

    Pure and deterministic: identical inputs always give identical output.

    Steps:
        1. spread (asset_out units) -> USD via out_price_usd
        2. gas cost = gas price * estimated units, in native token -> USD
        3. flash-loan fee and two DEX swap fees as a share of the spread
        4. net = spread - gas - flash fee - DEX fees
        5. keep (100 - safety_margin_percent)% of net
        6. accept only if strictly above min_profit_usd
    """
    spread_tokens = candidate.price_diff / (10 ** candidate.asset_out.decimals)
    raw_spread_usd = spread_tokens * out_price_usd

    gas_cost_usd = gas.gas_price_wei * config.gas_estimate_units / WEI_PER_NATIVE * native_price_usd

    flash_loan_fee_usd = raw_spread_usd * config.flash_loan_fee_percent / 100
    dex_fees_usd = raw_spread_usd * config.dex_fee_percent / 100 * 2

    net_profit_usd = raw_spread_usd - gas_cost_usd - flash_loan_fee_usd - dex_fees_usd
    margined_profit_usd = net_profit_usd * (1 - config.safety_margin_percent / 100)

    return ProfitEstimate(
        raw_spread_usd=raw_spread_usd,
        gas_cost_usd=gas_cost_usd,
        flash_loan_fee_usd=flash_loan_fee_usd,
        dex_fees_usd=dex_fees_usd,
        net_profit_usd=net_profit_usd,
        margined_profit_usd=margined_profit_usd,
        accepted=margined_profit_usd > config.min_profit_usd,
    )


class RiskManager:
    """Applies the risk limits to gas conditions, candidates and submissions."""

    def __init__(self, config: RiskConfig):
        self.config = config
        # block number -> submissions sent in that block (the only cross-cycle state)
        self._block_submissions: Dict[int, int] = {}

    def build_gas_environment(self, gas_price_wei: int, block_number: int = 0) -> GasEnvironment:
        return GasEnvironment(
            gas_price_wei=gas_price_wei,
            priority_fee_wei=gwei_to_wei(self.config.priority_fee_gwei),
            max_gas_price_wei=gwei_to_wei(self.config.max_gas_price_gwei),
            block_number=block_number,
        )

    def check_gas(self, gas: GasEnvironment) -> None:
        """
        Raises:
            GasPriceTooHighError: if the gas price exceeds the ceiling
        """
        if not gas.acceptable:
            raise GasPriceTooHighError(gas.gas_price_wei, gas.max_gas_price_wei)

    def check_price_impact(self, price_impact: float) -> bool:
        """price_impact is a fraction (0.02 == 2%)."""
        return price_impact <= self.config.max_price_impact_percent / 100

    def is_significant_spread(self, spread_percent: float) -> bool:
        return spread_percent >= self.config.min_price_difference_percent

    def assess_profit(
        self,
        candidate: 'SpreadCandidate',
        gas: GasEnvironment,
        out_price_usd: float,
        native_price_usd: float
    ) -> ProfitEstimate:
        return estimate_profit(candidate, gas, out_price_usd, native_price_usd, self.config)

    def require_profitable(self, estimate: ProfitEstimate) -> None:
        """
        Raises:
            BelowProfitThresholdError: if the estimate was not accepted
        """
        if not estimate.accepted:
            raise BelowProfitThresholdError(estimate.margined_profit_usd, self.config.min_profit_usd)

    def slippage_bound_percent(self, spread_percent: float) -> float:
        """
        Slippage tolerance for an opportunity.

        Grows with the spread (a wider spread can absorb more slippage and
        still repay the loan) but is clamped to [min, max] slippage.
        """
        return clamp(
            spread_percent * self.config.slippage_spread_share,
            self.config.min_slippage_percent,
            self.config.max_slippage_percent,
        )

    def can_submit(self, block_number: int) -> Tuple[bool, Optional[str]]:
        sent = self._block_submissions.get(block_number, 0)
        if sent >= self.config.max_tx_per_block:
            return False, (f"Max transactions per block reached: {sent}/{self.config.max_tx_per_block} "
                           f"in block {block_number}")
        return True, None

    def record_submission(self, block_number: int) -> None:
        # Older blocks can never be submitted into again
        for block in [b for b in self._block_submissions if b < block_number]:
            del self._block_submissions[block]
        self._block_submissions[block_number] = self._block_submissions.get(block_number, 0) + 1
        logger.debug(
            f"{colors['DIM']}Submissions in block {block_number}: "
            f"{self._block_submissions[block_number]}{colors['RESET']}"
        )
