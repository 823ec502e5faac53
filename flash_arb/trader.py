"""
Execution dispatcher: turns accepted opportunities into settlement-contract calls.
"""
import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .arbitrage_finder import ArbitrageOpportunity
from .errors import ExecutionRevertedError, ExecutionSubmissionError
from .market_data import SettlementContract
from .risk_manager import GasEnvironment, RiskManager
from .utils import get_terminal_colors, short_address

colors = get_terminal_colors()
logger = logging.getLogger(__name__)

MODES = ('scan', 'simulate', 'live', 'rescue')


class ExecutionOutcome(str, Enum):
    SUBMITTED = 'submitted'
    CONFIRMED = 'confirmed'
    REVERTED = 'reverted'
    SUBMISSION_FAILED = 'submission_failed'
    SIMULATED = 'simulated'
    SKIPPED = 'skipped'


@dataclass
class ExecutionResult:
    """Outcome of one dispatch. Logged, never retained."""
    opportunity: ArbitrageOpportunity
    outcome: ExecutionOutcome
    tx_hash: Optional[str] = None
    error: Optional[str] = None


def slippage_to_contract_percent(slippage_percent: float) -> int:
    """
    Slippage argument for executeArbitrage, which takes whole percent.

    Rounds up so the on-chain tolerance never undercuts the computed bound:
    0.3% -> 1, 1.2% -> 2. Never below 1.
    """
    return max(1, math.ceil(round(slippage_percent, 6)))


class Trader:
    """Serialized execution of opportunities against the settlement contract."""

    def __init__(
        self,
        settlement: Optional[SettlementContract],
        risk_manager: RiskManager,
        mode: str = 'scan',  # 'scan', 'simulate', 'live' or 'rescue'
        confirmation_timeout: float = 120.0
    ):
        if mode.lower() not in MODES:
            raise ValueError(f"Unknown mode {mode!r}, expected one of {', '.join(MODES)}")
        self.settlement = settlement
        self.risk = risk_manager
        self.mode = mode.lower()
        self.confirmation_timeout = confirmation_timeout
        self.trade_in_progress = False  # Protection against parallel trades

    def _execute_kwargs(self, opportunity: ArbitrageOpportunity) -> Dict[str, Any]:
        return {
            'asset_in': opportunity.asset_in.address,
            'amount_in': opportunity.amount_in,
            'buy_router': opportunity.buy_venue.router,
            'sell_router': opportunity.sell_venue.router,
            'asset_out': opportunity.asset_out.address,
            'fee_tier': opportunity.fee_tier,
            'slippage_percent': slippage_to_contract_percent(opportunity.slippage_bound_percent),
        }

    async def dispatch(self, opportunity: ArbitrageOpportunity, gas: GasEnvironment) -> ExecutionResult:
        """
        Execute (or simulate, or just log) one opportunity.

        Never raises: every failure is logged and reported in the result so the
        scan can move on to the next pair.
        """
        opportunity.slippage_bound_percent = self.risk.slippage_bound_percent(opportunity.spread_percent)

        if self.mode not in ('simulate', 'live'):
            logger.info(
                f"{colors['DIM']}[{self.mode}] not executing{colors['RESET']} {opportunity.describe()} "
                f"(slippage bound {opportunity.slippage_bound_percent:.3f}%)"
            )
            return ExecutionResult(opportunity, ExecutionOutcome.SKIPPED, error=f"mode '{self.mode}'")

        # PARALLEL TRADE PROTECTION: Only one trade at a time
        if self.trade_in_progress:
            logger.warning("Another trade is already in progress, skipping opportunity")
            return ExecutionResult(opportunity, ExecutionOutcome.SKIPPED, error="trade in progress")

        if self.mode == 'live':
            can_submit, reason = self.risk.can_submit(gas.block_number)
            if not can_submit:
                logger.warning(f"{colors['YELLOW']}Skipping execution{colors['RESET']}: {reason}")
                return ExecutionResult(opportunity, ExecutionOutcome.SKIPPED, error=reason)

        tx_options = gas.tx_options(self.risk.config.gas_limit)
        kwargs = self._execute_kwargs(opportunity)

        logger.info(
            f"{colors['CYAN']}Dispatching [{self.mode}]:{colors['RESET']} {colors['YELLOW']}{opportunity.describe()}{colors['RESET']} "
            f"slippage={opportunity.slippage_bound_percent:.3f}% (on-chain {kwargs['slippage_percent']}%) "
            f"gas_limit={tx_options['gas']} max_fee={tx_options['maxFeePerGas'] / 1e9:.1f} gwei"
        )

        self.trade_in_progress = True
        try:
            # Simulation first in both modes: a reverting call never gets broadcast
            try:
                await self.settlement.simulate_arbitrage(tx_options, **kwargs)
            except ExecutionRevertedError as e:
                logger.warning(f"{colors['RED']}Simulation reverted:{colors['RESET']} {e}")
                return ExecutionResult(opportunity, ExecutionOutcome.REVERTED, error=str(e))
            except Exception as e:
                logger.error(f"{colors['RED']}Simulation failed:{colors['RESET']} {type(e).__name__}: {e}")
                return ExecutionResult(opportunity, ExecutionOutcome.SUBMISSION_FAILED, error=str(e))

            if self.mode == 'simulate':
                logger.info(f"{colors['GREEN']}Simulation succeeded{colors['RESET']} (not submitted in simulate mode)")
                return ExecutionResult(opportunity, ExecutionOutcome.SIMULATED)

            return await self._submit(opportunity, gas, tx_options, kwargs)
        finally:
            self.trade_in_progress = False

    async def _submit(
        self,
        opportunity: ArbitrageOpportunity,
        gas: GasEnvironment,
        tx_options: Dict[str, Any],
        kwargs: Dict[str, Any]
    ) -> ExecutionResult:
        try:
            tx_hash = await self.settlement.execute_arbitrage(tx_options, **kwargs)
        except Exception as e:
            logger.error(f"{colors['RED']}Submission failed:{colors['RESET']} {type(e).__name__}: {e}")
            return ExecutionResult(opportunity, ExecutionOutcome.SUBMISSION_FAILED, error=str(e))

        self.risk.record_submission(gas.block_number)
        logger.info(f"{colors['GREEN']}Transaction submitted:{colors['RESET']} {colors['CYAN']}{tx_hash}{colors['RESET']}")

        try:
            receipt = await self.settlement.wait_for_receipt(tx_hash, timeout=self.confirmation_timeout)
        except Exception as e:
            logger.error(f"Error waiting for receipt of {tx_hash}: {type(e).__name__}: {e}")
            return ExecutionResult(opportunity, ExecutionOutcome.SUBMITTED, tx_hash=tx_hash, error=str(e))

        if receipt is None:
            error = f"not confirmed within {self.confirmation_timeout:.0f}s"
            logger.warning(f"{colors['YELLOW']}Transaction pending:{colors['RESET']} {tx_hash} {error}")
            return ExecutionResult(opportunity, ExecutionOutcome.SUBMITTED, tx_hash=tx_hash, error=error)

        if receipt.get('status') == 1:
            logger.info(
                f"{colors['GREEN']}Transaction confirmed:{colors['RESET']} {colors['CYAN']}{tx_hash}{colors['RESET']} "
                f"block={receipt.get('blockNumber')} gas_used={receipt.get('gasUsed')}"
            )
            return ExecutionResult(opportunity, ExecutionOutcome.CONFIRMED, tx_hash=tx_hash)

        error = f"Transaction reverted on-chain: {tx_hash}"
        logger.warning(f"{colors['RED']}{error}{colors['RESET']}")
        return ExecutionResult(opportunity, ExecutionOutcome.REVERTED, tx_hash=tx_hash, error=error)

    async def rescue_tokens(self, asset_address: str, gas: GasEnvironment) -> Optional[str]:
        """
        Owner-only recovery of a token balance stranded in the settlement contract.

        Returns:
            Transaction hash if mined successfully, None if it reverted or timed out

        Raises:
            ExecutionSubmissionError: wrong mode, or the transaction could not be sent
        """
        if self.mode not in ('live', 'rescue'):
            raise ExecutionSubmissionError(
                f"Transaction sending disabled in mode '{self.mode}'. Use 'rescue' or 'live' mode."
            )

        tx_options = gas.tx_options(self.risk.config.gas_limit)
        logger.info(f"{colors['CYAN']}Rescuing tokens:{colors['RESET']} {short_address(asset_address)}")
        tx_hash = await self.settlement.rescue_tokens(asset_address, tx_options)
        logger.info(f"Rescue transaction sent: {colors['CYAN']}{tx_hash}{colors['RESET']}")

        receipt = await self.settlement.wait_for_receipt(tx_hash, timeout=self.confirmation_timeout)
        if receipt is None or receipt.get('status') != 1:
            logger.error(f"{colors['RED']}Rescue transaction not confirmed:{colors['RESET']} {tx_hash}")
            return None
        logger.info(f"{colors['GREEN']}Rescue confirmed:{colors['RESET']} {tx_hash}")
        return tx_hash
