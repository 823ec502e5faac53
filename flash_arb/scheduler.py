"""
Loop controller: gas gate, per-cycle scan and fixed pacing/backoff.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .arbitrage_finder import ArbitrageFinder, ArbitrageOpportunity
from .errors import GasPriceTooHighError
from .market_data import MarketDataGateway
from .pricing import PriceBook
from .risk_manager import GasEnvironment, RiskManager
from .trader import ExecutionResult, Trader
from .utils import get_terminal_colors

logger = logging.getLogger(__name__)
colors = get_terminal_colors()


class Clock:
    """Time source for the loop. Tests substitute a fake."""

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


@dataclass
class CycleReport:
    """What happened in one cycle."""
    gas: Optional[GasEnvironment] = None
    skipped_for_gas: bool = False
    pairs_scanned: int = 0
    opportunities: List[ArbitrageOpportunity] = field(default_factory=list)
    results: List[ExecutionResult] = field(default_factory=list)
    duration_seconds: float = 0.0


class ScanLoop:
    """Drives scan cycles until stopped (or for a fixed number of cycles)."""

    def __init__(
        self,
        gateway: MarketDataGateway,
        finder: ArbitrageFinder,
        trader: Trader,
        risk_manager: RiskManager,
        price_book_factory: Callable[[], PriceBook],
        scan_interval_seconds: float = 12.0,
        error_backoff_seconds: float = 1.0,
        clock: Optional[Clock] = None
    ):
        self.gateway = gateway
        self.finder = finder
        self.trader = trader
        self.risk = risk_manager
        self.price_book_factory = price_book_factory
        self.scan_interval_seconds = scan_interval_seconds
        self.error_backoff_seconds = error_backoff_seconds
        self.clock = clock or Clock()
        self.consecutive_errors = 0
        self.cycles_run = 0
        self.last_report: Optional[CycleReport] = None

    async def refresh_gas_environment(self) -> GasEnvironment:
        gas_price = await self.gateway.get_gas_price()
        block_number = await self.gateway.get_block_number()
        return self.risk.build_gas_environment(gas_price, block_number)

    async def run_cycle(self) -> CycleReport:
        """
        One cycle: gas gate, then every scheduled pair, dispatching as found.

        Raises:
            Exception: anything unexpected (e.g. the gas refresh failing);
                the caller applies the error backoff
        """
        started = self.clock.monotonic()
        gas = await self.refresh_gas_environment()
        report = CycleReport(gas=gas)

        try:
            self.risk.check_gas(gas)
        except GasPriceTooHighError as e:
            logger.warning(
                f"{colors['YELLOW']}{e}{colors['RESET']}, waiting {self.scan_interval_seconds:.0f}s before re-checking"
            )
            report.skipped_for_gas = True
            return report

        prices = self.price_book_factory()

        async def on_opportunity_found(opportunity: ArbitrageOpportunity) -> bool:
            report.results.append(await self.trader.dispatch(opportunity, gas))
            return True

        report.opportunities = await self.finder.find_opportunities(
            gas, prices, on_opportunity_found=on_opportunity_found
        )
        report.pairs_scanned = self.finder.pairs_scanned
        report.duration_seconds = self.clock.monotonic() - started

        logger.info(
            f"{colors['DIM']}Cycle done: block={gas.block_number} gas={gas.gas_price_wei / 1e9:.1f} gwei "
            f"pairs={report.pairs_scanned} opportunities={len(report.opportunities)} "
            f"in {report.duration_seconds:.1f}s{colors['RESET']}"
        )
        return report

    async def run(self, max_cycles: Optional[int] = None) -> None:
        """
        Run cycles forever (or `max_cycles` times).

        Recoverable errors never stop the loop: they are logged and followed
        by a fixed backoff.
        """
        logger.info(
            f"Scan loop started (interval {colors['GREEN']}{self.scan_interval_seconds:.0f}s{colors['RESET']}, "
            f"mode {colors['CYAN']}{self.trader.mode}{colors['RESET']})"
        )
        while max_cycles is None or self.cycles_run < max_cycles:
            self.cycles_run += 1
            try:
                self.last_report = await self.run_cycle()
            except Exception as e:
                self.consecutive_errors += 1
                logger.error(
                    f"Error in scan cycle ({self.consecutive_errors} in a row): {type(e).__name__}: {e}",
                    exc_info=True
                )
                await self.clock.sleep(self.error_backoff_seconds)
                continue

            self.consecutive_errors = 0
            await self.clock.sleep(self.scan_interval_seconds)
