"""
Utility functions for the flash-loan arbitrage scanner.
"""
import sys
from typing import Dict


def get_terminal_colors() -> Dict[str, str]:
    """
    Get ANSI color codes for terminal output.

    Returns empty strings if output is not a TTY (e.g., redirected to file),
    so log files stay free of escape codes.

    Returns:
        Dictionary with color codes: GREEN, CYAN, YELLOW, RED, DIM, RESET
    """
    use_color = sys.stdout.isatty()
    return {
        'GREEN': '\033[92m' if use_color else '',   # Amounts, counts, config values
        'CYAN': '\033[96m' if use_color else '',    # Assets, venues, tx hashes
        'YELLOW': '\033[93m' if use_color else '',  # Profit, spread, gas price
        'RED': '\033[91m' if use_color else '',     # Failures, reverts, rejections
        'DIM': '\033[90m' if use_color else '',     # Cycle bookkeeping
        'RESET': '\033[0m' if use_color else ''
    }


def to_base_units(amount: float, decimals: int) -> int:
    """Convert a human-readable token amount into integer base units."""
    return int(amount * (10 ** decimals))


def from_base_units(amount: int, decimals: int) -> float:
    """Convert integer base units into a human-readable token amount."""
    return amount / (10 ** decimals)


def gwei_to_wei(gwei: float) -> int:
    return int(gwei * 10**9)


def short_address(address: str) -> str:
    """Shorten a hex address for log output: 0x1234...abcd"""
    if not address or len(address) <= 12:
        return address or ''
    return f"{address[:6]}...{address[-4:]}"


def clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))
