#!/usr/bin/env python3
"""
Simple launcher script for the arbitrage scanner.
"""
import argparse
import sys
from flash_arb.main import main
import asyncio

if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Flash-loan DEX Arbitrage Scanner')
    parser.add_argument(
        'mode',
        nargs='?',
        default=None,
        choices=['scan', 'simulate', 'live', 'rescue'],
        help='Operation mode: scan (default), simulate, live, or rescue (falls back to MODE in .env)'
    )
    parser.add_argument(
        '--token',
        default=None,
        help='rescue mode: registry symbol or token address to recover from the settlement contract'
    )
    parser.add_argument(
        '--cycles',
        type=int,
        default=None,
        help='Stop after this many scan cycles (default: run until interrupted)'
    )

    args = parser.parse_args()

    try:
        asyncio.run(main(mode=args.mode, rescue_token=args.token, max_cycles=args.cycles))
    except KeyboardInterrupt:
        print("\nBot stopped by user")
        sys.exit(0)
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)
