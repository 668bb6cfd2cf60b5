#!/usr/bin/env python3
"""
Rebuild every transaction chain from the ledger in DATABASE_URL.

Usage:
    python scripts/rebuild_chains.py [--verbose] [--no-expire] [--workers N] [--as-of YYYY-MM-DD]

Prints the run counts and exits non-zero if the rebuild was aborted.
"""

import argparse
import sys
from datetime import date
from pathlib import Path

# Ensure project root is on sys.path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from dotenv import load_dotenv
from loguru import logger

load_dotenv()

from chainledger.models.errors import ChainEngineError
from chainledger.services import chain_service


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Rebuild transaction chains from the ledger")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    parser.add_argument("--no-expire", action="store_true",
                        help="Leave option lots open past their expiration date")
    parser.add_argument("--workers", type=int, default=None,
                        help="Matching worker count (default: CHAIN_MATCH_WORKERS)")
    parser.add_argument("--as-of", type=date.fromisoformat, default=None,
                        help="Expiration cut-off date (default: today)")
    args = parser.parse_args(argv)

    if args.verbose:
        logger.remove()
        logger.add(sys.stderr, level="DEBUG")

    try:
        summary = chain_service.process_chains(
            as_of=args.as_of,
            expire_options=False if args.no_expire else None,
            max_workers=args.workers,
        )
    except ChainEngineError as e:
        logger.error(f"Rebuild aborted: {e}")
        return 1

    print()
    print("Chain rebuild complete")
    print("-" * 40)
    for key, value in summary.items():
        print(f"  {key:<22} {value}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
