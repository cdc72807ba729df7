#!/usr/bin/env python3
"""
Run one retention sweep against the configured database.

Usage:
    python scripts/sweep.py            # sweep and print deleted counts
    python scripts/sweep.py --stats    # also print token and audit stats

Meant for cron or any external scheduler; exits non-zero when the store
is unavailable.
"""

import argparse
import asyncio
import logging
import sys

from linkguard.config import SecurityConfig
from linkguard.db import close_pool, init_pool
from linkguard.errors import StoreUnavailable
from linkguard.services.magic_link_guard import MagicLinkGuard
from linkguard.storage import postgres_stores


async def main(show_stats: bool) -> int:
    try:
        await init_pool()
    except StoreUnavailable as e:
        print(f"sweep: {e}", file=sys.stderr)
        return 1

    guard = MagicLinkGuard(postgres_stores(), SecurityConfig.from_settings())
    try:
        report = await guard.sweeper.sweep()
        print(report.model_dump_json(indent=2))
        if show_stats:
            print((await guard.ledger.stats()).model_dump_json(indent=2))
            print((await guard.audit.stats()).model_dump_json(indent=2))
        await guard.audit.flush()
    except StoreUnavailable as e:
        print(f"sweep: {e}", file=sys.stderr)
        return 1
    finally:
        await close_pool()
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Delete security rows past their retention window.")
    parser.add_argument("--stats", action="store_true", help="print token and audit stats after sweeping")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s [%(name)s] %(message)s")
    sys.exit(asyncio.run(main(args.stats)))
