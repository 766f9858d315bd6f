#!/usr/bin/env python3
"""Seed exchange token types.

Usage:
    python scripts/seed_token_types.py
    python scripts/seed_token_types.py --add "Green Points" GRN 2.5

Existing symbols are left untouched.
"""

import argparse
import asyncio
import logging
import sys
from decimal import Decimal, InvalidOperation
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from dotenv import load_dotenv

from cleenswap.ledger.database import close_db, get_db, init_db
from cleenswap.ledger.repository import LedgerRepository

load_dotenv()

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)

# name, symbol, conversion rate per source token
DEFAULT_TOKEN_TYPES = [
    ("Cleen Token", "CLEEN", "1"),
    ("Eco Credits", "ECO", "2"),
    ("Green Points", "GRN", "5"),
    ("Recycle Rewards", "RCY", "10"),
]


async def seed(token_types: list[tuple[str, str, str]]) -> int:
    """Insert token types whose symbol is not present yet. Returns count inserted."""
    created = 0
    async with get_db() as session:
        repo = LedgerRepository(session)
        existing = {t.symbol for t in await repo.list_token_types()}

        for name, symbol, rate in token_types:
            if symbol.upper() in existing:
                logger.info(f"Skipping {symbol}: already present")
                continue
            token_type = await repo.create_token_type(name, symbol, Decimal(rate))
            existing.add(token_type.symbol)
            created += 1
            logger.info(f"Created {token_type.name} ({token_type.symbol}) rate={rate}")

    return created


async def main():
    parser = argparse.ArgumentParser(description="Seed exchange token types")
    parser.add_argument(
        "--add",
        nargs=3,
        metavar=("NAME", "SYMBOL", "RATE"),
        help="Add a single token type instead of the defaults",
    )
    args = parser.parse_args()

    if args.add:
        name, symbol, rate = args.add
        try:
            if Decimal(rate) <= 0:
                raise InvalidOperation
        except InvalidOperation:
            parser.error(f"Rate must be a positive number, got {rate}")
        token_types = [(name, symbol, rate)]
    else:
        token_types = DEFAULT_TOKEN_TYPES

    await init_db()
    try:
        created = await seed(token_types)
    finally:
        await close_db()

    logger.info(f"Done: {created} token type(s) created")


if __name__ == "__main__":
    asyncio.run(main())
