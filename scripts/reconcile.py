#!/usr/bin/env python3
"""Exchange Reconciliation Script.

Lists exchanges an operator still has to settle:
  ledger_failed  on-chain transfer went through, ledger credit failed
  timed_out      wallet timed out while submitting; check the chain

Usage:
    python scripts/reconcile.py [--user USER_ID] [--apply]
    python scripts/reconcile.py --confirm EXCHANGE_ID TX_HASH
    python scripts/reconcile.py --void EXCHANGE_ID

Options:
    --user     Only list exchanges of one user
    --apply    Credit every ledger_failed exchange and mark it reconciled
    --confirm  Credit a timed_out exchange whose transfer was found on chain
    --void     Close a timed_out exchange whose transfer never happened
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from dotenv import load_dotenv

from cleenswap.ledger.database import close_db, get_db, init_db
from cleenswap.ledger.models import ExchangeStatus
from cleenswap.ledger.repository import LedgerRepository

load_dotenv()

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


async def reconcile(user_id: str = None, apply: bool = False) -> list[dict]:
    """Report unsettled exchanges; with apply=True, credit the ledger_failed ones."""
    results = []

    async with get_db() as session:
        repo = LedgerRepository(session)
        pending = await repo.list_unreconciled()
        if user_id:
            pending = [r for r in pending if r.user_id == user_id]

        for record in pending:
            logger.info(
                f"#{record.id} user={record.user_id} type={record.token_type_id} "
                f"amount={record.destination_amount} status={ExchangeStatus(record.status).value} tx={record.tx_hash}"
            )
            if record.error_message:
                logger.info(f"  error: {record.error_message}")

            reconciled = False
            if apply and record.status == ExchangeStatus.LEDGER_FAILED:
                await repo.reconcile_exchange(record.id)
                reconciled = True
                logger.info(f"  credited {record.destination_amount} to {record.user_id}")

            results.append(
                {
                    "id": record.id,
                    "user_id": record.user_id,
                    "tx_hash": record.tx_hash,
                    "status": ExchangeStatus(record.status).value,
                    "amount": str(record.destination_amount),
                    "reconciled": reconciled,
                }
            )

    return results


async def settle_timed_out(record_id: int, tx_hash: str = None) -> dict:
    """Credit (tx_hash given) or void one timed_out exchange."""
    async with get_db() as session:
        repo = LedgerRepository(session)
        if tx_hash:
            record = await repo.reconcile_exchange(record_id, tx_hash=tx_hash)
            logger.info(f"Credited {record.destination_amount} to {record.user_id} (tx {tx_hash})")
        else:
            record = await repo.void_exchange(record_id)
            logger.info(f"Voided exchange #{record.id} of {record.user_id}")
        return {"id": record.id, "status": ExchangeStatus(record.status).value}


async def main():
    parser = argparse.ArgumentParser(description="Exchange Reconciliation")
    parser.add_argument("--user", type=str, help="Only reconcile exchanges of this user")
    parser.add_argument("--apply", action="store_true", help="Credit ledger_failed exchanges")
    parser.add_argument(
        "--confirm",
        nargs=2,
        metavar=("EXCHANGE_ID", "TX_HASH"),
        help="Credit a timed_out exchange whose transfer was found on chain",
    )
    parser.add_argument(
        "--void", type=int, metavar="EXCHANGE_ID", help="Close a timed_out exchange"
    )

    args = parser.parse_args()

    # Initialize database
    await init_db()

    logger.info("=" * 60)
    logger.info("EXCHANGE RECONCILIATION")
    logger.info("=" * 60)

    if args.confirm or args.void is not None:
        try:
            if args.confirm:
                return await settle_timed_out(int(args.confirm[0]), tx_hash=args.confirm[1])
            return await settle_timed_out(args.void)
        finally:
            await close_db()

    if not args.apply:
        logger.info("REPORT ONLY - pass --apply to credit the ledger")

    try:
        results = await reconcile(user_id=args.user, apply=args.apply)
    finally:
        await close_db()

    logger.info("=" * 60)
    if not results:
        logger.info("No unreconciled exchanges")
    else:
        done = sum(1 for r in results if r["reconciled"])
        logger.info(f"{len(results)} unreconciled exchange(s), {done} credited")

    return results


if __name__ == "__main__":
    asyncio.run(main())
