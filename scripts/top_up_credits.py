#!/usr/bin/env python3
"""
Top-Up Credits Script

Administrative credit grant for one profile. This is the only way besides a
chat debit that a balance changes.

Usage:
    python scripts/top_up_credits.py <user-uuid> <amount>
    python scripts/top_up_credits.py <user-uuid> 5000 --show
"""

import argparse
import asyncio
import sys
from uuid import UUID

import structlog

from chatgate.db.session import close_engines, get_write_session
from chatgate.exceptions import ProfileNotFoundError
from chatgate.observability.logging import setup_logging
from chatgate.services.ledger import CreditLedger

logger = structlog.get_logger()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Add credits to a ChatGate profile")
    parser.add_argument("user_id", type=UUID, help="Profile id (identity provider user id)")
    parser.add_argument("amount", type=int, help="Credits to add (positive)")
    parser.add_argument(
        "--show", action="store_true", help="Print the profile after the top-up"
    )
    args = parser.parse_args(argv)
    if args.amount <= 0:
        parser.error("amount must be positive")
    return args


async def top_up(user_id: UUID, amount: int, show: bool) -> int:
    """Apply the top-up and return a process exit code."""
    try:
        async with get_write_session() as session:
            ledger = CreditLedger(session)
            try:
                balance = await ledger.top_up(user_id, amount)
            except ProfileNotFoundError:
                logger.error("top_up_profile_not_found", user_id=str(user_id))
                print(f"No profile for {user_id}", file=sys.stderr)
                return 1

            print(f"{user_id}: +{amount} credits, balance now {balance}")
            if show:
                profile = await ledger.get_profile(user_id)
                print(f"  plan={profile.plan.value} email={profile.email}")
                print(
                    f"  projects={profile.monthly_project_creations} "
                    f"imports={profile.import_count}"
                )
            return 0
    finally:
        await close_engines()


def main() -> None:
    args = parse_args()
    setup_logging()
    sys.exit(asyncio.run(top_up(args.user_id, args.amount, args.show)))


if __name__ == "__main__":
    main()
