"""Manually append an approved annulment to the ledger.

Usage:
    python scripts/append_record.py --ticket T-1 --violation Speeding \
        --reason "Camera fault" --approved-by "alice, bob" [--amount 100] \
        [--operator Ann] [--partition 2025-11]

Use it when the bot reports that writing an approved request to the ledger
failed; the bot never retries on its own.

Environment:
    Ensure DATABASE_URL (and other required settings) are available in
    the current shell before running this script.
"""

from __future__ import annotations

import argparse
from datetime import datetime

from annulment_bot.config import get_settings
from annulment_bot.db import get_engine
from annulment_bot.ledger import Ledger
from annulment_bot.workflows.finalization import RECORDED_AT_FORMAT, STATUS_APPROVED, partition_key_for


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--ticket", required=True)
    parser.add_argument("--violation", required=True)
    parser.add_argument("--reason", required=True)
    parser.add_argument("--approved-by", required=True)
    parser.add_argument("--amount", default="")
    parser.add_argument("--operator", default="")
    parser.add_argument("--partition", help="YYYY-MM; defaults to the current month")
    return parser.parse_args(argv)


def append_record(argv: list[str] | None = None) -> str:
    args = _parse_args(argv)
    tz = get_settings().timezone
    now = datetime.now(tz)
    partition_key = args.partition or partition_key_for(now, tz)

    Ledger(get_engine()).append_record(
        partition_key,
        {
            "ticket": args.ticket,
            "violation_type": args.violation,
            "reason": args.reason,
            "amount": args.amount,
            "operator": args.operator,
            "status": STATUS_APPROVED,
            "approved_by": args.approved_by,
            "recorded_at": now.strftime(RECORDED_AT_FORMAT),
        },
    )
    print(f"Ticket {args.ticket} appended to partition {partition_key}.")
    return partition_key


if __name__ == "__main__":
    append_record()
