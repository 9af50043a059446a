#!/usr/bin/env python3
"""Recompute cached points aggregates from the active ledger.

Intended usage: run ad hoc after an incident, or schedule via cron when the
in-process reconciliation worker is disabled.

Example:
    python tooling/scripts/reconcile_points.py --dry-run
    python tooling/scripts/reconcile_points.py --user-id user-123

`--dry-run` reports drift without rewriting accounts or source stats.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

from loguru import logger


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Reconcile points accounts against the transaction ledger")
    parser.add_argument("--user-id", help="Reconcile a single user instead of every account.")
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Users per keyset batch (defaults to POINTS_RECONCILIATION_BATCH_SIZE).",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Detect drift only; leave stored aggregates untouched.",
    )
    return parser.parse_args()


async def _run(user_id: str | None, batch_size: int | None, dry_run: bool) -> dict[str, object]:
    from founditure_gamification.db.session import async_session
    from founditure_gamification.services.gamification import PointsReconciliationService

    async with async_session() as session:
        service = PointsReconciliationService(session)
        if user_id:
            result = await service.reconcile_user(user_id, apply=not dry_run)
            return result.as_dict()
        summary = await service.reconcile_all(apply=not dry_run, batch_size=batch_size)
        return summary.as_dict()


def main() -> int:
    args = parse_args()
    result = asyncio.run(_run(args.user_id, args.batch_size, args.dry_run))
    print(json.dumps(result, indent=2, default=str))
    logger.success("Points reconciliation completed", dry_run=args.dry_run, user_id=args.user_id)
    return 0


if __name__ == "__main__":
    sys.exit(main())
