#!/usr/bin/env python3
"""
Counter Reconciliation Script
Compares participant counters with the interaction ledger for one loop.

Usage:
    python -m scripts.reconcile_counters <loop_id>          # report only
    python -m scripts.reconcile_counters <loop_id> --apply  # rewrite drifted counters

Exit code is 0 when no drift was found (or it was fixed), 2 when drift was
reported without --apply.
"""
import sys
import os
import logging

# Add the parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.database import SessionLocal
from app.services.follow_loop import ValidationEngine, FollowLoopError

logger = logging.getLogger("reconcile_counters")


def run(loop_id: str, apply: bool) -> int:
    db = SessionLocal()
    try:
        engine = ValidationEngine(db)
        drifts = engine.reconcile_counters(loop_id) if apply else engine.audit_counters(loop_id)
    except FollowLoopError as e:
        logger.error(e.message)
        return 1
    finally:
        db.close()

    for drift in drifts:
        logger.info(f"{drift.participant_id}: stored={drift.stored} expected={drift.expected}")

    if not drifts:
        logger.info(f"No counter drift in loop {loop_id}")
        return 0
    if apply:
        logger.info(f"Fixed {len(drifts)} participants")
        return 0
    logger.warning(f"{len(drifts)} participants drifted; rerun with --apply to fix")
    return 2


def main():
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")

    args = [a for a in sys.argv[1:] if a != "--apply"]
    if len(args) != 1:
        print(__doc__)
        sys.exit(1)

    sys.exit(run(args[0], apply="--apply" in sys.argv[1:]))


if __name__ == "__main__":
    main()
