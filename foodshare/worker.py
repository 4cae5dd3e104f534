"""
Background sweeper that marks stale listings as expired.

Listings still ``available`` after their ``availableUntil`` window or their
``expiryDate`` are moved to ``expired``. Run with ``python -m foodshare.worker``.
"""

from __future__ import annotations

import argparse
import logging
import time
from datetime import datetime
from typing import Optional

from foodshare.config import get_settings
from foodshare.db import DbClient
from foodshare.dependencies import get_db_client
from foodshare.timeutils import utcnow

logger = logging.getLogger(__name__)


def sweep_once(*, db: Optional[DbClient] = None, now: Optional[datetime] = None) -> int:
    """
    Expire every stale available listing. Returns the number of listings changed.
    """
    db = db or get_db_client()
    expired = db.expire_listings(now or utcnow())
    if expired:
        logger.info("Marked %d listing(s) as expired", expired)
    return expired


def run_loop(poll_interval_seconds: Optional[float] = None) -> None:
    """
    Simple polling loop. Intended to be run under systemd/supervisor.
    """
    interval = poll_interval_seconds or get_settings().expiry_sweep_interval_seconds
    db = get_db_client()
    while True:
        try:
            sweep_once(db=db)
        except Exception:
            logger.exception("Expiry sweep failed")
        time.sleep(interval)


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Expire stale food listings.")
    parser.add_argument(
        "--once", action="store_true", help="Run a single sweep and exit."
    )
    parser.add_argument(
        "--interval", type=float, default=None, help="Seconds between sweeps."
    )
    args = parser.parse_args(argv)

    logging.basicConfig(level=get_settings().log_level.upper())
    if args.once:
        sweep_once()
    else:
        run_loop(args.interval)


if __name__ == "__main__":
    main()
