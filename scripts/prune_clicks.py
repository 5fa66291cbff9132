"""
Delete raw click rows that fall outside each account's analytics retention window.

Usage:
  python scripts/prune_clicks.py           # dry run
  python scripts/prune_clicks.py --apply
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from scripts._db_utils import require_database_url, script_session

from app.biohost import entitlements
from app.biohost.models import User
from app.biohost.modules.analytics.service import prune_clicks


def _default_days() -> int:
    try:
        return int((os.environ.get("ANALYTICS_DEFAULT_RETENTION_DAYS") or "30").strip())
    except ValueError:
        return 30


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--apply", action="store_true", help="Commit deletions (default is a dry run).")
    args = parser.parse_args()

    db_url = require_database_url()
    default_days = _default_days()
    total = 0
    with script_session(db_url, dry_run=not args.apply) as s:
        for user in s.query(User).order_by(User.id.asc()).all():
            if entitlements.has_feature(user, "bio.analytics_days"):
                days = entitlements.limit_for(user, "bio.analytics_days")
            else:
                days = default_days
            removed = prune_clicks(s, user, days)
            if removed:
                print(f"{user.email}: {removed} click(s) older than {days} days", flush=True)
            total += removed

    print(f"{'Deleted' if args.apply else 'Would delete'} {total} click(s).", flush=True)


if __name__ == "__main__":
    main()
