#!/usr/bin/env python3
"""Send the weekly performance report; intended to be run from cron."""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parent.parent
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from lexpro.config import get_settings
from lexpro.notifications import send_weekly_report
from lexpro.persistence import init_db


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Email the weekly performance ranking.")
    p.add_argument("--db-path", type=Path, default=Path(get_settings().db_path))
    return p.parse_args()


def main() -> int:
    args = parse_args()
    logging.basicConfig(level=get_settings().log_level.upper())
    init_db(args.db_path)
    result = send_weekly_report(args.db_path)
    print(result.message)
    return 0 if result.sent else 1


if __name__ == "__main__":
    sys.exit(main())
