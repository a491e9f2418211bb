"""
CLI helper to create the sample garden in an empty store.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from orchard.dependencies import close_clients, get_garden_service
from orchard.seed import seed_sample_data


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed the orchard store")
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log at DEBUG level",
    )
    args = parser.parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    try:
        created = seed_sample_data(get_garden_service())
    finally:
        close_clients()
    if not created:
        print("Store already holds gardens; nothing seeded.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
