"""
CLI helper to write a backup zip of the orchard store to disk.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from orchard.backup import build_backup_archive
from orchard.config import get_settings
from orchard.dependencies import close_clients, get_garden_service, get_storage_client


def main() -> int:
    parser = argparse.ArgumentParser(description="Export an orchard backup")
    parser.add_argument(
        "-o",
        "--output",
        type=str,
        default=None,
        help="Where to write the zip (defaults to BACKUP_FILENAME)",
    )
    args = parser.parse_args()

    output = Path(args.output or get_settings().backup_filename)
    try:
        archive = build_backup_archive(
            get_garden_service().snapshot(), get_storage_client()
        )
    finally:
        close_clients()
    output.write_bytes(archive)
    print(f"Wrote {len(archive)} bytes to {output}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
