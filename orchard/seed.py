"""
Sample data created on first boot against an empty store.
"""

from __future__ import annotations

import logging

from orchard.errors import ConflictError
from orchard.service import GardenService

logger = logging.getLogger(__name__)

SAMPLE_GARDEN = {"name": "Vườn Mẫu", "rows": 5, "cols": 5}

SAMPLE_TREES = (
    {"row": 1, "col": 1, "status": "Khỏe mạnh", "variety": "Ri6"},
    {"row": 2, "col": 2, "status": "Sâu bệnh", "variety": "Ri6"},
    {"row": 3, "col": 3, "status": "Mới trồng", "variety": "Chín Thơm"},
)


def seed_sample_data(service: GardenService) -> bool:
    """Create the sample garden when the store holds no garden. Returns True if it did."""
    if service.db.count_gardens() > 0:
        return False
    try:
        service.create_garden(**SAMPLE_GARDEN)
    except ConflictError:
        # Another worker sharing the store seeded it first.
        logger.info("Sample garden %r already created elsewhere", SAMPLE_GARDEN["name"])
        return False
    for tree in SAMPLE_TREES:
        service.upsert_tree(
            SAMPLE_GARDEN["name"],
            tree["row"],
            tree["col"],
            status=tree["status"],
            variety=tree["variety"],
        )
    logger.info("Seeded sample garden %r", SAMPLE_GARDEN["name"])
    return True
