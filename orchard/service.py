"""
Garden and tree operations on top of a DbClient.

The service owns the upsert-merge rules for a tree cell: every call replaces
the scalar fields and harvest records wholesale, while photos are merged as
"still existing" previous images followed by newly uploaded ones.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Iterable, Optional

from orchard.db import DbClient, GardenRecord, TreeRecord
from orchard.errors import NotFoundError, ValidationError
from orchard.locks import InMemoryKeyLock, KeyLock

logger = logging.getLogger(__name__)

UNKNOWN_STATUS = "Không xác định"

# Coordinates and dimensions are stored as signed 64-bit integers.
INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1


def parse_json_list(value: Any, field_name: str = "value") -> list:
    """
    Read an optional client-supplied list that may arrive as JSON text.

    Malformed JSON or anything that is not a list yields an empty list so a
    bad sub-field never fails the whole write.
    """
    if value is None or value == "":
        return []
    if isinstance(value, (str, bytes)):
        try:
            value = json.loads(value)
        except ValueError:
            logger.debug("Ignoring malformed JSON in %s", field_name)
            return []
    if not isinstance(value, list):
        logger.debug("Ignoring non-list %s of type %s", field_name, type(value).__name__)
        return []
    return list(value)


def merge_images(existing: Iterable[Any], uploaded: Iterable[str]) -> list[str]:
    """Keep the images the client still declares, then append new uploads."""
    kept: list[str] = []
    for image in existing:
        if isinstance(image, str) and image not in kept:
            kept.append(image)
    return kept + [image for image in uploaded if isinstance(image, str)]


def _require_int(value: Any, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field_name} must be an integer")
    if not INT64_MIN <= value <= INT64_MAX:
        raise ValidationError(f"{field_name} is out of range")
    return value


class GardenService:
    def __init__(self, db: DbClient, lock: Optional[KeyLock] = None):
        self.db = db
        self.lock = lock or InMemoryKeyLock()

    def get_garden(self, name: str) -> GardenRecord:
        garden = self.db.get_garden(name)
        if garden is None:
            raise NotFoundError(f"Garden {name!r} not found")
        return garden

    def create_garden(self, name: str, rows: int, cols: int) -> GardenRecord:
        if not isinstance(name, str) or not name:
            raise ValidationError("name must be a non-empty string")
        for field_name, value in (("rows", rows), ("cols", cols)):
            if _require_int(value, field_name) <= 0:
                raise ValidationError(f"{field_name} must be positive")
        garden = self.db.create_garden(name, rows, cols)
        logger.info("Created garden %r (%dx%d)", name, rows, cols)
        return garden

    def delete_garden(self, name: str) -> None:
        if not self.db.delete_garden(name):
            raise NotFoundError(f"Garden {name!r} not found")
        logger.info("Deleted garden %r and its trees", name)

    def list_gardens(self) -> list[GardenRecord]:
        return self.db.list_gardens()

    def upsert_tree(
        self,
        garden_name: str,
        row: int,
        col: int,
        *,
        variety: Optional[str] = None,
        status: Optional[str] = None,
        notes: Optional[str] = None,
        existing_images: Any = None,
        new_images: Optional[Iterable[str]] = None,
        harvest_info: Any = None,
    ) -> TreeRecord:
        """
        Create or fully replace the tree at (garden_name, row, col).

        Missing scalar fields are stored as empty strings and a missing
        harvest list as an empty list. The stored images become
        ``existing_images`` (what the client still shows) followed by
        ``new_images``, so photos the client dropped disappear.
        """
        _require_int(row, "row")
        _require_int(col, "col")
        declared = parse_json_list(existing_images, "existingImages")
        harvest = parse_json_list(harvest_info, "harvestInfo")
        uploaded = list(new_images or [])

        with self.lock.hold(f"{garden_name}:{row}:{col}"):
            garden = self.get_garden(garden_name)
            images = merge_images(declared, uploaded)
            return self.db.upsert_tree(
                garden.id,
                row,
                col,
                variety=variety or "",
                status=status or "",
                notes=notes or "",
                images=images,
                harvest_info=harvest,
            )

    def group_by_status(self, garden_name: str) -> dict[str, list[TreeRecord]]:
        garden = self.get_garden(garden_name)
        groups: dict[str, list[TreeRecord]] = {}
        for tree in self.db.list_trees(garden.id):
            groups.setdefault(tree.status or UNKNOWN_STATUS, []).append(tree)
        return groups

    def snapshot(self) -> dict:
        """Render the whole store as one document."""
        return {
            "exportedAt": time.time(),
            "gardens": [garden.as_dict() for garden in self.list_gardens()],
        }
