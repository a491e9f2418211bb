"""
Zip export of the current store state and the uploaded photos.
"""

from __future__ import annotations

import io
import json
import logging
import zipfile

from orchard.storage import StorageClient

logger = logging.getLogger(__name__)

SNAPSHOT_NAME = "gardens.json"


def build_backup_archive(snapshot: dict, storage: StorageClient) -> bytes:
    """
    Return a zip holding ``gardens.json`` and every stored photo under
    ``uploads/``. This is a point-in-time export; writes that land while it
    runs may or may not be included.
    """
    buffer = io.BytesIO()
    with zipfile.ZipFile(
        buffer, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9
    ) as archive:
        archive.writestr(
            SNAPSHOT_NAME, json.dumps(snapshot, ensure_ascii=False, indent=2)
        )
        for name in storage.list_images():
            try:
                data = storage.read_image(name)
            except FileNotFoundError:
                logger.warning("Photo %s vanished during backup", name)
                continue
            archive.writestr(f"uploads/{name}", data)
    return buffer.getvalue()
