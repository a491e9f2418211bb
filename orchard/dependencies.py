"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

import logging

from orchard.config import get_settings
from orchard.db import DbClient, InMemoryDbClient, JsonFileDbClient, SqlDbClient
from orchard.locks import InMemoryKeyLock, KeyLock, RedisKeyLock
from orchard.service import GardenService
from orchard.storage import (
    InMemoryStorageClient,
    LocalStorageClient,
    S3StorageClient,
    StorageClient,
)

logger = logging.getLogger(__name__)

_db_client: DbClient | None = None
_storage_client: StorageClient | None = None
_key_lock: KeyLock | None = None
_garden_service: GardenService | None = None


def get_db_client() -> DbClient:
    """
    Return a singleton DB client so garden state persists across requests.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    if settings.use_in_memory_backends:
        _db_client = InMemoryDbClient()
    elif settings.database_url:
        _db_client = SqlDbClient(settings.database_url)
    elif settings.data_file:
        _db_client = JsonFileDbClient(settings.data_file)
    else:
        _db_client = InMemoryDbClient()
    logger.info("Using %s for garden storage", type(_db_client).__name__)
    return _db_client


def get_storage_client() -> StorageClient:
    global _storage_client
    if _storage_client:
        return _storage_client

    settings = get_settings()
    if settings.use_in_memory_backends:
        _storage_client = InMemoryStorageClient()
    elif settings.s3_bucket:
        _storage_client = S3StorageClient(
            bucket=settings.s3_bucket,
            region=settings.s3_region or "",
            endpoint=settings.s3_endpoint or "",
            access_key_id=settings.aws_access_key_id or "",
            secret_access_key=settings.aws_secret_access_key or "",
        )
    else:
        _storage_client = LocalStorageClient(settings.upload_dir)
    return _storage_client


def get_key_lock() -> KeyLock:
    """
    Return the lock used to serialise upserts to the same tree cell.
    """
    global _key_lock
    if _key_lock:
        return _key_lock

    settings = get_settings()
    if settings.redis_url:
        _key_lock = RedisKeyLock(
            url=settings.redis_url,
            prefix=settings.lock_prefix,
            timeout=settings.lock_timeout_seconds,
        )
    else:
        _key_lock = InMemoryKeyLock()
    return _key_lock


def get_garden_service() -> GardenService:
    global _garden_service
    if _garden_service:
        return _garden_service
    _garden_service = GardenService(get_db_client(), get_key_lock())
    return _garden_service


def close_clients() -> None:
    """Close the store handle and forget every process-wide client."""
    global _db_client, _storage_client, _key_lock, _garden_service
    if _db_client:
        _db_client.close()
    _db_client = None
    _storage_client = None
    _key_lock = None
    _garden_service = None
