"""
Storage for uploaded tree photos: local disk, S3-compatible buckets and an
in-memory test double.
"""

from __future__ import annotations

import os
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

PUBLIC_PREFIX = "/uploads"


class StorageClient(Protocol):
    """Defines the operations the API needs from photo storage."""

    def save_image(self, filename: str, data: bytes) -> str:
        ...

    def read_image(self, name: str) -> bytes:
        ...

    def list_images(self) -> list[str]:
        ...


def stored_name(filename: str, now: float | None = None) -> str:
    """
    Name a stored upload after the upload time and the original file name.

    A short random token sits between the two so same-named photos uploaded
    in the same millisecond never overwrite each other.
    """
    millis = int((time.time() if now is None else now) * 1000)
    base = os.path.basename((filename or "").replace("\\", "/")) or "image"
    return f"{millis}-{uuid.uuid4().hex[:8]}-{base}"


def public_path(name: str) -> str:
    return f"{PUBLIC_PREFIX}/{name}"


def _safe_name(name: str) -> str:
    base = os.path.basename(name)
    if not base or base != name or base in (".", ".."):
        raise FileNotFoundError(name)
    return base


@dataclass
class InMemoryStorageClient:
    """Test double for storage interactions."""

    stored_objects: dict = None

    def __post_init__(self):
        if self.stored_objects is None:
            self.stored_objects = {}

    def save_image(self, filename: str, data: bytes) -> str:
        name = stored_name(filename)
        self.stored_objects[name] = bytes(data)
        return public_path(name)

    def read_image(self, name: str) -> bytes:
        stored = self.stored_objects.get(name)
        if stored is None:
            raise FileNotFoundError(name)
        return stored

    def list_images(self) -> list[str]:
        return sorted(self.stored_objects)


@dataclass
class LocalStorageClient:
    """Stores uploads as files in one directory on local disk."""

    directory: str = "uploads"

    def __post_init__(self):
        self._root = Path(self.directory)
        self._root.mkdir(parents=True, exist_ok=True)

    def save_image(self, filename: str, data: bytes) -> str:
        name = stored_name(filename)
        (self._root / name).write_bytes(data)
        return public_path(name)

    def read_image(self, name: str) -> bytes:
        return (self._root / _safe_name(name)).read_bytes()

    def list_images(self) -> list[str]:
        return sorted(p.name for p in self._root.iterdir() if p.is_file())


@dataclass
class S3StorageClient:
    """
    S3-compatible storage client (AWS S3, MinIO, Tencent COS, ...).
    """

    bucket: str
    region: str
    endpoint: str
    access_key_id: str
    secret_access_key: str
    key_prefix: str = "uploads/"

    def __post_init__(self):
        config = Config(signature_version="s3v4")
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint or None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id or None,
            aws_secret_access_key=self.secret_access_key or None,
            config=config,
        )

    def save_image(self, filename: str, data: bytes) -> str:
        name = stored_name(filename)
        self._client.put_object(
            Bucket=self.bucket,
            Key=f"{self.key_prefix}{name}",
            Body=data,
        )
        return public_path(name)

    def read_image(self, name: str) -> bytes:
        try:
            response = self._client.get_object(
                Bucket=self.bucket, Key=f"{self.key_prefix}{_safe_name(name)}"
            )
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                raise FileNotFoundError(name) from exc
            raise
        return response["Body"].read()

    def list_images(self) -> list[str]:
        names: list[str] = []
        paginator = self._client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket, Prefix=self.key_prefix):
            for item in page.get("Contents", []):
                names.append(item["Key"][len(self.key_prefix):])
        return sorted(n for n in names if n)
