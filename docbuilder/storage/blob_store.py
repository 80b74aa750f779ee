#!/usr/bin/env python3
"""Blob store: the application's only persistence layer.

Keys are slash-separated paths ("{owner}/{filename}",
"{kind}/shared/{id}.json"). Two backends:
  - LocalBlobStore - files under a root directory, served by the web app
                     at /blobs/<key>
  - S3BlobStore    - an S3 bucket via boto3

No locking: concurrent writers to one key race, last writer wins.
"""

import logging
import mimetypes
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional
from urllib.parse import quote, unquote

import boto3
from botocore.exceptions import ClientError

from docbuilder.config.settings import BASE_DIR, Settings, get_settings

logger = logging.getLogger("docbuilder.storage.blob")


class BlobNotFoundError(KeyError):
    """Raised when a key does not exist in the store."""


@dataclass
class BlobInfo:
    key: str
    url: str
    size: int
    uploaded_at: str
    content_type: str = "application/octet-stream"


def validate_key(key: str) -> str:
    """Reject keys that could escape the store or address nothing."""
    if not key or key.startswith("/") or "\\" in key:
        raise ValueError(f"Invalid blob key: {key!r}")
    parts = key.split("/")
    if any(p in ("", ".", "..") for p in parts):
        raise ValueError(f"Invalid blob key: {key!r}")
    return key


def _guess_type(key: str) -> str:
    return mimetypes.guess_type(key)[0] or "application/octet-stream"


class BlobStore(ABC):
    """Abstract key -> bytes store."""

    @abstractmethod
    def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> BlobInfo:
        """Write (or overwrite) a blob."""

    @abstractmethod
    def get(self, key: str) -> bytes:
        """Read a blob. Raises BlobNotFoundError."""

    @abstractmethod
    def head(self, key: str) -> Optional[BlobInfo]:
        """Metadata for a blob, or None."""

    @abstractmethod
    def list(self, prefix: str = "") -> List[BlobInfo]:
        """All blobs whose key starts with prefix, sorted by key."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Delete a blob. Returns False if it did not exist."""

    @abstractmethod
    def url_for(self, key: str) -> str:
        """Public URL for a key."""

    @abstractmethod
    def key_for_url(self, url: str) -> Optional[str]:
        """Reverse of url_for; None when the URL is not from this store."""

    def exists(self, key: str) -> bool:
        return self.head(key) is not None


# ── local filesystem ───────────────────────────────────────────────────────────

class LocalBlobStore(BlobStore):
    """Blobs as plain files below a root directory."""

    def __init__(self, root, public_url: str = "http://localhost:5001/blobs"):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.public_url = public_url.rstrip("/")

    def _path(self, key: str) -> Path:
        return self.root.joinpath(*validate_key(key).split("/"))

    def _info(self, key: str, path: Path) -> BlobInfo:
        stat = path.stat()
        return BlobInfo(
            key=key,
            url=self.url_for(key),
            size=stat.st_size,
            uploaded_at=datetime.fromtimestamp(stat.st_mtime, timezone.utc).isoformat(),
            content_type=_guess_type(key),
        )

    def put(self, key, data, content_type=None):
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        # write-then-rename so readers never see a half-written blob
        fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, path)
        except OSError:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        info = self._info(key, path)
        if content_type:
            info.content_type = content_type
        return info

    def get(self, key):
        path = self._path(key)
        if not path.is_file():
            raise BlobNotFoundError(key)
        return path.read_bytes()

    def head(self, key):
        path = self._path(key)
        if not path.is_file():
            return None
        return self._info(key, path)

    def list(self, prefix=""):
        blobs = []
        for path in self.root.rglob("*"):
            if not path.is_file() or path.name.startswith(".tmp-"):
                continue
            key = path.relative_to(self.root).as_posix()
            if key.startswith(prefix):
                blobs.append(self._info(key, path))
        return sorted(blobs, key=lambda b: b.key)

    def delete(self, key):
        path = self._path(key)
        if not path.is_file():
            return False
        path.unlink()
        # prune empty parent directories up to the root; a concurrent put may
        # refill or remove one first
        parent = path.parent
        while parent != self.root:
            try:
                if any(parent.iterdir()):
                    break
                parent.rmdir()
            except OSError as exc:
                logger.debug("Stopped pruning at %s: %s", parent, exc)
                break
            parent = parent.parent
        return True

    def url_for(self, key):
        return f"{self.public_url}/{quote(key)}"

    def key_for_url(self, url):
        if not url.startswith(self.public_url + "/"):
            return None
        key = unquote(url[len(self.public_url) + 1:].split("?", 1)[0])
        try:
            return validate_key(key)
        except ValueError:
            return None


# ── S3 ─────────────────────────────────────────────────────────────────────────

class S3BlobStore(BlobStore):
    """Blobs in an S3 bucket, optionally under a key prefix."""

    def __init__(self, bucket: str, prefix: str = "", region: str = "us-east-1",
                 public_url: str = "", client=None):
        if not bucket:
            raise ValueError("S3 blob store requires a bucket name")
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self.region = region
        self.public_url = (public_url or
                           f"https://{bucket}.s3.{region}.amazonaws.com").rstrip("/")
        self._client = client

    def _get_client(self):
        if self._client is None:
            self._client = boto3.client("s3", region_name=self.region)
        return self._client

    def _object_key(self, key: str) -> str:
        validate_key(key)
        return f"{self.prefix}/{key}" if self.prefix else key

    def _store_key(self, object_key: str) -> str:
        if self.prefix and object_key.startswith(self.prefix + "/"):
            return object_key[len(self.prefix) + 1:]
        return object_key

    def put(self, key, data, content_type=None):
        content_type = content_type or _guess_type(key)
        self._get_client().put_object(
            Bucket=self.bucket, Key=self._object_key(key),
            Body=data, ContentType=content_type,
        )
        return BlobInfo(key=key, url=self.url_for(key), size=len(data),
                        uploaded_at=datetime.now(timezone.utc).isoformat(),
                        content_type=content_type)

    def get(self, key):
        try:
            obj = self._get_client().get_object(Bucket=self.bucket,
                                                Key=self._object_key(key))
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                raise BlobNotFoundError(key) from exc
            raise
        return obj["Body"].read()

    def head(self, key):
        try:
            obj = self._get_client().head_object(Bucket=self.bucket,
                                                 Key=self._object_key(key))
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in ("NoSuchKey", "404", "NotFound"):
                return None
            raise
        return BlobInfo(
            key=key,
            url=self.url_for(key),
            size=obj.get("ContentLength", 0),
            uploaded_at=obj["LastModified"].isoformat() if obj.get("LastModified") else "",
            content_type=obj.get("ContentType", _guess_type(key)),
        )

    def list(self, prefix=""):
        full_prefix = f"{self.prefix}/{prefix}" if self.prefix else prefix
        paginator = self._get_client().get_paginator("list_objects_v2")
        blobs = []
        for page in paginator.paginate(Bucket=self.bucket, Prefix=full_prefix):
            for obj in page.get("Contents", []):
                key = self._store_key(obj["Key"])
                blobs.append(BlobInfo(
                    key=key,
                    url=self.url_for(key),
                    size=obj.get("Size", 0),
                    uploaded_at=obj["LastModified"].isoformat() if obj.get("LastModified") else "",
                    content_type=_guess_type(key),
                ))
        return sorted(blobs, key=lambda b: b.key)

    def delete(self, key):
        if self.head(key) is None:
            return False
        self._get_client().delete_object(Bucket=self.bucket, Key=self._object_key(key))
        return True

    def url_for(self, key):
        return f"{self.public_url}/{quote(self._object_key(key))}"

    def key_for_url(self, url):
        if not url.startswith(self.public_url + "/"):
            return None
        object_key = unquote(url[len(self.public_url) + 1:].split("?", 1)[0])
        if self.prefix and not object_key.startswith(self.prefix + "/"):
            return None
        try:
            return validate_key(self._store_key(object_key))
        except ValueError:
            return None


# ── factory ────────────────────────────────────────────────────────────────────

def build_blob_store(settings: Settings) -> BlobStore:
    """Create the configured backend."""
    backend = settings.blob_backend.lower()
    if backend == "s3":
        return S3BlobStore(
            bucket=settings.blob_bucket,
            prefix=settings.blob_prefix,
            region=settings.blob_region,
        )
    if backend != "local":
        raise ValueError(f"Unknown blob backend: {settings.blob_backend}")
    root = Path(settings.blob_root)
    if not root.is_absolute():
        root = BASE_DIR / root
    return LocalBlobStore(root, public_url=settings.public_url)


_store: Optional[BlobStore] = None


def get_blob_store() -> BlobStore:
    """Process-wide blob store, built from settings on first use."""
    global _store
    if _store is None:
        _store = build_blob_store(get_settings())
        logger.info("Blob store ready: %s", type(_store).__name__)
    return _store


def set_blob_store(store: Optional[BlobStore]) -> None:
    """Install (or clear with None) the process-wide blob store."""
    global _store
    _store = store
