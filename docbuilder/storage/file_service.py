#!/usr/bin/env python3
"""User file service: uploads namespaced by owner email.

Files live at "{ownerEmail}/{filename}" in the blob store. Every public
function takes the caller's email and refuses to touch blobs outside that
prefix. pathname values returned to callers have the owner prefix removed.
"""

import logging
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import List, Optional

from werkzeug.utils import secure_filename

from docbuilder.storage.blob_store import BlobInfo, BlobNotFoundError, BlobStore, get_blob_store

logger = logging.getLogger("docbuilder.storage.files")

ALLOWED_EXTENSIONS = {".pdf", ".docx", ".doc", ".txt", ".md", ".csv", ".json"}


class FileAccessError(PermissionError):
    """The blob is not under the caller's prefix."""


class FileValidationError(ValueError):
    """Bad filename, empty upload or unsupported type."""


@dataclass
class FileMetadata:
    url: str
    pathname: str
    size: int
    uploaded_at: str

    def to_dict(self) -> dict:
        return {"url": self.url, "pathname": self.pathname,
                "size": self.size, "uploadedAt": self.uploaded_at}


def _owner_prefix(owner: str) -> str:
    if not owner or "@" not in owner or "/" in owner:
        raise FileAccessError("A valid user email is required")
    return f"{owner}/"


def _metadata(info: BlobInfo, owner: str) -> FileMetadata:
    return FileMetadata(
        url=info.url,
        pathname=info.key[len(_owner_prefix(owner)):],
        size=info.size,
        uploaded_at=info.uploaded_at,
    )


def clean_filename(filename: str) -> str:
    """Sanitise an uploaded filename; raises FileValidationError."""
    name = secure_filename(PurePosixPath(filename or "").name)
    if not name:
        raise FileValidationError(f"Invalid filename: {filename!r}")
    suffix = PurePosixPath(name).suffix.lower()
    if suffix not in ALLOWED_EXTENSIONS:
        raise FileValidationError(
            f"Unsupported file type '{suffix or name}'. "
            f"Allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}"
        )
    return name


def _key_for_pathname(owner: str, pathname: str) -> str:
    name = (pathname or "").strip().lstrip("/")
    prefix = _owner_prefix(owner)
    if name.startswith(prefix):
        name = name[len(prefix):]
    if not name or "/" in name or name in (".", ".."):
        raise FileValidationError(f"Invalid pathname: {pathname!r}")
    return prefix + name


def _key_for_url(store: BlobStore, owner: str, url: str) -> str:
    key = store.key_for_url(url or "")
    if key is None:
        raise FileValidationError(f"URL is not a stored file: {url!r}")
    if not key.startswith(_owner_prefix(owner)):
        raise FileAccessError("Unauthorized: you cannot access this file")
    return key


def upload_file(owner: str, filename: str, data: bytes,
                content_type: Optional[str] = None,
                store: Optional[BlobStore] = None) -> FileMetadata:
    """Store an upload at {owner}/{filename}, overwriting any same-named file."""
    store = store or get_blob_store()
    name = clean_filename(filename)
    if not data:
        raise FileValidationError("Uploaded file is empty")
    info = store.put(_owner_prefix(owner) + name, data, content_type=content_type)
    logger.info("Uploaded %s for %s (%d bytes)", name, owner, info.size)
    return _metadata(info, owner)


def list_files(owner: str, store: Optional[BlobStore] = None) -> List[FileMetadata]:
    """Files directly under the owner's prefix."""
    store = store or get_blob_store()
    prefix = _owner_prefix(owner)
    return [
        _metadata(info, owner)
        for info in store.list(prefix)
        if "/" not in info.key[len(prefix):]
    ]


def get_file(owner: str, pathname: str,
             store: Optional[BlobStore] = None) -> Optional[FileMetadata]:
    store = store or get_blob_store()
    info = store.head(_key_for_pathname(owner, pathname))
    return _metadata(info, owner) if info else None


def resolve_file(owner: str, pathname: Optional[str] = None, url: Optional[str] = None,
                 store: Optional[BlobStore] = None) -> str:
    """Blob key for a file given either its pathname or its URL."""
    store = store or get_blob_store()
    if url:
        return _key_for_url(store, owner, url)
    if pathname:
        return _key_for_pathname(owner, pathname)
    raise FileValidationError("Either pathname or url is required")


def read_file(owner: str, pathname: Optional[str] = None, url: Optional[str] = None,
              store: Optional[BlobStore] = None) -> bytes:
    store = store or get_blob_store()
    key = resolve_file(owner, pathname=pathname, url=url, store=store)
    try:
        return store.get(key)
    except BlobNotFoundError as exc:
        raise FileNotFoundError(f"File not found: {pathname or url}") from exc


def delete_file(owner: str, pathname: Optional[str] = None, url: Optional[str] = None,
                store: Optional[BlobStore] = None) -> bool:
    """Delete one of the owner's files. Returns False if it did not exist."""
    store = store or get_blob_store()
    key = resolve_file(owner, pathname=pathname, url=url, store=store)
    deleted = store.delete(key)
    if deleted:
        logger.info("Deleted %s", key)
    return deleted


def rename_file(owner: str, url: str, new_name: str,
                store: Optional[BlobStore] = None) -> FileMetadata:
    """Rename by copy-then-delete. Keeps the old extension if new_name has none."""
    store = store or get_blob_store()
    old_key = _key_for_url(store, owner, url)
    old_suffix = PurePosixPath(old_key).suffix
    if not PurePosixPath(new_name or "").suffix:
        new_name = f"{new_name}{old_suffix}"
    try:
        data = store.get(old_key)
    except BlobNotFoundError as exc:
        raise FileNotFoundError(f"File not found: {url}") from exc

    renamed = upload_file(owner, new_name, data, store=store)
    if _owner_prefix(owner) + renamed.pathname != old_key:
        store.delete(old_key)
    return renamed
