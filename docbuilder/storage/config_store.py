#!/usr/bin/env python3
"""Config store: JSON configuration records kept in the blob store.

One generic implementation serves every config kind:

    field-prompts           - field/prompt sets for the document builder
    compliance-checklists   - Y/N/NA compliance checklists
    submission-checklists   - compliant/non-compliant/needs-review checklists

Key layout:
    {kind}/{ownerEmail}/{id}.json   private record
    {kind}/shared/{id}.json         shared record (readable by everyone)

"Shared" and "private" are different key prefixes, not a field filtered at
read time: listing both takes two list calls. Reads probe the private key
first and fall back to the shared one; writes always target exactly one
key. Records carry a "revision" counter; callers that pass
expected_revision to update() get optimistic concurrency, everyone else
gets last-writer-wins.

Usage:
    python -m docbuilder.storage.config_store --list --kind submission-checklists --owner a@b.com [--shared] --json
    python -m docbuilder.storage.config_store --get --kind field-prompts --id <id> --owner a@b.com --json
    python -m docbuilder.storage.config_store --import-file checklist.json --kind compliance-checklists --owner a@b.com [--shared] --json
"""

import argparse
import copy
import json
import logging
import sys
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from docbuilder.storage.blob_store import BlobNotFoundError, BlobStore, get_blob_store

logger = logging.getLogger("docbuilder.storage.config")

FIELD_PROMPTS = "field-prompts"
COMPLIANCE_CHECKLISTS = "compliance-checklists"
SUBMISSION_CHECKLISTS = "submission-checklists"
CONFIG_KINDS = (FIELD_PROMPTS, COMPLIANCE_CHECKLISTS, SUBMISSION_CHECKLISTS)

SHARED_SEGMENT = "shared"


class ConfigNotFoundError(LookupError):
    """No record with that id is visible to the caller."""


class ConfigValidationError(ValueError):
    """Bad kind, owner or payload."""


class ConfigAccessError(PermissionError):
    """The caller may read the record but not change it."""


class ConfigConflictError(RuntimeError):
    """expected_revision did not match the stored revision."""

    def __init__(self, config_id: str, expected: int, actual: int):
        super().__init__(
            f"Config {config_id} was modified concurrently "
            f"(expected revision {expected}, found {actual})"
        )
        self.expected = expected
        self.actual = actual


def _now():
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _check_kind(kind: str) -> str:
    if kind not in CONFIG_KINDS:
        raise ConfigValidationError(
            f"Unknown config kind '{kind}'. Must be one of: {', '.join(CONFIG_KINDS)}"
        )
    return kind


def _check_owner(owner: str) -> str:
    if not owner or "@" not in owner or "/" in owner or owner == SHARED_SEGMENT:
        raise ConfigValidationError(f"Invalid owner: {owner!r}")
    return owner


def _check_id(config_id: str) -> str:
    if not config_id or "/" in config_id or config_id.startswith("."):
        raise ConfigValidationError(f"Invalid config id: {config_id!r}")
    return config_id


def parse_revision(value, field_name: str = "revision") -> Optional[int]:
    """Client-supplied revision as an int, None when absent."""
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigValidationError(f"{field_name} must be an integer, got {value!r}") from None


def config_key(kind: str, config_id: str, owner: Optional[str] = None,
               shared: bool = False) -> str:
    """Blob key for a record."""
    segment = SHARED_SEGMENT if shared else _check_owner(owner)
    return f"{_check_kind(kind)}/{segment}/{_check_id(config_id)}.json"


def config_prefix(kind: str, owner: Optional[str] = None, shared: bool = False) -> str:
    segment = SHARED_SEGMENT if shared else _check_owner(owner)
    return f"{_check_kind(kind)}/{segment}/"


class ConfigStore:
    """Per-kind JSON record store on top of a BlobStore."""

    def __init__(self, blob_store: Optional[BlobStore] = None):
        self._blobs = blob_store

    @property
    def blobs(self) -> BlobStore:
        return self._blobs or get_blob_store()

    # ── internals ──────────────────────────────────────────────────────────

    def _read(self, key: str) -> Optional[dict]:
        try:
            raw = self.blobs.get(key)
        except BlobNotFoundError:
            return None
        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            logger.warning("Skipping unreadable config blob %s: %s", key, exc)
            return None
        return data if isinstance(data, dict) else None

    def _write(self, key: str, record: dict) -> None:
        body = json.dumps(record, ensure_ascii=False, indent=2).encode("utf-8")
        self.blobs.put(key, body, content_type="application/json")

    def _locate(self, kind: str, config_id: str, owner: str):
        """Return (key, record) probing private first, then shared."""
        private_key = config_key(kind, config_id, owner)
        record = self._read(private_key)
        if record is not None:
            return private_key, record
        shared_key = config_key(kind, config_id, shared=True)
        record = self._read(shared_key)
        if record is not None:
            return shared_key, record
        return None, None

    # ── public API ─────────────────────────────────────────────────────────

    def save(self, kind: str, payload: dict, owner: str,
             is_shared: Optional[bool] = None) -> dict:
        """Create a record. Assigns an id when the payload has none."""
        _check_kind(kind)
        _check_owner(owner)
        if not isinstance(payload, dict):
            raise ConfigValidationError("Config payload must be a JSON object")
        if not str(payload.get("name", "")).strip():
            raise ConfigValidationError("Config name is required")

        shared = bool(payload.get("isShared", False)) if is_shared is None else bool(is_shared)
        record = copy.deepcopy(payload)
        record["id"] = _check_id(str(record.get("id") or uuid.uuid4()))
        now = _now()
        record["ownerEmail"] = owner
        record["createdAt"] = now
        record["updatedAt"] = now
        record["isShared"] = shared
        record["revision"] = 1

        key = config_key(kind, record["id"], owner, shared=shared)
        self._write(key, record)
        logger.info("Saved %s %s (%s)", kind, record["id"],
                    "shared" if shared else owner)
        return record

    def list(self, kind: str, owner: Optional[str] = None,
             shared: bool = False) -> List[dict]:
        """Records under one prefix: the owner's private ones, or the shared ones."""
        prefix = config_prefix(kind, owner, shared=shared)
        records = []
        for blob in self.blobs.list(prefix):
            if not blob.key.endswith(".json"):
                continue
            record = self._read(blob.key)
            if record is not None:
                records.append(record)
        records.sort(key=lambda r: (r.get("createdAt", ""), r.get("id", "")))
        return records

    def list_visible(self, kind: str, owner: str) -> List[dict]:
        """Owner's private records followed by all shared records."""
        return self.list(kind, owner) + self.list(kind, shared=True)

    def get(self, kind: str, config_id: str, owner: str) -> dict:
        """Fetch by id: private first, shared fallback."""
        _, record = self._locate(kind, config_id, owner)
        if record is None:
            raise ConfigNotFoundError(f"Config not found: {kind}/{config_id}")
        return record

    def update(self, kind: str, config_id: str, payload: dict, owner: str,
               expected_revision: Optional[int] = None,
               is_shared: Optional[bool] = None) -> dict:
        """Overwrite a record wholesale.

        createdAt and ownerEmail are preserved from the stored copy; the
        revision counter is incremented. Changing isShared moves the record
        between the private and shared prefixes.
        """
        if not isinstance(payload, dict):
            raise ConfigValidationError("Config payload must be a JSON object")
        key, existing = self._locate(kind, config_id, owner)
        if existing is None:
            raise ConfigNotFoundError(f"Config not found: {kind}/{config_id}")

        stored_owner = existing.get("ownerEmail") or owner
        if stored_owner != owner:
            raise ConfigAccessError(
                f"Only the owner ({stored_owner}) can modify {kind}/{config_id}"
            )

        current_revision = int(existing.get("revision") or 1)
        expected_revision = parse_revision(expected_revision, "expectedRevision")
        if expected_revision is not None and expected_revision != current_revision:
            raise ConfigConflictError(config_id, expected_revision, current_revision)

        if is_shared is None:
            shared = bool(payload.get("isShared", existing.get("isShared", False)))
        else:
            shared = bool(is_shared)

        record = copy.deepcopy(payload)
        record["id"] = config_id
        record["ownerEmail"] = stored_owner
        record["createdAt"] = existing.get("createdAt") or _now()
        record["updatedAt"] = _now()
        record["isShared"] = shared
        record["revision"] = current_revision + 1

        new_key = config_key(kind, config_id, stored_owner, shared=shared)
        self._write(new_key, record)
        if new_key != key:
            self.blobs.delete(key)
            logger.info("Moved %s %s to %s", kind, config_id, new_key)
        return record

    def delete(self, kind: str, config_id: str, owner: str) -> bool:
        """Delete by id (private first, then shared). False when not found."""
        key, existing = self._locate(kind, config_id, owner)
        if existing is None:
            return False
        stored_owner = existing.get("ownerEmail") or owner
        if stored_owner != owner:
            raise ConfigAccessError(
                f"Only the owner ({stored_owner}) can delete {kind}/{config_id}"
            )
        deleted = self.blobs.delete(key)
        if deleted:
            logger.info("Deleted %s %s", kind, config_id)
        return deleted


def main():
    parser = argparse.ArgumentParser(description="Config store")
    parser.add_argument("--kind", required=True, choices=CONFIG_KINDS)
    parser.add_argument("--owner", required=True)
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--list", action="store_true")
    group.add_argument("--get", action="store_true")
    group.add_argument("--delete", action="store_true")
    group.add_argument("--import-file", default=None,
                       help="JSON file holding a config to save")
    parser.add_argument("--id", default=None)
    parser.add_argument("--shared", action="store_true")
    parser.add_argument("--json", action="store_true")
    args = parser.parse_args()

    store = ConfigStore()
    try:
        if args.list:
            result = store.list(args.kind, None if args.shared else args.owner,
                                shared=args.shared)
        elif args.get:
            result = store.get(args.kind, args.id, args.owner)
        elif args.delete:
            result = {"deleted": store.delete(args.kind, args.id, args.owner)}
        else:
            with open(args.import_file, "r", encoding="utf-8") as f:
                payload = json.load(f)
            result = store.save(args.kind, payload, args.owner, is_shared=args.shared)
    except (ConfigNotFoundError, ConfigValidationError, ConfigAccessError) as exc:
        print(json.dumps({"error": str(exc)}) if args.json else f"ERROR: {exc}")
        sys.exit(1)

    if args.json:
        print(json.dumps(result, indent=2))
    elif isinstance(result, list):
        for r in result:
            print(f"  {r.get('id')}  {r.get('name')}")
    else:
        print(json.dumps(result, indent=2))


if __name__ == "__main__":
    main()
