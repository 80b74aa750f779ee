#!/usr/bin/env python3
"""Storage layer tests: blob store, config store, user file service.

Usage:
    pytest tests/test_storage.py -v --tb=short
"""

from pathlib import Path

import pytest

from conftest import OTHER, OWNER, PUBLIC_URL
from docbuilder.storage.blob_store import (
    BlobNotFoundError,
    LocalBlobStore,
    S3BlobStore,
    validate_key,
)
from docbuilder.storage.config_store import (
    COMPLIANCE_CHECKLISTS,
    FIELD_PROMPTS,
    SUBMISSION_CHECKLISTS,
    ConfigAccessError,
    ConfigConflictError,
    ConfigNotFoundError,
    ConfigValidationError,
    config_key,
)
from docbuilder.storage.file_service import (
    FileAccessError,
    FileValidationError,
    delete_file,
    get_file,
    list_files,
    read_file,
    rename_file,
    upload_file,
)


# =========================================================================
# BLOB STORE
# =========================================================================
class TestLocalBlobStore:
    """Filesystem backend."""

    def test_put_get_head(self, blob_store):
        info = blob_store.put("a@b.com/notes.txt", b"hello")
        assert info.size == 5
        assert info.url == f"{PUBLIC_URL}/a%40b.com/notes.txt"
        assert blob_store.get("a@b.com/notes.txt") == b"hello"
        assert blob_store.head("a@b.com/notes.txt").size == 5
        assert blob_store.head("a@b.com/missing.txt") is None

    def test_get_missing_raises(self, blob_store):
        with pytest.raises(BlobNotFoundError):
            blob_store.get("nope/missing.txt")

    def test_list_by_prefix_sorted(self, blob_store):
        blob_store.put("x/2.txt", b"2")
        blob_store.put("x/1.txt", b"1")
        blob_store.put("y/3.txt", b"3")
        assert [b.key for b in blob_store.list("x/")] == ["x/1.txt", "x/2.txt"]

    def test_delete_prunes_empty_dirs(self, blob_store, tmp_path):
        blob_store.put("deep/er/file.txt", b"x")
        assert blob_store.delete("deep/er/file.txt") is True
        assert blob_store.delete("deep/er/file.txt") is False
        assert not (tmp_path / "blobs" / "deep").exists()

    def test_delete_survives_directory_refilled_while_pruning(self, blob_store, tmp_path,
                                                              monkeypatch):
        blob_store.put("deep/er/file.txt", b"x")

        def refilled(self):
            raise OSError(39, "Directory not empty", str(self))

        monkeypatch.setattr(Path, "rmdir", refilled)
        assert blob_store.delete("deep/er/file.txt") is True
        assert blob_store.head("deep/er/file.txt") is None
        assert (tmp_path / "blobs" / "deep" / "er").is_dir()

    def test_url_round_trip(self, blob_store):
        url = blob_store.url_for("a@b.com/My File.pdf")
        assert blob_store.key_for_url(url) == "a@b.com/My File.pdf"
        assert blob_store.key_for_url("https://elsewhere.example.com/a.pdf") is None

    @pytest.mark.parametrize("key", ["", "/abs", "a//b", "a/../b", "a\\b", "."])
    def test_invalid_keys_rejected(self, key):
        with pytest.raises(ValueError):
            validate_key(key)

    def test_overwrite_replaces_content(self, tmp_path):
        store = LocalBlobStore(tmp_path / "other")
        store.put("k/v.txt", b"one")
        store.put("k/v.txt", b"two")
        assert store.get("k/v.txt") == b"two"
        assert len(store.list("k/")) == 1


class TestS3KeyMapping:
    """S3 backend URL/key mapping (no network)."""

    def test_prefix_applied_to_object_keys(self):
        store = S3BlobStore("bucket", prefix="docs/", region="eu-west-1", client=object())
        assert store.url_for("a@b.com/x.pdf") == \
            "https://bucket.s3.eu-west-1.amazonaws.com/docs/a%40b.com/x.pdf"

    def test_key_for_url_strips_prefix(self):
        store = S3BlobStore("bucket", prefix="docs", public_url="https://cdn.example.com/files",
                            client=object())
        url = store.url_for("a@b.com/x.pdf")
        assert url.startswith("https://cdn.example.com/files/docs/")
        assert store.key_for_url(url) == "a@b.com/x.pdf"
        assert store.key_for_url("https://cdn.example.com/other/x.pdf") is None

    def test_bucket_required(self):
        with pytest.raises(ValueError):
            S3BlobStore("")


# =========================================================================
# CONFIG STORE
# =========================================================================
class TestConfigStore:
    """Per-kind JSON records with private/shared prefixes."""

    def test_save_assigns_metadata(self, config_store, checklist_payload):
        record = config_store.save(SUBMISSION_CHECKLISTS, checklist_payload, OWNER)
        assert record["id"]
        assert record["ownerEmail"] == OWNER
        assert record["revision"] == 1
        assert record["isShared"] is False
        assert record["createdAt"] == record["updatedAt"]

    def test_save_then_get_items_deep_equal(self, config_store, checklist_payload):
        record = config_store.save(SUBMISSION_CHECKLISTS, checklist_payload, OWNER)
        fetched = config_store.get(SUBMISSION_CHECKLISTS, record["id"], OWNER)
        assert fetched["items"] == checklist_payload["items"]

    def test_private_key_layout(self, config_store, blob_store, checklist_payload):
        record = config_store.save(SUBMISSION_CHECKLISTS, checklist_payload, OWNER)
        key = f"{SUBMISSION_CHECKLISTS}/{OWNER}/{record['id']}.json"
        assert blob_store.exists(key)

    def test_shared_listed_only_in_shared(self, config_store, checklist_payload):
        record = config_store.save(SUBMISSION_CHECKLISTS, checklist_payload, OWNER, is_shared=True)
        shared_ids = [r["id"] for r in config_store.list(SUBMISSION_CHECKLISTS, shared=True)]
        private_ids = [r["id"] for r in config_store.list(SUBMISSION_CHECKLISTS, OWNER)]
        assert record["id"] in shared_ids
        assert record["id"] not in private_ids

    def test_get_falls_back_to_shared(self, config_store, checklist_payload):
        record = config_store.save(SUBMISSION_CHECKLISTS, checklist_payload, OWNER, is_shared=True)
        fetched = config_store.get(SUBMISSION_CHECKLISTS, record["id"], OTHER)
        assert fetched["name"] == checklist_payload["name"]

    def test_private_invisible_to_other_user(self, config_store, checklist_payload):
        record = config_store.save(SUBMISSION_CHECKLISTS, checklist_payload, OWNER)
        with pytest.raises(ConfigNotFoundError):
            config_store.get(SUBMISSION_CHECKLISTS, record["id"], OTHER)

    def test_list_visible_combines_prefixes(self, config_store, checklist_payload):
        config_store.save(SUBMISSION_CHECKLISTS, checklist_payload, OWNER)
        config_store.save(SUBMISSION_CHECKLISTS, dict(checklist_payload, name="Shared"),
                          OTHER, is_shared=True)
        names = [r["name"] for r in config_store.list_visible(SUBMISSION_CHECKLISTS, OWNER)]
        assert names == [checklist_payload["name"], "Shared"]

    def test_kinds_are_separate(self, config_store, checklist_payload):
        config_store.save(SUBMISSION_CHECKLISTS, checklist_payload, OWNER)
        assert config_store.list(COMPLIANCE_CHECKLISTS, OWNER) == []

    def test_update_preserves_created_and_bumps_revision(self, config_store, stored_checklist):
        payload = dict(stored_checklist, name="Renamed")
        updated = config_store.update(SUBMISSION_CHECKLISTS, stored_checklist["id"], payload, OWNER)
        assert updated["name"] == "Renamed"
        assert updated["revision"] == 2
        assert updated["createdAt"] == stored_checklist["createdAt"]

    def test_update_with_stale_revision_conflicts(self, config_store, stored_checklist):
        config_store.update(SUBMISSION_CHECKLISTS, stored_checklist["id"],
                            stored_checklist, OWNER, expected_revision=1)
        with pytest.raises(ConfigConflictError) as exc:
            config_store.update(SUBMISSION_CHECKLISTS, stored_checklist["id"],
                                stored_checklist, OWNER, expected_revision=1)
        assert exc.value.actual == 2

    def test_update_without_revision_is_last_writer_wins(self, config_store, stored_checklist):
        config_store.update(SUBMISSION_CHECKLISTS, stored_checklist["id"],
                            dict(stored_checklist, name="first"), OWNER)
        second = config_store.update(SUBMISSION_CHECKLISTS, stored_checklist["id"],
                                     dict(stored_checklist, name="second"), OWNER)
        assert second["name"] == "second"

    def test_sharing_moves_the_record(self, config_store, blob_store, stored_checklist):
        cid = stored_checklist["id"]
        config_store.update(SUBMISSION_CHECKLISTS, cid, stored_checklist, OWNER, is_shared=True)
        assert blob_store.exists(config_key(SUBMISSION_CHECKLISTS, cid, shared=True))
        assert not blob_store.exists(config_key(SUBMISSION_CHECKLISTS, cid, OWNER))

    def test_only_owner_updates_shared(self, config_store, checklist_payload):
        record = config_store.save(SUBMISSION_CHECKLISTS, checklist_payload, OWNER, is_shared=True)
        with pytest.raises(ConfigAccessError):
            config_store.update(SUBMISSION_CHECKLISTS, record["id"], record, OTHER)
        with pytest.raises(ConfigAccessError):
            config_store.delete(SUBMISSION_CHECKLISTS, record["id"], OTHER)

    def test_delete(self, config_store, stored_checklist):
        assert config_store.delete(SUBMISSION_CHECKLISTS, stored_checklist["id"], OWNER) is True
        assert config_store.delete(SUBMISSION_CHECKLISTS, stored_checklist["id"], OWNER) is False

    def test_unknown_kind_rejected(self, config_store):
        with pytest.raises(ConfigValidationError):
            config_store.save("recipes", {"name": "x"}, OWNER)

    def test_name_required(self, config_store):
        with pytest.raises(ConfigValidationError):
            config_store.save(FIELD_PROMPTS, {"fields": []}, OWNER)

    def test_unreadable_blob_skipped_in_listing(self, config_store, blob_store, stored_checklist):
        blob_store.put(f"{SUBMISSION_CHECKLISTS}/{OWNER}/broken.json", b"{not json")
        ids = [r["id"] for r in config_store.list(SUBMISSION_CHECKLISTS, OWNER)]
        assert ids == [stored_checklist["id"]]


# =========================================================================
# FILE SERVICE
# =========================================================================
class TestFileService:
    """Owner-namespaced uploads."""

    def test_upload_and_list(self, blob_store):
        meta = upload_file(OWNER, "report.pdf", b"%PDF-1.4 fake")
        assert meta.pathname == "report.pdf"
        assert meta.to_dict()["uploadedAt"]
        assert [f.pathname for f in list_files(OWNER)] == ["report.pdf"]
        assert list_files(OTHER) == []

    def test_filename_sanitised(self, blob_store):
        meta = upload_file(OWNER, "../../etc/my report.txt", b"x")
        assert meta.pathname == "my_report.txt"

    def test_rejects_empty_and_unsupported(self, blob_store):
        with pytest.raises(FileValidationError):
            upload_file(OWNER, "empty.txt", b"")
        with pytest.raises(FileValidationError):
            upload_file(OWNER, "tool.exe", b"MZ")

    def test_config_blobs_not_listed(self, blob_store, stored_checklist, uploaded_docs):
        names = [f.pathname for f in list_files(OWNER)]
        assert names == ["device_spec.txt", "test_report.txt"]

    def test_get_and_read(self, uploaded_docs):
        assert get_file(OWNER, "device_spec.txt").size > 0
        assert get_file(OWNER, "nope.txt") is None
        assert read_file(OWNER, pathname="device_spec.txt").startswith(b"Device X-200")
        with pytest.raises(FileNotFoundError):
            read_file(OWNER, pathname="nope.txt")

    def test_delete_by_url_refuses_other_owner(self, uploaded_docs):
        url = uploaded_docs[0].url
        with pytest.raises(FileAccessError):
            delete_file(OTHER, url=url)
        assert delete_file(OWNER, url=url) is True
        assert delete_file(OWNER, pathname="device_spec.txt") is False

    def test_rename_keeps_extension(self, uploaded_docs):
        renamed = rename_file(OWNER, uploaded_docs[0].url, "datasheet")
        assert renamed.pathname == "datasheet.txt"
        assert get_file(OWNER, "device_spec.txt") is None
        assert read_file(OWNER, pathname="datasheet.txt").startswith(b"Device X-200")

    def test_invalid_owner_rejected(self, blob_store):
        with pytest.raises(FileAccessError):
            list_files("not-an-email")
