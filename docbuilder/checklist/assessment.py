#!/usr/bin/env python3
"""Checklist assessment loop.

For one stored checklist, and for each item with at least one selected
document, strictly in order:

    1. extract the text of the item's documents (cached for the run)
    2. build the variant's system / user prompt
    3. one LLM gateway call with the configured timeout
    4. parse the response through the fallback cascade
    5. write the item's status / location / comments back to the store

Failures stay local to the item. An upstream error or a set of documents
that all fail extraction gives the item the variant's sentinel verdict
(NA / needs-review) with the reason as its comment, and the loop moves on.
Items without selected documents are skipped and do not appear in the
results.

Persistence re-reads the stored checklist before each write and touches
only the assessed item's verdict fields, so edits made to other items
while the run is in progress survive.

Usage:
    python -m docbuilder.checklist.assessment --kind submission-checklists --id <id> --owner a@b.com --doc report.pdf [--doc ...] --json
"""

import argparse
import json
import logging
import sys
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from docbuilder.checklist.models import (
    ChecklistConfig,
    ChecklistItem,
    ChecklistVariant,
    Verdict,
    variant_for,
)
from docbuilder.checklist.parsing import parse_response
from docbuilder.checklist.prompts import build_system_prompt, build_user_prompt
from docbuilder.config.settings import get_settings
from docbuilder.documents.content_extractor import DocumentExtractionError, extract_for_owner
from docbuilder.llm.gateway import LLMGateway, LLMGatewayError, get_gateway
from docbuilder.storage.config_store import (
    ConfigAccessError,
    ConfigNotFoundError,
    ConfigStore,
    ConfigValidationError,
)
from docbuilder.storage.file_service import FileAccessError, FileValidationError

logger = logging.getLogger("docbuilder.checklist.assessment")

EXTRACTION_ERRORS = (DocumentExtractionError, FileAccessError, FileValidationError)


@dataclass
class AssessmentRequest:
    """What to assess: one checklist, and which documents go with which item.

    Document selection per item, first match wins: item_documents[item id],
    then the request-wide documents list, then the documents stored on the
    item itself. Documents are pathnames or URLs of the owner's files.
    """
    kind: str
    checklist_id: str
    owner: str
    documents: List[str] = field(default_factory=list)
    item_documents: Dict[str, List[str]] = field(default_factory=dict)
    item_ids: Optional[List[str]] = None
    persist: bool = True
    model: Optional[str] = None

    @classmethod
    def from_dict(cls, kind: str, checklist_id: str, owner: str,
                  body: dict) -> "AssessmentRequest":
        body = body or {}
        documents = body.get("documents") or []
        item_documents = body.get("itemDocuments") or {}
        item_ids = body.get("itemIds")
        if not isinstance(documents, list) or not isinstance(item_documents, dict):
            raise ConfigValidationError(
                "documents must be a list and itemDocuments an object of lists"
            )
        if item_ids is not None and not isinstance(item_ids, list):
            raise ConfigValidationError("itemIds must be a list")
        return cls(
            kind=kind,
            checklist_id=checklist_id,
            owner=owner,
            documents=[str(d) for d in documents if d],
            item_documents={
                str(k): [str(d) for d in (v or []) if d]
                for k, v in item_documents.items()
            },
            item_ids=[str(i) for i in item_ids] if item_ids is not None else None,
            persist=bool(body.get("persist", True)),
            model=body.get("model") or None,
        )


@dataclass
class ItemResult:
    item_id: str
    label: str
    status: str
    location: str
    comments: str
    parse_stage: str
    documents: List[str] = field(default_factory=list)
    error: Optional[str] = None
    persisted: bool = False

    def to_dict(self) -> dict:
        return {
            "itemId": self.item_id,
            "label": self.label,
            "status": self.status,
            "location": self.location,
            "comments": self.comments,
            "parseStage": self.parse_stage,
            "documents": self.documents,
            "error": self.error,
            "persisted": self.persisted,
        }


@dataclass
class AssessmentResult:
    checklist_id: str
    kind: str
    results: List[ItemResult] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    duration_ms: int = 0

    @property
    def assessed(self) -> int:
        return len(self.results)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.error)

    def to_dict(self) -> dict:
        return {
            "checklistId": self.checklist_id,
            "kind": self.kind,
            "results": [r.to_dict() for r in self.results],
            "assessed": self.assessed,
            "failed": self.failed,
            "skipped": self.skipped,
            "durationMs": self.duration_ms,
        }


# ── helpers ────────────────────────────────────────────────────────────────────

def _documents_for(request: AssessmentRequest, item: ChecklistItem) -> List[str]:
    for key in (item.id, item.serial):
        if key and key in request.item_documents:
            return request.item_documents[key]
    return request.documents or item.documents


def _load_documents(owner: str, refs: List[str], cache: dict):
    """({name: text}, [error, ...]) for the given pathnames / URLs."""
    texts, errors = {}, []
    for ref in refs:
        if ref not in cache:
            try:
                if "://" in ref:
                    cache[ref] = extract_for_owner(owner, url=ref)
                else:
                    cache[ref] = extract_for_owner(owner, pathname=ref)
            except EXTRACTION_ERRORS as exc:
                logger.warning("Could not extract %s: %s", ref, exc)
                cache[ref] = exc
        value = cache[ref]
        if isinstance(value, Exception):
            errors.append(f"{ref}: {value}")
        else:
            texts[ref] = value
    return texts, errors


def _stored_items(record: dict) -> list:
    items = record.get("items")
    if items is None and isinstance(record.get("config"), dict):
        items = record["config"].get("items")
    return items if isinstance(items, list) else []


def persist_verdict(store: ConfigStore, kind: str, checklist_id: str, owner: str,
                    item: ChecklistItem, verdict: Verdict) -> bool:
    """Write one item's verdict into the freshly re-read stored checklist."""
    try:
        record = store.get(kind, checklist_id, owner)
    except ConfigNotFoundError:
        logger.warning("Checklist %s vanished during assessment", checklist_id)
        return False

    for stored in _stored_items(record):
        if not isinstance(stored, dict):
            continue
        if str(stored.get("id") or "") == item.id or (
                item.serial and str(stored.get("serial") or "") == item.serial):
            stored["status"] = verdict.status
            if "complianceStatus" in stored:
                stored["complianceStatus"] = verdict.status
            stored["location"] = verdict.location
            stored["comments"] = verdict.comments
            break
    else:
        logger.warning("Item %s no longer in checklist %s", item.label, checklist_id)
        return False

    try:
        store.update(kind, checklist_id, record, owner)
    except ConfigAccessError as exc:
        logger.warning("Not persisting %s: %s", item.label, exc)
        return False
    return True


def assess_item(variant: ChecklistVariant, item: ChecklistItem, documents: dict,
                gateway: Optional[LLMGateway], timeout: float,
                model: Optional[str] = None) -> Verdict:
    """One gateway call and parse. Upstream failures become the sentinel verdict.

    With no gateway given the process-wide one is resolved here, so a
    missing API key fails this item rather than the run.
    """
    try:
        text = (gateway or get_gateway()).complete(
            build_user_prompt(variant, item, documents),
            system_prompt=build_system_prompt(variant, item),
            model=model,
            timeout=timeout,
        )
    except LLMGatewayError as exc:
        logger.warning("Assessment call failed for item %s: %s", item.label, exc)
        return Verdict(status=variant.sentinel,
                       comments=f"Error calling assessment API: {exc}",
                       stage="error")
    return parse_response(text, variant)


# ── loop ───────────────────────────────────────────────────────────────────────

def run_assessment(request: AssessmentRequest,
                   store: Optional[ConfigStore] = None,
                   gateway: Optional[LLMGateway] = None,
                   timeout: Optional[float] = None) -> AssessmentResult:
    """Assess every selected item of a stored checklist, sequentially."""
    variant = variant_for(request.kind)
    store = store or ConfigStore()
    checklist = ChecklistConfig.from_dict(
        store.get(request.kind, request.checklist_id, request.owner)
    )
    timeout = timeout if timeout is not None else get_settings().llm_timeout

    wanted = set(request.item_ids) if request.item_ids is not None else None
    result = AssessmentResult(checklist_id=request.checklist_id, kind=request.kind)
    cache: dict = {}
    started = time.time()

    for item in checklist.items:
        if not item.id:
            item.id = item.serial
        if wanted is not None and item.id not in wanted and item.serial not in wanted:
            continue
        refs = _documents_for(request, item)
        if not refs:
            result.skipped.append(item.id)
            continue

        documents, errors = _load_documents(request.owner, refs, cache)
        error = None
        if not documents:
            error = "; ".join(errors)
            verdict = Verdict(
                status=variant.sentinel,
                comments=f"Could not extract content from the selected documents: {error}",
                stage="no-content",
            )
        else:
            verdict = assess_item(variant, item, documents, gateway, timeout, request.model)
            if verdict.stage == "error":
                error = verdict.comments

        persisted = False
        if request.persist:
            persisted = persist_verdict(store, request.kind, request.checklist_id,
                                        request.owner, item, verdict)

        logger.info("Item %s -> %s (%s)", item.label, verdict.status, verdict.stage)
        result.results.append(ItemResult(
            item_id=item.id,
            label=item.label,
            status=verdict.status,
            location=verdict.location,
            comments=verdict.comments,
            parse_stage=verdict.stage,
            documents=list(refs),
            error=error,
            persisted=persisted,
        ))

    result.duration_ms = int((time.time() - started) * 1000)
    logger.info("Assessed %s %s: %d items, %d failed, %d skipped in %dms",
                request.kind, request.checklist_id, result.assessed,
                result.failed, len(result.skipped), result.duration_ms)
    return result


def main():
    parser = argparse.ArgumentParser(description="Run a checklist assessment")
    parser.add_argument("--kind", required=True,
                        choices=("compliance-checklists", "submission-checklists"))
    parser.add_argument("--id", required=True)
    parser.add_argument("--owner", required=True)
    parser.add_argument("--doc", action="append", default=[],
                        help="Document pathname applied to every item (repeatable)")
    parser.add_argument("--no-persist", action="store_true")
    parser.add_argument("--json", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO,
                        format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    request = AssessmentRequest(kind=args.kind, checklist_id=args.id, owner=args.owner,
                                documents=args.doc, persist=not args.no_persist)
    try:
        result = run_assessment(request)
    except (ConfigNotFoundError, ConfigValidationError, LLMGatewayError) as exc:
        print(json.dumps({"error": str(exc)}) if args.json else f"ERROR: {exc}")
        sys.exit(1)

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        for r in result.results:
            print(f"  {r.label:<12} {r.status:<14} {r.comments[:80]}")
        print(f"{result.assessed} assessed, {result.failed} failed, "
              f"{len(result.skipped)} skipped")


if __name__ == "__main__":
    main()
