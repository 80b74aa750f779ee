#!/usr/bin/env python3
"""Checklist and field-prompt records.

Two checklist variants share one item shape and differ only in vocabulary:

    compliance  - Y / N / NA verdicts, items identified by serial
    submission  - compliant / non-compliant / needs-review, items identified by id

Records travel as camelCase JSON. from_dict() also accepts the nested
{"config": {"items": [...]}} shape produced by the JSON paste import and
the legacy "complianceStatus" item field.
"""

import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from docbuilder.storage.config_store import (
    COMPLIANCE_CHECKLISTS,
    FIELD_PROMPTS,
    SUBMISSION_CHECKLISTS,
    ConfigValidationError,
    parse_revision,
)

COMPLIANCE_STATUSES = ("Y", "N", "NA")
SUBMISSION_STATUSES = ("compliant", "non-compliant", "needs-review")
NOT_CHECKED = "not-checked"


@dataclass(frozen=True)
class ChecklistVariant:
    """Verdict vocabulary of one checklist kind."""
    name: str
    kind: str
    statuses: tuple
    positive: str
    negative: str
    sentinel: str
    unassessed: str

    @property
    def allowed_statuses(self) -> tuple:
        return self.statuses + (self.unassessed,)

    def match_status(self, value) -> Optional[str]:
        """Case-insensitive lookup of a verdict in this vocabulary."""
        if not isinstance(value, str):
            return None
        wanted = value.strip().lower()
        for status in self.statuses:
            if status.lower() == wanted:
                return status
        return None


COMPLIANCE = ChecklistVariant(
    name="compliance", kind=COMPLIANCE_CHECKLISTS, statuses=COMPLIANCE_STATUSES,
    positive="Y", negative="N", sentinel="NA", unassessed="",
)
SUBMISSION = ChecklistVariant(
    name="submission", kind=SUBMISSION_CHECKLISTS, statuses=SUBMISSION_STATUSES,
    positive="compliant", negative="non-compliant", sentinel="needs-review",
    unassessed=NOT_CHECKED,
)
VARIANTS = {COMPLIANCE.kind: COMPLIANCE, SUBMISSION.kind: SUBMISSION}


def variant_for(kind: str) -> ChecklistVariant:
    try:
        return VARIANTS[kind]
    except KeyError:
        raise ConfigValidationError(f"'{kind}' is not a checklist kind") from None


@dataclass
class Verdict:
    """Outcome of assessing one item."""
    status: str
    comments: str
    location: str = ""
    stage: str = ""


def _text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value)
    return str(value)


@dataclass
class ChecklistItem:
    id: str = ""
    name: str = ""
    requirement: str = ""
    serial: str = ""
    applied_standards: str = ""
    criteria: str = ""
    complying_documents: str = ""
    documents: List[str] = field(default_factory=list)
    status: str = ""
    location: str = ""
    comments: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "ChecklistItem":
        if not isinstance(data, dict):
            raise ConfigValidationError("Checklist items must be objects")
        status = data.get("status")
        if status is None:
            status = data.get("complianceStatus", "")
        documents = data.get("documents") or data.get("documentPaths") or []
        if isinstance(documents, str):
            documents = [documents]
        return cls(
            id=_text(data.get("id")).strip(),
            name=_text(data.get("name")),
            requirement=_text(data.get("requirement")),
            serial=_text(data.get("serial")).strip(),
            applied_standards=_text(data.get("appliedStandards")),
            criteria=_text(data.get("criteria")),
            complying_documents=_text(data.get("complyingDocuments")),
            documents=[str(d) for d in documents if d],
            status=_text(status),
            location=_text(data.get("location")),
            comments=_text(data.get("comments")),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "serial": self.serial,
            "name": self.name,
            "requirement": self.requirement,
            "appliedStandards": self.applied_standards,
            "criteria": self.criteria,
            "complyingDocuments": self.complying_documents,
            "documents": list(self.documents),
            "status": self.status,
            "location": self.location,
            "comments": self.comments,
        }

    @property
    def label(self) -> str:
        return self.serial or self.name or self.id


@dataclass
class ChecklistConfig:
    id: str = ""
    name: str = ""
    description: str = ""
    items: List[ChecklistItem] = field(default_factory=list)
    owner_email: str = ""
    created_at: str = ""
    updated_at: str = ""
    is_shared: bool = False
    version: str = ""
    revision: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> "ChecklistConfig":
        if not isinstance(data, dict):
            raise ConfigValidationError("Checklist must be a JSON object")
        nested = data.get("config") if isinstance(data.get("config"), dict) else {}
        raw_items = data.get("items")
        if raw_items is None:
            raw_items = nested.get("items", [])
        if not isinstance(raw_items, list):
            raise ConfigValidationError("Checklist items must be a list")
        return cls(
            id=_text(data.get("id")),
            name=_text(data.get("name") or nested.get("name")),
            description=_text(data.get("description") or nested.get("description")),
            items=[ChecklistItem.from_dict(i) for i in raw_items],
            owner_email=_text(data.get("ownerEmail") or data.get("createdBy")),
            created_at=_text(data.get("createdAt")),
            updated_at=_text(data.get("updatedAt")),
            is_shared=bool(data.get("isShared", False)),
            version=_text(data.get("version") or nested.get("version")),
            revision=parse_revision(data.get("revision")) or 0,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "items": [i.to_dict() for i in self.items],
            "ownerEmail": self.owner_email,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "isShared": self.is_shared,
            "version": self.version,
            "revision": self.revision,
        }

    def find_item(self, item_id: str) -> Optional[ChecklistItem]:
        for item in self.items:
            if item_id in (item.id, item.serial):
                return item
        return None

    def validate(self, variant: ChecklistVariant) -> "ChecklistConfig":
        """Fill missing item ids and check identity and status values."""
        if not self.name.strip():
            raise ConfigValidationError("Checklist name is required")
        seen_ids, seen_serials = set(), set()
        for index, item in enumerate(self.items, 1):
            if not item.id:
                item.id = item.serial or str(uuid.uuid4())
            if item.id in seen_ids:
                raise ConfigValidationError(f"Duplicate checklist item id: {item.id}")
            seen_ids.add(item.id)
            if item.serial:
                if item.serial in seen_serials:
                    raise ConfigValidationError(f"Duplicate checklist item serial: {item.serial}")
                seen_serials.add(item.serial)
            if item.status in ("", NOT_CHECKED):
                item.status = variant.unassessed
            else:
                matched = variant.match_status(item.status)
                if matched is None:
                    raise ConfigValidationError(
                        f"Item {item.label}: invalid status '{item.status}'. "
                        f"Must be one of: {', '.join(variant.allowed_statuses)}"
                    )
                item.status = matched
        return self


@dataclass
class FieldPrompt:
    key: str
    prompt: str = ""


@dataclass
class FieldPromptConfig:
    id: str = ""
    name: str = ""
    fields: List[FieldPrompt] = field(default_factory=list)
    owner_email: str = ""
    created_at: str = ""
    updated_at: str = ""
    is_shared: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> "FieldPromptConfig":
        if not isinstance(data, dict):
            raise ConfigValidationError("Field-prompt config must be a JSON object")
        raw_fields = data.get("fields") or []
        if not isinstance(raw_fields, list):
            raise ConfigValidationError("fields must be a list")
        fields = []
        for f in raw_fields:
            if not isinstance(f, dict):
                raise ConfigValidationError("Each field must be an object with key and prompt")
            fields.append(FieldPrompt(key=_text(f.get("key")).strip(),
                                      prompt=_text(f.get("prompt"))))
        return cls(
            id=_text(data.get("id")),
            name=_text(data.get("name")),
            fields=fields,
            owner_email=_text(data.get("ownerEmail")),
            created_at=_text(data.get("createdAt")),
            updated_at=_text(data.get("updatedAt")),
            is_shared=bool(data.get("isShared", False)),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "fields": [{"key": f.key, "prompt": f.prompt} for f in self.fields],
            "ownerEmail": self.owner_email,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "isShared": self.is_shared,
        }

    def validate(self) -> "FieldPromptConfig":
        if not self.name.strip():
            raise ConfigValidationError("Config name is required")
        seen = set()
        for f in self.fields:
            if not f.key:
                raise ConfigValidationError("Field keys must not be empty")
            if f.key in seen:
                raise ConfigValidationError(f"Duplicate field key: {f.key}")
            seen.add(f.key)
        return self


_STORE_MANAGED = ("id", "ownerEmail", "createdAt", "updatedAt", "revision")


def normalize_config(kind: str, payload: dict) -> Dict:
    """Validate a client payload for `kind` and return its canonical JSON.

    Store-managed fields (id, owner, timestamps, revision) are left out;
    the config store stamps them.
    """
    if kind == FIELD_PROMPTS:
        record = FieldPromptConfig.from_dict(payload).validate().to_dict()
    else:
        record = ChecklistConfig.from_dict(payload).validate(variant_for(kind)).to_dict()
    for key in _STORE_MANAGED:
        record.pop(key, None)
    return record
