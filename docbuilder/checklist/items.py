"""Item-level edits on a stored checklist.

Every operation rewrites the whole checklist document; there is no
item-level transaction. Operations:

    add_field          append a new item (status unassessed) when the id is new
    update_config      name / requirement / documents only
    update_assessment  status / comments / location only
    (anything else)    merge whichever of status / comments / documents is given
"""

import logging
from typing import Optional

from docbuilder.checklist.models import ChecklistConfig, ChecklistItem, variant_for
from docbuilder.storage.config_store import (
    ConfigNotFoundError,
    ConfigStore,
    ConfigValidationError,
    parse_revision,
)

logger = logging.getLogger("docbuilder.checklist.items")

ADD_FIELD = "add_field"
UPDATE_CONFIG = "update_config"
UPDATE_ASSESSMENT = "update_assessment"


def _documents(body: dict) -> Optional[list]:
    docs = body.get("documentPaths", body.get("documents"))
    if docs is None:
        return None
    if not isinstance(docs, list):
        raise ConfigValidationError("documentPaths must be a list")
    return [str(d) for d in docs if d]


def apply_item_operation(kind: str, checklist_id: str, owner: str, item_id: str,
                         operation: Optional[str], body: dict,
                         store: Optional[ConfigStore] = None) -> dict:
    """Apply one item operation and return the resulting item as JSON."""
    if not item_id:
        raise ConfigValidationError("Missing itemId")
    expected_revision = parse_revision(body.get("expectedRevision"), "expectedRevision")
    variant = variant_for(kind)
    store = store or ConfigStore()
    stored = store.get(kind, checklist_id, owner)
    checklist = ChecklistConfig.from_dict(stored)

    def checked_status(value):
        status = variant.match_status(value)
        if status is None and value != variant.unassessed:
            raise ConfigValidationError(
                f"Invalid status '{value}'. Must be one of: {', '.join(variant.allowed_statuses)}"
            )
        return status if status is not None else value

    documents = _documents(body)
    item = checklist.find_item(item_id)

    if item is None:
        if operation != ADD_FIELD:
            raise ConfigNotFoundError(f"Checklist item not found: {item_id}")
        item = ChecklistItem(
            id=item_id,
            name=body.get("name") or "New Field",
            requirement=body.get("requirement") or "",
            serial=str(body.get("serial") or ""),
            applied_standards=body.get("appliedStandards") or "",
            criteria=body.get("criteria") or "",
            documents=documents or [],
            status=variant.unassessed,
        )
        checklist.items.append(item)
    elif operation == ADD_FIELD:
        raise ConfigValidationError(f"Checklist item already exists: {item_id}")
    elif operation == UPDATE_CONFIG:
        item.name = body.get("name") or item.name
        item.requirement = body.get("requirement") or item.requirement
        if documents is not None:
            item.documents = documents
    elif operation == UPDATE_ASSESSMENT:
        if body.get("status"):
            item.status = checked_status(body["status"])
        item.comments = body.get("comments") or item.comments
        if body.get("location") is not None:
            item.location = str(body["location"])
    else:
        if body.get("status"):
            item.status = checked_status(body["status"])
        if body.get("comments"):
            item.comments = body["comments"]
        if documents is not None:
            item.documents = documents

    record = dict(stored)
    record["items"] = [i.to_dict() for i in checklist.items]
    record.pop("config", None)
    store.update(kind, checklist_id, record, owner,
                 expected_revision=expected_revision)
    logger.info("%s on %s item %s", operation or "update", checklist_id, item_id)
    return item.to_dict()
