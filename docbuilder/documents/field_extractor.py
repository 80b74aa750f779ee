#!/usr/bin/env python3
"""Field extraction for the document builder.

Given a field-prompt config ({name, fields: [{key, prompt}]}) and the text
of the selected documents, ask the LLM once per field, sequentially, and
collect {key: {"value", "reviewed", "error"}}. A failed call does not stop
the run: that field gets FAILED_VALUE and the error message.

Usage:
    python -m docbuilder.documents.field_extractor --config fields.json --doc a.pdf --doc b.docx --json
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from docbuilder.documents.content_extractor import combine_documents, extract_bytes
from docbuilder.llm.gateway import LLMGateway, LLMGatewayError, get_gateway

logger = logging.getLogger("docbuilder.documents.fields")

FAILED_VALUE = "Failed to extract information"
NOT_FOUND_VALUE = "Information not found"

EXTRACTION_SYSTEM_PROMPT = (
    "You are an AI assistant that extracts specific information from medical "
    "device documentation. Extract the exact information requested, using only "
    f"the provided documents. If the information is not found, say '{NOT_FOUND_VALUE}'. "
    "Do not add framing such as \"here is the information I found for you\"; "
    "reply with the requested information only."
)


def build_field_prompt(key: str, prompt: str, documents_text: str) -> str:
    return (
        f"find the information for the field: {key}. With the prompt: {prompt}\n\n"
        f"Here are the documents to extract from:\n\n{documents_text}"
    )


def extract_field(key: str, prompt: str, documents_text: str,
                  gateway: Optional[LLMGateway] = None) -> dict:
    """Extract one field. Never raises for upstream failures."""
    gateway = gateway or get_gateway()
    try:
        value = gateway.complete(
            build_field_prompt(key, prompt, documents_text),
            system_prompt=EXTRACTION_SYSTEM_PROMPT,
        )
    except LLMGatewayError as exc:
        logger.warning("Extraction failed for field %s: %s", key, exc)
        return {"value": FAILED_VALUE, "reviewed": False, "error": str(exc)}
    return {"value": value.strip() or FAILED_VALUE, "reviewed": False, "error": None}


def extract_fields(config: dict, documents: dict,
                   gateway: Optional[LLMGateway] = None,
                   keys: Optional[list] = None) -> dict:
    """Run every field of a field-prompt config (or only `keys`) over documents.

    Args:
        config: field-prompt config with a "fields" list of {key, prompt}.
        documents: {document name: extracted text}.
        gateway: LLM gateway (process-wide one when omitted).
        keys: optional subset of field keys to extract.

    Returns:
        {key: {"value": str, "reviewed": False, "error": str | None}}
    """
    fields = config.get("fields") or []
    wanted = set(keys) if keys else None
    documents_text = combine_documents(documents)

    results = {}
    for field in fields:
        key = field.get("key", "")
        if not key or (wanted is not None and key not in wanted):
            continue
        results[key] = extract_field(key, field.get("prompt", ""), documents_text, gateway)

    failed = sum(1 for r in results.values() if r["error"])
    logger.info("Extracted %d fields for config %s (%d failed)",
                len(results), config.get("id") or config.get("name"), failed)
    return results


def main():
    parser = argparse.ArgumentParser(description="Extract configured fields from documents")
    parser.add_argument("--config", required=True, help="Field-prompt config JSON file")
    parser.add_argument("--doc", action="append", required=True, help="Document path (repeatable)")
    parser.add_argument("--json", action="store_true")
    args = parser.parse_args()

    try:
        config = json.loads(Path(args.config).read_text(encoding="utf-8"))
        documents = {Path(p).name: extract_bytes(Path(p).read_bytes(), p) for p in args.doc}
        results = extract_fields(config, documents)
    except (OSError, json.JSONDecodeError, LLMGatewayError) as exc:
        print(json.dumps({"error": str(exc)}) if args.json else f"ERROR: {exc}")
        sys.exit(1)

    if args.json:
        print(json.dumps(results, indent=2))
    else:
        for key, r in results.items():
            print(f"  {key}: {r['value']}")


if __name__ == "__main__":
    main()
