#!/usr/bin/env python3
"""Document content extractor: stored file URL -> plain text.

Dispatch by file extension / content type:
  - PDF  -> pypdf page text, pages separated by blank lines
  - DOCX -> python-docx paragraph text
  - anything else -> bytes decoded as UTF-8 (with replacement)

Binary formats without a dedicated branch (legacy .doc, images) come out as
garbled text. That is an accepted limitation, not an error.

URLs that belong to the configured blob store are read straight from it;
any other URL is fetched over HTTP with requests.

Usage:
    python -m docbuilder.documents.content_extractor --file path/to/doc.pdf
    python -m docbuilder.documents.content_extractor --url https://... --json
"""

import argparse
import io
import json
import logging
import sys
from pathlib import Path, PurePosixPath
from typing import Optional
from urllib.parse import unquote, urlparse

import requests
from docx import Document
from pypdf import PdfReader
from pypdf.errors import PyPdfError

from docbuilder.config.settings import get_settings
from docbuilder.storage.blob_store import BlobNotFoundError, BlobStore, get_blob_store
from docbuilder.storage.file_service import read_file

logger = logging.getLogger("docbuilder.documents.extractor")

# Per-document bound applied before prompting. Set far above any model context.
MAX_DOCUMENT_CHARS = 100_000_000
TRUNCATION_MARKER = "... [Content truncated due to length]"

PDF_TYPES = ("application/pdf",)
DOCX_TYPES = ("application/vnd.openxmlformats-officedocument.wordprocessingml.document",)


class DocumentExtractionError(RuntimeError):
    """The document could not be fetched or parsed."""


# ── text extraction ────────────────────────────────────────────────────────────

def _extract_pdf(data: bytes) -> str:
    try:
        reader = PdfReader(io.BytesIO(data))
        pages = [page.extract_text() or "" for page in reader.pages]
    except (PyPdfError, ValueError, KeyError) as exc:
        raise DocumentExtractionError(f"PDF extraction failed: {exc}") from exc
    return "\n\n".join(pages)


def _extract_docx(data: bytes) -> str:
    try:
        doc = Document(io.BytesIO(data))
    except Exception as exc:  # python-docx raises assorted zip/xml errors
        raise DocumentExtractionError(f"DOCX extraction failed: {exc}") from exc
    paragraphs = [p.text for p in doc.paragraphs if p.text.strip()]
    for table in doc.tables:
        for row in table.rows:
            cells = [c.text.strip() for c in row.cells if c.text.strip()]
            if cells:
                paragraphs.append(" | ".join(cells))
    return "\n\n".join(paragraphs)


def _suffix(name: str) -> str:
    path = unquote(urlparse(name).path) if "://" in name else name
    return PurePosixPath(path).suffix.lower()


def detect_format(name: str = "", content_type: str = "") -> str:
    """Return 'pdf', 'docx' or 'text'."""
    content_type = (content_type or "").split(";")[0].strip().lower()
    suffix = _suffix(name or "")
    if suffix == ".pdf" or content_type in PDF_TYPES:
        return "pdf"
    if suffix == ".docx" or content_type in DOCX_TYPES:
        return "docx"
    return "text"


def extract_bytes(data: bytes, name: str = "", content_type: str = "") -> str:
    """Extract text from raw document bytes."""
    fmt = detect_format(name, content_type)
    if fmt == "pdf":
        return _extract_pdf(data)
    if fmt == "docx":
        return _extract_docx(data)
    return data.decode("utf-8", errors="replace")


# ── prompt assembly ───────────────────────────────────────────────────────────

def truncate_document(text: str, limit: int = MAX_DOCUMENT_CHARS) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + TRUNCATION_MARKER


def combine_documents(documents: dict, separator: str = "---\n\n") -> str:
    """Join {name: text} into one prompt block, one "Document: name" section each."""
    return separator.join(
        f"Document: {name}\n\n{truncate_document(text)}\n\n"
        for name, text in documents.items()
    )


# ── fetching ───────────────────────────────────────────────────────────────────

def _fetch(url: str, timeout: float) -> tuple[bytes, str]:
    try:
        resp = requests.get(url, timeout=timeout)
    except requests.RequestException as exc:
        raise DocumentExtractionError(f"Failed to fetch {url}: {exc}") from exc
    if resp.status_code != 200:
        raise DocumentExtractionError(
            f"Failed to fetch {url}: HTTP {resp.status_code}"
        )
    return resp.content, resp.headers.get("Content-Type", "")


def fetch_bytes(url: str, store: Optional[BlobStore] = None) -> tuple[bytes, str]:
    """(data, content_type) for a URL: blob store first, HTTP otherwise."""
    store = store or get_blob_store()
    key = store.key_for_url(url)
    if key is None:
        return _fetch(url, get_settings().fetch_timeout)
    try:
        return store.get(key), ""
    except BlobNotFoundError as exc:
        raise DocumentExtractionError(f"File not found: {url}") from exc


def extract_text(file_url: str, filename: Optional[str] = None,
                 store: Optional[BlobStore] = None) -> str:
    """Return the text content of the document at file_url."""
    data, content_type = fetch_bytes(file_url, store=store)
    text = extract_bytes(data, filename or file_url, content_type)
    logger.debug("Extracted %d chars from %s", len(text), filename or file_url)
    return text


def extract_for_owner(owner: str, pathname: Optional[str] = None,
                      url: Optional[str] = None,
                      store: Optional[BlobStore] = None) -> str:
    """Text of one of the owner's stored files, addressed by pathname or URL."""
    try:
        data = read_file(owner, pathname=pathname, url=url, store=store)
    except FileNotFoundError as exc:
        raise DocumentExtractionError(str(exc)) from exc
    return extract_bytes(data, pathname or url or "")


def main():
    parser = argparse.ArgumentParser(description="Extract text from a document")
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--file", default=None)
    group.add_argument("--url", default=None)
    parser.add_argument("--json", action="store_true")
    args = parser.parse_args()

    try:
        if args.file:
            path = Path(args.file)
            text = extract_bytes(path.read_bytes(), path.name)
        else:
            text = extract_text(args.url)
    except (DocumentExtractionError, OSError) as exc:
        print(json.dumps({"error": str(exc)}) if args.json else f"ERROR: {exc}")
        sys.exit(1)

    if args.json:
        print(json.dumps({"content": text, "chars": len(text)}, indent=2))
    else:
        print(text)


if __name__ == "__main__":
    main()
