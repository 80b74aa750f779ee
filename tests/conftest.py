#!/usr/bin/env python3
"""Shared test fixtures for the Document Extractor & Builder test suite."""

import io
import zipfile

import pytest

from docbuilder.config.settings import reset_settings
from docbuilder.llm.gateway import LLMGateway, set_gateway
from docbuilder.llm.provider import LLMProvider, LLMResponse
from docbuilder.storage.blob_store import LocalBlobStore, set_blob_store
from docbuilder.storage.config_store import SUBMISSION_CHECKLISTS, ConfigStore

OWNER = "alice@example.com"
OTHER = "bob@example.com"
PUBLIC_URL = "http://localhost:5001/blobs"

_ENV_VARS = (
    "OPENROUTER_API_KEY", "DOCBUILDER_API_KEY", "DOCBUILDER_BLOB_BACKEND",
    "DOCBUILDER_BLOB_BUCKET", "DOCBUILDER_PUBLIC_URL", "DOCBUILDER_LLM_MODEL",
    "DOCBUILDER_LLM_TIMEOUT", "DOCBUILDER_LLM_MAX_TOKENS", "DOCBUILDER_CONFIG_PATH",
    "DOCBUILDER_LLM_BASE_URL", "APP_URL",
)


class FakeProvider(LLMProvider):
    """Records every request and replays scripted responses.

    Each scripted entry is a response string, an exception to raise, or a
    callable taking the LLMRequest and returning a string.
    """

    def __init__(self, responses=None, default="Assessment: compliant\nExplanation: Looks fine."):
        self.responses = list(responses or [])
        self.default = default
        self.calls = []

    @property
    def provider_name(self) -> str:
        return "fake"

    def invoke(self, request):
        self.calls.append(request)
        item = self.responses.pop(0) if self.responses else self.default
        if isinstance(item, Exception):
            raise item
        if callable(item):
            item = item(request)
        return LLMResponse(content=item, model_id=request.model, provider="fake",
                           input_tokens=10, output_tokens=5)


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Fresh settings, blob root and gateway for every test."""
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("DOCBUILDER_BLOB_ROOT", str(tmp_path / "blobs"))
    reset_settings()
    set_blob_store(None)
    set_gateway(None)
    yield
    reset_settings()
    set_blob_store(None)
    set_gateway(None)


@pytest.fixture
def blob_store(tmp_path):
    store = LocalBlobStore(tmp_path / "blobs", public_url=PUBLIC_URL)
    set_blob_store(store)
    return store


@pytest.fixture
def config_store(blob_store):
    return ConfigStore(blob_store)


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def gateway(fake_provider):
    gw = LLMGateway(fake_provider, default_model="test/model", default_max_tokens=1024)
    set_gateway(gw)
    return gw


@pytest.fixture
def uploaded_docs(blob_store):
    """Two plain-text documents owned by OWNER."""
    from docbuilder.storage.file_service import upload_file
    spec = upload_file(OWNER, "device_spec.txt",
                       b"Device X-200 operates at 5V.\nBiocompatibility tested per ISO 10993.")
    report = upload_file(OWNER, "test_report.txt",
                         b"Electrical safety testing per IEC 60601-1 passed on 2024-03-01.")
    return [spec, report]


@pytest.fixture
def checklist_payload():
    return {
        "name": "510(k) submission",
        "description": "Pre-submission document check",
        "items": [
            {"id": "item-1", "name": "Biocompatibility", "requirement": "ISO 10993 evaluation",
             "documents": [], "status": "not-checked", "comments": ""},
            {"id": "item-2", "name": "Electrical safety", "requirement": "IEC 60601-1 test report",
             "documents": [], "status": "not-checked", "comments": ""},
            {"id": "item-3", "name": "Labeling", "requirement": "Labels per 21 CFR 801",
             "documents": [], "status": "not-checked", "comments": ""},
        ],
    }


@pytest.fixture
def stored_checklist(config_store, checklist_payload):
    return config_store.save(SUBMISSION_CHECKLISTS, checklist_payload, OWNER)


def make_docx(document_xml: str, extra_parts=None, content_types=True) -> bytes:
    """Minimal DOCX-shaped zip: [Content_Types].xml plus word/document.xml."""
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as z:
        if content_types:
            z.writestr("[Content_Types].xml",
                       '<?xml version="1.0" encoding="UTF-8"?><Types/>')
        z.writestr("word/document.xml", document_xml)
        for name, body in (extra_parts or {}).items():
            z.writestr(name, body)
    return buf.getvalue()


def wrap_body(runs: str) -> str:
    return ('<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
            '<w:document xmlns:w="http://schemas.openxmlformats.org/wordprocessingml/2006/main">'
            f'<w:body><w:p>{runs}</w:p></w:body></w:document>')


def read_part(docx_bytes: bytes, name: str = "word/document.xml") -> str:
    with zipfile.ZipFile(io.BytesIO(docx_bytes)) as z:
        return z.read(name).decode("utf-8")
