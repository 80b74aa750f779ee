#!/usr/bin/env python3
"""Document Extractor & Builder - Flask JSON API.

Identity comes from the X-User-Email header set by the upstream auth
layer; every /api route except /api/health requires it.

Configs (kind = field-prompts | compliance-checklists | submission-checklists):
    GET    /api/configs/<kind>                 - caller's private configs (?include_shared=1 adds shared)
    POST   /api/configs/<kind>                 - create ({"isShared": true} to share)
    GET    /api/configs/<kind>/shared          - shared configs
    GET    /api/configs/<kind>/<id>            - one config (private first, shared fallback)
    PUT    /api/configs/<kind>/<id>            - overwrite (optional "expectedRevision")
    DELETE /api/configs/<kind>/<id>            - delete
    POST   /api/configs/<kind>/<id>/items      - item operation (add_field / update_config / update_assessment)
    POST   /api/configs/<kind>/<id>/assess     - run the checklist assessment loop

Files:
    GET    /api/files/list                     - caller's files
    POST   /api/files/upload                   - upload (multipart "file")
    DELETE /api/files                          - delete by url or pathname
    PUT    /api/files/rename                   - rename ({"url", "newName"})
    GET    /api/files/get?pathname=            - file metadata
    GET    /api/files/content?pathname=|url=   - extracted text

Documents / LLM:
    POST   /api/documents/fill                 - fill a DOCX template (attachment)
    POST   /api/documents/extract              - field extraction with a field-prompt config
    POST   /api/documents/chat                 - question answering over documents
    POST   /api/llm/query                      - raw gateway call

    GET    /blobs/<key>                        - local-backend file download
    GET    /api/health                         - health probe

Usage:
    python -m docbuilder.web.app [--port 5001] [--debug]
"""

import io
import logging
import threading
import time
from collections import defaultdict, deque
from pathlib import PurePosixPath

from dotenv import load_dotenv
from flask import Flask, jsonify, request, send_file
from werkzeug.exceptions import HTTPException, NotFound

from docbuilder import __version__
from docbuilder.checklist.assessment import AssessmentRequest, run_assessment
from docbuilder.checklist.items import apply_item_operation
from docbuilder.checklist.models import FieldPromptConfig, normalize_config
from docbuilder.config.settings import BASE_DIR, get_settings
from docbuilder.documents.content_extractor import (
    DocumentExtractionError,
    extract_bytes,
    extract_for_owner,
)
from docbuilder.documents.doc_chat import answer_question
from docbuilder.documents.field_extractor import extract_fields
from docbuilder.documents.template_filler import (
    DOCX_MIME,
    TemplateError,
    fill_template,
    normalize_fill_data,
)
from docbuilder.llm.gateway import LLMGatewayError, get_gateway
from docbuilder.llm.provider import LLMRequest
from docbuilder.storage.blob_store import BlobNotFoundError, LocalBlobStore, get_blob_store
from docbuilder.storage.config_store import (
    CONFIG_KINDS,
    FIELD_PROMPTS,
    ConfigAccessError,
    ConfigConflictError,
    ConfigNotFoundError,
    ConfigStore,
    ConfigValidationError,
    parse_revision,
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

_env_path = BASE_DIR / ".env"
if _env_path.exists():
    load_dotenv(_env_path, override=False)  # real env vars win

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S",
)
logger = logging.getLogger("docbuilder.web")

MAX_UPLOAD_BYTES = 10 * 1024 * 1024
CHECKLIST_KINDS = tuple(k for k in CONFIG_KINDS if k != FIELD_PROMPTS)


class MissingIdentityError(Exception):
    """No usable X-User-Email header on the request."""


# =========================================================================
# RATE LIMITER (in-memory, per-IP sliding window)
# =========================================================================
_rl_lock = threading.Lock()
_rl_windows: dict = defaultdict(deque)  # key -> deque of timestamps


def _check_rate_limit(key: str, max_calls: int, window_secs: int) -> bool:
    """Return True if the call is allowed, False if rate-limited."""
    now = time.monotonic()
    with _rl_lock:
        dq = _rl_windows[key]
        cutoff = now - window_secs
        while dq and dq[0] < cutoff:
            dq.popleft()
        if len(dq) >= max_calls:
            return False
        dq.append(now)
        return True


def _reset_rate_limits():
    with _rl_lock:
        _rl_windows.clear()


# =========================================================================
# APP SETUP
# =========================================================================
app = Flask(__name__)
app.config["MAX_CONTENT_LENGTH"] = MAX_UPLOAD_BYTES + 1024 * 1024
app.json.sort_keys = False


def _store() -> ConfigStore:
    return ConfigStore()


def _user() -> str:
    email = (request.headers.get("X-User-Email") or "").strip()
    if not email or "@" not in email or "/" in email:
        raise MissingIdentityError("Unauthorized")
    return email


def _body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _kind(kind: str) -> str:
    if kind not in CONFIG_KINDS:
        raise NotFound(f"Unknown config kind: {kind}")
    return kind


def _checklist_kind(kind: str) -> str:
    if kind not in CHECKLIST_KINDS:
        raise NotFound(f"'{kind}' is not a checklist kind")
    return kind


def _flag(name: str) -> bool:
    return request.args.get(name, "").lower() in ("1", "true", "yes")


# =========================================================================
# ERROR HANDLERS
# =========================================================================
def _error(message, status):
    return jsonify({"error": str(message)}), status


@app.errorhandler(MissingIdentityError)
def _unauthorized(e):
    return _error(e, 401)


@app.errorhandler(ConfigValidationError)
@app.errorhandler(FileValidationError)
@app.errorhandler(TemplateError)
def _bad_request(e):
    return _error(e, 400)


@app.errorhandler(ConfigAccessError)
@app.errorhandler(FileAccessError)
def _forbidden(e):
    return _error(e, 403)


@app.errorhandler(ConfigNotFoundError)
@app.errorhandler(BlobNotFoundError)
@app.errorhandler(FileNotFoundError)
def _not_found(e):
    message = e.args[0] if e.args else "Not found"
    return _error(message, 404)


@app.errorhandler(ConfigConflictError)
def _conflict(e):
    return jsonify({"error": str(e), "currentRevision": e.actual}), 409


@app.errorhandler(LLMGatewayError)
def _upstream(e):
    logger.warning("LLM gateway error (%s): %s", e.status_code, e)
    return _error(e, e.status_code)


@app.errorhandler(DocumentExtractionError)
def _extraction_failed(e):
    logger.warning("Document extraction failed: %s", e)
    return _error(e, 500)


@app.errorhandler(HTTPException)
def _http_error(e):
    return _error(e.description, e.code)


@app.errorhandler(Exception)
def _internal_error(e):
    logger.exception("500 Internal Server Error: %s", e)
    return _error("Internal server error", 500)


# =========================================================================
# AUTH + RATE LIMITING (before_request)
# =========================================================================
@app.before_request
def _before_request():
    path = request.path
    settings = get_settings()

    # Optional API key auth for /api/* routes
    if settings.api_key and path.startswith("/api/") and path != "/api/health":
        provided = request.headers.get("X-Api-Key", "") or request.args.get("api_key", "")
        if provided != settings.api_key:
            return _error("Unauthorized. Provide X-Api-Key header.", 401)

    # Rate limit the LLM-heavy endpoints
    if request.method == "POST" and (path == "/api/llm/query" or path.endswith("/assess")):
        ip = request.remote_addr or "unknown"
        max_calls, window = settings.rate_limit_calls, settings.rate_limit_window
        if not _check_rate_limit(f"llm:{ip}", max_calls, window):
            return _error(f"Rate limit exceeded. Max {max_calls} LLM requests per {window}s.", 429)


# =========================================================================
# HEALTH
# =========================================================================
@app.route("/api/health")
def api_health():
    settings = get_settings()
    return jsonify({
        "status": "ok",
        "version": __version__,
        "blobBackend": settings.blob_backend,
        "llmConfigured": bool(settings.llm_api_key),
        "model": settings.llm_model,
    })


# =========================================================================
# CONFIGS
# =========================================================================
@app.route("/api/configs/<kind>", methods=["GET"])
def api_configs_list(kind):
    owner = _user()
    store = _store()
    if _flag("include_shared"):
        configs = store.list_visible(_kind(kind), owner)
    else:
        configs = store.list(_kind(kind), owner)
    return jsonify({"configs": configs})


@app.route("/api/configs/<kind>", methods=["POST"])
def api_configs_create(kind):
    owner = _user()
    body = _body()
    payload = normalize_config(_kind(kind), body)
    record = _store().save(kind, payload, owner, is_shared=bool(body.get("isShared", False)))
    return jsonify({"config": record}), 201


@app.route("/api/configs/<kind>/shared", methods=["GET"])
def api_configs_shared(kind):
    _user()
    return jsonify({"configs": _store().list(_kind(kind), shared=True)})


@app.route("/api/configs/<kind>/<config_id>", methods=["GET"])
def api_config_get(kind, config_id):
    owner = _user()
    return jsonify({"config": _store().get(_kind(kind), config_id, owner)})


@app.route("/api/configs/<kind>/<config_id>", methods=["PUT"])
def api_config_update(kind, config_id):
    owner = _user()
    body = _body()
    payload = normalize_config(_kind(kind), body)
    is_shared = bool(body["isShared"]) if "isShared" in body else None
    if is_shared is None:
        payload.pop("isShared", None)
    expected = body.get("expectedRevision")
    if expected is None and request.headers.get("If-Match"):
        expected = request.headers["If-Match"].strip('"')
    expected = parse_revision(expected, "expectedRevision")
    record = _store().update(kind, config_id, payload, owner,
                             expected_revision=expected, is_shared=is_shared)
    return jsonify({"config": record})


@app.route("/api/configs/<kind>/<config_id>", methods=["DELETE"])
def api_config_delete(kind, config_id):
    owner = _user()
    if not _store().delete(_kind(kind), config_id, owner):
        return _error("Config not found", 404)
    return jsonify({"success": True})


@app.route("/api/configs/<kind>/<config_id>/items", methods=["POST"])
def api_config_item(kind, config_id):
    owner = _user()
    body = _body()
    item = apply_item_operation(_checklist_kind(kind), config_id, owner,
                                str(body.get("itemId") or ""), body.get("operation"), body)
    return jsonify({"item": item})


@app.route("/api/configs/<kind>/<config_id>/assess", methods=["POST"])
def api_config_assess(kind, config_id):
    owner = _user()
    assessment = AssessmentRequest.from_dict(_checklist_kind(kind), config_id, owner, _body())
    result = run_assessment(assessment)
    return jsonify(result.to_dict())


# =========================================================================
# FILES
# =========================================================================
@app.route("/api/files/list", methods=["GET"])
def api_files_list():
    owner = _user()
    return jsonify({"files": [f.to_dict() for f in list_files(owner)]})


@app.route("/api/files/upload", methods=["POST"])
def api_files_upload():
    owner = _user()
    if "file" not in request.files:
        return _error("No file provided", 400)
    f = request.files["file"]
    data = f.read()
    if len(data) > MAX_UPLOAD_BYTES:
        return _error(f"File too large. Maximum size is {MAX_UPLOAD_BYTES // (1024 * 1024)}MB", 400)
    meta = upload_file(owner, f.filename or "", data, content_type=f.mimetype or None)
    return jsonify({"file": meta.to_dict()}), 201


@app.route("/api/files", methods=["DELETE"])
def api_files_delete():
    owner = _user()
    body = _body()
    url = body.get("url") or request.args.get("url")
    pathname = body.get("pathname") or request.args.get("pathname")
    if not delete_file(owner, pathname=pathname, url=url):
        return _error("File not found", 404)
    return jsonify({"success": True})


@app.route("/api/files/rename", methods=["PUT"])
def api_files_rename():
    owner = _user()
    body = _body()
    if not body.get("url") or not body.get("newName"):
        return _error("url and newName are required", 400)
    meta = rename_file(owner, body["url"], body["newName"])
    return jsonify({"file": meta.to_dict()})


@app.route("/api/files/get", methods=["GET"])
def api_files_get():
    owner = _user()
    pathname = request.args.get("pathname", "")
    if not pathname:
        return _error("pathname is required", 400)
    meta = get_file(owner, pathname)
    if meta is None:
        return _error("File not found", 404)
    return jsonify({"file": meta.to_dict()})


@app.route("/api/files/content", methods=["GET"])
def api_files_content():
    owner = _user()
    pathname = request.args.get("pathname") or None
    url = request.args.get("url") or None
    if not pathname and not url:
        return _error("pathname or url is required", 400)
    data = read_file(owner, pathname=pathname, url=url)
    content = extract_bytes(data, pathname or url)
    return jsonify({"content": content, "pathname": pathname, "url": url})


# =========================================================================
# DOCUMENTS / LLM
# =========================================================================
def _document_texts(owner: str, refs) -> dict:
    if not isinstance(refs, list) or not refs:
        raise FileValidationError("Select at least one document")
    texts = {}
    for ref in refs:
        ref = str(ref)
        if "://" in ref:
            texts[ref] = extract_for_owner(owner, url=ref)
        else:
            texts[ref] = extract_for_owner(owner, pathname=ref)
    return texts


@app.route("/api/documents/fill", methods=["POST"])
def api_documents_fill():
    owner = _user()
    body = _body()
    template_path = body.get("templatePath")
    extracted = body.get("extractedData")
    if not template_path:
        return _error("Template path not provided", 400)
    if not isinstance(extracted, dict):
        return _error("Extracted data not provided or invalid", 400)
    template_bytes = read_file(owner, pathname=template_path)
    filled = fill_template(template_bytes, normalize_fill_data(extracted))
    return send_file(
        io.BytesIO(filled),
        mimetype=DOCX_MIME,
        as_attachment=True,
        download_name=f"filled_{PurePosixPath(template_path).name}",
    )


@app.route("/api/documents/extract", methods=["POST"])
def api_documents_extract():
    owner = _user()
    body = _body()
    if body.get("configId"):
        config = _store().get(FIELD_PROMPTS, str(body["configId"]), owner)
    elif isinstance(body.get("fields"), list):
        config = FieldPromptConfig.from_dict(
            {"name": "inline", "fields": body["fields"]}
        ).validate().to_dict()
    else:
        return _error("configId or fields is required", 400)
    documents = _document_texts(owner, body.get("documents"))
    results = extract_fields(config, documents, get_gateway(), keys=body.get("keys"))
    return jsonify({"results": results})


@app.route("/api/documents/chat", methods=["POST"])
def api_documents_chat():
    owner = _user()
    body = _body()
    question = (body.get("question") or "").strip()
    if not question:
        return _error("question is required", 400)
    documents = _document_texts(owner, body.get("documents"))
    history = body.get("history") if isinstance(body.get("history"), list) else []
    answer = answer_question(question, documents, history, get_gateway(),
                             model=body.get("model") or None)
    return jsonify({"response": answer})


@app.route("/api/llm/query", methods=["POST"])
def api_llm_query():
    _user()
    body = _body()
    if not body.get("userPrompt"):
        return _error("User prompt is required", 400)
    try:
        max_tokens = int(body.get("maxTokens") or 0)
    except (TypeError, ValueError):
        return _error("maxTokens must be an integer", 400)
    response = get_gateway().invoke(LLMRequest(
        user_prompt=body["userPrompt"],
        system_prompt=body.get("systemPrompt") or "",
        model=body.get("model") or "",
        max_tokens=max_tokens,
    ))
    return jsonify({"response": response.content, "model": response.model_id,
                    "rawResponse": response.raw})


# =========================================================================
# BLOBS (local backend only)
# =========================================================================
@app.route("/blobs/<path:key>")
def blob_download(key):
    store = get_blob_store()
    # config records are only reachable through the config API
    if not isinstance(store, LocalBlobStore) or key.split("/", 1)[0] in CONFIG_KINDS:
        return _error("Not found", 404)
    try:
        data = store.get(key)
    except ValueError:
        return _error("Not found", 404)
    info = store.head(key)
    return send_file(io.BytesIO(data), mimetype=info.content_type if info else None,
                     download_name=PurePosixPath(key).name)


# =========================================================================
# MAIN
# =========================================================================
if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Document Extractor & Builder API")
    parser.add_argument("--port", type=int, default=5001)
    parser.add_argument("--debug", action="store_true")
    parser.add_argument("--host", default="127.0.0.1")
    args = parser.parse_args()

    settings = get_settings()
    print(f"Document Extractor & Builder API starting on http://{args.host}:{args.port}")
    print(f"Blob backend: {settings.blob_backend} ({settings.blob_root})")
    print(f"Model: {settings.llm_model}")
    app.run(host=args.host, port=args.port, debug=args.debug)
