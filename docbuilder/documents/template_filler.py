#!/usr/bin/env python3
"""Document template filler: DOCX template + field values -> filled DOCX.

The archive is opened with zipfile and must contain [Content_Types].xml.
The body, header, footer, footnote and endnote parts are rendered as Jinja2
templates, every other entry is copied through untouched.

Placeholder rules:
  {{FOO}}                     value of FOO, XML-escaped, newlines -> <w:br/>
  {{Device Name}}             keys that are not identifiers work as-is
  {% for row in rows %}...    loops; {%tr ... %} / {%p ... %} repeat the
                              enclosing table row / paragraph

Missing values:
  - a simple placeholder with no value (absent or None) is left in the
    output as {{FOO}}
  - attributes inside a loop body render blank
  - a missing loop collection renders no rows

Word frequently splits "{{FOO}}" over several <w:r> runs; the XML is
patched to rejoin tags before rendering.

Usage:
    python -m docbuilder.documents.template_filler --template t.docx --data '{"FOO": "bar"}' --output out.docx
"""

import argparse
import html
import io
import json
import logging
import re
import sys
import zipfile
from pathlib import Path
from typing import Optional

import jinja2
from jinja2.utils import missing
from markupsafe import Markup, escape

from docbuilder.documents.content_extractor import DocumentExtractionError, fetch_bytes
from docbuilder.storage.blob_store import BlobStore

logger = logging.getLogger("docbuilder.documents.template")

CONTENT_TYPES = "[Content_Types].xml"
DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

TEMPLATE_PARTS = re.compile(
    r"^word/(document|header\d*|footer\d*|footnotes|endnotes)\.xml$"
)
LINE_BREAK = '</w:t><w:br/><w:t xml:space="preserve">'

_EXPR_RE = re.compile(r"^[A-Za-z_][\w.]*$")
_OPERATOR_CHARS = set("|()[]\"'+*=<>~")


class TemplateError(ValueError):
    """Invalid template archive or template syntax."""


class KeepPlaceholderUndefined(jinja2.ChainableUndefined):
    """Top-level names render as their own placeholder, everything else blank."""

    def __str__(self):
        if self._undefined_obj is missing and self._undefined_name:
            return "{{%s}}" % self._undefined_name
        return ""


# ── XML patching ───────────────────────────────────────────────────────────────

def _strip_run_tags(match):
    return re.sub(r"</w:t>.*?(<w:t>|<w:t [^>]*>)", "", match.group(0), flags=re.DOTALL)


def _literal_key(match):
    inner = match.group(1).strip()
    if not inner or _EXPR_RE.match(inner) or set(inner) & _OPERATOR_CHARS:
        return match.group(0)
    return '{{ _placeholder(%s) }}' % json.dumps(inner)


def patch_xml(xml: str) -> str:
    """Rejoin tags split across Word runs and normalise tag contents."""
    # "{" and "{" (or "%") separated by run markup
    xml = re.sub(r"(?<={)(<[^>]*>)+(?=[{%])|(?<=[%}])(<[^>]*>)+(?=})", "", xml,
                 flags=re.DOTALL)
    xml = re.sub(r"{%(?:(?!%}).)*|{{(?:(?!}}).)*", _strip_run_tags, xml, flags=re.DOTALL)
    # {%tr ... %} / {%p ... %} replace the whole enclosing row / paragraph
    for tag in ("tr", "p"):
        pattern = (r"<w:%s[ >](?:(?!<w:%s[ >]).)*({%%|{{)%s ([^}%%]*(?:%%}|}})).*?</w:%s>"
                   % (tag, tag, tag, tag))
        xml = re.sub(pattern, r"\1 \2", xml, flags=re.DOTALL)
    # Word escapes quotes and ampersands inside the tag text
    xml = re.sub(r"({[{%].*?[%}]})", lambda m: html.unescape(m.group(1)), xml,
                 flags=re.DOTALL)
    return re.sub(r"{{(.*?)}}", _literal_key, xml, flags=re.DOTALL)


# ── rendering ──────────────────────────────────────────────────────────────────

def _finalize(value):
    if isinstance(value, (jinja2.Undefined, Markup)):
        return value
    if value is None:
        return ""
    text = escape(str(value).replace("\r\n", "\n"))
    return text.replace("\n", Markup(LINE_BREAK))


def _environment() -> jinja2.Environment:
    return jinja2.Environment(
        undefined=KeepPlaceholderUndefined,
        autoescape=True,
        finalize=_finalize,
        keep_trailing_newline=True,
        # "{#" is ordinary document text
        comment_start_string="<#",
        comment_end_string="#>",
    )


def _render_part(env: jinja2.Environment, name: str, xml: str, data: dict) -> str:
    def _placeholder(key):
        if key in data and data[key] is not None:
            return data[key]
        return Markup("{{%s}}" % escape(key))

    # None counts as missing, so {{FOO}} survives like an absent key
    context = {k: v for k, v in data.items() if v is not None}
    try:
        template = env.from_string(patch_xml(xml))
        return template.render(context, _placeholder=_placeholder)
    except jinja2.TemplateSyntaxError as exc:
        raise TemplateError(f"Template syntax error in {name} line {exc.lineno}: {exc.message}") from exc
    except jinja2.TemplateError as exc:
        raise TemplateError(f"Template rendering failed in {name}: {exc}") from exc


def normalize_fill_data(extracted: dict) -> dict:
    """Accept {key: "value"} or the document-builder shape {key: {"value": ...}}."""
    if not isinstance(extracted, dict):
        raise TemplateError("Extracted data must be an object")
    data = {}
    for key, info in extracted.items():
        if isinstance(info, dict):
            data[key] = info.get("value") or ""
        elif isinstance(info, list):
            data[key] = info
        else:
            data[key] = "" if info is None else info
    return data


def fill_template(template_bytes: bytes, data: dict) -> bytes:
    """Render a DOCX template. Raises TemplateError, never returns partial output."""
    if not template_bytes:
        raise TemplateError("Template file is empty")
    try:
        src = zipfile.ZipFile(io.BytesIO(template_bytes))
    except zipfile.BadZipFile as exc:
        raise TemplateError("Invalid template: not a DOCX archive") from exc

    with src:
        names = src.namelist()
        if CONTENT_TYPES not in names:
            raise TemplateError(f"Invalid template: missing {CONTENT_TYPES}")

        env = _environment()
        out = io.BytesIO()
        rendered = 0
        with zipfile.ZipFile(out, "w", zipfile.ZIP_DEFLATED) as dst:
            for info in src.infolist():
                body = src.read(info.filename)
                if TEMPLATE_PARTS.match(info.filename):
                    xml = body.decode("utf-8")
                    body = _render_part(env, info.filename, xml, data).encode("utf-8")
                    rendered += 1
                dst.writestr(info, body)

    logger.info("Filled template: %d parts rendered, %d keys supplied", rendered, len(data))
    return out.getvalue()


def fill_template_url(url: str, data: dict, store: Optional[BlobStore] = None) -> bytes:
    """Fetch a template by URL (blob store or HTTP) and fill it."""
    try:
        template_bytes, _ = fetch_bytes(url, store=store)
    except DocumentExtractionError as exc:
        raise TemplateError(f"Could not load template: {exc}") from exc
    return fill_template(template_bytes, data)


def main():
    parser = argparse.ArgumentParser(description="Fill a DOCX template")
    parser.add_argument("--template", required=True, help="Path to the .docx template")
    parser.add_argument("--data", required=True, help="JSON object of field values")
    parser.add_argument("--output", required=True)
    args = parser.parse_args()

    try:
        data = normalize_fill_data(json.loads(args.data))
        filled = fill_template(Path(args.template).read_bytes(), data)
    except (TemplateError, json.JSONDecodeError, OSError) as exc:
        print(f"ERROR: {exc}")
        sys.exit(1)
    Path(args.output).write_bytes(filled)
    print(f"Wrote {args.output} ({len(filled)} bytes)")


if __name__ == "__main__":
    main()
