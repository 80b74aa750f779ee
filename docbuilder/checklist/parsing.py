#!/usr/bin/env python3
"""Model response -> Verdict.

The parsers form an ordered cascade of pure functions
``(text, variant) -> Verdict | None``; the first one returning a Verdict
wins:

    1. parse_strict_json      whole response is JSON once ``` fences are stripped
    2. parse_embedded_json    first {...} block inside the response
    3. parse_assessment_line  "Assessment: <verdict>" / "Explanation: <text>"
    4. parse_keywords         substring heuristic, always returns a Verdict

The keyword stage checks "non-compliant" before "compliant", so a response
mentioning non-compliance can never come out as compliant.

Usage:
    python -m docbuilder.checklist.parsing --variant compliance --text '{"complianceStatus": "y"}' --json
"""

import argparse
import json
import re
import sys
from typing import Callable, Optional, Tuple

from docbuilder.checklist.models import COMPLIANCE, SUBMISSION, ChecklistVariant, Verdict

NO_COMMENT = "No detailed assessment provided by the model."
EMPTY_RESPONSE = "The model returned an empty response."
KEYWORD_COMMENT_CHARS = 500

STATUS_KEYS = ("complianceStatus", "status", "assessment", "Assessment", "verdict")
COMMENT_KEYS = ("comments", "comment", "explanation", "Explanation", "reasoning")

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)
_OBJECT_RE = re.compile(r"(\{[\s\S]*\})")
_ASSESSMENT_RE = re.compile(
    r"Assessment\s*:\s*[*_\"']*\s*(non[- ]compliant|needs[- ]review|compliant|N/A|NA|Y|N)\b",
    re.IGNORECASE,
)
_EXPLANATION_RE = re.compile(r"Explanation\s*:\s*(.+)", re.IGNORECASE | re.DOTALL)

_POSITIVE = {"y", "yes", "compliant"}
_NEGATIVE = {"n", "no", "non-compliant", "non compliant", "noncompliant"}
_SENTINEL = {"na", "n/a", "needs-review", "needs review", "not applicable"}


def normalize_status(value, variant: ChecklistVariant) -> Optional[str]:
    """Map a model-supplied status onto the variant's vocabulary, or None."""
    matched = variant.match_status(value)
    if matched is not None or not isinstance(value, str):
        return matched
    wanted = value.strip().lower()
    if wanted in _POSITIVE:
        return variant.positive
    if wanted in _NEGATIVE:
        return variant.negative
    if wanted in _SENTINEL:
        return variant.sentinel
    return None


def _first(data: dict, keys) -> str:
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return value if isinstance(value, str) else json.dumps(value)
    return ""


def _verdict_from_object(data, variant: ChecklistVariant, stage: str) -> Optional[Verdict]:
    if not isinstance(data, dict):
        return None
    raw_status = _first(data, STATUS_KEYS)
    if not raw_status:
        # a stray {...} with no status is not a verdict
        return None
    status = normalize_status(raw_status, variant) or variant.sentinel
    comments = _first(data, COMMENT_KEYS).strip() or NO_COMMENT
    location = _first(data, ("location",)).strip()
    return Verdict(status=status, comments=comments, location=location, stage=stage)


def parse_strict_json(text: str, variant: ChecklistVariant) -> Optional[Verdict]:
    cleaned = _FENCE_RE.sub("", text).strip()
    try:
        data = json.loads(cleaned)
    except ValueError:
        return None
    return _verdict_from_object(data, variant, "json")


def parse_embedded_json(text: str, variant: ChecklistVariant) -> Optional[Verdict]:
    match = _OBJECT_RE.search(text)
    if not match:
        return None
    try:
        data = json.loads(match.group(1))
    except ValueError:
        return None
    return _verdict_from_object(data, variant, "embedded-json")


def parse_assessment_line(text: str, variant: ChecklistVariant) -> Optional[Verdict]:
    match = _ASSESSMENT_RE.search(text)
    if not match:
        return None
    status = normalize_status(match.group(1), variant)
    if status is None:
        return None
    explanation = _EXPLANATION_RE.search(text)
    comments = explanation.group(1).strip() if explanation else ""
    return Verdict(status=status, comments=comments or text.strip(),
                   stage="assessment-line")


def parse_keywords(text: str, variant: ChecklistVariant) -> Verdict:
    lowered = text.lower()
    if "non-compliant" in lowered:
        status = variant.negative
    elif "compliant" in lowered:
        status = variant.positive
    else:
        status = variant.sentinel
    comments = text.strip()[:KEYWORD_COMMENT_CHARS] or EMPTY_RESPONSE
    return Verdict(status=status, comments=comments, stage="keywords")


Parser = Callable[[str, ChecklistVariant], Optional[Verdict]]

PARSE_CASCADE: Tuple[Parser, ...] = (
    parse_strict_json,
    parse_embedded_json,
    parse_assessment_line,
    parse_keywords,
)


def parse_response(text: str, variant: ChecklistVariant,
                   cascade: Tuple[Parser, ...] = PARSE_CASCADE) -> Verdict:
    """Run the cascade over a raw model response."""
    text = text or ""
    if not text.strip():
        return Verdict(status=variant.sentinel, comments=EMPTY_RESPONSE, stage="empty")
    for parser in cascade:
        verdict = parser(text, variant)
        if verdict is not None:
            return verdict
    return parse_keywords(text, variant)


def main():
    parser = argparse.ArgumentParser(description="Parse an assessment response")
    parser.add_argument("--variant", choices=("compliance", "submission"), default="compliance")
    parser.add_argument("--text", default=None, help="Response text (stdin when omitted)")
    parser.add_argument("--json", action="store_true")
    args = parser.parse_args()

    variant = COMPLIANCE if args.variant == "compliance" else SUBMISSION
    text = args.text if args.text is not None else sys.stdin.read()
    verdict = parse_response(text, variant)
    if args.json:
        print(json.dumps(verdict.__dict__, indent=2))
    else:
        print(f"{verdict.status} [{verdict.stage}] {verdict.comments[:120]}")


if __name__ == "__main__":
    main()
