"""Helpers for putting untrusted document text into model prompts.

Sanitising is a filter, not a security boundary: sanitised text is always
wrapped in delimiters and the system prompt tells the model to treat the
wrapped block as data.
"""
from __future__ import annotations

import hashlib
import json
import re
from dataclasses import dataclass
from typing import Any

REDACTION_PLACEHOLDER = "[Uklonjena uputa]"
DOCUMENT_WRAPPER_START = "---BEGIN_DOCUMENT---"
DOCUMENT_WRAPPER_END = "---END_DOCUMENT---"
MAX_DOCUMENT_TEXT_LENGTH = 50_000

INSTRUCTION_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"^\s*(system|assistant|developer|user)\s*:",
        r"ignore (all|previous|earlier) instructions",
        r"disregard (all|previous|earlier) instructions",
        r"follow (these|the following) instructions",
        r"you are (chatgpt|an ai)",
        r"<\s*system\s*>",
        r"<\/\s*system\s*>",
        r"###\s*system",
        r"BEGIN_SYSTEM_PROMPT",
    )
)


@dataclass(frozen=True, slots=True)
class SanitizedText:
    sanitized: str
    redactions: int


def truncate_document_text(text: str, limit: int = MAX_DOCUMENT_TEXT_LENGTH) -> str:
    """Cut oversized extractor output before any regex runs over it."""

    return text if len(text) <= limit else text[:limit]


def sanitize_document_text(text: str) -> SanitizedText:
    redactions = 0
    lines: list[str] = []
    for line in text.split("\n"):
        if any(pattern.search(line) for pattern in INSTRUCTION_PATTERNS):
            redactions += 1
            lines.append(REDACTION_PLACEHOLDER)
        else:
            lines.append(line)
    return SanitizedText(sanitized="\n".join(lines).strip(), redactions=redactions)


def wrap_document_for_prompt(text: str) -> str:
    return f"{DOCUMENT_WRAPPER_START}\n{text}\n{DOCUMENT_WRAPPER_END}"


def hash_text(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def extract_json(text: str) -> Any | None:
    """Return the first balanced ``{...}`` object in ``text``.

    Braces inside JSON strings are ignored while counting depth, so prose
    after the object (or a second object) never gets swallowed.
    """

    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                try:
                    return json.loads(text[start : index + 1])
                except json.JSONDecodeError:
                    return None

    return None
