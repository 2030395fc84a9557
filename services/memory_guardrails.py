"""
Memory Guardrails

Validates coaching memory notes before they are stored. Stored notes are
replayed verbatim into every later coach prompt, so:

- PII: the whole note is rejected. No partial redaction.
- Prompt-injection phrasing: replaced with a filler token, rest kept
- Markup tags stripped, runs of blank lines collapsed
- Hard length cap, cut at a word boundary
- Notes that are nothing but filler after sanitizing are rejected

Rejection reasons name the category only, never the matched text.
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Pattern, Tuple

MAX_MEMORY_LENGTH = 300
MIN_MEANINGFUL_LENGTH = 10
ELLIPSIS = "..."
WORD_BOUNDARY_FRACTION = 0.8
FILTERED_TOKEN = "[filtered]"

PII_PATTERNS: List[Tuple[Pattern, str]] = [
    (re.compile(r"\b\d{3}-\d{2}-\d{4}\b"), "SSN"),
    (re.compile(r"\b\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b"), "credit card"),
    (re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"), "email"),
    (re.compile(r"\b(?:\+?1[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}\b"), "phone number"),
    (re.compile(r"\b(passport|license)\s*#?\s*\d+", re.IGNORECASE), "ID number"),
    (re.compile(r"\bpassword\s*[:=]\s*\S+", re.IGNORECASE), "password"),
]

INJECTION_PATTERNS: List[Pattern] = [
    re.compile(
        r"\b(ignore|forget|disregard)\s+(all\s+)?(previous|above|prior)\s+(instructions?|prompts?|rules?)",
        re.IGNORECASE,
    ),
    re.compile(r"\b(you\s+are\s+now|act\s+as|pretend\s+to\s+be|your\s+new\s+instructions?)", re.IGNORECASE),
    re.compile(r"\b(system|admin|developer|root)\s*(prompt|mode|access|override)", re.IGNORECASE),
    re.compile(r"\[INST\]", re.IGNORECASE),
    re.compile(r"\[/INST\]", re.IGNORECASE),
    re.compile(r"<<SYS>>", re.IGNORECASE),
    re.compile(r"<</SYS>>", re.IGNORECASE),
]

TAG_PATTERN = re.compile(r"</?[a-zA-Z_][a-zA-Z0-9_-]*[^>]*>")
BLANK_LINES_PATTERN = re.compile(r"\n{3,}")


@dataclass
class MemoryValidationResult:
    safe: bool
    sanitized: Optional[str] = None
    reason: Optional[str] = None


def _truncate(text: str) -> str:
    """Cut so that text + ELLIPSIS fits MAX_MEMORY_LENGTH.

    A word boundary is used only when it falls in the last fifth of the cut;
    otherwise the cut is hard.
    """
    cut = text[: MAX_MEMORY_LENGTH - len(ELLIPSIS)]
    last_space = cut.rfind(" ")
    if last_space > MAX_MEMORY_LENGTH * WORD_BOUNDARY_FRACTION:
        cut = cut[:last_space]
    return cut.rstrip() + ELLIPSIS


def validate_memory_note(content: Optional[str]) -> MemoryValidationResult:
    if not content or not content.strip():
        return MemoryValidationResult(safe=False, reason="Empty content")

    for pattern, label in PII_PATTERNS:
        if pattern.search(content):
            return MemoryValidationResult(safe=False, reason=f"Contains {label}")

    sanitized = content
    for pattern in INJECTION_PATTERNS:
        sanitized = pattern.sub(FILTERED_TOKEN, sanitized)

    sanitized = TAG_PATTERN.sub("", sanitized)
    sanitized = BLANK_LINES_PATTERN.sub("\n\n", sanitized).strip()

    if len(sanitized) > MAX_MEMORY_LENGTH:
        sanitized = _truncate(sanitized)

    if len(sanitized.replace(FILTERED_TOKEN, "").strip()) < MIN_MEANINGFUL_LENGTH:
        return MemoryValidationResult(safe=False, reason="No meaningful content after sanitization")

    return MemoryValidationResult(safe=True, sanitized=sanitized)
