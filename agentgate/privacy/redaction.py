"""
PII Redaction Pipeline — keeping personal data out of transcripts and replies.

This module detects and redacts personally identifiable information (PII) from
text flowing through the execution core: tool output before it reaches the
model, and the final model text before it reaches the caller. Patterns cover
email addresses, phone numbers, government-id-like digit groups (SSNs), card-like
digit runs, and API key / token strings.

Evaluation order is fixed and significant. The patterns overlap: a card-like
digit run contains substrings that look like phone numbers, and a phone number
contains digit groups. Narrower, more structured patterns run first and the
broad digit-run pattern runs after them:

    email → phone → ssn → credit_card → api_key

The phone pattern takes an optional area code (a country code only in front of
one) and refuses to start or end inside a longer digit run, so it never eats
half of a 4-4-4-4 card number or a piece of an SSN.

Every replacement token is free of digits, '@' and lowercase key prefixes,
so redaction is idempotent: redact(redact(x)) == redact(x).
"""

from __future__ import annotations

import re
import threading
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class RedactionResult:
    text: str
    counts: dict[str, int] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    @property
    def categories(self) -> list[str]:
        return list(self.counts)


# PII detection patterns with their replacement tokens, in evaluation order.
PII_PATTERNS: list[tuple[str, re.Pattern, str]] = [
    (
        "email",
        re.compile(r'[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}'),
        "[REDACTED_EMAIL]",
    ),
    (
        "phone",
        re.compile(
            r'(?<!\w)'
            r'(?:(?:\+?1[-.\s]?)?\(?\d{3}\)?[-.\s]?)?'
            r'\d{3}[-.\s]?\d{4}'
            r'(?!\d)'
        ),
        "[REDACTED_PHONE]",
    ),
    (
        "ssn",
        re.compile(r'(?<!\d)\d{3}-\d{2}-\d{4}(?!\d)'),
        "[REDACTED_SSN]",
    ),
    (
        "credit_card",
        # 13-19 digits, optionally separated by single spaces or dashes
        re.compile(r'(?<!\d)\d(?:[ -]?\d){12,18}(?!\d)'),
        "[REDACTED_CC]",
    ),
    (
        "api_key",
        re.compile(r'\b(?:sk|pk|key|token)[-_][A-Za-z0-9_-]{16,}'),
        "[REDACTED_KEY]",
    ),
]

PII_CATEGORIES: tuple[str, ...] = tuple(name for name, _, _ in PII_PATTERNS)


def redact_pii(text: str) -> str:
    """Apply every PII pattern, in order, to *text*."""
    if not text:
        return text
    result = text
    for _name, pattern, replacement in PII_PATTERNS:
        result = pattern.sub(replacement, result)
    return result


class PIIRedactor:
    """
    The PII patterns behind a per-deployment switch.

    Categories can be turned off individually (e.g. leave key-like strings
    alone in a developer sandbox) and the rest keep their evaluation order.
    Replacement counts accumulate per category for the life of the redactor.
    """

    def __init__(
        self,
        enabled: bool = True,
        disabled_categories: Optional[Iterable[str]] = None,
    ):
        skipped = set(disabled_categories or ())
        unknown = skipped.difference(PII_CATEGORIES)
        if unknown:
            raise ValueError(f"Unknown PII categories: {', '.join(sorted(unknown))}")

        self.enabled = enabled
        self._patterns = [entry for entry in PII_PATTERNS if entry[0] not in skipped]
        self._counts: Counter[str] = Counter()
        self._lock = threading.Lock()

    @property
    def active_categories(self) -> list[str]:
        return [name for name, _, _ in self._patterns]

    def scan(self, text: str) -> RedactionResult:
        """Run the active patterns over *text*, ignoring ``enabled`` and the running totals."""
        counts: dict[str, int] = {}
        for name, pattern, token in self._patterns:
            text, hits = pattern.subn(token, text)
            if hits:
                counts[name] = hits
        return RedactionResult(text=text, counts=counts)

    def redact(self, text: str) -> str:
        if not self.enabled or not text:
            return text
        result = self.scan(text)
        if result.counts:
            with self._lock:
                self._counts.update(result.counts)
            logger.debug("pii_redactor.redacted", categories=result.categories, items=result.total)
        return result.text

    @property
    def stats(self) -> dict[str, Any]:
        with self._lock:
            by_category = dict(self._counts)
        return {
            "enabled": self.enabled,
            "active_categories": self.active_categories,
            "redacted_by_category": by_category,
            "total_redacted_items": sum(by_category.values()),
        }
