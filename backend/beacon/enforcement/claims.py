from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Mapping

from beacon.enforcement.models import ClaimPosition, ClaimType, ExtractedClaim, RiskLevel
from beacon.enforcement.placeholders import IdFactory, default_id_factory, placeholder_spans
from beacon.enforcement.text import block_regions

CONTEXT_WINDOW_CHARS = 40

_COUNT_NOUNS = (
    "people|participants|individuals|youth|students|families|households|children|seniors|clients|"
    "members|organizations|partners|communities|staff|volunteers|employees|beneficiaries|veterans|"
    "residents|patients|schools|counties|cities|sites|locations|programs|meals|hours"
)
_MONTHS = "January|February|March|April|May|June|July|August|September|October|November|December"
_OUTCOME_VERBS = "reduced|increased|improved|decreased|raised|lowered|cut|grew|boosted|doubled|tripled"
_RATE_NOUNS = "success|completion|graduation|retention|employment|placement|recidivism|attendance|satisfaction"
_PARTNER_LEADS = (
    r"(?i:partnered\s+with|partners\s+with|in\s+partnership\s+with|collaborat(?:ion|ing|es|ed)\s+with|"
    r"working\s+with|funded\s+by|supported\s+by|sponsored\s+by)"
)
_PROPER_WORD = r"[A-Z][A-Za-z&.'-]*"

DEFAULT_CLAIM_PATTERNS: tuple[tuple[ClaimType, re.Pattern[str]], ...] = (
    (
        "NUMBER",
        re.compile(rf"\b\d{{1,3}}(?:,\d{{3}})*(?:\.\d+)?\+?\s+(?:{_COUNT_NOUNS})\b", re.IGNORECASE),
    ),
    (
        "PERCENTAGE",
        re.compile(r"\b\d+(?:\.\d+)?\s*(?:%|percent\b)", re.IGNORECASE),
    ),
    (
        "CURRENCY",
        re.compile(
            r"\$\s?\d{1,3}(?:,\d{3})*(?:\.\d+)?(?:\s*(?:million|billion|thousand|[MBK])\b)?"
            r"|\b\d{1,3}(?:,\d{3})*(?:\.\d+)?\s+dollars?\b",
            re.IGNORECASE,
        ),
    ),
    (
        "DATE",
        re.compile(
            rf"\b(?:{_MONTHS})\s+\d{{1,2}}(?:,?\s+\d{{4}})?\b|\b\d{{1,2}}/\d{{1,2}}/\d{{2,4}}\b|\b(?:19|20)\d{{2}}\b"
        ),
    ),
    (
        "ORGANIZATION",
        re.compile(
            rf"\b{_PARTNER_LEADS}\s+(?:the\s+)?(?P<value>{_PROPER_WORD}(?:\s+(?:of\s+|for\s+|and\s+|&\s+)?{_PROPER_WORD})*)"
        ),
    ),
    (
        "OUTCOME",
        re.compile(
            rf"\b(?:{_OUTCOME_VERBS})\b[^.;\n]{{0,60}}?\bby\s+\d+(?:\.\d+)?\s*(?:%|percent\b|percentage\s+points?\b)?"
            rf"|\b\d+(?:\.\d+)?\s*%?\s+(?:{_RATE_NOUNS})\s+rate\b",
            re.IGNORECASE,
        ),
    ),
)

DEFAULT_RISK_LEVELS: Mapping[str, RiskLevel] = {
    "NUMBER": "HIGH",
    "PERCENTAGE": "HIGH",
    "CURRENCY": "HIGH",
    "OUTCOME": "HIGH",
    "DATE": "MEDIUM",
    "ORGANIZATION": "MEDIUM",
}

NUMERIC_PATTERN = re.compile(r"\d[\d,]*(?:\.\d+)?")


@dataclass(frozen=True)
class ClaimPatternTable:
    """Ordered matcher table; one compiled pattern per claim type."""

    patterns: tuple[tuple[ClaimType, re.Pattern[str]], ...] = DEFAULT_CLAIM_PATTERNS
    risk_levels: Mapping[str, RiskLevel] = field(default_factory=lambda: dict(DEFAULT_RISK_LEVELS))
    context_window: int = CONTEXT_WINDOW_CHARS

    def risk_for(self, claim_type: str) -> RiskLevel:
        return self.risk_levels.get(claim_type, "LOW")

    def pattern_for(self, claim_type: str) -> re.Pattern[str] | None:
        for candidate_type, pattern in self.patterns:
            if candidate_type == claim_type:
                return pattern
        return None


DEFAULT_PATTERN_TABLE = ClaimPatternTable()


def numeric_portion(value: str) -> str | None:
    match = NUMERIC_PATTERN.search(value)
    if match is None:
        return None
    return match.group(0).replace(",", "").rstrip(".")


def numbers_in(text: str) -> set[str]:
    return {match.group(0).replace(",", "").rstrip(".") for match in NUMERIC_PATTERN.finditer(text)}


def _overlaps(start: int, end: int, spans: list[tuple[int, int]]) -> bool:
    return any(start < span_end and end > span_start for span_start, span_end in spans)


def extract_claims(
    text: str,
    *,
    table: ClaimPatternTable = DEFAULT_PATTERN_TABLE,
    id_factory: IdFactory = default_id_factory,
) -> list[ExtractedClaim]:
    """Run every matcher over ``text`` in table order.

    Overlapping matches from different matchers are all kept; callers must
    tolerate duplicates. Text inside placeholder tokens is never a claim, and
    no match spans a blank-line paragraph break.
    """
    protected = placeholder_spans(text)
    regions = block_regions(text)
    claims: list[ExtractedClaim] = []
    for claim_type, pattern in table.patterns:
        matches = (
            match
            for region_start, region_end in regions
            for match in pattern.finditer(text, region_start, region_end)
        )
        for match in matches:
            if "value" in pattern.groupindex and match.group("value"):
                start, end = match.span("value")
            else:
                start, end = match.span()
            value = text[start:end].strip().rstrip(".,;'&-").rstrip()
            if not value or _overlaps(start, end, protected):
                continue
            context_start = max(0, start - table.context_window)
            context_end = min(len(text), end + table.context_window)
            claims.append(
                ExtractedClaim(
                    id=id_factory("claim"),
                    type=claim_type,
                    value=value,
                    context=" ".join(text[context_start:context_end].split()),
                    position=ClaimPosition(start=start, end=start + len(value)),
                    risk_level=table.risk_for(claim_type),
                )
            )
    return claims
