from __future__ import annotations

import re
from typing import Callable

from beacon.enforcement.models import AmbiguityFlag
from beacon.enforcement.placeholders import default_id_factory

CONTRADICTORY_TERMS: tuple[tuple[str, str], ...] = (
    ("brief", "comprehensive"),
    ("concise", "thorough"),
    ("short", "detailed"),
    ("summary", "comprehensive overview"),
)

VAGUE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\b(?:adequate|appropriate|sufficient)\s+(?:budget|staffing|resources)\b", re.IGNORECASE),
    re.compile(r"\b(?:reasonable|modest)\s+(?:amount|funding|request)\b", re.IGNORECASE),
    re.compile(r"\bas\s+needed\b", re.IGNORECASE),
)

PAGE_LIMIT_PATTERN = re.compile(r"\b(\d+)\s*(?:pages?|pgs?)\b", re.IGNORECASE)
WORD_LIMIT_PATTERN = re.compile(r"\b(\d+)\s*words?\b", re.IGNORECASE)
WORDS_PER_PAGE_RANGE = (200, 600)
CONTEXT_CHARS = 50


def _context_for(text: str, term: str) -> str:
    index = text.lower().find(term.lower())
    if index < 0:
        return term
    start = max(0, index - CONTEXT_CHARS)
    end = min(len(text), index + len(term) + CONTEXT_CHARS)
    return " ".join(text[start:end].split())


def detect_ambiguities(
    instructions: str,
    *,
    id_factory: Callable[[str], str] = default_id_factory,
) -> list[AmbiguityFlag]:
    """Deterministic scan of funder instructions for contradictions and vague asks."""
    flags: list[AmbiguityFlag] = []
    lowered = instructions.lower()

    for terms in CONTRADICTORY_TERMS:
        found = [term for term in terms if re.search(rf"\b{re.escape(term)}\b", lowered)]
        if len(found) < 2:
            continue
        flags.append(
            AmbiguityFlag(
                id=id_factory("amb"),
                type="CONTRADICTORY",
                description='Potentially contradictory requirements: "' + '" and "'.join(found) + '"',
                source_texts=[_context_for(instructions, term) for term in found],
                suggested_resolutions=[
                    "Prioritize being comprehensive while maintaining clarity",
                    "Focus on key points with supporting detail",
                    "Contact the funder for clarification",
                ],
                requires_user_input=True,
            )
        )

    for pattern in VAGUE_PATTERNS:
        for match in pattern.finditer(instructions):
            flags.append(
                AmbiguityFlag(
                    id=id_factory("amb"),
                    type="VAGUE",
                    description=f'Vague requirement: "{match.group(0)}" - no specific criteria provided',
                    source_texts=[_context_for(instructions, match.group(0))],
                    suggested_resolutions=[
                        "Use the funder's typical awards as a reference",
                        "Be specific and justify your approach",
                        "Contact the funder for clarification",
                    ],
                    requires_user_input=False,
                )
            )

    page_match = PAGE_LIMIT_PATTERN.search(instructions)
    word_match = WORD_LIMIT_PATTERN.search(instructions)
    if page_match and word_match:
        pages = int(page_match.group(1))
        words = int(word_match.group(1))
        if pages > 0 and words > 0:
            words_per_page = words / pages
            low, high = WORDS_PER_PAGE_RANGE
            if words_per_page < low or words_per_page > high:
                flags.append(
                    AmbiguityFlag(
                        id=id_factory("amb"),
                        type="SCOPE_UNCLEAR",
                        description=f"Page limit ({pages}) and word limit ({words}) may be inconsistent",
                        source_texts=[page_match.group(0), word_match.group(0)],
                        suggested_resolutions=[
                            "Prioritize the word limit as it is more precise",
                            "Assume standard formatting (250-300 words per page)",
                            "Contact the funder to confirm which limit takes precedence",
                        ],
                        requires_user_input=True,
                    )
                )
    return flags
