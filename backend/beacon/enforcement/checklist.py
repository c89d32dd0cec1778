from __future__ import annotations

import re
from dataclasses import dataclass

from beacon.enforcement.models import ChecklistItem, SectionSnapshot

AUTO_MAP_MIN_CONFIDENCE = 0.3

SECTION_ALIASES: dict[str, tuple[str, ...]] = {
    "executive summary": ("summary", "overview", "abstract"),
    "statement of need": ("need statement", "problem statement", "needs assessment", "community need"),
    "project description": (
        "project narrative",
        "methodology",
        "approach",
        "methods",
        "program description",
        "program design",
    ),
    "goals and objectives": ("goals", "objectives", "outcomes", "expected outcomes"),
    "evaluation plan": ("evaluation", "assessment", "measurement", "metrics"),
    "organizational background": (
        "organization background",
        "org background",
        "about us",
        "organizational capacity",
    ),
    "budget narrative": ("budget justification", "budget explanation", "budget description"),
    "sustainability plan": ("sustainability", "future funding", "continuation plan"),
    "timeline": ("project timeline", "schedule", "work plan", "implementation timeline"),
}


@dataclass(frozen=True)
class ChecklistMapping:
    checklist_item_id: str
    section_id: str
    confidence: float
    mapping_type: str = "AUTO"


def _words(value: str) -> set[str]:
    return {word for word in re.sub(r"[^a-z0-9\s]", "", value.lower()).split() if len(word) > 2}


def jaccard_similarity(left: str, right: str) -> float:
    left_words = _words(left)
    right_words = _words(right)
    if not left_words or not right_words:
        return 0.0
    return len(left_words & right_words) / len(left_words | right_words)


def expanded_names(name: str) -> list[str]:
    normalized = name.lower().strip()
    names = [normalized]
    for canonical, aliases in SECTION_ALIASES.items():
        if canonical in normalized or any(alias in normalized for alias in aliases):
            names.append(canonical)
            names.extend(aliases)
    return names


def name_similarity(item_name: str, section_name: str) -> float:
    return max(
        jaccard_similarity(item_alias, section_alias)
        for item_alias in expanded_names(item_name)
        for section_alias in expanded_names(section_name)
    )


def auto_map_checklist(
    items: list[ChecklistItem],
    sections: list[SectionSnapshot],
    *,
    min_confidence: float = AUTO_MAP_MIN_CONFIDENCE,
) -> list[ChecklistMapping]:
    """Map each unmapped checklist item to its most similar section by name."""
    mappings: list[ChecklistMapping] = []
    for item in items:
        if item.mapped_section_ids:
            continue
        best: ChecklistMapping | None = None
        for section in sections:
            confidence = name_similarity(item.name, section.name)
            if confidence > min_confidence and (best is None or confidence > best.confidence):
                best = ChecklistMapping(
                    checklist_item_id=item.id,
                    section_id=section.id,
                    confidence=round(confidence, 3),
                )
        if best is not None:
            mappings.append(best)
    return mappings
