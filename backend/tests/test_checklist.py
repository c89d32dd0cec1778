from __future__ import annotations

import pytest

from beacon.enforcement.checklist import auto_map_checklist, jaccard_similarity, name_similarity
from beacon.enforcement.models import ChecklistItem, SectionSnapshot

SECTIONS = [
    SectionSnapshot(id="s-need", name="Statement of Need"),
    SectionSnapshot(id="s-budget", name="Budget Narrative"),
]


def test_jaccard_ignores_short_words_and_punctuation() -> None:
    assert jaccard_similarity("Budget Narrative", "Budget Justification") == pytest.approx(1 / 3)
    assert jaccard_similarity("of a", "Budget") == 0.0


def test_aliases_make_equivalent_section_names_match() -> None:
    assert name_similarity("Need Statement", "Statement of Need") == 1.0
    assert name_similarity("Budget Justification", "Budget Narrative") == 1.0


def test_auto_map_links_unmapped_items_to_best_section() -> None:
    items = [
        ChecklistItem(id="c-need", name="Need Statement"),
        ChecklistItem(id="c-budget", name="Budget", mapped_section_ids=["s-budget"]),
        ChecklistItem(id="c-letters", name="Letters of Support"),
    ]

    mappings = auto_map_checklist(items, SECTIONS)

    assert [(mapping.checklist_item_id, mapping.section_id) for mapping in mappings] == [("c-need", "s-need")]
    assert mappings[0].confidence == 1.0
    assert mappings[0].mapping_type == "AUTO"
