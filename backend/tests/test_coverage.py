from __future__ import annotations

import itertools

import pytest

from beacon.enforcement.coverage import confidence_level, coverage_score, score_proposal, score_section
from beacon.enforcement.models import AttributedParagraph, ChunkAttribution, SectionCoverage

UPGRADE_ORDER = ("FAILED", "UNGROUNDED", "PARTIAL", "GROUNDED")


def paragraph(status: str, index: int = 0, documents: tuple[str, ...] = ()) -> AttributedParagraph:
    return AttributedParagraph(
        id=f"sec:p{index}",
        section_id="sec",
        index=index,
        text="Paragraph text with enough words.",
        status=status,  # type: ignore[arg-type]
        supporting_chunks=[
            ChunkAttribution(
                chunk_id=f"{document_id}-chunk",
                document_id=document_id,
                document_name=f"{document_id}.pdf",
                similarity=0.7,
            )
            for document_id in documents
        ],
    )


def test_coverage_weights_partial_half_and_failed_as_ungrounded() -> None:
    paragraphs = [paragraph("GROUNDED"), paragraph("PARTIAL"), paragraph("UNGROUNDED"), paragraph("FAILED")]

    assert coverage_score(paragraphs) == 37.5


@pytest.mark.parametrize(
    ("score", "expected"),
    [
        (100.0, "HIGH"),
        (80.0, "HIGH"),
        (79.99, "MEDIUM"),
        (50.0, "MEDIUM"),
        (49.99, "LOW"),
        (30.0, "LOW"),
        (29.99, "CRITICAL"),
        (0.0, "CRITICAL"),
        (None, "UNKNOWN"),
    ],
)
def test_confidence_bands_include_lower_bounds(score, expected) -> None:
    assert confidence_level(score) == expected


def test_empty_section_is_reported_but_not_scored() -> None:
    coverage = score_section("sec", "Budget Narrative", [])

    assert coverage.is_empty is True
    assert coverage.coverage_score is None
    assert coverage.confidence == "UNKNOWN"


def test_section_coverage_counts_and_document_contributions() -> None:
    coverage = score_section(
        "sec",
        "Statement of Need",
        [
            paragraph("GROUNDED", 0, ("doc-a", "doc-b")),
            paragraph("PARTIAL", 1, ("doc-a",)),
            paragraph("UNGROUNDED", 2),
        ],
    )

    assert coverage.coverage_score == 50.0
    assert coverage.confidence == "MEDIUM"
    assert (coverage.grounded_count, coverage.partial_count, coverage.ungrounded_count) == (1, 1, 1)
    assert [(item.document_id, item.paragraph_count) for item in coverage.source_documents] == [
        ("doc-a", 2),
        ("doc-b", 1),
    ]


def test_proposal_coverage_is_mean_of_scored_sections() -> None:
    sections = [
        SectionCoverage(section_id=f"s{index}", section_name=name, coverage_score=score)
        for index, (name, score) in enumerate(
            [("Need", 90.0), ("Design", 90.0), ("Evaluation", 90.0), ("Budget", 10.0)]
        )
    ]
    sections.append(SectionCoverage(section_id="s-empty", section_name="Appendix", is_empty=True))

    coverage = score_proposal("prop-1", sections)

    assert coverage.overall_score == 70.0
    assert coverage.confidence == "MEDIUM"
    assert coverage.lowest_section == "Budget"
    assert len(coverage.section_scores) == 5


def test_proposal_without_scored_sections_is_unknown() -> None:
    coverage = score_proposal("prop-1", [SectionCoverage(section_id="s", section_name="Empty", is_empty=True)])

    assert coverage.overall_score is None
    assert coverage.confidence == "UNKNOWN"


def test_upgrading_any_paragraph_never_lowers_coverage() -> None:
    for statuses in itertools.product(UPGRADE_ORDER, repeat=3):
        baseline = coverage_score([paragraph(status, index) for index, status in enumerate(statuses)])
        for position, status in enumerate(statuses):
            rank = UPGRADE_ORDER.index(status)
            for better in UPGRADE_ORDER[rank + 1 :]:
                upgraded = list(statuses)
                upgraded[position] = better
                score = coverage_score([paragraph(item, index) for index, item in enumerate(upgraded)])
                assert score >= baseline
