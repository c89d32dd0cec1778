from __future__ import annotations

from beacon.enforcement.models import (
    AttributedParagraph,
    ConfidenceLevel,
    DocumentContribution,
    ProposalCoverage,
    SectionCoverage,
)
from beacon.enforcement.thresholds import DEFAULT_THRESHOLDS, EnforcementThresholds


def confidence_level(score: float | None, thresholds: EnforcementThresholds = DEFAULT_THRESHOLDS) -> ConfidenceLevel:
    if score is None:
        return "UNKNOWN"
    if score >= thresholds.coverage_high:
        return "HIGH"
    if score >= thresholds.coverage_medium:
        return "MEDIUM"
    if score >= thresholds.coverage_low:
        return "LOW"
    return "CRITICAL"


def coverage_score(paragraphs: list[AttributedParagraph]) -> float:
    """100 * (grounded + 0.5 * partial) / total; FAILED counts as ungrounded."""
    if not paragraphs:
        return 0.0
    grounded = sum(1 for paragraph in paragraphs if paragraph.status == "GROUNDED")
    partial = sum(1 for paragraph in paragraphs if paragraph.status == "PARTIAL")
    return round(100.0 * (grounded + 0.5 * partial) / len(paragraphs), 2)


def _document_contributions(paragraphs: list[AttributedParagraph]) -> list[DocumentContribution]:
    contributions: dict[str, DocumentContribution] = {}
    for paragraph in paragraphs:
        seen_in_paragraph: set[str] = set()
        for chunk in paragraph.supporting_chunks:
            if chunk.document_id in seen_in_paragraph:
                continue
            seen_in_paragraph.add(chunk.document_id)
            entry = contributions.setdefault(
                chunk.document_id,
                DocumentContribution(document_id=chunk.document_id, document_name=chunk.document_name),
            )
            entry.paragraph_count += 1
    return sorted(contributions.values(), key=lambda item: (-item.paragraph_count, item.document_name))


def score_section(
    section_id: str,
    section_name: str,
    paragraphs: list[AttributedParagraph],
    thresholds: EnforcementThresholds = DEFAULT_THRESHOLDS,
) -> SectionCoverage:
    if not paragraphs:
        return SectionCoverage(section_id=section_id, section_name=section_name, is_empty=True)

    score = coverage_score(paragraphs)
    return SectionCoverage(
        section_id=section_id,
        section_name=section_name,
        coverage_score=score,
        confidence=confidence_level(score, thresholds),
        grounded_count=sum(1 for paragraph in paragraphs if paragraph.status == "GROUNDED"),
        partial_count=sum(1 for paragraph in paragraphs if paragraph.status == "PARTIAL"),
        ungrounded_count=sum(1 for paragraph in paragraphs if paragraph.status == "UNGROUNDED"),
        failed_count=sum(1 for paragraph in paragraphs if paragraph.status == "FAILED"),
        total_paragraphs=len(paragraphs),
        source_documents=_document_contributions(paragraphs),
    )


def score_proposal(
    proposal_id: str,
    sections: list[SectionCoverage],
    thresholds: EnforcementThresholds = DEFAULT_THRESHOLDS,
) -> ProposalCoverage:
    """Mean of the section scores; empty sections are reported but not averaged."""
    scored = [section for section in sections if section.coverage_score is not None]
    if not scored:
        return ProposalCoverage(proposal_id=proposal_id, section_scores=sections)

    overall = round(sum(section.coverage_score or 0.0 for section in scored) / len(scored), 2)
    lowest = min(scored, key=lambda section: section.coverage_score or 0.0)
    documents = {document.document_id for section in scored for document in section.source_documents}
    return ProposalCoverage(
        proposal_id=proposal_id,
        overall_score=overall,
        confidence=confidence_level(overall, thresholds),
        section_scores=sections,
        lowest_section=lowest.section_name,
        documents_used=len(documents),
        total_paragraphs=sum(section.total_paragraphs for section in scored),
    )
