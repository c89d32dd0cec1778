from __future__ import annotations

import asyncio
import dataclasses
from datetime import date

from beacon.enforcement.models import ClaimPosition, ExtractedClaim, RankedChunk
from beacon.enforcement.thresholds import DEFAULT_THRESHOLDS
from beacon.enforcement.verification import ClaimVerifier, classify_claim

TODAY = date(2024, 6, 1)


def make_claim(value: str, claim_type: str = "NUMBER", risk_level: str = "HIGH", claim_id: str = "c1") -> ExtractedClaim:
    return ExtractedClaim(
        id=claim_id,
        type=claim_type,  # type: ignore[arg-type]
        value=value,
        context=f"Last year we reported {value} in our programs.",
        position=ClaimPosition(start=0, end=len(value)),
        risk_level=risk_level,  # type: ignore[arg-type]
    )


def make_chunk(text: str, similarity: float, *, chunk_id: str = "chunk-1", document_date: date | None = None) -> RankedChunk:
    return RankedChunk(
        id=chunk_id,
        document_id="doc-1",
        document_name="Annual Report",
        document_type="annual_report",
        text=text,
        similarity=similarity,
        document_date=document_date,
    )


class FakeRetriever:
    def __init__(self, chunks: list[RankedChunk] | None = None, *, error: Exception | None = None) -> None:
        self.chunks = chunks or []
        self.error = error
        self.calls: list[tuple[str, str, int]] = []

    async def search(self, query_text: str, organization_id: str, top_k: int) -> list[RankedChunk]:
        self.calls.append((query_text, organization_id, top_k))
        if self.error is not None:
            raise self.error
        return list(self.chunks)


def test_numeric_overlap_at_sufficient_similarity_verifies() -> None:
    claim = make_claim("500 participants")
    chunks = [make_chunk("In our annual report we served 500 individuals in 2023 across the county.", 0.72)]

    status, similarity = classify_claim(claim, chunks, today=TODAY)

    assert status == "VERIFIED"
    assert similarity == 0.72


def test_numeric_claim_absent_from_every_chunk_is_unverified() -> None:
    claim = make_claim("42%", claim_type="PERCENTAGE")
    chunks = [make_chunk("Attendance improved steadily over the school year.", 0.55)]

    status, _ = classify_claim(claim, chunks, today=TODAY)

    assert status == "UNVERIFIED"


def test_non_numeric_claim_with_moderate_similarity_is_partial() -> None:
    claim = make_claim("United Way", claim_type="ORGANIZATION", risk_level="MEDIUM")
    chunks = [make_chunk("We work with many local funders across the region.", 0.55)]

    status, _ = classify_claim(claim, chunks, today=TODAY)

    assert status == "PARTIAL"


def test_literal_match_needs_literal_similarity() -> None:
    claim = make_claim("United Way", claim_type="ORGANIZATION", risk_level="MEDIUM")
    chunk_text = "Our largest partner is United Way of King County."

    assert classify_claim(claim, [make_chunk(chunk_text, 0.66)], today=TODAY)[0] == "VERIFIED"
    assert classify_claim(claim, [make_chunk(chunk_text, 0.62)], today=TODAY)[0] == "PARTIAL"


def test_same_type_figure_with_different_value_is_conflicting() -> None:
    claim = make_claim("500 families")
    chunks = [make_chunk("The pantry served 350 families last winter.", 0.70)]

    status, _ = classify_claim(claim, chunks, today=TODAY)

    assert status == "CONFLICTING"


def test_decimal_currency_is_not_verified_by_a_larger_whole_number() -> None:
    claim = make_claim("$1.2 million", claim_type="CURRENCY")
    chunks = [make_chunk("The campaign raised $12 million last year.", 0.90)]

    status, _ = classify_claim(claim, chunks, today=TODAY)

    assert status == "CONFLICTING"


def test_verified_claim_from_stale_document_is_outdated() -> None:
    claim = make_claim("500 families")
    stale = [make_chunk("We served 500 families.", 0.80, document_date=date(2020, 1, 1))]
    recent = [make_chunk("We served 500 families.", 0.80, document_date=date(2023, 6, 1))]

    assert classify_claim(claim, stale, today=TODAY)[0] == "OUTDATED"
    assert classify_claim(claim, recent, today=TODAY)[0] == "VERIFIED"


def test_no_chunks_is_unverified() -> None:
    assert classify_claim(make_claim("500 families"), [], today=TODAY) == ("UNVERIFIED", 0.0)


def test_verified_claims_always_meet_similarity_and_overlap_floor() -> None:
    chunk_texts = [
        "We served 500 families in 2023.",
        "Nearly 500 households were supported.",
        "The pantry served 350 families last winter.",
        "Community partners helped many families.",
    ]
    claim = make_claim("500 families")
    for text in chunk_texts:
        for similarity in (0.45, 0.55, 0.60, 0.64, 0.65, 0.80):
            status, score = classify_claim(claim, [make_chunk(text, similarity)], today=TODAY)
            if status == "VERIFIED":
                assert score >= DEFAULT_THRESHOLDS.claim_numeric_similarity
                assert "500" in text


def test_retrieval_failure_marks_claim_unverified() -> None:
    verifier = ClaimVerifier(FakeRetriever(error=RuntimeError("vector store offline")), today=TODAY)

    verified = asyncio.run(verifier.verify_claim(make_claim("500 families"), "org-1"))

    assert verified.status == "UNVERIFIED"
    assert verified.evidence == []
    assert verified.failed is True


def test_verify_claim_queries_value_and_context_and_records_evidence() -> None:
    retriever = FakeRetriever([make_chunk("In 2023 we served 500 families at three sites.", 0.81)])
    verifier = ClaimVerifier(retriever, today=TODAY)

    verified = asyncio.run(verifier.verify_claim(make_claim("500 families"), "org-1"))

    query, organization_id, top_k = retriever.calls[0]
    assert query.startswith("500 families ")
    assert organization_id == "org-1"
    assert top_k == 3
    assert verified.status == "VERIFIED"
    assert verified.evidence[0].chunk_id == "chunk-1"
    assert "500" in verified.evidence[0].matched_text


def test_sampled_verification_rate_is_extrapolated_and_flagged() -> None:
    thresholds = dataclasses.replace(DEFAULT_THRESHOLDS, claim_verification_cap=2)
    retriever = FakeRetriever([make_chunk("Totals: 100 200 300 400 500 families served.", 0.80)])
    verifier = ClaimVerifier(retriever, thresholds=thresholds, today=TODAY)
    claims = [make_claim(f"{count} families", claim_id=f"c{count}") for count in (100, 200, 300, 400, 500)]

    report = asyncio.run(verifier.verify(claims, "org-1"))

    assert len(retriever.calls) == 2
    assert report.total_claims == 5
    assert report.sampled_claims == 2
    assert report.verified_in_sample == 2
    assert report.verification_rate == 100.0
    assert report.estimated_verified_total == 5
    assert report.is_estimate is True
    assert [claim.id for claim in report.failed_high_risk()] == ["c300", "c400", "c500"]


def test_verify_without_claims_reports_no_rate() -> None:
    report = asyncio.run(ClaimVerifier(FakeRetriever(), today=TODAY).verify([], "org-1"))

    assert report.verification_rate is None
    assert report.estimated_verified_total == 0
    assert report.is_estimate is False
