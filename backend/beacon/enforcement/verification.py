from __future__ import annotations

import logging
import re
from datetime import date

from beacon.enforcement.claims import DEFAULT_PATTERN_TABLE, ClaimPatternTable, numbers_in, numeric_portion
from beacon.enforcement.collaborators import Retriever
from beacon.enforcement.models import (
    ClaimEvidence,
    ClaimStatus,
    ClaimVerificationReport,
    ExtractedClaim,
    RankedChunk,
    VerifiedClaim,
)
from beacon.enforcement.thresholds import DEFAULT_THRESHOLDS, EnforcementThresholds
from beacon.observability import preview_text

logger = logging.getLogger("beacon.verification")

EVIDENCE_SNIPPET_CHARS = 200


def normalize_literal(value: str) -> str:
    return re.sub(r"[\W_]+", "", value.lower())


def _months_between(earlier: date, later: date) -> int:
    return (later.year - earlier.year) * 12 + (later.month - earlier.month)


def _matched_text(chunk_text: str, needle: str | None) -> str:
    if needle:
        index = chunk_text.find(needle)
        if index >= 0:
            start = max(0, index - EVIDENCE_SNIPPET_CHARS // 2)
            return preview_text(chunk_text[start:], max_chars=EVIDENCE_SNIPPET_CHARS)
    return preview_text(chunk_text, max_chars=EVIDENCE_SNIPPET_CHARS)


def build_evidence(claim: ExtractedClaim, chunks: list[RankedChunk]) -> list[ClaimEvidence]:
    needle = numeric_portion(claim.value)
    evidence: list[ClaimEvidence] = []
    for chunk in chunks:
        evidence.append(
            ClaimEvidence(
                chunk_id=chunk.id,
                document_id=chunk.document_id,
                document_name=chunk.document_name,
                matched_text=_matched_text(chunk.text, needle),
                similarity=round(chunk.similarity, 4),
                document_date=chunk.document_date,
            )
        )
    return evidence


def classify_claim(
    claim: ExtractedClaim,
    chunks: list[RankedChunk],
    *,
    thresholds: EnforcementThresholds = DEFAULT_THRESHOLDS,
    table: ClaimPatternTable = DEFAULT_PATTERN_TABLE,
    today: date | None = None,
) -> tuple[ClaimStatus, float]:
    """Classify one claim against its retrieved chunks. Pure; returns (status, best similarity)."""
    if not chunks:
        return "UNVERIFIED", 0.0

    best = max(chunks, key=lambda chunk: chunk.similarity)
    similarity = best.similarity
    literal = normalize_literal(claim.value)
    numeric = numeric_portion(claim.value)
    best_numbers = numbers_in(best.text)

    numeric_hit = numeric is not None and numeric in best_numbers
    # "12million" must not verify "$1.2 million"; figures also have to match as whole numbers.
    literal_hit = (
        bool(literal)
        and literal in normalize_literal(best.text)
        and (numeric is None or numeric_hit)
    )
    verified = (literal_hit and similarity >= thresholds.claim_literal_similarity) or (
        numeric_hit and similarity >= thresholds.claim_numeric_similarity
    )

    if verified:
        if best.document_date is not None:
            reference = today or date.today()
            if _months_between(best.document_date, reference) > thresholds.source_stale_months:
                return "OUTDATED", similarity
        return "VERIFIED", similarity

    if numeric is not None and similarity >= thresholds.claim_literal_similarity:
        pattern = table.pattern_for(claim.type)
        if pattern is not None:
            figures = {numeric_portion(match.group(0)) for match in pattern.finditer(best.text)}
            figures.discard(None)
            if figures and numeric not in figures:
                return "CONFLICTING", similarity

    if similarity >= thresholds.claim_partial_similarity:
        if numeric is not None and not any(numeric in numbers_in(chunk.text) for chunk in chunks):
            return "UNVERIFIED", similarity
        return "PARTIAL", similarity

    return "UNVERIFIED", similarity


class ClaimVerifier:
    """Re-queries the retriever for each claim and classifies it.

    Only the first ``claim_verification_cap`` claims are checked. The verified
    total reported for the whole section is the sample's rate applied to every
    claim, an explicit cost/completeness trade-off flagged via ``is_estimate``.
    Claims are verified one after another so the sample is always the same
    prefix of the extraction order.
    """

    def __init__(
        self,
        retriever: Retriever,
        *,
        thresholds: EnforcementThresholds = DEFAULT_THRESHOLDS,
        table: ClaimPatternTable = DEFAULT_PATTERN_TABLE,
        today: date | None = None,
    ) -> None:
        self._retriever = retriever
        self._thresholds = thresholds
        self._table = table
        self._today = today

    async def verify_claim(self, claim: ExtractedClaim, organization_id: str) -> VerifiedClaim:
        query = f"{claim.value} {claim.context}".strip()
        try:
            chunks = await self._retriever.search(
                query,
                organization_id,
                self._thresholds.claim_verification_top_k,
            )
        except Exception as exc:
            logger.warning(
                "claim_verification_failed",
                extra={
                    "event": "claim_verification_failed",
                    "claim_id": claim.id,
                    "claim_type": claim.type,
                    "error": str(exc),
                },
            )
            return VerifiedClaim(**claim.model_dump(), status="UNVERIFIED", evidence=[], similarity=0.0)

        status, similarity = classify_claim(
            claim,
            chunks,
            thresholds=self._thresholds,
            table=self._table,
            today=self._today,
        )
        return VerifiedClaim(
            **claim.model_dump(),
            status=status,
            evidence=build_evidence(claim, chunks),
            similarity=round(similarity, 4),
        )

    async def verify(self, claims: list[ExtractedClaim], organization_id: str) -> ClaimVerificationReport:
        cap = max(0, self._thresholds.claim_verification_cap)
        sample = claims[:cap]
        unchecked = claims[cap:]

        verified: list[VerifiedClaim] = []
        for claim in sample:
            verified.append(await self.verify_claim(claim, organization_id))

        verified_count = sum(1 for claim in verified if claim.status == "VERIFIED")
        rate = verified_count / len(verified) if verified else None
        estimated_total = round(rate * len(claims)) if rate is not None else 0

        report = ClaimVerificationReport(
            claims=verified,
            unchecked=unchecked,
            total_claims=len(claims),
            sampled_claims=len(verified),
            verified_in_sample=verified_count,
            verification_rate=round(rate * 100, 1) if rate is not None else None,
            estimated_verified_total=estimated_total,
            is_estimate=bool(unchecked),
        )
        logger.info(
            "claims_verified",
            extra={
                "event": "claims_verified",
                "total_claims": report.total_claims,
                "sampled_claims": report.sampled_claims,
                "verified_in_sample": verified_count,
                "is_estimate": report.is_estimate,
                "first_claim": preview_text(claims[0].value) if claims else "",
            },
        )
        return report
