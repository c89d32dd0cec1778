from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class EnforcementThresholds:
    """Similarity and score cut-offs shared by every enforcement stage.

    Each stage reads only its own fields; the sufficiency gate, claim verifier
    and paragraph attributor deliberately keep separate values so they can be
    tuned without touching one another.
    """

    # Sufficiency gate
    usable_similarity: float = 0.50
    relevant_similarity: float = 0.65
    min_relevant_chunks: int = 1

    # Claim verification
    claim_literal_similarity: float = 0.65
    claim_numeric_similarity: float = 0.60
    claim_partial_similarity: float = 0.50
    claim_verification_cap: int = 20
    claim_verification_top_k: int = 3
    source_stale_months: int = 24

    # Paragraph attribution
    paragraph_support_similarity: float = 0.50
    paragraph_top_k: int = 3
    grounded_score: int = 60
    partial_score: int = 40
    supporting_chunk_bonus: int = 5

    # Coverage bands
    coverage_high: float = 80.0
    coverage_medium: float = 50.0
    coverage_low: float = 30.0

    # Compliance
    word_limit_tolerance: float = 0.10


DEFAULT_THRESHOLDS = EnforcementThresholds()
