from __future__ import annotations

from dataclasses import dataclass

from beacon.enforcement.models import RankedChunk
from beacon.enforcement.thresholds import DEFAULT_THRESHOLDS, EnforcementThresholds


@dataclass(frozen=True)
class SufficiencyDecision:
    proceed: bool
    reason: str | None
    retrieved_count: int
    relevant_count: int
    min_similarity: float | None
    max_similarity: float | None
    avg_similarity: float | None

    @property
    def used_generic_knowledge(self) -> bool:
        return not self.proceed


def evaluate_sufficiency(
    chunks: list[RankedChunk],
    thresholds: EnforcementThresholds = DEFAULT_THRESHOLDS,
) -> SufficiencyDecision:
    scores = [chunk.similarity for chunk in chunks]
    relevant = [score for score in scores if score >= thresholds.relevant_similarity]
    stats = {
        "retrieved_count": len(chunks),
        "relevant_count": len(relevant),
        "min_similarity": min(scores) if scores else None,
        "max_similarity": max(scores) if scores else None,
        "avg_similarity": round(sum(scores) / len(scores), 4) if scores else None,
    }

    if not chunks:
        return SufficiencyDecision(
            proceed=False,
            reason="No supporting sources found in the knowledge base (0 chunks retrieved)",
            **stats,
        )
    best = max(scores)
    if best < thresholds.usable_similarity:
        return SufficiencyDecision(
            proceed=False,
            reason=(
                f"Retrieved sources are not relevant enough (best similarity {best:.2f} "
                f"is below {thresholds.usable_similarity:.2f})"
            ),
            **stats,
        )
    if len(relevant) < thresholds.min_relevant_chunks:
        return SufficiencyDecision(
            proceed=False,
            reason=(
                f"Too few relevant sources ({len(relevant)} of {len(chunks)} chunks at or above "
                f"{thresholds.relevant_similarity:.2f}, {thresholds.min_relevant_chunks} required)"
            ),
            **stats,
        )
    return SufficiencyDecision(proceed=True, reason=None, **stats)
