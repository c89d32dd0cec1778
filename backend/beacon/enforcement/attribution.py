from __future__ import annotations

import logging
from typing import Iterable

from beacon.enforcement.collaborators import Retriever
from beacon.enforcement.models import (
    AttributedParagraph,
    ChunkAttribution,
    ParagraphFlag,
    ParagraphStatus,
    RankedChunk,
)
from beacon.enforcement.placeholders import PLACEHOLDER_PATTERN, strip_placeholders
from beacon.enforcement.text import is_substantive, normalize_key, word_count
from beacon.enforcement.thresholds import DEFAULT_THRESHOLDS, EnforcementThresholds
from beacon.observability import preview_text

logger = logging.getLogger("beacon.attribution")


def attribution_score(
    best_similarity: float,
    supporting_count: int,
    thresholds: EnforcementThresholds = DEFAULT_THRESHOLDS,
) -> float:
    bonus = thresholds.supporting_chunk_bonus * max(0, supporting_count - 1)
    return round(max(0.0, min(100.0, 100.0 * best_similarity + bonus)), 2)


def status_for_score(score: float, thresholds: EnforcementThresholds = DEFAULT_THRESHOLDS) -> ParagraphStatus:
    if score >= thresholds.grounded_score:
        return "GROUNDED"
    if score >= thresholds.partial_score:
        return "PARTIAL"
    return "UNGROUNDED"


def _paragraph_id(section_id: str, index: int) -> str:
    return f"{section_id}:p{index}"


class ParagraphAttributor:
    """Maps each substantive block of a section to the chunks that support it."""

    def __init__(
        self,
        retriever: Retriever,
        *,
        thresholds: EnforcementThresholds = DEFAULT_THRESHOLDS,
    ) -> None:
        self._retriever = retriever
        self._thresholds = thresholds

    async def attribute(
        self,
        section_id: str,
        blocks: list[str],
        organization_id: str,
        *,
        user_edited: Iterable[str] = (),
    ) -> list[AttributedParagraph]:
        edited_keys = {normalize_key(text) for text in user_edited if text.strip()}
        paragraphs: list[AttributedParagraph] = []
        for index, block in enumerate(blocks):
            if not is_substantive(block):
                continue
            paragraphs.append(
                await self.attribute_block(
                    section_id,
                    index,
                    block,
                    organization_id,
                    user_edited=normalize_key(block) in edited_keys,
                )
            )
        return paragraphs

    async def attribute_block(
        self,
        section_id: str,
        index: int,
        block: str,
        organization_id: str,
        *,
        user_edited: bool = False,
    ) -> AttributedParagraph:
        flags: list[ParagraphFlag] = []
        has_placeholder = bool(PLACEHOLDER_PATTERN.search(block))
        if has_placeholder:
            flags.append("CONTAINS_PLACEHOLDER")
        if user_edited:
            flags.append("USER_EDITED")

        query_text = strip_placeholders(block).strip()
        if word_count(query_text) < 1:
            # Nothing but placeholder tokens: carried through untouched, never scored as support.
            flags.append("NO_SOURCE")
            return AttributedParagraph(
                id=_paragraph_id(section_id, index),
                section_id=section_id,
                index=index,
                text=block,
                status="UNGROUNDED",
                flags=flags,
            )

        try:
            chunks = await self._retriever.search(query_text, organization_id, self._thresholds.paragraph_top_k)
        except Exception as exc:
            logger.warning(
                "paragraph_attribution_failed",
                extra={
                    "event": "paragraph_attribution_failed",
                    "section_id": section_id,
                    "paragraph_index": index,
                    "error": str(exc),
                },
            )
            flags.extend(["ATTRIBUTION_FAILED", "NO_SOURCE"])
            return AttributedParagraph(
                id=_paragraph_id(section_id, index),
                section_id=section_id,
                index=index,
                text=block,
                status="FAILED",
                flags=flags,
            )

        return self._score(section_id, index, block, chunks, flags)

    def _score(
        self,
        section_id: str,
        index: int,
        block: str,
        chunks: list[RankedChunk],
        flags: list[ParagraphFlag],
    ) -> AttributedParagraph:
        ranked = sorted(chunks, key=lambda chunk: chunk.similarity, reverse=True)
        best_similarity = ranked[0].similarity if ranked else 0.0
        supporting = [
            chunk for chunk in ranked if chunk.similarity >= self._thresholds.paragraph_support_similarity
        ]
        score = attribution_score(best_similarity, len(supporting), self._thresholds)
        status = status_for_score(score, self._thresholds)

        if not supporting:
            flags.append("NO_SOURCE")
        if status == "PARTIAL":
            flags.append("LOW_CONFIDENCE")

        return AttributedParagraph(
            id=_paragraph_id(section_id, index),
            section_id=section_id,
            index=index,
            text=block,
            supporting_chunks=[
                ChunkAttribution(
                    chunk_id=chunk.id,
                    document_id=chunk.document_id,
                    document_name=chunk.document_name,
                    similarity=round(chunk.similarity, 4),
                    matched_span=preview_text(chunk.text, max_chars=200),
                )
                for chunk in supporting
            ],
            attribution_score=score,
            status=status,
            flags=flags,
        )
