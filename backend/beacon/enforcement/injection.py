from __future__ import annotations

from dataclasses import dataclass, field

from beacon.enforcement.models import AttributedParagraph, ExtractedClaim, Placeholder
from beacon.enforcement.placeholders import (
    PlaceholderIdAllocator,
    format_placeholder,
    is_placeholder_only,
    parse_placeholders,
    placeholder_spans,
)
from beacon.enforcement.text import BLOCK_SEPARATOR, block_offsets
from beacon.observability import preview_text

REPLACED_PARAGRAPH_STATUSES = frozenset({"UNGROUNDED", "FAILED"})


@dataclass
class InjectionResult:
    content: str
    placeholders: list[Placeholder] = field(default_factory=list)
    claims_replaced: int = 0
    paragraphs_placeholdered: int = 0

    @property
    def changed(self) -> bool:
        return self.claims_replaced > 0 or self.paragraphs_placeholdered > 0


def _merge_spans(
    spans: list[tuple[int, int, ExtractedClaim]],
) -> list[tuple[int, int, list[ExtractedClaim]]]:
    merged: list[tuple[int, int, list[ExtractedClaim]]] = []
    for start, end, claim in sorted(spans, key=lambda item: (item[0], item[1])):
        if merged and start < merged[-1][1]:
            last_start, last_end, members = merged[-1]
            merged[-1] = (last_start, max(last_end, end), [*members, claim])
        else:
            merged.append((start, end, [claim]))
    return merged


def _claim_description(members: list[ExtractedClaim], original: str) -> str:
    kinds = sorted({member.type.lower() for member in members})
    return f'Unverified {"/".join(kinds)} removed - please verify "{original}"'


def _paragraph_description(block: str, status: str) -> str:
    lead = "Source check failed for this paragraph" if status == "FAILED" else "No supporting source found"
    return f'{lead}. Original text began "{preview_text(block, max_chars=90)}"'


class PlaceholderInjector:
    """Rewrites unsupported content into placeholder tokens.

    Whole UNGROUNDED or FAILED paragraphs become one MISSING_DATA token; failed
    HIGH-risk claims inside kept paragraphs become VERIFICATION_NEEDED tokens.
    Existing tokens are never rewrapped, so a second pass over the output is a no-op.
    """

    def __init__(self, allocator: PlaceholderIdAllocator | None = None) -> None:
        self._allocator = allocator

    def inject(
        self,
        section_id: str,
        blocks: list[str],
        paragraphs: list[AttributedParagraph],
        failed_claims: list[ExtractedClaim],
    ) -> InjectionResult:
        existing_ids = [item.id for block in blocks for item in parse_placeholders(block)]
        allocator = self._allocator or PlaceholderIdAllocator()
        for placeholder_id in existing_ids:
            allocator.claim(placeholder_id)
        by_index = {paragraph.index: paragraph for paragraph in paragraphs}
        offsets = block_offsets(blocks)

        claims_replaced: set[tuple[int, int]] = set()
        paragraphs_placeholdered = 0
        rewritten: list[str] = []
        for index, block in enumerate(blocks):
            paragraph = by_index.get(index)
            if is_placeholder_only(block):
                rewritten.append(block)
                continue

            if paragraph is not None and paragraph.status in REPLACED_PARAGRAPH_STATUSES:
                rewritten.append(
                    format_placeholder(
                        "MISSING_DATA",
                        _paragraph_description(block, paragraph.status),
                        allocator.allocate("para"),
                    )
                )
                paragraphs_placeholdered += 1
                continue

            block_start = offsets[index]
            block_end = block_start + len(block)
            protected = placeholder_spans(block)
            local_spans: list[tuple[int, int, ExtractedClaim]] = []
            for claim in failed_claims:
                # A claim reaching past either edge is clipped to this block, never skipped.
                local_start = max(claim.position.start, block_start) - block_start
                local_end = min(claim.position.end, block_end) - block_start
                if local_end <= local_start:
                    continue
                if any(local_start < span_end and local_end > span_start for span_start, span_end in protected):
                    continue
                local_spans.append((local_start, local_end, claim))

            updated = block
            # Right to left keeps earlier offsets valid.
            for start, end, members in reversed(_merge_spans(local_spans)):
                token = format_placeholder(
                    "VERIFICATION_NEEDED",
                    _claim_description(members, block[start:end]),
                    allocator.allocate("claim"),
                )
                updated = updated[:start] + token + updated[end:]
                claims_replaced.update((member.position.start, member.position.end) for member in members)
            rewritten.append(updated)

        content = BLOCK_SEPARATOR.join(rewritten)
        return InjectionResult(
            content=content,
            placeholders=parse_placeholders(content, section_id=section_id),
            claims_replaced=len(claims_replaced),
            paragraphs_placeholdered=paragraphs_placeholdered,
        )
