from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import date
from typing import AsyncIterator

from pydantic import BaseModel, Field

from beacon.enforcement.attribution import ParagraphAttributor
from beacon.enforcement.claims import DEFAULT_PATTERN_TABLE, ClaimPatternTable, extract_claims
from beacon.enforcement.collaborators import (
    GenerationRecorder,
    LanguageModel,
    LanguageModelError,
    OrganizationDirectory,
    Retriever,
)
from beacon.enforcement.coverage import score_section
from beacon.enforcement.injection import PlaceholderInjector
from beacon.enforcement.models import (
    AttributedParagraph,
    ClaimVerificationReport,
    GenerationMetadataRecord,
    OrganizationProfile,
    Placeholder,
    RankedChunk,
    SectionCoverage,
)
from beacon.enforcement.placeholders import (
    IdFactory,
    PlaceholderIdAllocator,
    build_placeholder_only_content,
    default_id_factory,
    normalize_model_placeholders,
    parse_placeholders,
)
from beacon.enforcement.prompts import build_draft_prompt
from beacon.enforcement.sufficiency import SufficiencyDecision, evaluate_sufficiency
from beacon.enforcement.text import split_blocks
from beacon.enforcement.thresholds import DEFAULT_THRESHOLDS, EnforcementThresholds
from beacon.enforcement.verification import ClaimVerifier
from beacon.observability import preview_text

logger = logging.getLogger("beacon.pipeline")

STREAM_CHUNK_CHARS = 256
ENFORCEMENT_FAILURE_BANNER = (
    "[BEACON WARNING: Source verification failed. The content below has NOT been checked against your "
    "documents. Verify every claim manually before use.]"
)


class GenerationRequestError(ValueError):
    """Raised when a generation request is missing what the pipeline needs to start."""


class OrganizationNotFoundError(GenerationRequestError):
    """Raised when the request names an organization the directory does not know."""


class FundingAmount(BaseModel):
    min: float | None = Field(default=None, ge=0)
    max: float | None = Field(default=None, ge=0)


class GenerationContext(BaseModel):
    organization_id: str
    proposal_id: str
    section_id: str | None = None
    funder_name: str | None = None
    program_title: str | None = None
    funding_amount: FundingAmount | None = None


class GenerationRequest(BaseModel):
    section_name: str = ""
    description: str | None = None
    word_limit: int | None = Field(default=None, ge=1)
    char_limit: int | None = Field(default=None, ge=1)
    context: GenerationContext
    existing_content: str | None = None
    custom_instructions: str | None = None
    top_k: int | None = Field(default=None, ge=1, le=50)


def validate_request(request: GenerationRequest) -> None:
    if not (request.context.section_id or "").strip():
        raise GenerationRequestError("section_id is required to generate a section.")
    if not request.section_name.strip():
        raise GenerationRequestError("section_name is required to generate a section.")
    if not request.context.organization_id.strip():
        raise GenerationRequestError("organization_id is required to generate a section.")


@dataclass
class GenerationOutcome:
    """Everything one generation attempt produced, ready to stream and persist."""

    generation_id: str
    request: GenerationRequest
    status_line: str | None
    content: str
    metadata: GenerationMetadataRecord
    sufficiency: SufficiencyDecision
    paragraphs: list[AttributedParagraph] | None = None
    report: ClaimVerificationReport | None = None
    placeholders: list[Placeholder] = field(default_factory=list)
    coverage: SectionCoverage | None = None
    enforcement_failure: bool = False

    @property
    def section_id(self) -> str:
        return self.request.context.section_id or ""

    def render(self) -> str:
        if self.status_line:
            return f"{self.status_line}\n\n{self.content}"
        return self.content


async def stream_outcome(outcome: GenerationOutcome, chunk_chars: int = STREAM_CHUNK_CHARS) -> AsyncIterator[str]:
    """Status line first, then the enforced content in fixed-size pieces."""
    if outcome.status_line:
        yield f"{outcome.status_line}\n\n"
    for start in range(0, len(outcome.content), chunk_chars):
        yield outcome.content[start : start + chunk_chars]


def _enforcement_status(claims_replaced: int, paragraphs_placeholdered: int) -> str | None:
    if claims_replaced == 0 and paragraphs_placeholdered == 0:
        return None
    return (
        f"[BEACON ENFORCEMENT APPLIED: {claims_replaced} claims replaced, "
        f"{paragraphs_placeholdered} paragraphs placeholdered]"
    )


class GenerationPipeline:
    """Retrieve, gate, draft, and enforce one proposal section.

    Nothing the language model writes reaches the caller until claims have been
    verified and unsupported content has been swapped for placeholder tokens.
    """

    def __init__(
        self,
        *,
        retriever: Retriever,
        language_model: LanguageModel,
        organizations: OrganizationDirectory,
        recorder: GenerationRecorder | None = None,
        thresholds: EnforcementThresholds = DEFAULT_THRESHOLDS,
        pattern_table: ClaimPatternTable = DEFAULT_PATTERN_TABLE,
        top_k: int = 8,
        provider_timeout_seconds: float = 60.0,
        max_chars_per_chunk: int = 1500,
        id_factory: IdFactory = default_id_factory,
        today: date | None = None,
    ) -> None:
        self._retriever = retriever
        self._language_model = language_model
        self._organizations = organizations
        self._recorder = recorder
        self._thresholds = thresholds
        self._pattern_table = pattern_table
        self._top_k = top_k
        self._provider_timeout_seconds = provider_timeout_seconds
        self._max_chars_per_chunk = max_chars_per_chunk
        self._id_factory = id_factory
        self._verifier = ClaimVerifier(retriever, thresholds=thresholds, table=pattern_table, today=today)
        self._attributor = ParagraphAttributor(retriever, thresholds=thresholds)

    async def run(self, request: GenerationRequest) -> GenerationOutcome:
        validate_request(request)
        profile = self._organizations.get_profile(request.context.organization_id)
        if profile is None:
            raise OrganizationNotFoundError(f"Organization not found: {request.context.organization_id}")

        generation_id = self._id_factory("gen")
        started = time.perf_counter()
        chunks = await self._retrieve(request)
        decision = evaluate_sufficiency(chunks, self._thresholds)

        if not decision.proceed:
            logger.info(
                "generation_insufficient_context",
                extra={
                    "event": "generation_insufficient_context",
                    "section_id": request.context.section_id,
                    "retrieved_count": decision.retrieved_count,
                    "max_similarity": decision.max_similarity,
                },
            )
            outcome = self._placeholder_outcome(
                generation_id,
                request,
                decision,
                status_line=f"[BEACON ENFORCEMENT: {decision.reason}]",
            )
        else:
            outcome = await self._draft_and_enforce(generation_id, request, profile, chunks, decision)

        logger.info(
            "generation_completed",
            extra={
                "event": "generation_completed",
                "generation_id": generation_id,
                "section_id": request.context.section_id,
                "used_generic_knowledge": outcome.metadata.used_generic_knowledge,
                "enforcement_applied": outcome.metadata.enforcement_applied,
                "enforcement_failure": outcome.enforcement_failure,
                "claims_replaced": outcome.metadata.claims_replaced,
                "paragraphs_placeholdered": outcome.metadata.paragraphs_placeholdered,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            },
        )
        if self._recorder is not None:
            self._recorder.record_generation(outcome)
        return outcome

    async def _retrieve(self, request: GenerationRequest) -> list[RankedChunk]:
        query = " ".join(part for part in (request.section_name, request.description or "") if part).strip()
        try:
            return await self._retriever.search(
                query,
                request.context.organization_id,
                request.top_k or self._top_k,
            )
        except Exception as exc:
            # An unreachable corpus is treated as an empty one: the gate then refuses to draft.
            logger.warning(
                "generation_retrieval_failed",
                extra={
                    "event": "generation_retrieval_failed",
                    "section_id": request.context.section_id,
                    "error": str(exc),
                },
            )
            return []

    def _metadata(
        self,
        generation_id: str,
        request: GenerationRequest,
        decision: SufficiencyDecision,
        *,
        enforced: str,
        raw: str | None = None,
        enforcement_applied: bool = False,
        enforcement_failure: bool = False,
        claims_replaced: int = 0,
        paragraphs_placeholdered: int = 0,
        policy_override: bool = False,
    ) -> GenerationMetadataRecord:
        return GenerationMetadataRecord(
            generation_id=generation_id,
            section_id=request.context.section_id or "",
            organization_id=request.context.organization_id,
            proposal_id=request.context.proposal_id,
            retrieved_chunk_count=decision.retrieved_count,
            used_generic_knowledge=decision.used_generic_knowledge,
            enforcement_applied=enforcement_applied,
            enforcement_failure=enforcement_failure,
            claims_replaced=claims_replaced,
            paragraphs_placeholdered=paragraphs_placeholdered,
            policy_override=policy_override,
            min_chunk_similarity=decision.min_similarity,
            max_chunk_similarity=decision.max_similarity,
            avg_chunk_similarity=decision.avg_similarity,
            raw_generation=raw,
            enforced_generation=enforced,
        )

    def _placeholder_outcome(
        self,
        generation_id: str,
        request: GenerationRequest,
        decision: SufficiencyDecision,
        *,
        status_line: str,
        policy_override: bool = False,
    ) -> GenerationOutcome:
        section_id = request.context.section_id or ""
        content = build_placeholder_only_content(
            request.section_name,
            description=request.description,
            allocator=PlaceholderIdAllocator(id_factory=self._id_factory),
        )
        return GenerationOutcome(
            generation_id=generation_id,
            request=request,
            status_line=status_line,
            content=content,
            metadata=self._metadata(
                generation_id,
                request,
                decision,
                enforced=content,
                policy_override=policy_override,
            ),
            sufficiency=decision,
            paragraphs=[],
            placeholders=parse_placeholders(content, section_id=section_id),
            coverage=score_section(section_id, request.section_name, [], self._thresholds),
        )

    async def _draft_and_enforce(
        self,
        generation_id: str,
        request: GenerationRequest,
        profile: OrganizationProfile,
        chunks: list[RankedChunk],
        decision: SufficiencyDecision,
    ) -> GenerationOutcome:
        funding = request.context.funding_amount
        prompt = build_draft_prompt(
            profile=profile,
            section_name=request.section_name,
            chunks=chunks,
            description=request.description,
            word_limit=request.word_limit,
            char_limit=request.char_limit,
            funder_name=request.context.funder_name,
            program_title=request.context.program_title,
            funding_min=funding.min if funding else None,
            funding_max=funding.max if funding else None,
            existing_content=request.existing_content,
            custom_instructions=request.custom_instructions,
            max_chars_per_chunk=self._max_chars_per_chunk,
        )
        if prompt.policy_override:
            logger.warning(
                "custom_instructions_blocked",
                extra={
                    "event": "custom_instructions_blocked",
                    "section_id": request.context.section_id,
                    "instructions": preview_text(request.custom_instructions or ""),
                },
            )

        try:
            raw = await asyncio.wait_for(
                self._language_model.complete(prompt.system_prompt, prompt.user_prompt),
                timeout=self._provider_timeout_seconds,
            )
        except (asyncio.TimeoutError, LanguageModelError) as exc:
            reason = (
                f"timed out after {self._provider_timeout_seconds:g}s"
                if isinstance(exc, asyncio.TimeoutError)
                else str(exc) or "provider error"
            )
            logger.warning(
                "generation_provider_failed",
                extra={
                    "event": "generation_provider_failed",
                    "section_id": request.context.section_id,
                    "error": reason,
                },
            )
            return self._placeholder_outcome(
                generation_id,
                request,
                decision,
                status_line=(
                    f"[BEACON WARNING: Draft generation failed ({preview_text(reason)}). "
                    "Placeholders were inserted for manual completion.]"
                ),
                policy_override=prompt.policy_override,
            )

        try:
            return await self._enforce(generation_id, request, decision, raw, policy_override=prompt.policy_override)
        except Exception as exc:
            logger.exception(
                "enforcement_failed",
                extra={
                    "event": "enforcement_failed",
                    "generation_id": generation_id,
                    "section_id": request.context.section_id,
                    "error": str(exc),
                },
            )
            return GenerationOutcome(
                generation_id=generation_id,
                request=request,
                status_line=ENFORCEMENT_FAILURE_BANNER,
                content=raw,
                metadata=self._metadata(
                    generation_id,
                    request,
                    decision,
                    enforced=raw,
                    raw=raw,
                    enforcement_failure=True,
                    policy_override=prompt.policy_override,
                ),
                sufficiency=decision,
                paragraphs=None,
                enforcement_failure=True,
            )

    async def _enforce(
        self,
        generation_id: str,
        request: GenerationRequest,
        decision: SufficiencyDecision,
        raw: str,
        *,
        policy_override: bool,
    ) -> GenerationOutcome:
        section_id = request.context.section_id or ""
        organization_id = request.context.organization_id
        allocator = PlaceholderIdAllocator(id_factory=self._id_factory)

        normalized, rewrites = normalize_model_placeholders(raw, allocator)
        blocks = split_blocks(normalized)
        text = "\n\n".join(blocks)

        claims = extract_claims(text, table=self._pattern_table, id_factory=self._id_factory)
        report = await self._verifier.verify(claims, organization_id)
        user_edited = split_blocks(request.existing_content) if request.existing_content else []
        paragraphs = await self._attributor.attribute(section_id, blocks, organization_id, user_edited=user_edited)

        injected = PlaceholderInjector(allocator).inject(section_id, blocks, paragraphs, report.failed_high_risk())
        coverage = score_section(section_id, request.section_name, paragraphs, self._thresholds)

        logger.info(
            "enforcement_applied",
            extra={
                "event": "enforcement_applied",
                "generation_id": generation_id,
                "section_id": section_id,
                "placeholder_rewrites": rewrites,
                "claims_total": report.total_claims,
                "claims_sampled": report.sampled_claims,
                "claims_replaced": injected.claims_replaced,
                "paragraphs_placeholdered": injected.paragraphs_placeholdered,
                "coverage_score": coverage.coverage_score,
            },
        )
        return GenerationOutcome(
            generation_id=generation_id,
            request=request,
            status_line=_enforcement_status(injected.claims_replaced, injected.paragraphs_placeholdered),
            content=injected.content,
            metadata=self._metadata(
                generation_id,
                request,
                decision,
                enforced=injected.content,
                raw=raw,
                enforcement_applied=True,
                claims_replaced=injected.claims_replaced,
                paragraphs_placeholdered=injected.paragraphs_placeholdered,
                policy_override=policy_override,
            ),
            sufficiency=decision,
            paragraphs=paragraphs,
            report=report,
            placeholders=injected.placeholders,
            coverage=coverage,
        )
