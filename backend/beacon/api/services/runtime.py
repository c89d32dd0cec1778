from __future__ import annotations

import dataclasses
import logging
from typing import Callable

from fastapi import HTTPException

from beacon.config import Settings, settings
from beacon.db import get_organization, get_proposal, get_section, record_generation
from beacon.enforcement.collaborators import LanguageModel, Retriever
from beacon.enforcement.compliance import ComplianceChecker
from beacon.enforcement.export_gate import ExportGate
from beacon.enforcement.models import OrganizationProfile
from beacon.enforcement.pipeline import GenerationOutcome, GenerationPipeline
from beacon.enforcement.thresholds import DEFAULT_THRESHOLDS, EnforcementThresholds
from beacon.retrieval import EmbeddingService

logger = logging.getLogger("beacon.api")

LanguageModelGetter = Callable[[], LanguageModel]
RetrieverGetter = Callable[[], Retriever]
EmbeddingServiceGetter = Callable[[], EmbeddingService]


class SqliteOrganizationDirectory:
    def get_profile(self, organization_id: str) -> OrganizationProfile | None:
        organization = get_organization(organization_id)
        if organization is None:
            return None
        return OrganizationProfile(
            id=str(organization["id"]),
            name=str(organization["name"]),
            mission=organization.get("mission"),  # type: ignore[arg-type]
            geography=organization.get("geography"),  # type: ignore[arg-type]
        )


class SqliteGenerationRecorder:
    def record_generation(self, outcome: GenerationOutcome) -> None:
        record_generation(
            outcome.metadata,
            content=outcome.content,
            paragraphs=outcome.paragraphs,
            claims=outcome.report.claims if outcome.report else [],
        )
        logger.info(
            "generation_recorded",
            extra={
                "event": "generation_recorded",
                "generation_id": outcome.generation_id,
                "section_id": outcome.section_id,
                "enforcement_failure": outcome.enforcement_failure,
            },
        )


def thresholds_from_settings(config: Settings = settings) -> EnforcementThresholds:
    return dataclasses.replace(
        DEFAULT_THRESHOLDS,
        claim_verification_cap=config.claim_verification_cap,
        claim_verification_top_k=config.claim_verification_top_k,
        paragraph_top_k=config.paragraph_attribution_top_k,
        word_limit_tolerance=config.word_limit_tolerance,
    )


def build_compliance_checker() -> ComplianceChecker:
    return ComplianceChecker(thresholds_from_settings())


def build_export_gate() -> ExportGate:
    return ExportGate(build_compliance_checker())


def build_generation_pipeline(*, retriever: Retriever, language_model: LanguageModel) -> GenerationPipeline:
    return GenerationPipeline(
        retriever=retriever,
        language_model=language_model,
        organizations=SqliteOrganizationDirectory(),
        recorder=SqliteGenerationRecorder(),
        thresholds=thresholds_from_settings(),
        top_k=settings.retrieval_top_k_default,
        provider_timeout_seconds=settings.provider_timeout_seconds,
        max_chars_per_chunk=settings.retrieval_context_max_chars_per_chunk,
    )


def require_organization(organization_id: str) -> dict[str, object]:
    organization = get_organization(organization_id)
    if organization is None:
        raise HTTPException(status_code=404, detail="Organization not found")
    return organization


def require_proposal(proposal_id: str) -> dict[str, object]:
    proposal = get_proposal(proposal_id)
    if proposal is None:
        raise HTTPException(status_code=404, detail="Proposal not found")
    return proposal


def require_section(proposal_id: str, section_id: str) -> dict[str, object]:
    section = get_section(section_id)
    if section is None or section["proposal_id"] != proposal_id:
        raise HTTPException(status_code=404, detail="Section not found")
    return section
