from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException

from beacon.api.contracts import (
    AmbiguityResolveRequest,
    ChecklistItemCreateRequest,
    ChecklistMappingRequest,
    DocumentCreateRequest,
    OrganizationCreateRequest,
    PlaceholderResolveRequest,
    ProposalCreateRequest,
    SectionCreateRequest,
    SectionUpdateRequest,
)
from beacon.api.services.runtime import (
    EmbeddingServiceGetter,
    require_organization,
    require_proposal,
    require_section,
    thresholds_from_settings,
)
from beacon.config import settings
from beacon.db import (
    create_ambiguity_flags,
    create_checklist_item,
    create_checklist_mapping,
    create_chunks,
    create_document,
    create_organization,
    create_proposal,
    create_section,
    list_ambiguity_flags,
    list_checklist_items,
    list_sections,
    load_proposal_snapshot,
    resolve_ambiguity_flag,
    resolve_placeholder,
    update_section_content,
)
from beacon.enforcement.ambiguity import detect_ambiguities
from beacon.enforcement.checklist import auto_map_checklist
from beacon.enforcement.compliance import has_content
from beacon.enforcement.coverage import score_proposal, score_section
from beacon.enforcement.placeholders import PLACEHOLDER_PATTERN, parse_placeholders, summarize_placeholders
from beacon.retrieval import build_chunk_payloads

logger = logging.getLogger("beacon.api")


def build_proposals_router(*, get_embedding_service: EmbeddingServiceGetter) -> APIRouter:
    router = APIRouter()

    @router.post("/organizations")
    def create_organization_endpoint(payload: OrganizationCreateRequest) -> dict[str, object]:
        return create_organization(payload.name, mission=payload.mission, geography=payload.geography)

    @router.post("/organizations/{organization_id}/documents")
    def add_document(organization_id: str, payload: DocumentCreateRequest) -> dict[str, object]:
        require_organization(organization_id)
        document = create_document(
            organization_id,
            payload.name,
            document_type=payload.document_type,
            program_area=payload.program_area,
            document_date=payload.document_date,
        )
        chunks = build_chunk_payloads(
            payload.chunks,
            settings.embedding_dim,
            embedding_service=get_embedding_service(),
        )
        rows = create_chunks(organization_id, str(document["id"]), chunks)
        return {**document, "chunks_indexed": len(rows)}

    @router.post("/proposals")
    def create_proposal_endpoint(payload: ProposalCreateRequest) -> dict[str, object]:
        require_organization(payload.organization_id)
        proposal = create_proposal(
            payload.organization_id,
            payload.title,
            funder_name=payload.funder_name,
            program_title=payload.program_title,
            funder_instructions=payload.funder_instructions,
        )
        flags = detect_ambiguities(payload.funder_instructions) if payload.funder_instructions else []
        if flags:
            create_ambiguity_flags(str(proposal["id"]), flags)
            logger.info(
                "ambiguities_detected",
                extra={
                    "event": "ambiguities_detected",
                    "proposal_id": proposal["id"],
                    "flag_count": len(flags),
                    "requires_user_input": sum(1 for flag in flags if flag.requires_user_input),
                },
            )
        return {**proposal, "ambiguity_flags": [flag.model_dump() for flag in flags]}

    @router.get("/proposals/{proposal_id}")
    def get_proposal_endpoint(proposal_id: str) -> dict[str, object]:
        proposal = require_proposal(proposal_id)
        return {**proposal, "sections": list_sections(proposal_id)}

    @router.post("/proposals/{proposal_id}/sections")
    def create_section_endpoint(proposal_id: str, payload: SectionCreateRequest) -> dict[str, object]:
        require_proposal(proposal_id)
        return create_section(
            proposal_id,
            payload.name,
            description=payload.description,
            required=payload.required,
            word_limit=payload.word_limit,
            char_limit=payload.char_limit,
        )

    @router.put("/proposals/{proposal_id}/sections/{section_id}")
    def update_section_endpoint(
        proposal_id: str,
        section_id: str,
        payload: SectionUpdateRequest,
    ) -> dict[str, object]:
        require_section(proposal_id, section_id)
        update_section_content(section_id, payload.content)
        return require_section(proposal_id, section_id)

    @router.get("/proposals/{proposal_id}/sections/{section_id}/placeholders")
    def list_section_placeholders(proposal_id: str, section_id: str) -> dict[str, object]:
        section = require_section(proposal_id, section_id)
        placeholders = parse_placeholders(str(section["content"]), section_id=section_id)
        return {
            "section_id": section_id,
            "placeholders": [item.model_dump() for item in placeholders],
            "summary": summarize_placeholders(placeholders).model_dump(),
        }

    @router.post("/proposals/{proposal_id}/sections/{section_id}/placeholders/{placeholder_id}/resolve")
    def resolve_placeholder_endpoint(
        proposal_id: str,
        section_id: str,
        placeholder_id: str,
        payload: PlaceholderResolveRequest,
    ) -> dict[str, object]:
        section = require_section(proposal_id, section_id)
        content = str(section["content"])
        match = next(
            (item for item in PLACEHOLDER_PATTERN.finditer(content) if item.group(3) == placeholder_id),
            None,
        )
        if match is None:
            raise HTTPException(status_code=404, detail="Placeholder not found")
        resolve_placeholder(section_id, placeholder_id, match.group(0), payload.resolved_content.strip())
        return require_section(proposal_id, section_id)

    @router.get("/proposals/{proposal_id}/ambiguities")
    def list_ambiguities(proposal_id: str) -> dict[str, object]:
        require_proposal(proposal_id)
        return {"proposal_id": proposal_id, "flags": [flag.model_dump() for flag in list_ambiguity_flags(proposal_id)]}

    @router.post("/proposals/{proposal_id}/ambiguities/{flag_id}/resolve")
    def resolve_ambiguity(proposal_id: str, flag_id: str, payload: AmbiguityResolveRequest) -> dict[str, object]:
        require_proposal(proposal_id)
        if not resolve_ambiguity_flag(proposal_id, flag_id, payload.resolution):
            raise HTTPException(status_code=404, detail="Ambiguity flag not found")
        return {"proposal_id": proposal_id, "flag_id": flag_id, "resolved": True}

    @router.post("/proposals/{proposal_id}/checklist")
    def create_checklist_item_endpoint(
        proposal_id: str,
        payload: ChecklistItemCreateRequest,
    ) -> dict[str, object]:
        require_proposal(proposal_id)
        return create_checklist_item(
            proposal_id,
            payload.name,
            description=payload.description,
            required=payload.required,
        )

    @router.post("/proposals/{proposal_id}/checklist/{item_id}/mappings")
    def map_checklist_item(proposal_id: str, item_id: str, payload: ChecklistMappingRequest) -> dict[str, object]:
        require_proposal(proposal_id)
        require_section(proposal_id, payload.section_id)
        if item_id not in {item.id for item in list_checklist_items(proposal_id)}:
            raise HTTPException(status_code=404, detail="Checklist item not found")
        create_checklist_mapping(item_id, payload.section_id, mapping_type="MANUAL")
        return {"checklist_item_id": item_id, "section_id": payload.section_id, "mapping_type": "MANUAL"}

    @router.post("/proposals/{proposal_id}/checklist/auto-map")
    def auto_map_checklist_endpoint(proposal_id: str) -> dict[str, object]:
        snapshot = load_proposal_snapshot(proposal_id)
        if snapshot is None:
            raise HTTPException(status_code=404, detail="Proposal not found")
        mappings = auto_map_checklist(snapshot.checklist, snapshot.sections)
        for mapping in mappings:
            create_checklist_mapping(
                mapping.checklist_item_id,
                mapping.section_id,
                confidence=mapping.confidence,
                mapping_type=mapping.mapping_type,
            )
        return {
            "proposal_id": proposal_id,
            "mappings": [
                {
                    "checklist_item_id": mapping.checklist_item_id,
                    "section_id": mapping.section_id,
                    "confidence": mapping.confidence,
                    "mapping_type": mapping.mapping_type,
                }
                for mapping in mappings
            ],
        }

    @router.get("/proposals/{proposal_id}/coverage")
    def get_coverage(proposal_id: str) -> dict[str, object]:
        snapshot = load_proposal_snapshot(proposal_id)
        if snapshot is None:
            raise HTTPException(status_code=404, detail="Proposal not found")
        thresholds = thresholds_from_settings()
        sections = [
            score_section(section.id, section.name, section.paragraphs, thresholds)
            for section in snapshot.sections
            if section.paragraphs is not None and has_content(section)
        ]
        return score_proposal(proposal_id, sections, thresholds).model_dump()

    return router
