from __future__ import annotations

from typing import AsyncIterator

from fastapi import APIRouter, HTTPException
from fastapi.responses import StreamingResponse

from beacon.api.services.runtime import (
    LanguageModelGetter,
    RetrieverGetter,
    build_generation_pipeline,
    require_organization,
    require_proposal,
    require_section,
)
from beacon.enforcement.pipeline import (
    GenerationRequest,
    GenerationRequestError,
    OrganizationNotFoundError,
    stream_outcome,
    validate_request,
)
from beacon.observability import get_request_id, request_scope


def build_generation_router(
    *,
    get_language_model: LanguageModelGetter,
    get_retriever: RetrieverGetter,
) -> APIRouter:
    router = APIRouter()

    @router.post("/generate")
    async def generate_section(payload: GenerationRequest) -> StreamingResponse:
        try:
            validate_request(payload)
        except GenerationRequestError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc

        require_organization(payload.context.organization_id)
        proposal = require_proposal(payload.context.proposal_id)
        if proposal["organization_id"] != payload.context.organization_id:
            raise HTTPException(status_code=404, detail="Proposal not found")
        require_section(payload.context.proposal_id, str(payload.context.section_id))

        pipeline = build_generation_pipeline(
            retriever=get_retriever(),
            language_model=get_language_model(),
        )

        request_id = get_request_id()

        async def body() -> AsyncIterator[str]:
            # The whole attempt runs inside the stream so an abandoned request writes nothing.
            # The middleware has already unbound its request id by the time the body is iterated.
            with request_scope(request_id):
                try:
                    outcome = await pipeline.run(payload)
                except OrganizationNotFoundError as exc:
                    yield f"[BEACON WARNING: {exc}]"
                    return
                async for piece in stream_outcome(outcome):
                    yield piece

        return StreamingResponse(
            body(),
            media_type="text/plain; charset=utf-8",
            headers={"Cache-Control": "no-store"},
        )

    return router
