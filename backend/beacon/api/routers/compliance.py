from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Response

from beacon.api.contracts import AttestationRequest, ExportGateRequest
from beacon.api.services.runtime import build_compliance_checker, build_export_gate, require_proposal
from beacon.config import settings
from beacon.db import (
    append_export_attestation,
    append_export_audit_record,
    clear_enforcement_failure,
    get_export_audit_record,
    list_export_attestations,
    list_export_audit_records,
    load_proposal_snapshot,
)
from beacon.enforcement.export_gate import AttestationError, ExportEvaluation, ExportGate, record_attestation

logger = logging.getLogger("beacon.api")

POLL_INTERVAL_HEADER = "X-Poll-Interval-Seconds"


def _poll_headers(response: Response) -> None:
    response.headers[POLL_INTERVAL_HEADER] = str(settings.compliance_poll_interval_seconds)
    response.headers["Cache-Control"] = "no-store"


def _evaluate(gate: ExportGate, proposal_id: str, *, user_id: str, export_format: str) -> ExportEvaluation:
    try:
        snapshot = load_proposal_snapshot(proposal_id)
    except Exception as exc:
        logger.exception(
            "export_snapshot_load_failed",
            extra={"event": "export_snapshot_load_failed", "proposal_id": proposal_id, "error": str(exc)},
        )
        return gate.fail_closed(proposal_id, user_id=user_id, export_format=export_format)  # type: ignore[arg-type]
    if snapshot is None:
        raise HTTPException(status_code=404, detail="Proposal not found")
    return gate.evaluate(snapshot, user_id=user_id, export_format=export_format)  # type: ignore[arg-type]


def build_compliance_router() -> APIRouter:
    router = APIRouter()

    @router.get("/proposals/{proposal_id}/compliance")
    def get_compliance(proposal_id: str, response: Response) -> dict[str, object]:
        snapshot = load_proposal_snapshot(proposal_id)
        if snapshot is None:
            raise HTTPException(status_code=404, detail="Proposal not found")
        _poll_headers(response)
        return build_compliance_checker().check(snapshot).model_dump(mode="json")

    @router.get("/proposals/{proposal_id}/export-gate")
    def preview_export_gate(proposal_id: str, response: Response) -> dict[str, object]:
        evaluation = _evaluate(build_export_gate(), proposal_id, user_id="preview", export_format="DOCX")
        _poll_headers(response)
        return evaluation.result.model_dump(mode="json")

    @router.post("/proposals/{proposal_id}/export-gate")
    def evaluate_export_gate(proposal_id: str, payload: ExportGateRequest) -> dict[str, object]:
        evaluation = _evaluate(
            build_export_gate(),
            proposal_id,
            user_id=payload.user_id,
            export_format=payload.export_format,
        )
        append_export_audit_record(evaluation.audit_record)
        return {
            **evaluation.result.model_dump(mode="json"),
            "audit_record_id": evaluation.audit_record.id,
        }

    @router.get("/proposals/{proposal_id}/export-audit")
    def list_export_audit(proposal_id: str) -> dict[str, object]:
        require_proposal(proposal_id)
        return {
            "proposal_id": proposal_id,
            "records": [record.model_dump(mode="json") for record in list_export_audit_records(proposal_id)],
        }

    @router.post("/proposals/{proposal_id}/enforcement-failure/clear")
    def clear_enforcement_failure_endpoint(proposal_id: str) -> dict[str, object]:
        require_proposal(proposal_id)
        clear_enforcement_failure(proposal_id)
        logger.info(
            "enforcement_failure_cleared",
            extra={"event": "enforcement_failure_cleared", "proposal_id": proposal_id},
        )
        return {"proposal_id": proposal_id, "enforcement_failure": False}

    @router.post("/export/audit/{record_id}/attestation")
    def attest_export(record_id: str, payload: AttestationRequest) -> dict[str, object]:
        record = get_export_audit_record(record_id)
        if record is None:
            raise HTTPException(status_code=404, detail="Export audit record not found")
        try:
            attestation = record_attestation(record, payload.attestation_text)
        except AttestationError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        append_export_attestation(attestation)
        logger.info(
            "export_attested",
            extra={"event": "export_attested", "audit_record_id": record_id, "proposal_id": record.proposal_id},
        )
        return {
            **attestation.model_dump(mode="json"),
            "attestation_count": len(list_export_attestations(record_id)),
        }

    return router
