from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable
from uuid import uuid4

from beacon.enforcement.compliance import ComplianceChecker, has_content
from beacon.enforcement.models import (
    ComplianceStatus,
    EnforcementSnapshot,
    ExportAttestation,
    ExportAuditRecord,
    ExportBlock,
    ExportFormat,
    ExportGateResult,
    ExportWarning,
    ProposalSnapshot,
    VerifiedClaim,
    WarningSeverity,
)
from beacon.enforcement.placeholders import strip_placeholders

logger = logging.getLogger("beacon.export_gate")

ATTESTATION_TEXT = (
    "I have reviewed the AI-generated content and verify its accuracy for submission to the funder."
)

ISSUE_RESOLUTIONS: dict[str, str] = {
    "WORD_LIMIT_EXCEEDED": "Reduce the content length in the affected sections to meet the limits.",
    "CHAR_LIMIT_EXCEEDED": "Reduce the content length in the affected sections to meet the limits.",
    "REQUIRED_SECTION_EMPTY": "Add content to the empty required sections.",
    "UNRESOLVED_PLACEHOLDER": "Complete every placeholder by providing the required information.",
    "COVERAGE_CRITICAL": "Add source documents to the knowledge base or review the generated content.",
    "UNRESOLVED_AMBIGUITY": "Review and resolve the flagged ambiguities in the funder instructions.",
    "CHECKLIST_INCOMPLETE": "Map each required checklist item to a section with content.",
    "ENFORCEMENT_FAILURE": "Regenerate the affected sections or manually verify all claims and statistics.",
}

WARNING_SEVERITIES: dict[str, WarningSeverity] = {
    "COVERAGE_LOW": "HIGH",
    "GENERIC_KNOWLEDGE": "HIGH",
    "WORD_LIMIT_WARNING": "LOW",
}


class AttestationError(ValueError):
    """Raised when an attestation is recorded against a record that does not accept one."""


@dataclass(frozen=True)
class ExportEvaluation:
    result: ExportGateResult
    audit_record: ExportAuditRecord
    compliance: ComplianceStatus | None


def _visible_failed_claims(proposal: ProposalSnapshot, risk_level: str) -> list[VerifiedClaim]:
    """Failed claims whose text still appears in the section outside placeholder tokens."""
    visible: list[VerifiedClaim] = []
    for section in proposal.sections:
        text = strip_placeholders(section.content)
        for claim in section.claims:
            if claim.risk_level == risk_level and claim.failed and claim.value in text:
                visible.append(claim)
    return visible


def _outdated_claims(proposal: ProposalSnapshot) -> list[VerifiedClaim]:
    claims: list[VerifiedClaim] = []
    for section in proposal.sections:
        text = strip_placeholders(section.content)
        claims.extend(claim for claim in section.claims if claim.status == "OUTDATED" and claim.value in text)
    return claims


def _verification_rate(proposal: ProposalSnapshot) -> float | None:
    claims = [claim for section in proposal.sections for claim in section.claims]
    if not claims:
        return None
    verified = sum(1 for claim in claims if claim.status == "VERIFIED")
    return round(100.0 * verified / len(claims), 1)


def decide(blocks: list[ExportBlock], warnings: list[ExportWarning]) -> ExportGateResult:
    if blocks:
        decision = "BLOCK"
    elif warnings:
        decision = "WARN"
    else:
        decision = "ALLOW"
    attestation_required = decision == "WARN" and any(warning.severity == "HIGH" for warning in warnings)
    return ExportGateResult(
        allowed=not blocks,
        decision=decision,  # type: ignore[arg-type]
        blocks=blocks,
        warnings=warnings,
        attestation_required=attestation_required,
        attestation_text=ATTESTATION_TEXT if attestation_required else None,
    )


class ExportGate:
    """Single ALLOW/WARN/BLOCK decision point for exporting a proposal.

    Fails closed: any error while gathering or evaluating enforcement data
    produces a BLOCK. Every evaluation yields an immutable audit record that the
    caller appends to the audit log.
    """

    def __init__(
        self,
        checker: ComplianceChecker | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._checker = checker or ComplianceChecker()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def evaluate(
        self,
        proposal: ProposalSnapshot,
        *,
        user_id: str,
        export_format: ExportFormat = "DOCX",
    ) -> ExportEvaluation:
        try:
            compliance = self._checker.check(proposal)
            blocks, warnings = self.collect_rules(proposal, compliance)
            result = decide(blocks, warnings)
            snapshot = EnforcementSnapshot(
                coverage_score=compliance.overall_score,
                verification_rate=_verification_rate(proposal),
                compliance_error_count=compliance.error_count,
            )
        except Exception as exc:
            logger.exception(
                "export_gate_failed_closed",
                extra={"event": "export_gate_failed_closed", "proposal_id": proposal.id, "error": str(exc)},
            )
            return self.fail_closed(proposal.id, user_id=user_id, export_format=export_format)

        return self._evaluation(proposal.id, user_id, export_format, result, snapshot, compliance)

    def fail_closed(
        self,
        proposal_id: str,
        *,
        user_id: str,
        export_format: ExportFormat = "DOCX",
    ) -> ExportEvaluation:
        result = decide(
            [
                ExportBlock(
                    rule_id="ENFORCEMENT_FAILURE",
                    reason="Could not verify proposal compliance. Please try again.",
                    resolution="Refresh and try exporting again. If the problem persists, contact support.",
                )
            ],
            [],
        )
        return self._evaluation(proposal_id, user_id, export_format, result, EnforcementSnapshot(), None)

    def _evaluation(
        self,
        proposal_id: str,
        user_id: str,
        export_format: ExportFormat,
        result: ExportGateResult,
        snapshot: EnforcementSnapshot,
        compliance: ComplianceStatus | None,
    ) -> ExportEvaluation:
        record = ExportAuditRecord(
            id=str(uuid4()),
            proposal_id=proposal_id,
            user_id=user_id,
            export_format=export_format,
            decision=result.decision,
            blocks=result.blocks,
            warnings=result.warnings,
            snapshot=snapshot,
            created_at=self._clock(),
        )
        logger.info(
            "export_gate_evaluated",
            extra={
                "event": "export_gate_evaluated",
                "proposal_id": proposal_id,
                "decision": result.decision,
                "block_count": len(result.blocks),
                "warning_count": len(result.warnings),
            },
        )
        return ExportEvaluation(result=result, audit_record=record, compliance=compliance)

    def collect_rules(
        self,
        proposal: ProposalSnapshot,
        compliance: ComplianceStatus,
    ) -> tuple[list[ExportBlock], list[ExportWarning]]:
        blocks: list[ExportBlock] = []
        warnings: list[ExportWarning] = []

        grouped_errors: dict[str, list[str]] = {}
        grouped_messages: dict[str, str] = {}
        for issue in compliance.all_issues():
            if issue.severity == "ERROR":
                grouped_errors.setdefault(issue.code, []).append(issue.section_name or issue.message)
                grouped_messages.setdefault(issue.code, issue.message)
            else:
                warnings.append(
                    ExportWarning(
                        rule_id=issue.code,
                        severity=WARNING_SEVERITIES.get(issue.code, "MEDIUM"),
                        message=issue.message,
                        affected_items=[issue.section_name] if issue.section_name else [],
                    )
                )
        for code, affected in grouped_errors.items():
            reason = grouped_messages[code] if len(affected) == 1 else f"{len(affected)} issues of type {code}"
            blocks.append(
                ExportBlock(
                    rule_id=code,
                    reason=reason,
                    affected_items=affected,
                    resolution=ISSUE_RESOLUTIONS.get(code, "Review and fix the identified issues."),
                )
            )

        high_risk = _visible_failed_claims(proposal, "HIGH")
        if high_risk:
            blocks.append(
                ExportBlock(
                    rule_id="HIGH_RISK_UNVERIFIED",
                    reason=(
                        f"{len(high_risk)} high-risk claim(s) are unverified or conflict with your sources "
                        "(statistics, dollar amounts or outcomes)."
                    ),
                    affected_items=[claim.value for claim in high_risk],
                    resolution="Verify or remove these claims by adding supporting documents or editing the content.",
                )
            )

        missing_coverage = [
            section.name
            for section in proposal.sections
            if section.enforcement_applied and has_content(section) and section.paragraphs is None
        ]
        if missing_coverage:
            blocks.append(
                ExportBlock(
                    rule_id="NULL_COVERAGE_DATA",
                    reason="Source coverage could not be computed for generated content. Export blocked for safety.",
                    affected_items=missing_coverage,
                    resolution="Regenerate the affected sections to recompute coverage.",
                )
            )

        medium_risk = _visible_failed_claims(proposal, "MEDIUM")
        if medium_risk:
            warnings.append(
                ExportWarning(
                    rule_id="UNVERIFIED_MEDIUM_CLAIMS",
                    severity="MEDIUM",
                    message=f"{len(medium_risk)} medium-risk claim(s) could not be verified against your sources.",
                    affected_items=[claim.value for claim in medium_risk],
                )
            )

        outdated = _outdated_claims(proposal)
        if outdated:
            warnings.append(
                ExportWarning(
                    rule_id="OUTDATED_SOURCES",
                    severity="LOW",
                    message=f"{len(outdated)} claim(s) rely on source documents older than two years.",
                    affected_items=[claim.value for claim in outdated],
                )
            )
        return blocks, warnings


def record_attestation(
    record: ExportAuditRecord,
    attestation_text: str,
    *,
    clock: Callable[[], datetime] | None = None,
) -> ExportAttestation:
    if record.decision != "WARN":
        raise AttestationError(f"Attestation is only accepted for WARN decisions (record is {record.decision}).")
    text = attestation_text.strip()
    if not text:
        raise AttestationError("Attestation text is required.")
    now = clock() if clock else datetime.now(timezone.utc)
    return ExportAttestation(
        id=str(uuid4()),
        audit_record_id=record.id,
        attestation_text=text,
        attested_at=now,
    )
