from __future__ import annotations

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


ClaimType = Literal["NUMBER", "PERCENTAGE", "CURRENCY", "DATE", "ORGANIZATION", "OUTCOME"]
RiskLevel = Literal["HIGH", "MEDIUM", "LOW"]
ClaimStatus = Literal["VERIFIED", "PARTIAL", "UNVERIFIED", "CONFLICTING", "OUTDATED"]
ParagraphStatus = Literal["GROUNDED", "PARTIAL", "UNGROUNDED", "FAILED"]
ParagraphFlag = Literal[
    "NO_SOURCE",
    "LOW_CONFIDENCE",
    "CONTAINS_PLACEHOLDER",
    "USER_EDITED",
    "ATTRIBUTION_FAILED",
]
PlaceholderType = Literal["MISSING_DATA", "USER_INPUT_REQUIRED", "VERIFICATION_NEEDED"]
ConfidenceLevel = Literal["HIGH", "MEDIUM", "LOW", "CRITICAL", "UNKNOWN"]
IssueSeverity = Literal["ERROR", "WARNING"]
ExportDecision = Literal["ALLOW", "WARN", "BLOCK"]
WarningSeverity = Literal["LOW", "MEDIUM", "HIGH"]
ExportFormat = Literal["DOCX", "PDF", "CLIPBOARD"]
AmbiguityType = Literal["CONTRADICTORY", "VAGUE", "SCOPE_UNCLEAR"]
ChecklistCompletion = Literal["COMPLETE", "INCOMPLETE", "OPTIONAL"]

FAILED_CLAIM_STATUSES: frozenset[str] = frozenset({"UNVERIFIED", "CONFLICTING"})


class RankedChunk(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    document_id: str = Field(..., min_length=1)
    document_name: str = Field(..., min_length=1)
    document_type: str = "other"
    text: str
    embedding: list[float] = Field(default_factory=list)
    similarity: float = 0.0
    program_area: str | None = None
    document_date: date | None = None


class OrganizationProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str = Field(..., min_length=1)
    mission: str | None = None
    geography: str | None = None


class ClaimPosition(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: int = Field(..., ge=0)
    end: int = Field(..., ge=0)


class ExtractedClaim(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    type: ClaimType
    value: str = Field(..., min_length=1)
    context: str
    position: ClaimPosition
    risk_level: RiskLevel


class ClaimEvidence(BaseModel):
    model_config = ConfigDict(frozen=True)

    chunk_id: str
    document_id: str
    document_name: str
    matched_text: str
    similarity: float
    document_date: date | None = None


class VerifiedClaim(ExtractedClaim):
    status: ClaimStatus
    evidence: list[ClaimEvidence] = Field(default_factory=list)
    similarity: float = 0.0

    @property
    def failed(self) -> bool:
        return self.status in FAILED_CLAIM_STATUSES


class ClaimVerificationReport(BaseModel):
    """Outcome of verifying the capped sample of a section's claims.

    ``estimated_verified_total`` extrapolates the sample's verification rate to
    every extracted claim. It is an approximation whenever ``is_estimate`` is set.
    """

    claims: list[VerifiedClaim] = Field(default_factory=list)
    unchecked: list[ExtractedClaim] = Field(default_factory=list)
    total_claims: int = 0
    sampled_claims: int = 0
    verified_in_sample: int = 0
    verification_rate: float | None = None
    estimated_verified_total: int = 0
    is_estimate: bool = False

    def failed_high_risk(self) -> list[ExtractedClaim]:
        failed: list[ExtractedClaim] = [
            claim for claim in self.claims if claim.risk_level == "HIGH" and claim.failed
        ]
        # Claims beyond the verification cap were never checked and cannot be shown as fact.
        failed.extend(claim for claim in self.unchecked if claim.risk_level == "HIGH")
        return failed


class ChunkAttribution(BaseModel):
    model_config = ConfigDict(frozen=True)

    chunk_id: str
    document_id: str
    document_name: str
    similarity: float
    matched_span: str = ""


class AttributedParagraph(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    section_id: str
    index: int = Field(..., ge=0)
    text: str
    supporting_chunks: list[ChunkAttribution] = Field(default_factory=list)
    attribution_score: float = Field(default=0.0, ge=0.0, le=100.0)
    status: ParagraphStatus
    flags: list[ParagraphFlag] = Field(default_factory=list)


class Placeholder(BaseModel):
    id: str
    section_id: str
    type: PlaceholderType
    description: str
    position: int = Field(default=0, ge=0)
    resolved: bool = False
    resolved_content: str | None = None
    suggested_sources: list[str] = Field(default_factory=list)


class PlaceholderSummary(BaseModel):
    total: int = 0
    unresolved: int = 0
    blocking: int = 0
    by_type: dict[str, int] = Field(default_factory=dict)


class DocumentContribution(BaseModel):
    document_id: str
    document_name: str
    paragraph_count: int = 0


class SectionCoverage(BaseModel):
    section_id: str
    section_name: str
    coverage_score: float | None = None
    confidence: ConfidenceLevel = "UNKNOWN"
    grounded_count: int = 0
    partial_count: int = 0
    ungrounded_count: int = 0
    failed_count: int = 0
    total_paragraphs: int = 0
    is_empty: bool = False
    source_documents: list[DocumentContribution] = Field(default_factory=list)


class ProposalCoverage(BaseModel):
    proposal_id: str
    overall_score: float | None = None
    confidence: ConfidenceLevel = "UNKNOWN"
    section_scores: list[SectionCoverage] = Field(default_factory=list)
    lowest_section: str | None = None
    documents_used: int = 0
    total_paragraphs: int = 0


class AmbiguityFlag(BaseModel):
    id: str
    type: AmbiguityType
    description: str
    source_texts: list[str] = Field(default_factory=list)
    suggested_resolutions: list[str] = Field(default_factory=list)
    requires_user_input: bool = False
    resolved: bool = False
    resolution: str | None = None


class ChecklistItem(BaseModel):
    id: str
    name: str = Field(..., min_length=1)
    description: str | None = None
    required: bool = True
    mapped_section_ids: list[str] = Field(default_factory=list)


class SectionSnapshot(BaseModel):
    """One proposal section as stored after its latest generation pass."""

    id: str
    name: str
    content: str = ""
    required: bool = True
    word_limit: int | None = Field(default=None, ge=1)
    char_limit: int | None = Field(default=None, ge=1)
    used_generic_knowledge: bool = False
    enforcement_applied: bool = False
    paragraphs: list[AttributedParagraph] | None = None
    claims: list[VerifiedClaim] = Field(default_factory=list)
    resolved_placeholder_ids: list[str] = Field(default_factory=list)


class ProposalSnapshot(BaseModel):
    id: str
    title: str = ""
    sections: list[SectionSnapshot] = Field(default_factory=list)
    ambiguity_flags: list[AmbiguityFlag] = Field(default_factory=list)
    checklist: list[ChecklistItem] = Field(default_factory=list)
    enforcement_failure: bool = False


class ComplianceIssue(BaseModel):
    code: str
    severity: IssueSeverity
    message: str
    section_id: str | None = None
    section_name: str | None = None


class SectionComplianceStatus(BaseModel):
    section_id: str
    section_name: str
    word_count: int = 0
    char_count: int = 0
    word_limit: int | None = None
    char_limit: int | None = None
    coverage_score: float | None = None
    confidence: ConfidenceLevel = "UNKNOWN"
    unresolved_placeholders: int = 0
    issues: list[ComplianceIssue] = Field(default_factory=list)


class ChecklistItemStatus(BaseModel):
    item_id: str
    name: str
    required: bool
    status: ChecklistCompletion
    mapped_section_ids: list[str] = Field(default_factory=list)


class ComplianceStatus(BaseModel):
    proposal_id: str
    can_export: bool
    overall_score: float | None = None
    overall_confidence: ConfidenceLevel = "UNKNOWN"
    sections: list[SectionComplianceStatus] = Field(default_factory=list)
    proposal_issues: list[ComplianceIssue] = Field(default_factory=list)
    checklist: list[ChecklistItemStatus] = Field(default_factory=list)
    placeholders: PlaceholderSummary = Field(default_factory=PlaceholderSummary)
    error_count: int = 0
    warning_count: int = 0
    checked_at: datetime

    def all_issues(self) -> list[ComplianceIssue]:
        issues = [issue for section in self.sections for issue in section.issues]
        issues.extend(self.proposal_issues)
        return issues


class ExportBlock(BaseModel):
    rule_id: str
    reason: str
    affected_items: list[str] = Field(default_factory=list)
    resolution: str = "Review and fix the identified issues."


class ExportWarning(BaseModel):
    rule_id: str
    severity: WarningSeverity = "MEDIUM"
    message: str
    affected_items: list[str] = Field(default_factory=list)


class ExportGateResult(BaseModel):
    allowed: bool
    decision: ExportDecision
    blocks: list[ExportBlock] = Field(default_factory=list)
    warnings: list[ExportWarning] = Field(default_factory=list)
    attestation_required: bool = False
    attestation_text: str | None = None

    @model_validator(mode="after")
    def _allowed_matches_blocks(self) -> "ExportGateResult":
        if self.allowed != (len(self.blocks) == 0):
            raise ValueError("allowed must be true exactly when there are no blocks")
        if (self.decision == "BLOCK") == self.allowed:
            raise ValueError("decision BLOCK must coincide with allowed=false")
        return self


class EnforcementSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    coverage_score: float | None = None
    verification_rate: float | None = None
    compliance_error_count: int | None = None


class ExportAuditRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    proposal_id: str
    user_id: str
    export_format: ExportFormat
    decision: ExportDecision
    blocks: list[ExportBlock] = Field(default_factory=list)
    warnings: list[ExportWarning] = Field(default_factory=list)
    snapshot: EnforcementSnapshot
    created_at: datetime


class ExportAttestation(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    audit_record_id: str
    attestation_text: str = Field(..., min_length=1)
    attested_at: datetime


class GenerationMetadataRecord(BaseModel):
    generation_id: str
    section_id: str
    organization_id: str
    proposal_id: str
    retrieved_chunk_count: int = 0
    used_generic_knowledge: bool = False
    enforcement_applied: bool = False
    enforcement_failure: bool = False
    claims_replaced: int = 0
    paragraphs_placeholdered: int = 0
    policy_override: bool = False
    min_chunk_similarity: float | None = None
    max_chunk_similarity: float | None = None
    avg_chunk_similarity: float | None = None
    raw_generation: str | None = None
    enforced_generation: str
