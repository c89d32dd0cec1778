from pydantic import BaseModel, Field

from beacon.enforcement.models import ExportFormat


class OrganizationCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=160)
    mission: str | None = Field(default=None, max_length=2000)
    geography: str | None = Field(default=None, max_length=200)


class DocumentCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=240)
    document_type: str = Field(default="other", min_length=1, max_length=60)
    program_area: str | None = Field(default=None, max_length=120)
    document_date: str | None = Field(default=None, pattern=r"^\d{4}-\d{2}-\d{2}$")
    chunks: list[str] = Field(..., min_length=1)


class ProposalCreateRequest(BaseModel):
    organization_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1, max_length=240)
    funder_name: str | None = Field(default=None, max_length=240)
    program_title: str | None = Field(default=None, max_length=240)
    funder_instructions: str | None = Field(default=None, max_length=20000)


class SectionCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=160)
    description: str | None = Field(default=None, max_length=2000)
    required: bool = True
    word_limit: int | None = Field(default=None, ge=1)
    char_limit: int | None = Field(default=None, ge=1)


class SectionUpdateRequest(BaseModel):
    content: str


class PlaceholderResolveRequest(BaseModel):
    resolved_content: str = Field(..., min_length=1)


class AmbiguityResolveRequest(BaseModel):
    resolution: str = Field(..., min_length=1, max_length=2000)


class ChecklistItemCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=240)
    description: str | None = Field(default=None, max_length=2000)
    required: bool = True


class ChecklistMappingRequest(BaseModel):
    section_id: str = Field(..., min_length=1)


class ExportGateRequest(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=120)
    export_format: ExportFormat = "DOCX"


class AttestationRequest(BaseModel):
    attestation_text: str = Field(..., min_length=1, max_length=2000)
