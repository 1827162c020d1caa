import uuid
from datetime import datetime
from typing import Any, Literal
from pydantic import BaseModel, EmailStr, Field, field_validator

# bcrypt only reads the first 72 bytes of a password
MAX_PASSWORD_BYTES = 72


class UserBase(BaseModel):
    email: EmailStr
    organization_name: str | None = None


class UserCreate(UserBase):
    password: str = Field(min_length=6)

    @field_validator("password")
    @classmethod
    def check_password_length(cls, v: str) -> str:
        if len(v.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
        return v


class UserResponse(UserBase):
    id: uuid.UUID
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class TokenPayload(BaseModel):
    sub: str
    exp: datetime
    type: str


# Sections of Report.other_json_data. Each section is stored under its own
# top-level key (the value of ``kind``) so merges never clobber each other.

class ClassificationSection(BaseModel):
    kind: Literal["classification"] = "classification"
    api_calls: list[str]
    requested_data: list[list[str]]
    form_fields: list[str]


class UserInputsSection(BaseModel):
    kind: Literal["user_inputs"] = "user_inputs"
    values: dict[str, str] = {}


class AnalysisSection(BaseModel):
    kind: Literal["analysis"] = "analysis"
    markdown: str | None = None
    raw: dict[str, Any] = {}


class UploadsSection(BaseModel):
    kind: Literal["uploads"] = "uploads"
    filenames: list[str] = []
    acknowledgement: dict[str, Any] = {}


ReportSection = ClassificationSection | UserInputsSection | AnalysisSection | UploadsSection


def section_entry(section: ReportSection) -> dict[str, Any]:
    """Blob fragment for one section, ready for a merge update."""
    return {section.kind: section.model_dump()}


class ReportData(BaseModel):
    classification: ClassificationSection | None = None
    user_inputs: UserInputsSection | None = None
    analysis: AnalysisSection | None = None
    uploads: UploadsSection | None = None

    @classmethod
    def from_blob(cls, blob: dict | None) -> "ReportData":
        if not blob:
            return cls()
        known = {key: blob[key] for key in cls.model_fields if isinstance(blob.get(key), dict)}
        return cls.model_validate(known)

    @property
    def step(self) -> int:
        """Workflow step implied by the stored sections."""
        if self.analysis is not None:
            return 3
        if self.classification is not None:
            return 2
        return 1


class QueryCreate(BaseModel):
    query: str = Field(min_length=1, max_length=5000)


class FieldValues(BaseModel):
    values: dict[str, str] = {}


class WorkflowStateResponse(BaseModel):
    report_id: str | None
    step: int
    analysis_query: str
    api_calls: list[str]
    requested_data: list[list[str]]
    form_fields: list[str]
    user_inputs: dict[str, str]
    missing_fields: list[str]


class ReportListItem(BaseModel):
    report_id: str
    initial_context: str
    created_at: datetime
    has_narrative: bool

    class Config:
        from_attributes = True


class ReportResponse(BaseModel):
    report_id: str
    user_id: uuid.UUID
    initial_context: str
    text_paragraph_markdown: str | None
    data: ReportData
    created_at: datetime


class UploadResponse(BaseModel):
    report_id: str
    filenames: list[str]
    status: str


class ChatMessageCreate(BaseModel):
    content: str = Field(min_length=1, max_length=4000)


class ChatMessageResponse(BaseModel):
    id: uuid.UUID
    report_id: str
    content: str
    is_user: bool
    timestamp: datetime

    class Config:
        from_attributes = True


class DashboardResponse(BaseModel):
    total_reports: int
    completed_reports: int
    pending_reports: int
    recent_reports: list[ReportListItem]
