from credisphere.schemas.schemas import (
    UserBase, UserCreate, UserResponse,
    TokenPayload,
    ClassificationSection, UserInputsSection, AnalysisSection, UploadsSection,
    ReportSection, ReportData, section_entry,
    QueryCreate, FieldValues, WorkflowStateResponse,
    ReportListItem, ReportResponse, UploadResponse,
    ChatMessageCreate, ChatMessageResponse,
    DashboardResponse
)

__all__ = [
    "UserBase", "UserCreate", "UserResponse",
    "TokenPayload",
    "ClassificationSection", "UserInputsSection", "AnalysisSection", "UploadsSection",
    "ReportSection", "ReportData", "section_entry",
    "QueryCreate", "FieldValues", "WorkflowStateResponse",
    "ReportListItem", "ReportResponse", "UploadResponse",
    "ChatMessageCreate", "ChatMessageResponse",
    "DashboardResponse"
]
