import logging
from datetime import date
from typing import Annotated, AsyncGenerator
from fastapi import APIRouter, Depends, HTTPException, status, Query, UploadFile, File, Response
from sqlalchemy.ext.asyncio import AsyncSession
from credisphere.core import get_db, get_settings, Session
from credisphere.models import Report
from credisphere.schemas import (
    QueryCreate, FieldValues, WorkflowStateResponse, ReportListItem, ReportResponse, ReportData,
    UploadResponse,
)
from credisphere.api.v1.auth import get_current_session
from credisphere.services.gateway import AnalysisGateway
from credisphere.services.report_repository import ReportRepository
from credisphere.services.report_workflow import ReportWorkflow, WorkflowValidationError

logger = logging.getLogger(__name__)

router = APIRouter()
settings = get_settings()

PDF_MAGIC = b"%PDF-"


async def get_gateway() -> AsyncGenerator[AnalysisGateway, None]:
    async with AnalysisGateway(settings) as gateway:
        yield gateway


def get_repository(db: Annotated[AsyncSession, Depends(get_db)]) -> ReportRepository:
    return ReportRepository(db)


def to_list_item(report: Report) -> ReportListItem:
    return ReportListItem(
        report_id=report.report_id,
        initial_context=report.initial_context,
        created_at=report.created_at,
        has_narrative=bool(report.text_paragraph_markdown),
    )


async def load_workflow(
    report_id: str,
    session: Session,
    repository: ReportRepository,
    gateway: AnalysisGateway,
) -> ReportWorkflow:
    report = await repository.get_report(report_id, session.user_id)
    if not report:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Report not found")
    return ReportWorkflow.resume(report, session, repository, gateway, settings)


def _record_values(workflow: ReportWorkflow, values: dict[str, str]) -> None:
    try:
        for name, value in values.items():
            workflow.record_field(name, value)
    except WorkflowValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.post("", response_model=WorkflowStateResponse, status_code=status.HTTP_201_CREATED)
async def submit_query(
    query_data: QueryCreate,
    session: Annotated[Session, Depends(get_current_session)],
    repository: Annotated[ReportRepository, Depends(get_repository)],
    gateway: Annotated[AnalysisGateway, Depends(get_gateway)]
):
    """Start a report: store the query and fetch the fields it needs."""
    workflow = ReportWorkflow(session, repository, gateway, settings)
    try:
        ok = await workflow.submit_query(query_data.query)
    except WorkflowValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if not ok:
        # The report row may already exist; POST /{report_id}/query retries it
        headers = {"X-Report-Id": workflow.report_id} if workflow.report_id else None
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=workflow.state.error, headers=headers)
    return workflow.to_response()


@router.post("/{report_id}/query", response_model=WorkflowStateResponse)
async def retry_query(
    report_id: str,
    query_data: QueryCreate,
    session: Annotated[Session, Depends(get_current_session)],
    repository: Annotated[ReportRepository, Depends(get_repository)],
    gateway: Annotated[AnalysisGateway, Depends(get_gateway)]
):
    """Resubmit the query of a report whose classification failed."""
    workflow = await load_workflow(report_id, session, repository, gateway)
    try:
        ok = await workflow.submit_query(query_data.query)
    except WorkflowValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if not ok:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=workflow.state.error)
    return workflow.to_response()


@router.get("", response_model=list[ReportListItem])
async def list_reports(
    session: Annotated[Session, Depends(get_current_session)],
    repository: Annotated[ReportRepository, Depends(get_repository)],
    limit: int = Query(default=50, le=200),
    offset: int = Query(default=0, ge=0),
    search: str | None = Query(default=None, max_length=64),
    from_date: date | None = None,
    to_date: date | None = None
):
    """List the user's reports, optionally filtered by id and creation date."""
    if from_date and to_date and from_date > to_date:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="from_date must not be after to_date")
    reports = await repository.list_reports_by_user(
        session.user_id,
        limit=limit,
        offset=offset,
        search=search.strip() if search else None,
        from_date=from_date,
        to_date=to_date,
    )
    return [to_list_item(r) for r in reports]


@router.get("/{report_id}", response_model=ReportResponse)
async def get_report(
    report_id: str,
    session: Annotated[Session, Depends(get_current_session)],
    repository: Annotated[ReportRepository, Depends(get_repository)]
):
    report = await repository.get_report(report_id, session.user_id)
    if not report:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Report not found")
    return ReportResponse(
        report_id=report.report_id,
        user_id=report.user_id,
        initial_context=report.initial_context,
        text_paragraph_markdown=report.text_paragraph_markdown,
        data=ReportData.from_blob(report.other_json_data),
        created_at=report.created_at,
    )


@router.get("/{report_id}/workflow", response_model=WorkflowStateResponse)
async def get_workflow(
    report_id: str,
    session: Annotated[Session, Depends(get_current_session)],
    repository: Annotated[ReportRepository, Depends(get_repository)],
    gateway: Annotated[AnalysisGateway, Depends(get_gateway)]
):
    workflow = await load_workflow(report_id, session, repository, gateway)
    return workflow.to_response()


@router.put("/{report_id}/fields", response_model=WorkflowStateResponse)
async def record_fields(
    report_id: str,
    field_values: FieldValues,
    session: Annotated[Session, Depends(get_current_session)],
    repository: Annotated[ReportRepository, Depends(get_repository)],
    gateway: Annotated[AnalysisGateway, Depends(get_gateway)]
):
    workflow = await load_workflow(report_id, session, repository, gateway)
    _record_values(workflow, field_values.values)
    try:
        ok = await workflow.save_inputs()
    except WorkflowValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if not ok:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=workflow.state.error)
    return workflow.to_response()


@router.post("/{report_id}/submit", response_model=WorkflowStateResponse)
async def submit_final(
    report_id: str,
    field_values: FieldValues,
    session: Annotated[Session, Depends(get_current_session)],
    repository: Annotated[ReportRepository, Depends(get_repository)],
    gateway: Annotated[AnalysisGateway, Depends(get_gateway)]
):
    """Submit every collected field and store the resulting analysis."""
    workflow = await load_workflow(report_id, session, repository, gateway)
    _record_values(workflow, field_values.values)

    missing = workflow.missing_fields()
    if missing:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Please fill all required fields: {', '.join(missing)}",
        )

    try:
        ok = await workflow.submit_final()
    except WorkflowValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if not ok:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=workflow.state.error)
    return workflow.to_response()


@router.post("/{report_id}/files", response_model=UploadResponse, status_code=status.HTTP_202_ACCEPTED)
async def upload_files(
    report_id: str,
    session: Annotated[Session, Depends(get_current_session)],
    repository: Annotated[ReportRepository, Depends(get_repository)],
    gateway: Annotated[AnalysisGateway, Depends(get_gateway)],
    files: list[UploadFile] = File(...)
):
    """Forward supporting PDFs to the analysis gateway."""
    workflow = await load_workflow(report_id, session, repository, gateway)
    if len(files) > settings.upload_max_files:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Maximum {settings.upload_max_files} files allowed",
        )

    prepared = []
    for upload in files:
        filename = upload.filename or ""
        if not filename.lower().endswith(".pdf"):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Only PDF files are supported")
        content = await upload.read(settings.upload_max_bytes + 1)
        if len(content) > settings.upload_max_bytes:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"{filename} exceeds the size limit")
        if not content.startswith(PDF_MAGIC):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"{filename} is not a valid PDF")
        prepared.append((filename, content, upload.content_type or "application/pdf"))

    try:
        ok = await workflow.upload_supporting_files(prepared)
    except WorkflowValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if not ok:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=workflow.state.error)
    return UploadResponse(report_id=report_id, filenames=[name for name, _, _ in prepared], status="uploaded")


@router.delete("/{report_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_report(
    report_id: str,
    session: Annotated[Session, Depends(get_current_session)],
    repository: Annotated[ReportRepository, Depends(get_repository)]
):
    if not await repository.delete_report(report_id, session.user_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Report not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
