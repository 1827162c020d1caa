from typing import Annotated
from fastapi import APIRouter, Depends
from credisphere.core import Session
from credisphere.schemas import DashboardResponse
from credisphere.api.v1.auth import get_current_session
from credisphere.api.v1.reports import get_repository, to_list_item
from credisphere.services.report_repository import ReportRepository

router = APIRouter()


@router.get("", response_model=DashboardResponse)
async def get_dashboard(
    session: Annotated[Session, Depends(get_current_session)],
    repository: Annotated[ReportRepository, Depends(get_repository)]
):
    summary = await repository.summarize_reports(session.user_id)
    return DashboardResponse(
        total_reports=summary["total_reports"],
        completed_reports=summary["completed_reports"],
        pending_reports=summary["pending_reports"],
        recent_reports=[to_list_item(r) for r in summary["recent_reports"]],
    )
