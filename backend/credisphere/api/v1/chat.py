import logging
from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException, status
from credisphere.core import Session
from credisphere.schemas import ChatMessageCreate, ChatMessageResponse
from credisphere.api.v1.auth import get_current_session
from credisphere.api.v1.reports import get_gateway, get_repository
from credisphere.services.chat_service import ChatService
from credisphere.services.gateway import AnalysisGateway, GatewayError
from credisphere.services.report_repository import ReportNotFoundError, ReportRepository

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/{report_id}/messages", response_model=list[ChatMessageResponse])
async def list_messages(
    report_id: str,
    session: Annotated[Session, Depends(get_current_session)],
    repository: Annotated[ReportRepository, Depends(get_repository)],
    gateway: Annotated[AnalysisGateway, Depends(get_gateway)]
):
    chat_service = ChatService(session, repository, gateway, report_id)
    try:
        return await chat_service.history()
    except ReportNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Report not found")


@router.post("/{report_id}/messages", response_model=list[ChatMessageResponse], status_code=status.HTTP_201_CREATED)
async def send_message(
    report_id: str,
    message_data: ChatMessageCreate,
    session: Annotated[Session, Depends(get_current_session)],
    repository: Annotated[ReportRepository, Depends(get_repository)],
    gateway: Annotated[AnalysisGateway, Depends(get_gateway)]
):
    """Ask a follow-up question; returns the stored question and reply."""
    chat_service = ChatService(session, repository, gateway, report_id)
    try:
        user_message, bot_message = await chat_service.send(message_data.content)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except ReportNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Report not found")
    except GatewayError as e:
        logger.warning("Chat for report %s failed: %s", report_id, e)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to communicate with chatbot")
    return [user_message, bot_message]
