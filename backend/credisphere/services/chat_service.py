import logging

from credisphere.core.session import Session
from credisphere.models import ChatMessage
from credisphere.services.gateway import AnalysisGateway
from credisphere.services.report_repository import ReportNotFoundError, ReportRepository

logger = logging.getLogger(__name__)

FALLBACK_REPLY = "Sorry, I couldn't process your request."


class ChatService:
    """Follow-up questions about one report."""

    def __init__(
        self,
        session: Session,
        repository: ReportRepository,
        gateway: AnalysisGateway,
        report_id: str,
    ):
        self.session = session
        self.repository = repository
        self.gateway = gateway
        self.report_id = report_id

    async def _ensure_report(self) -> None:
        report = await self.repository.get_report(self.report_id, self.session.user_id)
        if not report:
            raise ReportNotFoundError(f"Report not found: {self.report_id}")

    async def history(self) -> list[ChatMessage]:
        await self._ensure_report()
        return await self.repository.list_chat_messages(self.report_id, self.session.user_id)

    async def send(self, content: str) -> tuple[ChatMessage, ChatMessage]:
        """Store the question, ask the chat endpoint, store the reply.

        A gateway failure propagates after the question has been stored.
        """
        if not content or not content.strip():
            raise ValueError("Message is empty")
        await self._ensure_report()

        user_message = await self.repository.append_chat_message(
            self.report_id, self.session.user_id, content, is_user=True
        )

        reply = await self.gateway.chat(self.report_id, content)
        if not reply:
            logger.info("Empty chat reply for report %s", self.report_id)
            reply = FALLBACK_REPLY

        bot_message = await self.repository.append_chat_message(
            self.report_id,
            self.session.user_id,
            reply,
            is_user=False,
        )
        return user_message, bot_message
