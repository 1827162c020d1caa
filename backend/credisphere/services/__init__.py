from credisphere.services.gateway import AnalysisGateway, GatewayError, GatewayResponseError
from credisphere.services.report_repository import ReportRepository, ReportNotFoundError
from credisphere.services.report_workflow import ReportWorkflow, WorkflowValidationError
from credisphere.services.chat_service import ChatService

__all__ = [
    "AnalysisGateway",
    "GatewayError",
    "GatewayResponseError",
    "ReportRepository",
    "ReportNotFoundError",
    "ReportWorkflow",
    "WorkflowValidationError",
    "ChatService"
]
