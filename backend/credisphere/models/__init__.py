from credisphere.models.models import User, Report, ChatMessage, new_report_id

__all__ = ["User", "Report", "ChatMessage", "new_report_id"]
