from app.models.automation import Automation
from app.models.conversation_message import ConversationMessage
from app.models.deal import Deal
from app.models.lead import Lead
from app.models.task import Task

__all__ = [
    "Lead",
    "Deal",
    "Task",
    "Automation",
    "ConversationMessage",
]
