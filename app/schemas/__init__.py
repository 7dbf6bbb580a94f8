from app.schemas.gateway import ChannelConfigRequest, CreateInstanceRequest, GatewayRequest, SendTextRequest
from app.schemas.message import ConversationMessageOut, ManualMessageRequest, WorkflowResponse
from app.schemas.webhook import EventOut, EventsResponse, ParsedWebhook, WebhookAck

__all__ = [
    "ChannelConfigRequest",
    "CreateInstanceRequest",
    "GatewayRequest",
    "SendTextRequest",
    "ConversationMessageOut",
    "ManualMessageRequest",
    "WorkflowResponse",
    "EventOut",
    "EventsResponse",
    "ParsedWebhook",
    "WebhookAck",
]
