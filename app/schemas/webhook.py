from typing import Any, Optional

from pydantic import BaseModel


class WebhookAck(BaseModel):
    ok: bool
    ignored: Optional[bool] = None
    reason: Optional[str] = None
    seq: Optional[int] = None
    error: Optional[str] = None


class EventOut(BaseModel):
    seq: int
    id: str
    type: str
    channel: str
    instance: Optional[str] = None
    sender: str
    author: Optional[str] = None
    text: str
    receivedAt: int


class EventsResponse(BaseModel):
    ok: bool
    events: list[EventOut]
    nextAfter: int


class ParsedWebhook(BaseModel):
    """Normalized view of one Evolution webhook delivery."""

    from_me: bool = False
    sender: str = ""
    text: str = ""
    push_name: str = ""
    instance: str = ""
    message_id: Optional[str] = None
    raw: Optional[Any] = None
