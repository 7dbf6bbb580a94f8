from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ManualMessageRequest(BaseModel):
    channel: str = "whatsapp"
    text: str = Field(min_length=1)
    peer: str = "test"
    author: Optional[str] = "Lead (teste)"


class WorkflowResponse(BaseModel):
    success: bool
    channel: str
    reply: str
    score: int
    stage: str
    lead_id: Optional[str] = None
    deal_id: Optional[str] = None
    lead_created: bool = False
    deal_created: bool = False
    task_created: bool = False
    automations_triggered: bool = False
    questions: list[str] = []
    audit_events: list[str] = []
    draft: dict = {}


class ConversationMessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    channel: str
    role: str
    author: Optional[str] = None
    peer: Optional[str] = None
    source: Optional[str] = None
    text: str
    meta: dict = {}
    created_at: datetime
