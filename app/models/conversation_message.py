import uuid

from sqlalchemy import JSON, Column, DateTime, Text

from app.database import Base


class ConversationMessage(Base):
    __tablename__ = "crm_ai_messages"

    id = Column(Text, primary_key=True, default=lambda: str(uuid.uuid4()))
    channel = Column(Text, nullable=False, default="whatsapp", index=True)
    role = Column(Text, nullable=False)  # user, agent, event
    author = Column(Text)
    peer = Column(Text)
    source = Column(Text)  # evolution, test
    text = Column(Text, nullable=False)
    meta = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False)
