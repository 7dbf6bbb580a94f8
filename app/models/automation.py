import uuid

from sqlalchemy import JSON, Boolean, Column, DateTime, Text
from sqlalchemy.sql import func

from app.database import Base


class Automation(Base):
    __tablename__ = "crm_automations"

    id = Column(Text, primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(Text, nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    trigger = Column(Text, nullable=False, default="new_lead")
    steps = Column(JSON, nullable=False, default=list)  # [{channel, wait_minutes, message}]
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
