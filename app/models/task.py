import uuid

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Text
from sqlalchemy.sql import func

from app.database import Base


class Task(Base):
    __tablename__ = "crm_tasks"

    id = Column(Text, primary_key=True, default=lambda: str(uuid.uuid4()))
    title = Column(Text, nullable=False)
    note = Column(Text)
    type = Column(Text)  # follow_up, email
    due_label = Column(Text)
    overdue = Column(Boolean, nullable=False, default=False)
    priority = Column(Text, nullable=False, default="medium")
    related = Column(Text)
    done = Column(Boolean, nullable=False, default=False)
    lead_id = Column(Text, ForeignKey("crm_leads.id", ondelete="SET NULL"))
    deal_id = Column(Text, ForeignKey("crm_deals.id", ondelete="SET NULL"))
    meta = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
