import uuid

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, Text
from sqlalchemy.sql import func

from app.database import Base


class Deal(Base):
    __tablename__ = "crm_deals"

    id = Column(Text, primary_key=True, default=lambda: str(uuid.uuid4()))
    title = Column(Text, nullable=False)
    company = Column(Text)
    stage_id = Column(Text, nullable=False, default="discovery")
    amount = Column(Integer, nullable=False, default=0)
    probability = Column(Integer, nullable=False, default=0)
    close_date_label = Column(Text)
    initials = Column(Text)
    lead_id = Column(Text, ForeignKey("crm_leads.id", ondelete="SET NULL"))
    meta = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
