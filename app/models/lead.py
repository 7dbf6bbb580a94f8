import uuid

from sqlalchemy import JSON, Column, DateTime, Integer, Text
from sqlalchemy.sql import func

from app.database import Base


class Lead(Base):
    __tablename__ = "crm_leads"

    id = Column(Text, primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(Text, nullable=False)
    company = Column(Text)
    email = Column(Text, index=True)
    phone = Column(Text)  # display form, e.g. (11) 98765-4321
    phone_digits = Column(Text, index=True)
    origin = Column(Text)  # whatsapp, instagram, facebook
    score = Column(Integer, nullable=False, default=0)
    stage_id = Column(Text, nullable=False, default="new")
    value = Column(Integer, nullable=False, default=0)
    last_touch_at = Column(DateTime(timezone=True))
    meta = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
