import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Text, Uuid
from sqlalchemy.orm import relationship

from lineflow.database import Base, utcnow


class Escalation(Base):
    __tablename__ = "escalations"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    contact_id = Column(Uuid, ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False)
    ai_chat_log_id = Column(Uuid, ForeignKey("ai_chat_logs.id", ondelete="CASCADE"), nullable=False, unique=True)
    status = Column(Text, nullable=False, default="open")  # open, in_progress, resolved
    priority = Column(Text, nullable=False, default="normal")  # normal, high
    assigned_to = Column(Text)
    note = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    resolved_at = Column(DateTime(timezone=True))

    ai_chat_log = relationship("AiChatLog", back_populates="escalation")
    contact = relationship("Contact")
