import uuid

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, Text, Uuid
from sqlalchemy.orm import relationship

from lineflow.database import Base, JSONVariant, utcnow


class AiChatLog(Base):
    __tablename__ = "ai_chat_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    contact_id = Column(Uuid, ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False)
    user_message = Column(Text, nullable=False)
    ai_reply = Column(Text, nullable=False)
    confidence = Column(Float, nullable=False, default=0)
    should_escalate = Column(Boolean, nullable=False, default=False)
    knowledge_ids = Column(JSONVariant, nullable=False, default=list)
    response_time_ms = Column(Integer)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    escalation = relationship("Escalation", back_populates="ai_chat_log", uselist=False)
