import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text, Uuid
from sqlalchemy.orm import relationship

from lineflow.database import Base, utcnow


class DeliveryLog(Base):
    __tablename__ = "delivery_logs"
    __table_args__ = (Index("ix_delivery_logs_status_scheduled", "status", "scheduled_at"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    # Both NULL for segment and manual broadcasts
    scenario_id = Column(Uuid, ForeignKey("scenarios.id", ondelete="SET NULL"))
    scenario_step_id = Column(Uuid, ForeignKey("scenario_steps.id", ondelete="SET NULL"))
    contact_id = Column(Uuid, ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False)
    broadcast_id = Column(Uuid, index=True)
    message_content = Column(Text)  # used when there is no scenario step
    status = Column(Text, nullable=False, default="pending")  # pending, processing, sent, failed, cancelled
    scheduled_at = Column(DateTime(timezone=True))
    sent_at = Column(DateTime(timezone=True))
    error_message = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    step = relationship("ScenarioStep")
    contact = relationship("Contact")
