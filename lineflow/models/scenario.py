import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Text, Uuid
from sqlalchemy.orm import relationship

from lineflow.database import Base, JSONVariant, utcnow


class Scenario(Base):
    __tablename__ = "scenarios"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    description = Column(Text)
    trigger_type = Column(Text, nullable=False)  # follow, message_keyword, tag_added, manual
    trigger_config = Column(JSONVariant, nullable=False, default=dict)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    steps = relationship(
        "ScenarioStep",
        back_populates="scenario",
        cascade="all, delete-orphan",
        order_by="ScenarioStep.step_order",
    )


class ScenarioStep(Base):
    __tablename__ = "scenario_steps"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    scenario_id = Column(Uuid, ForeignKey("scenarios.id", ondelete="CASCADE"), nullable=False, index=True)
    step_order = Column(Integer, nullable=False)  # 1..N, contiguous per scenario
    message_type = Column(Text, nullable=False, default="text")
    message_content = Column(Text, nullable=False)
    delay_minutes = Column(Integer, nullable=False, default=0)  # relative to step 1
    condition_json = Column(JSONVariant)  # stored only, not evaluated yet
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    scenario = relationship("Scenario", back_populates="steps")
