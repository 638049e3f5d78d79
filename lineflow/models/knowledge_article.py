import uuid

from sqlalchemy import Boolean, Column, DateTime, Text, Uuid

from lineflow.database import Base, utcnow


class KnowledgeArticle(Base):
    __tablename__ = "knowledge_articles"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(Text, nullable=False)
    content = Column(Text, nullable=False)
    category = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
