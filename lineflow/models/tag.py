import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Text, Uuid
from sqlalchemy.orm import relationship

from lineflow.database import Base, utcnow


class Tag(Base):
    __tablename__ = "tags"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False, unique=True)
    color = Column(Text, nullable=False, default="#6B7280")
    description = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class ContactTag(Base):
    __tablename__ = "contact_tags"

    contact_id = Column(Uuid, ForeignKey("contacts.id", ondelete="CASCADE"), primary_key=True)
    tag_id = Column(Uuid, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True)
    assigned_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    contact = relationship("Contact", back_populates="tags")
    tag = relationship("Tag")
