import uuid

from sqlalchemy import Column, DateTime, Text, Uuid
from sqlalchemy.orm import relationship

from lineflow.database import Base, utcnow


class Contact(Base):
    __tablename__ = "contacts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    line_user_id = Column(Text, nullable=False, unique=True)
    display_name = Column(Text)
    picture_url = Column(Text)
    status_message = Column(Text)
    status = Column(Text, nullable=False, default="active")  # active, blocked, unfollowed
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    messages = relationship("Message", back_populates="contact")
    tags = relationship("ContactTag", back_populates="contact")
    attributes = relationship("ContactAttribute", back_populates="contact")
