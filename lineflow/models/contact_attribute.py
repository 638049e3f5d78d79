from sqlalchemy import Column, DateTime, ForeignKey, Text, Uuid
from sqlalchemy.orm import relationship

from lineflow.database import Base, utcnow


class ContactAttribute(Base):
    __tablename__ = "contact_attributes"

    contact_id = Column(Uuid, ForeignKey("contacts.id", ondelete="CASCADE"), primary_key=True)
    key = Column(Text, primary_key=True)
    value = Column(Text)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    contact = relationship("Contact", back_populates="attributes")
