"""Contact directory: upserts keyed by LINE user id, tags and attributes."""

from typing import Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from lineflow.database import utcnow
from lineflow.logging_config import get_logger
from lineflow.models import Contact, ContactAttribute, ContactTag, Tag
from lineflow.services.line_service import LineApiError, LineProfile, LineService

logger = get_logger("contact_service")


def fetch_profile(line: Optional[LineService], line_user_id: str) -> Optional[LineProfile]:
    """Profile lookups are best effort; a failure leaves the contact fields untouched."""
    if line is None:
        return None
    try:
        return line.get_profile(line_user_id)
    except LineApiError as e:
        logger.warning(f"Profile fetch failed: {e}", extra={"context": {"line_user_id": line_user_id}})
        return None


def apply_profile(contact: Contact, profile: Optional[LineProfile]) -> None:
    """Replace a field only when the profile actually carried a value."""
    if profile is None:
        return
    if profile.displayName:
        contact.display_name = profile.displayName
    if profile.pictureUrl:
        contact.picture_url = profile.pictureUrl
    if profile.statusMessage:
        contact.status_message = profile.statusMessage


def get_contact(db: Session, contact_id: UUID) -> Optional[Contact]:
    return db.query(Contact).filter(Contact.id == contact_id).first()


def get_contact_by_line_id(db: Session, line_user_id: str) -> Optional[Contact]:
    return db.query(Contact).filter(Contact.line_user_id == line_user_id).first()


def get_or_create_contact(
    db: Session,
    line_user_id: str,
    line: Optional[LineService] = None,
) -> Tuple[Contact, bool]:
    """Find contact by LINE user id or create it. The profile is fetched for new contacts only."""
    contact = get_contact_by_line_id(db, line_user_id)
    if contact:
        return contact, False

    now = utcnow()
    contact = Contact(line_user_id=line_user_id, status="active", created_at=now, updated_at=now)
    apply_profile(contact, fetch_profile(line, line_user_id))
    db.add(contact)
    db.flush()
    logger.info("Contact created", extra={"context": {"contact_id": str(contact.id)}})
    return contact, True


def follow_contact(db: Session, line_user_id: str, line: Optional[LineService] = None) -> Contact:
    """Create or reactivate a contact on follow and refresh its profile fields."""
    profile = fetch_profile(line, line_user_id)
    contact = get_contact_by_line_id(db, line_user_id)
    now = utcnow()
    if contact is None:
        contact = Contact(line_user_id=line_user_id, created_at=now)
        db.add(contact)
    contact.status = "active"
    contact.updated_at = now
    apply_profile(contact, profile)
    db.flush()
    return contact


def unfollow_contact(db: Session, line_user_id: str) -> Optional[Contact]:
    contact = get_contact_by_line_id(db, line_user_id)
    if contact is None:
        return None
    contact.status = "unfollowed"
    contact.updated_at = utcnow()
    db.flush()
    return contact


def assign_tag(db: Session, contact_id: UUID, tag_id: UUID) -> bool:
    """Attach a tag to a contact. Returns False when it was already attached."""
    existing = (
        db.query(ContactTag)
        .filter(ContactTag.contact_id == contact_id, ContactTag.tag_id == tag_id)
        .first()
    )
    if existing:
        return False
    db.add(ContactTag(contact_id=contact_id, tag_id=tag_id, assigned_at=utcnow()))
    db.flush()
    return True


def get_tag(db: Session, tag_id: UUID) -> Optional[Tag]:
    return db.query(Tag).filter(Tag.id == tag_id).first()


def set_attribute(db: Session, contact_id: UUID, key: str, value: Optional[str]) -> ContactAttribute:
    """Upsert one attribute value; last write wins."""
    attribute = (
        db.query(ContactAttribute)
        .filter(ContactAttribute.contact_id == contact_id, ContactAttribute.key == key)
        .first()
    )
    if attribute is None:
        attribute = ContactAttribute(contact_id=contact_id, key=key)
        db.add(attribute)
    attribute.value = value
    attribute.updated_at = utcnow()
    db.flush()
    return attribute
