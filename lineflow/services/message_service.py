from typing import List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from lineflow.database import utcnow
from lineflow.models import Message


def save_message(
    db: Session,
    contact_id: UUID,
    direction: str,
    content: Optional[str],
    message_type: str = "text",
    raw_json: Optional[dict] = None,
) -> Message:
    """Append one inbound or outbound message. Messages are never updated."""
    message = Message(
        contact_id=contact_id,
        direction=direction,
        message_type=message_type,
        content=content,
        raw_json=raw_json,
        created_at=utcnow(),
    )
    db.add(message)
    db.flush()
    return message


def get_recent_messages(db: Session, contact_id: UUID, limit: int = 10) -> List[Message]:
    """Latest text messages for a contact, oldest first."""
    messages = (
        db.query(Message)
        .filter(
            Message.contact_id == contact_id,
            Message.message_type == "text",
            Message.content.isnot(None),
        )
        .order_by(Message.created_at.desc())
        .limit(limit)
        .all()
    )
    return list(reversed(messages))
