from typing import List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from lineflow.database import utcnow
from lineflow.logging_config import get_logger
from lineflow.models import AiChatLog, Escalation
from lineflow.services.alert_service import alert_warning

logger = get_logger("escalation_service")

ESCALATION_STATUSES = ("open", "in_progress", "resolved")
ESCALATION_PRIORITIES = ("normal", "high")

# Below this confidence an escalation is opened as high priority
HIGH_PRIORITY_CONFIDENCE = 0.2


class EscalationError(Exception):
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


def priority_for_confidence(confidence: float) -> str:
    return "high" if confidence < HIGH_PRIORITY_CONFIDENCE else "normal"


def create_escalation(db: Session, chat_log: AiChatLog) -> Escalation:
    """Open the human-handoff ticket for one AI-answered message."""
    now = utcnow()
    escalation = Escalation(
        contact_id=chat_log.contact_id,
        ai_chat_log_id=chat_log.id,
        status="open",
        priority=priority_for_confidence(chat_log.confidence),
        created_at=now,
        updated_at=now,
    )
    db.add(escalation)
    db.flush()

    logger.info(
        "Escalation opened",
        extra={"context": {"escalation_id": str(escalation.id), "priority": escalation.priority}},
    )
    if escalation.priority == "high":
        alert_warning(
            "High priority escalation",
            {
                "escalation_id": str(escalation.id),
                "contact_id": str(chat_log.contact_id),
                "message": (chat_log.user_message or "")[:200],
            },
        )
    return escalation


def list_escalations(db: Session, status: Optional[str] = None, limit: int = 100) -> List[Escalation]:
    query = db.query(Escalation)
    if status:
        query = query.filter(Escalation.status == status)
    return query.order_by(Escalation.created_at.desc()).limit(limit).all()


def update_escalation(
    db: Session,
    escalation_id: UUID,
    *,
    status: Optional[str] = None,
    assigned_to: Optional[str] = None,
    note: Optional[str] = None,
    priority: Optional[str] = None,
) -> Optional[Escalation]:
    """Operator update: status, assignee, note, priority. Resolving stamps resolved_at."""
    escalation = db.query(Escalation).filter(Escalation.id == escalation_id).first()
    if escalation is None:
        return None

    if status is not None:
        if status not in ESCALATION_STATUSES:
            raise EscalationError(f"Unknown escalation status: {status}")
        escalation.status = status
        escalation.resolved_at = utcnow() if status == "resolved" else None
    if priority is not None:
        if priority not in ESCALATION_PRIORITIES:
            raise EscalationError(f"Unknown escalation priority: {priority}")
        escalation.priority = priority
    if assigned_to is not None:
        escalation.assigned_to = assigned_to
    if note is not None:
        escalation.note = note

    escalation.updated_at = utcnow()
    db.flush()
    return escalation
