"""Read side of the AI audit trail: paginated chat logs and rolling stats."""

from datetime import timedelta
from typing import Any, List, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from lineflow.database import utcnow
from lineflow.models import AiChatLog, Contact

STATS_WINDOW_DAYS = 30


def list_chat_logs(
    db: Session,
    page: int = 1,
    limit: int = 20,
    escalate_only: bool = False,
) -> Tuple[List[Any], int]:
    """(AiChatLog, display_name, line_user_id) rows newest first, plus the total count."""
    base = db.query(AiChatLog)
    if escalate_only:
        base = base.filter(AiChatLog.should_escalate.is_(True))
    total = base.count()

    query = db.query(AiChatLog, Contact.display_name, Contact.line_user_id).outerjoin(
        Contact, Contact.id == AiChatLog.contact_id
    )
    if escalate_only:
        query = query.filter(AiChatLog.should_escalate.is_(True))
    rows = query.order_by(AiChatLog.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    return rows, total


def chat_log_stats(db: Session, days: int = STATS_WINDOW_DAYS) -> dict[str, Any]:
    """Totals over the last `days` days. Averages are 0 when there are no rows."""
    since = utcnow() - timedelta(days=days)
    total, escalated, avg_confidence = (
        db.query(
            func.count(AiChatLog.id),
            func.count(AiChatLog.id).filter(AiChatLog.should_escalate.is_(True)),
            func.avg(AiChatLog.confidence),
        )
        .filter(AiChatLog.created_at >= since)
        .one()
    )
    # AVG skips NULL response times
    avg_response_ms = (
        db.query(func.avg(AiChatLog.response_time_ms)).filter(AiChatLog.created_at >= since).scalar()
    )
    return {
        "total_responses": total or 0,
        "escalated": escalated or 0,
        "avg_confidence": round(float(avg_confidence or 0), 2),
        "avg_response_ms": round(float(avg_response_ms or 0)),
    }
