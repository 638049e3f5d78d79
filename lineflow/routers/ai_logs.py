import math

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from lineflow.database import get_db
from lineflow.deps import require_admin_token
from lineflow.schemas.ai_log import ChatLogItem, ChatLogListResponse, ChatLogStatsResponse
from lineflow.services.chat_log_service import chat_log_stats, list_chat_logs

router = APIRouter(prefix="/api/ai", dependencies=[Depends(require_admin_token)])


@router.get("/logs", response_model=ChatLogListResponse)
def get_logs(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    escalate: bool = False,
    db: Session = Depends(get_db),
):
    """AI chat audit log, newest first. ?escalate=1 keeps only escalated replies."""
    rows, total = list_chat_logs(db, page=page, limit=limit, escalate_only=escalate)
    items = [
        ChatLogItem(
            id=log.id,
            contact_id=log.contact_id,
            user_message=log.user_message,
            ai_reply=log.ai_reply,
            confidence=log.confidence,
            should_escalate=log.should_escalate,
            knowledge_ids=log.knowledge_ids or [],
            response_time_ms=log.response_time_ms,
            created_at=log.created_at,
            display_name=display_name,
            line_user_id=line_user_id,
        )
        for log, display_name, line_user_id in rows
    ]
    return ChatLogListResponse(
        items=items,
        page=page,
        limit=limit,
        total=total,
        total_pages=math.ceil(total / limit) if total else 0,
    )


@router.get("/logs/stats", response_model=ChatLogStatsResponse)
def get_log_stats(db: Session = Depends(get_db)):
    """Last 30 days: reply count, escalated count, average confidence and response time."""
    return ChatLogStatsResponse(**chat_log_stats(db))
