import math

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from uuid import UUID

from lineflow.database import ensure_timezone, get_db, utcnow
from lineflow.deps import require_admin_token
from lineflow.schemas.segment import (
    BroadcastCancelResponse,
    DeliveryHistoryItem,
    DeliveryHistoryResponse,
    PreviewContact,
    SegmentPreviewResponse,
    SegmentRequest,
    SegmentScheduleRequest,
    SegmentScheduleResponse,
    SegmentSendRequest,
    SegmentSendResponse,
)
from lineflow.services.delivery_service import cancel_broadcast
from lineflow.services.line_service import get_line_service
from lineflow.services.segment_service import (
    get_broadcast_history,
    preview_segment,
    schedule_segment_broadcast,
    send_segment,
)

router = APIRouter(prefix="/api/segments", dependencies=[Depends(require_admin_token)])


@router.post("/preview", response_model=SegmentPreviewResponse)
def preview(request: SegmentRequest, db: Session = Depends(get_db)):
    """Count matching contacts and list the first 100."""
    count, contacts = preview_segment(db, request.conditions)
    return SegmentPreviewResponse(
        count=count,
        contacts=[
            PreviewContact(id=c.id, display_name=c.display_name, picture_url=c.picture_url) for c in contacts
        ],
    )


@router.post("/send", response_model=SegmentSendResponse)
def send(request: SegmentSendRequest, db: Session = Depends(get_db)):
    results = send_segment(
        db,
        request.conditions,
        request.message.text,
        get_line_service(),
        message_type=request.message.type,
    )
    return SegmentSendResponse(success=True, sent=results["sent"], failed=results["failed"])


@router.post("/schedule", response_model=SegmentScheduleResponse)
def schedule(request: SegmentScheduleRequest, db: Session = Depends(get_db)):
    scheduled_at = ensure_timezone(request.scheduled_at)
    if scheduled_at <= utcnow():
        raise HTTPException(status_code=400, detail="scheduled_at must be in the future")

    broadcast_id, count = schedule_segment_broadcast(db, request.conditions, request.message.text, scheduled_at)
    db.commit()
    return SegmentScheduleResponse(
        success=True,
        broadcast_id=broadcast_id,
        scheduled=count,
        scheduled_at=scheduled_at,
    )


@router.post("/broadcasts/{broadcast_id}/cancel", response_model=BroadcastCancelResponse)
def cancel(broadcast_id: UUID, db: Session = Depends(get_db)):
    cancelled = cancel_broadcast(db, broadcast_id)
    db.commit()
    return BroadcastCancelResponse(success=True, broadcast_id=broadcast_id, cancelled=cancelled)


@router.get("/history", response_model=DeliveryHistoryResponse)
def history(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    rows, total = get_broadcast_history(db, page=page, limit=limit)
    items = [
        DeliveryHistoryItem(
            id=log.id,
            contact_id=log.contact_id,
            broadcast_id=log.broadcast_id,
            status=log.status,
            scheduled_at=log.scheduled_at,
            sent_at=log.sent_at,
            error_message=log.error_message,
            created_at=log.created_at,
            display_name=display_name,
        )
        for log, display_name in rows
    ]
    return DeliveryHistoryResponse(
        items=items,
        page=page,
        limit=limit,
        total=total,
        total_pages=math.ceil(total / limit) if total else 0,
    )
