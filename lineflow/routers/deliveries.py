from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from uuid import UUID

from lineflow.config import settings
from lineflow.database import get_db
from lineflow.deps import require_admin_token
from lineflow.schemas.delivery import DeliveryLogResponse, ProcessDeliveriesResponse
from lineflow.services.delivery_service import cancel_delivery, process_scheduled_deliveries
from lineflow.services.delivery_state import InvalidTransitionError
from lineflow.services.line_service import get_line_service

router = APIRouter(prefix="/admin/deliveries", dependencies=[Depends(require_admin_token)])


@router.post("/process", response_model=ProcessDeliveriesResponse)
def process_deliveries(db: Session = Depends(get_db)):
    """External scheduler hook: run one poller batch."""
    results = process_scheduled_deliveries(
        db,
        get_line_service(),
        limit=settings.delivery_batch_size,
        claim_timeout_seconds=settings.delivery_claim_timeout_seconds,
    )
    return ProcessDeliveriesResponse(**results)


@router.post("/{delivery_id}/cancel", response_model=DeliveryLogResponse)
def cancel(delivery_id: UUID, db: Session = Depends(get_db)):
    try:
        log = cancel_delivery(db, delivery_id)
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    if log is None:
        raise HTTPException(status_code=404, detail=f"Delivery {delivery_id} not found")
    db.commit()
    return log
