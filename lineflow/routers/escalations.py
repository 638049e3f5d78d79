from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from uuid import UUID

from lineflow.database import get_db
from lineflow.deps import require_admin_token
from lineflow.schemas.escalation import EscalationResponse, EscalationUpdate
from lineflow.services.escalation_service import EscalationError, list_escalations, update_escalation

router = APIRouter(prefix="/api/escalations", dependencies=[Depends(require_admin_token)])


@router.get("", response_model=list[EscalationResponse])
def get_escalations(
    status: Optional[str] = None,
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    return list_escalations(db, status=status, limit=limit)


@router.patch("/{escalation_id}", response_model=EscalationResponse)
def patch_escalation(escalation_id: UUID, request: EscalationUpdate, db: Session = Depends(get_db)):
    try:
        escalation = update_escalation(db, escalation_id, **request.model_dump(exclude_unset=True))
    except EscalationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    if escalation is None:
        raise HTTPException(status_code=404, detail=f"Escalation {escalation_id} not found")
    db.commit()
    return escalation
