from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from uuid import UUID

from lineflow.database import get_db
from lineflow.deps import require_admin_token
from lineflow.schemas.contact import AttributeResponse, AttributeSetRequest, TagAssignRequest, TagAssignResponse
from lineflow.services.contact_service import assign_tag, get_contact, get_tag, set_attribute
from lineflow.services.line_service import get_line_service
from lineflow.services.scenario_service import run_triggered_scenarios

router = APIRouter(prefix="/api/contacts", dependencies=[Depends(require_admin_token)])


@router.post("/{contact_id}/tags", response_model=TagAssignResponse)
def post_contact_tag(contact_id: UUID, request: TagAssignRequest, db: Session = Depends(get_db)):
    """Attach a tag. Only a new assignment fires tag_added scenarios."""
    if get_contact(db, contact_id) is None:
        raise HTTPException(status_code=404, detail=f"Contact {contact_id} not found")
    tag = get_tag(db, request.tag_id)
    if tag is None:
        raise HTTPException(status_code=404, detail=f"Tag {request.tag_id} not found")

    assigned = assign_tag(db, contact_id, tag.id)
    db.commit()

    triggered = 0
    if assigned:
        triggered = run_triggered_scenarios(
            db, "tag_added", {"tag_name": tag.name}, contact_id, get_line_service()
        )
    return TagAssignResponse(success=True, assigned=assigned, triggered_scenarios=triggered)


@router.put("/{contact_id}/attributes", response_model=AttributeResponse)
def put_contact_attribute(contact_id: UUID, request: AttributeSetRequest, db: Session = Depends(get_db)):
    if get_contact(db, contact_id) is None:
        raise HTTPException(status_code=404, detail=f"Contact {contact_id} not found")
    attribute = set_attribute(db, contact_id, request.key, request.value)
    db.commit()
    return AttributeResponse(contact_id=contact_id, key=attribute.key, value=attribute.value)
