from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from uuid import UUID

from lineflow.database import get_db
from lineflow.deps import require_admin_token
from lineflow.models import Contact
from lineflow.schemas.scenario import (
    ExecuteRequest,
    ExecuteResponse,
    ScenarioCreate,
    ScenarioResponse,
    ScenarioSummary,
    ScenarioUpdate,
    StepCreate,
    StepResponse,
)
from lineflow.services.line_service import get_line_service
from lineflow.services.scenario_service import (
    ScenarioNotFound,
    add_step,
    create_scenario,
    delete_scenario,
    delete_step,
    execute_scenario,
    get_scenario,
    get_steps,
    list_scenarios,
    update_scenario,
)
from lineflow.services.trigger_service import TriggerConfigInvalid

router = APIRouter(prefix="/api/scenarios", dependencies=[Depends(require_admin_token)])


@router.get("", response_model=list[ScenarioSummary])
def get_scenarios(db: Session = Depends(get_db)):
    return [
        ScenarioSummary(
            id=scenario.id,
            name=scenario.name,
            trigger_type=scenario.trigger_type,
            is_active=scenario.is_active,
            step_count=step_count,
        )
        for scenario, step_count in list_scenarios(db)
    ]


@router.post("", response_model=ScenarioResponse, status_code=201)
def post_scenario(request: ScenarioCreate, db: Session = Depends(get_db)):
    try:
        scenario = create_scenario(db, request)
    except TriggerConfigInvalid as e:
        raise HTTPException(status_code=400, detail=str(e))
    db.commit()
    db.refresh(scenario)
    return scenario


@router.get("/{scenario_id}", response_model=ScenarioResponse)
def get_scenario_detail(scenario_id: UUID, db: Session = Depends(get_db)):
    try:
        return get_scenario(db, scenario_id)
    except ScenarioNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.patch("/{scenario_id}", response_model=ScenarioResponse)
def patch_scenario(scenario_id: UUID, request: ScenarioUpdate, db: Session = Depends(get_db)):
    try:
        scenario = update_scenario(db, scenario_id, request)
    except ScenarioNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except TriggerConfigInvalid as e:
        raise HTTPException(status_code=400, detail=str(e))
    db.commit()
    db.refresh(scenario)
    return scenario


@router.delete("/{scenario_id}")
def remove_scenario(scenario_id: UUID, db: Session = Depends(get_db)):
    try:
        delete_scenario(db, scenario_id)
    except ScenarioNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    db.commit()
    return {"success": True}


@router.post("/{scenario_id}/steps", response_model=StepResponse, status_code=201)
def post_step(scenario_id: UUID, request: StepCreate, db: Session = Depends(get_db)):
    try:
        step = add_step(db, scenario_id, request)
    except ScenarioNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    db.commit()
    return step


@router.delete("/{scenario_id}/steps/{step_id}")
def remove_step(scenario_id: UUID, step_id: UUID, db: Session = Depends(get_db)):
    if not delete_step(db, scenario_id, step_id):
        raise HTTPException(status_code=404, detail=f"Step {step_id} not found")
    db.commit()
    return {"success": True}


@router.post("/{scenario_id}/execute", response_model=ExecuteResponse)
def execute(scenario_id: UUID, request: ExecuteRequest, db: Session = Depends(get_db)):
    """Run the scenario once for each listed contact. Unknown contacts are skipped."""
    try:
        get_scenario(db, scenario_id)
    except ScenarioNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))

    line = get_line_service()
    total_steps = len(get_steps(db, scenario_id))
    executed = 0
    skipped = 0

    for contact_id in request.contact_ids:
        if db.query(Contact.id).filter(Contact.id == contact_id).first() is None:
            skipped += 1
            continue
        execute_scenario(db, scenario_id, contact_id, line)
        db.commit()
        executed += 1

    return ExecuteResponse(success=True, executed=executed, skipped=skipped, total_steps=total_steps)
