"""Scenario management and the step execution engine."""

from datetime import timedelta
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from lineflow.database import utcnow
from lineflow.logging_config import get_logger
from lineflow.models import Contact, DeliveryLog, Scenario, ScenarioStep
from lineflow.schemas.scenario import ScenarioCreate, ScenarioUpdate, StepCreate
from lineflow.services.delivery_state import DeliveryStatus
from lineflow.services.line_service import LineService, text_message
from lineflow.services.message_service import save_message
from lineflow.services.trigger_service import evaluate_triggers, parse_trigger_config

logger = get_logger("scenario_service")


class ScenarioNotFound(Exception):
    def __init__(self, scenario_id: UUID):
        self.scenario_id = scenario_id
        super().__init__(f"Scenario {scenario_id} not found")


def get_scenario(db: Session, scenario_id: UUID) -> Scenario:
    scenario = db.query(Scenario).filter(Scenario.id == scenario_id).first()
    if scenario is None:
        raise ScenarioNotFound(scenario_id)
    return scenario


def get_steps(db: Session, scenario_id: UUID) -> List[ScenarioStep]:
    return (
        db.query(ScenarioStep)
        .filter(ScenarioStep.scenario_id == scenario_id)
        .order_by(ScenarioStep.step_order.asc())
        .all()
    )


def list_scenarios(db: Session) -> List[Tuple[Scenario, int]]:
    """Scenarios with their step counts, newest first."""
    return (
        db.query(Scenario, func.count(ScenarioStep.id))
        .outerjoin(ScenarioStep, ScenarioStep.scenario_id == Scenario.id)
        .group_by(Scenario.id)
        .order_by(Scenario.created_at.desc())
        .all()
    )


def _build_step(scenario_id: UUID, order: int, step: StepCreate) -> ScenarioStep:
    return ScenarioStep(
        scenario_id=scenario_id,
        step_order=order,
        message_type=step.message_type,
        message_content=step.message_content,
        delay_minutes=step.delay_minutes,
        condition_json=step.condition_json,
        created_at=utcnow(),
    )


def create_scenario(db: Session, data: ScenarioCreate) -> Scenario:
    """Create a scenario and its steps (orders 1..N). Raises TriggerConfigInvalid."""
    config = parse_trigger_config(data.trigger_type, data.trigger_config)
    now = utcnow()
    scenario = Scenario(
        name=data.name,
        description=data.description,
        trigger_type=data.trigger_type,
        trigger_config=config.model_dump(),
        is_active=data.is_active,
        created_at=now,
        updated_at=now,
    )
    db.add(scenario)
    db.flush()

    for order, step in enumerate(data.steps, start=1):
        db.add(_build_step(scenario.id, order, step))
    db.flush()
    db.refresh(scenario)
    return scenario


def update_scenario(db: Session, scenario_id: UUID, data: ScenarioUpdate) -> Scenario:
    scenario = get_scenario(db, scenario_id)
    changes = data.model_dump(exclude_unset=True)

    if "trigger_type" in changes or "trigger_config" in changes:
        trigger_type = changes.get("trigger_type") or scenario.trigger_type
        raw = changes["trigger_config"] if "trigger_config" in changes else scenario.trigger_config
        scenario.trigger_type = trigger_type
        scenario.trigger_config = parse_trigger_config(trigger_type, raw).model_dump()

    for field in ("name", "description", "is_active"):
        if field in changes:
            setattr(scenario, field, changes[field])

    scenario.updated_at = utcnow()
    db.flush()
    return scenario


def delete_scenario(db: Session, scenario_id: UUID) -> None:
    scenario = get_scenario(db, scenario_id)
    db.delete(scenario)
    db.flush()


def add_step(db: Session, scenario_id: UUID, step: StepCreate) -> ScenarioStep:
    get_scenario(db, scenario_id)
    max_order = (
        db.query(func.max(ScenarioStep.step_order)).filter(ScenarioStep.scenario_id == scenario_id).scalar()
    )
    new_step = _build_step(scenario_id, (max_order or 0) + 1, step)
    db.add(new_step)
    db.flush()
    return new_step


def delete_step(db: Session, scenario_id: UUID, step_id: UUID) -> bool:
    """Remove a step and renumber the rest so orders stay 1..N."""
    step = (
        db.query(ScenarioStep)
        .filter(ScenarioStep.scenario_id == scenario_id, ScenarioStep.id == step_id)
        .first()
    )
    if step is None:
        return False
    db.delete(step)
    db.flush()

    for order, remaining in enumerate(get_steps(db, scenario_id), start=1):
        remaining.step_order = order
    db.flush()
    return True


def _write_delivery_log(
    db: Session,
    *,
    scenario_id: UUID,
    step: ScenarioStep,
    contact_id: UUID,
    status: DeliveryStatus,
    scheduled_at=None,
    sent_at=None,
    error_message: Optional[str] = None,
) -> DeliveryLog:
    now = utcnow()
    log = DeliveryLog(
        scenario_id=scenario_id,
        scenario_step_id=step.id,
        contact_id=contact_id,
        status=status.value,
        scheduled_at=scheduled_at,
        sent_at=sent_at,
        error_message=error_message,
        created_at=now,
        updated_at=now,
    )
    db.add(log)
    db.flush()
    return log


def execute_scenario(db: Session, scenario_id: UUID, contact_id: UUID, line: LineService) -> List[DeliveryLog]:
    """
    Materialize every step of a scenario for one contact as delivery-log rows.

    Only the first step is sent right away, and only when its delay is zero.
    Everything else becomes a pending row due at now + delay_minutes for the poller.
    Calling this twice for the same pair creates two independent sets of rows.
    """
    steps = get_steps(db, scenario_id)
    if not steps:
        return []

    contact = db.query(Contact).filter(Contact.id == contact_id).first()
    if contact is None:
        logger.warning(
            "Scenario execution skipped: contact not found",
            extra={"context": {"scenario_id": str(scenario_id), "contact_id": str(contact_id)}},
        )
        return []

    now = utcnow()
    logs: List[DeliveryLog] = []

    for index, step in enumerate(steps):
        if index == 0 and step.delay_minutes == 0:
            try:
                line.push_message(contact.line_user_id, [text_message(step.message_content)])
            except Exception as e:
                logger.error(
                    "Immediate scenario step failed",
                    extra={"context": {"scenario_id": str(scenario_id), "contact_id": str(contact_id), "error": str(e)}},
                )
                logs.append(
                    _write_delivery_log(
                        db,
                        scenario_id=scenario_id,
                        step=step,
                        contact_id=contact_id,
                        status=DeliveryStatus.FAILED,
                        error_message=str(e),
                    )
                )
                continue

            save_message(db, contact_id, "outbound", step.message_content, message_type=step.message_type)
            logs.append(
                _write_delivery_log(
                    db,
                    scenario_id=scenario_id,
                    step=step,
                    contact_id=contact_id,
                    status=DeliveryStatus.SENT,
                    sent_at=utcnow(),
                )
            )
            continue

        logs.append(
            _write_delivery_log(
                db,
                scenario_id=scenario_id,
                step=step,
                contact_id=contact_id,
                status=DeliveryStatus.PENDING,
                scheduled_at=now + timedelta(minutes=step.delay_minutes),
            )
        )

    logger.info(
        "Scenario executed",
        extra={
            "context": {
                "scenario_id": str(scenario_id),
                "contact_id": str(contact_id),
                "rows": len(logs),
            }
        },
    )
    return logs


def run_triggered_scenarios(
    db: Session,
    trigger_type: str,
    event_data: Optional[dict],
    contact_id: UUID,
    line: LineService,
) -> int:
    """Evaluate triggers and execute every match for the contact. Returns how many ran."""
    executed = 0
    for scenario_id in evaluate_triggers(db, trigger_type, event_data):
        try:
            execute_scenario(db, scenario_id, contact_id, line)
            db.commit()
            executed += 1
        except Exception as e:
            db.rollback()
            logger.error(
                f"Triggered scenario failed: {e}",
                exc_info=True,
                extra={"context": {"scenario_id": str(scenario_id), "contact_id": str(contact_id)}},
            )
    return executed
