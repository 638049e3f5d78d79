"""Matches inbound events against active scenario triggers."""

from typing import Any, List, Optional
from uuid import UUID

from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session

from lineflow.logging_config import get_logger
from lineflow.models import Scenario
from lineflow.schemas.scenario import TRIGGER_CONFIG_MODELS, KeywordTrigger, TagAddedTrigger

logger = get_logger("trigger_service")


class TriggerConfigInvalid(Exception):
    def __init__(self, trigger_type: str, detail: str):
        self.trigger_type = trigger_type
        self.detail = detail
        super().__init__(f"Invalid {trigger_type} trigger config: {detail}")


def parse_trigger_config(trigger_type: str, raw: Any) -> BaseModel:
    """Validate a stored or submitted trigger config into its typed variant."""
    model = TRIGGER_CONFIG_MODELS.get(trigger_type)
    if model is None:
        raise TriggerConfigInvalid(trigger_type, "unknown trigger type")
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise TriggerConfigInvalid(trigger_type, f"expected an object, got {type(raw).__name__}")
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        raise TriggerConfigInvalid(trigger_type, str(e)) from e


def _active_scenarios(db: Session, trigger_type: str) -> List[Scenario]:
    return (
        db.query(Scenario)
        .filter(Scenario.trigger_type == trigger_type, Scenario.is_active.is_(True))
        .order_by(Scenario.created_at)
        .all()
    )


def _matches(config: BaseModel, event_data: dict) -> bool:
    if isinstance(config, KeywordTrigger):
        text = event_data.get("text") or ""
        return any(keyword in text for keyword in config.keywords)
    if isinstance(config, TagAddedTrigger):
        tag_name = event_data.get("tag_name")
        return not config.tag_names or tag_name in config.tag_names
    return True


def evaluate_triggers(db: Session, trigger_type: str, event_data: Optional[dict] = None) -> List[UUID]:
    """
    Return ids of every active scenario whose trigger matches the event.

    All matches are returned; there is no priority between scenarios.
    A scenario whose stored config does not parse is skipped.
    """
    event_data = event_data or {}
    if trigger_type == "manual":
        return []
    if trigger_type == "message_keyword" and not event_data.get("text"):
        return []

    matched: List[UUID] = []
    for scenario in _active_scenarios(db, trigger_type):
        try:
            config = parse_trigger_config(trigger_type, scenario.trigger_config)
        except TriggerConfigInvalid as e:
            logger.warning(
                "Skipping scenario with invalid trigger config",
                extra={"context": {"scenario_id": str(scenario.id), "error": e.detail}},
            )
            continue
        if _matches(config, event_data):
            matched.append(scenario.id)

    if matched:
        logger.info(
            "Triggers matched",
            extra={"context": {"trigger_type": trigger_type, "scenario_ids": [str(sid) for sid in matched]}},
        )
    return matched
