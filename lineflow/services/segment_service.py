"""Dynamic audience segments and broadcast delivery."""

import uuid
from datetime import datetime, timedelta
from typing import Any, Iterable, List, Optional, Tuple, Union
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy import Float, and_, cast, func, select
from sqlalchemy.orm import Session, aliased
from sqlalchemy.sql import Select

from lineflow.database import ensure_timezone, utcnow
from lineflow.logging_config import get_logger
from lineflow.models import Contact, ContactAttribute, ContactTag, DeliveryLog, Message, Tag
from lineflow.schemas.segment import PREVIEW_LIMIT, SegmentCondition
from lineflow.services.delivery_state import DeliveryStatus
from lineflow.services.line_service import LineService
from lineflow.services.message_service import save_message

logger = get_logger("segment_service")

ConditionInput = Union[SegmentCondition, dict]


class InvalidSegmentCondition(ValueError):
    pass


def _coerce_conditions(conditions: Iterable[ConditionInput]) -> List[SegmentCondition]:
    coerced = []
    for condition in conditions:
        if isinstance(condition, SegmentCondition):
            coerced.append(condition)
            continue
        try:
            coerced.append(SegmentCondition.model_validate(condition))
        except ValidationError as e:
            raise InvalidSegmentCondition(str(e)) from e
    return coerced


def _inbound_since(cutoff: datetime) -> Select:
    return select(Message.contact_id).where(Message.direction == "inbound", Message.created_at >= cutoff)


def build_segment_query(conditions: Iterable[ConditionInput], *, now: Optional[datetime] = None) -> Select:
    """
    Translate AND-combined conditions into one SELECT over contacts.

    Every literal is a bound parameter. Day counts become cutoff timestamps
    computed here, so nothing user-supplied is spliced into the SQL text.
    Repeated tag/attribute conditions each get their own join alias.
    """
    now = now or utcnow()
    stmt = select(Contact)
    tag_index = 0
    attr_index = 0

    for cond in _coerce_conditions(conditions):
        if cond.type == "tag":
            contact_tag = aliased(ContactTag, name=f"ct{tag_index}")
            tag = aliased(Tag, name=f"t{tag_index}")
            tag_index += 1
            if cond.operator == "neq":
                # Contacts lacking the tag, untagged ones included. Holding some other tag
                # does not qualify a contact that also holds this one.
                has_tag = (
                    select(contact_tag.contact_id)
                    .join(tag, tag.id == contact_tag.tag_id)
                    .where(contact_tag.contact_id == Contact.id, tag.name == cond.value)
                    .exists()
                )
                stmt = stmt.where(~has_tag)
                continue
            stmt = stmt.join(contact_tag, contact_tag.contact_id == Contact.id).join(
                tag, tag.id == contact_tag.tag_id
            )
            if cond.operator == "eq":
                stmt = stmt.where(tag.name == cond.value)
            else:
                stmt = stmt.where(tag.name.contains(cond.value, autoescape=True))

        elif cond.type == "attribute":
            attr = aliased(ContactAttribute, name=f"ca{attr_index}")
            attr_index += 1
            stmt = stmt.join(attr, and_(attr.contact_id == Contact.id, attr.key == cond.field))
            if cond.operator == "eq":
                stmt = stmt.where(attr.value == cond.value)
            elif cond.operator == "neq":
                stmt = stmt.where(attr.value != cond.value)
            elif cond.operator == "contains":
                stmt = stmt.where(attr.value.contains(cond.value, autoescape=True))
            elif cond.operator == "gt":
                stmt = stmt.where(cast(attr.value, Float) > float(cond.value))
            else:
                stmt = stmt.where(cast(attr.value, Float) < float(cond.value))

        elif cond.type == "status":
            if cond.operator == "eq":
                stmt = stmt.where(Contact.status == cond.value)
            else:
                stmt = stmt.where(Contact.status != cond.value)

        elif cond.type == "last_message_days":
            days = int(cond.value)
            cutoff = now - timedelta(days=days)
            if cond.operator == "lt":
                stmt = stmt.where(Contact.id.in_(_inbound_since(cutoff)))
            elif cond.operator == "gt":
                # Never messaged counts as "not seen within N days"
                stmt = stmt.where(Contact.id.not_in(_inbound_since(cutoff)))
            else:
                last_inbound = func.max(Message.created_at)
                exactly = (
                    select(Message.contact_id)
                    .where(Message.direction == "inbound")
                    .group_by(Message.contact_id)
                    .having(and_(last_inbound <= cutoff, last_inbound > cutoff - timedelta(days=1)))
                )
                stmt = stmt.where(Contact.id.in_(exactly))

        else:
            raise InvalidSegmentCondition(f"Unknown condition type: {cond.type}")

    return stmt.distinct()


def count_segment(db: Session, conditions: Iterable[ConditionInput]) -> int:
    stmt = build_segment_query(conditions)
    return db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()


def find_segment_contacts(
    db: Session,
    conditions: Iterable[ConditionInput],
    limit: Optional[int] = None,
) -> List[Contact]:
    stmt = build_segment_query(conditions).order_by(Contact.created_at.asc())
    if limit is not None:
        stmt = stmt.limit(limit)
    return list(db.execute(stmt).scalars().all())


def preview_segment(
    db: Session,
    conditions: Iterable[ConditionInput],
    limit: int = PREVIEW_LIMIT,
) -> Tuple[int, List[Contact]]:
    """Read-only: total match count plus the first `limit` contacts."""
    conditions = _coerce_conditions(conditions)
    return count_segment(db, conditions), find_segment_contacts(db, conditions, limit=limit)


def send_segment(
    db: Session,
    conditions: Iterable[ConditionInput],
    text: str,
    line: LineService,
    message_type: str = "text",
) -> dict[str, int]:
    """
    Push a message to every matched contact right now.

    Each recipient is committed on its own; one failed push is recorded
    as a failed delivery log and the loop continues.
    """
    contacts = find_segment_contacts(db, conditions)
    results = {"sent": 0, "failed": 0}

    for contact in contacts:
        contact_id = contact.id
        now = utcnow()
        try:
            line.push_message(contact.line_user_id, [{"type": message_type, "text": text}])
        except Exception as e:
            logger.warning(
                "Segment push failed",
                extra={"context": {"contact_id": str(contact_id), "error": str(e)}},
            )
            db.add(
                DeliveryLog(
                    contact_id=contact_id,
                    message_content=text,
                    status=DeliveryStatus.FAILED.value,
                    error_message=str(e),
                    created_at=now,
                    updated_at=now,
                )
            )
            db.commit()
            results["failed"] += 1
            continue

        save_message(db, contact_id, "outbound", text, message_type=message_type)
        db.add(
            DeliveryLog(
                contact_id=contact_id,
                message_content=text,
                status=DeliveryStatus.SENT.value,
                sent_at=now,
                created_at=now,
                updated_at=now,
            )
        )
        db.commit()
        results["sent"] += 1

    logger.info("Segment send finished", extra={"context": {**results, "matched": len(contacts)}})
    return results


def schedule_segment_broadcast(
    db: Session,
    conditions: Iterable[ConditionInput],
    text: str,
    scheduled_at: datetime,
) -> Tuple[UUID, int]:
    """Write one pending row per matched contact; the poller delivers them once due."""
    scheduled_at = ensure_timezone(scheduled_at)
    broadcast_id = uuid.uuid4()
    now = utcnow()
    contacts = find_segment_contacts(db, conditions)

    for contact in contacts:
        db.add(
            DeliveryLog(
                contact_id=contact.id,
                broadcast_id=broadcast_id,
                message_content=text,
                status=DeliveryStatus.PENDING.value,
                scheduled_at=scheduled_at,
                created_at=now,
                updated_at=now,
            )
        )
    db.flush()

    logger.info(
        "Broadcast scheduled",
        extra={
            "context": {
                "broadcast_id": str(broadcast_id),
                "recipients": len(contacts),
                "scheduled_at": scheduled_at.isoformat(),
            }
        },
    )
    return broadcast_id, len(contacts)


def get_broadcast_history(db: Session, page: int = 1, limit: int = 20) -> Tuple[List[Any], int]:
    """Delivery logs that did not come from a scenario, newest first."""
    base = db.query(DeliveryLog).filter(DeliveryLog.scenario_id.is_(None))
    total = base.count()
    rows = (
        db.query(DeliveryLog, Contact.display_name)
        .outerjoin(Contact, Contact.id == DeliveryLog.contact_id)
        .filter(DeliveryLog.scenario_id.is_(None))
        .order_by(DeliveryLog.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total
