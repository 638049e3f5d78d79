"""Scheduled delivery processor: advances due pending delivery-log rows to a terminal state."""

from datetime import timedelta
from typing import Any, List, Optional
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.orm import Session

from lineflow.database import utcnow
from lineflow.logging_config import get_logger
from lineflow.models import Contact, DeliveryLog, ScenarioStep
from lineflow.services.alert_service import alert_warning
from lineflow.services.delivery_state import DeliveryStatus, cancel, complete, fail
from lineflow.services.line_service import LineService, text_message
from lineflow.services.message_service import save_message

logger = get_logger("delivery_service")

DEFAULT_BATCH_SIZE = 50
DEFAULT_CLAIM_TIMEOUT_SECONDS = 600.0
CLAIM_EXPIRED_ERROR = "claim expired"


def select_due_deliveries(db: Session, *, limit: int = DEFAULT_BATCH_SIZE) -> List[UUID]:
    """Ids of pending rows whose scheduled_at has passed, oldest due first."""
    now = utcnow()
    rows = (
        db.query(DeliveryLog.id)
        .filter(
            DeliveryLog.status == DeliveryStatus.PENDING.value,
            DeliveryLog.scheduled_at.isnot(None),
            DeliveryLog.scheduled_at <= now,
        )
        .order_by(DeliveryLog.scheduled_at.asc(), DeliveryLog.created_at.asc())
        .limit(limit)
        .all()
    )
    return [row.id for row in rows]


def claim_delivery(db: Session, delivery_id: UUID) -> bool:
    """Atomically move one row pending -> processing. False if another run got it first."""
    result = db.execute(
        update(DeliveryLog)
        .where(DeliveryLog.id == delivery_id, DeliveryLog.status == DeliveryStatus.PENDING.value)
        .values(status=DeliveryStatus.PROCESSING.value, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def expire_stale_claims(db: Session, *, older_than_seconds: float = DEFAULT_CLAIM_TIMEOUT_SECONDS) -> int:
    """
    Fail rows stuck in processing, left behind by a run that died between claim and outcome.

    A row counts as stuck once its updated_at is older than `older_than_seconds`.
    """
    cutoff = utcnow() - timedelta(seconds=older_than_seconds)
    result = db.execute(
        update(DeliveryLog)
        .where(DeliveryLog.status == DeliveryStatus.PROCESSING.value, DeliveryLog.updated_at < cutoff)
        .values(status=DeliveryStatus.FAILED.value, error_message=CLAIM_EXPIRED_ERROR, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if result.rowcount:
        logger.warning("Expired stale delivery claims", extra={"context": {"count": result.rowcount}})
    return result.rowcount


def _resolve_content(db: Session, log: DeliveryLog) -> Optional[str]:
    if log.scenario_step_id is not None:
        step = db.query(ScenarioStep).filter(ScenarioStep.id == log.scenario_step_id).first()
        if step is not None:
            return step.message_content
    return log.message_content


def mark_delivery_status(
    db: Session,
    log: DeliveryLog,
    status: DeliveryStatus,
    error_message: Optional[str] = None,
) -> DeliveryLog:
    """Apply a checked transition from the row's current status."""
    if status == DeliveryStatus.SENT:
        log.status = complete(log.status).value
        log.sent_at = utcnow()
    elif status == DeliveryStatus.FAILED:
        log.status = fail(log.status).value
        log.error_message = error_message
    elif status == DeliveryStatus.CANCELLED:
        log.status = cancel(log.status).value
    else:
        raise ValueError(f"Unsupported target status: {status}")
    log.updated_at = utcnow()
    db.flush()
    return log


def deliver_claimed(db: Session, log: DeliveryLog, line: LineService) -> bool:
    """Send one claimed row and record the outcome. Never raises for send failures."""
    contact = db.query(Contact).filter(Contact.id == log.contact_id).first()
    if contact is None or not contact.line_user_id:
        mark_delivery_status(db, log, DeliveryStatus.FAILED, "contact unresolved")
        return False

    content = _resolve_content(db, log)
    if not content:
        mark_delivery_status(db, log, DeliveryStatus.FAILED, "no message content")
        return False

    try:
        line.push_message(contact.line_user_id, [text_message(content)])
    except Exception as e:
        mark_delivery_status(db, log, DeliveryStatus.FAILED, str(e))
        return False

    save_message(db, contact.id, "outbound", content)
    mark_delivery_status(db, log, DeliveryStatus.SENT)
    return True


def process_scheduled_deliveries(
    db: Session,
    line: LineService,
    *,
    limit: int = DEFAULT_BATCH_SIZE,
    claim_timeout_seconds: float = DEFAULT_CLAIM_TIMEOUT_SECONDS,
) -> dict[str, Any]:
    """
    One poller invocation. Handles at most `limit` due rows; the rest wait for the next run.

    Each row is claimed before sending so overlapping runs cannot send it twice.
    Claims older than `claim_timeout_seconds` are failed first.
    Returns counts: processed, sent, failed, skipped (rows another run claimed first)
    and expired (stale claims closed out).
    """
    expired = expire_stale_claims(db, older_than_seconds=claim_timeout_seconds)
    due_ids = select_due_deliveries(db, limit=limit)
    results = {"processed": 0, "sent": 0, "failed": 0, "skipped": 0, "expired": expired}

    for delivery_id in due_ids:
        if not claim_delivery(db, delivery_id):
            results["skipped"] += 1
            continue

        results["processed"] += 1
        log = db.query(DeliveryLog).filter(DeliveryLog.id == delivery_id).first()
        try:
            if deliver_claimed(db, log, line):
                results["sent"] += 1
            else:
                results["failed"] += 1
                logger.warning(
                    "Scheduled delivery failed",
                    extra={"context": {"delivery_id": str(delivery_id), "error": log.error_message}},
                )
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(
                f"Scheduled delivery crashed: {e}",
                exc_info=True,
                extra={"context": {"delivery_id": str(delivery_id)}},
            )
            _fail_after_crash(db, delivery_id, str(e))
            results["failed"] += 1

    if results["processed"] or results["skipped"] or results["expired"]:
        logger.info("Scheduled deliveries processed", extra={"context": results})
    if results["failed"] or results["expired"]:
        alert_warning("Scheduled deliveries failed", results)
    return results


def _fail_after_crash(db: Session, delivery_id: UUID, error: str) -> None:
    """Close out a claimed row whose processing raised, so it is not left in processing."""
    try:
        db.execute(
            update(DeliveryLog)
            .where(DeliveryLog.id == delivery_id, DeliveryLog.status == DeliveryStatus.PROCESSING.value)
            .values(status=DeliveryStatus.FAILED.value, error_message=error, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Could not mark crashed delivery failed: {e}", extra={"context": {"delivery_id": str(delivery_id)}})


def cancel_delivery(db: Session, delivery_id: UUID) -> Optional[DeliveryLog]:
    """Cancel one pending row. Returns None if missing; raises InvalidTransitionError once claimed."""
    log = db.query(DeliveryLog).filter(DeliveryLog.id == delivery_id).first()
    if log is None:
        return None
    return mark_delivery_status(db, log, DeliveryStatus.CANCELLED)


def cancel_broadcast(db: Session, broadcast_id: UUID) -> int:
    """Cancel every still-pending row of a scheduled broadcast. Claimed rows are left alone."""
    result = db.execute(
        update(DeliveryLog)
        .where(DeliveryLog.broadcast_id == broadcast_id, DeliveryLog.status == DeliveryStatus.PENDING.value)
        .values(status=DeliveryStatus.CANCELLED.value, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    db.flush()
    return result.rowcount
