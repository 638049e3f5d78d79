from typing import Any, Callable, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError
from sqlalchemy.orm import Session

from lineflow.config import settings
from lineflow.database import get_db
from lineflow.logging_config import get_logger
from lineflow.schemas.webhook import LineEvent, WebhookEnvelope, WebhookResponse
from lineflow.services.ai_service import echo_reply, generate_ai_reply
from lineflow.services.contact_service import follow_contact, get_or_create_contact, unfollow_contact
from lineflow.services.line_service import (
    LineService,
    SignatureInvalid,
    SignatureMissing,
    check_signature,
    get_line_service,
    text_message,
)
from lineflow.services.message_service import save_message
from lineflow.services.scenario_service import run_triggered_scenarios

logger = get_logger("webhook")

router = APIRouter()

SIGNATURE_HEADER = "x-line-signature"


def build_reply_text(db: Session, contact_id, text: str) -> Optional[str]:
    """Reply for an inbound text according to REPLY_MODE (echo, ai, off)."""
    if settings.reply_mode == "off":
        return None
    if settings.reply_mode == "echo":
        return echo_reply(text)
    return generate_ai_reply(db, contact_id, text).text


def handle_message_event(db: Session, event: LineEvent, line: LineService) -> None:
    line_user_id = event.user_id
    if not line_user_id:
        return

    contact, _ = get_or_create_contact(db, line_user_id, line)
    message_type = event.message.type if event.message else "unknown"
    if message_type == "text":
        content = event.message.text or ""
    else:
        content = f"[{message_type}]"

    save_message(
        db,
        contact.id,
        "inbound",
        content,
        message_type=message_type,
        raw_json=event.model_dump(mode="json", exclude_none=True),
    )
    db.commit()

    if message_type != "text":
        return

    reply_text = build_reply_text(db, contact.id, content)
    if reply_text and event.replyToken:
        line.reply_message(event.replyToken, [text_message(reply_text)])
        save_message(db, contact.id, "outbound", reply_text)
        db.commit()

    run_triggered_scenarios(db, "message_keyword", {"text": content}, contact.id, line)


def handle_follow_event(db: Session, event: LineEvent, line: LineService) -> None:
    line_user_id = event.user_id
    if not line_user_id:
        return

    contact = follow_contact(db, line_user_id, line)
    db.commit()
    run_triggered_scenarios(db, "follow", {}, contact.id, line)


def handle_unfollow_event(db: Session, event: LineEvent, line: LineService) -> None:
    line_user_id = event.user_id
    if not line_user_id:
        return
    unfollow_contact(db, line_user_id)


def handle_postback_event(db: Session, event: LineEvent, line: LineService) -> None:
    line_user_id = event.user_id
    if not line_user_id:
        return

    contact, _ = get_or_create_contact(db, line_user_id, line)
    data = event.postback.data if event.postback else ""
    save_message(
        db,
        contact.id,
        "inbound",
        data,
        message_type="postback",
        raw_json=event.model_dump(mode="json", exclude_none=True),
    )
    logger.info("Postback received", extra={"context": {"contact_id": str(contact.id), "data": data[:200]}})


EVENT_HANDLERS: dict[str, Callable[[Session, LineEvent, LineService], None]] = {
    "message": handle_message_event,
    "follow": handle_follow_event,
    "unfollow": handle_unfollow_event,
    "postback": handle_postback_event,
}


def process_events(db: Session, events: list[Any], line: LineService) -> dict[str, int]:
    """
    Handle events in order. Each event has its own error boundary: a failure
    is logged and the batch moves on, so the platform never sees an error
    and never retries the whole delivery.
    """
    results = {"processed": 0, "ignored": 0, "failed": 0}

    for index, raw_event in enumerate(events):
        event_type = raw_event.get("type") if isinstance(raw_event, dict) else None
        try:
            event = LineEvent.model_validate(raw_event)
            handler = EVENT_HANDLERS.get(event.type)
            if handler is None:
                logger.info("Unhandled event type", extra={"context": {"type": event.type}})
                results["ignored"] += 1
                continue
            handler(db, event, line)
            db.commit()
            results["processed"] += 1
        except Exception as e:
            db.rollback()
            results["failed"] += 1
            logger.error(
                f"Error handling webhook event: {e}",
                exc_info=True,
                extra={"context": {"index": index, "type": event_type}},
            )

    return results


@router.post("/webhook", response_model=WebhookResponse)
async def handle_line_webhook(request: Request, db: Session = Depends(get_db)):
    """Receive a LINE webhook batch. The signature is checked over the raw bytes before parsing."""
    body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)

    try:
        check_signature(body, signature, settings.line_channel_secret)
    except SignatureMissing as e:
        logger.warning("Webhook missing signature")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except SignatureInvalid as e:
        logger.warning("Webhook invalid signature")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))

    try:
        envelope = WebhookEnvelope.model_validate_json(body)
    except ValidationError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON")

    results = process_events(db, envelope.events, get_line_service())
    logger.info("Webhook batch handled", extra={"context": {**results, "events": len(envelope.events)}})
    return WebhookResponse(success=True)
