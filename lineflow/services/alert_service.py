"""Operator alerts delivered as LINE push messages."""

from typing import Optional

import httpx

from lineflow.config import settings
from lineflow.logging_config import get_logger

logger = get_logger("alert_service")

LEVEL_MARKERS = {"INFO": "ℹ️", "WARNING": "⚠️", "ERROR": "❌", "CRITICAL": "🔥"}


def format_alert(level: str, message: str, context: Optional[dict] = None) -> str:
    text = f"{LEVEL_MARKERS.get(level, '📢')} [{level}] {message}"
    if context:
        text += "\n" + "\n".join(f"{k}: {v}" for k, v in context.items())
    # LINE text messages are capped at 5000 characters
    return text[:5000]


def send_alert(level: str, message: str, context: Optional[dict] = None) -> bool:
    """Push an alert to the operator LINE account.

    Args:
        level: INFO, WARNING, ERROR, CRITICAL
        message: Alert message
        context: Optional context dict

    Returns:
        True if sent successfully
    """
    target = settings.alert_line_user_id
    token = settings.line_channel_access_token
    if not target or not token:
        logger.warning(f"Alert not configured: {level} - {message}", extra={"context": context or {}})
        return False

    try:
        with httpx.Client(timeout=10) as client:
            response = client.post(
                f"{settings.line_api_base.rstrip('/')}/v2/bot/message/push",
                headers={"Authorization": f"Bearer {token}"},
                json={"to": target, "messages": [{"type": "text", "text": format_alert(level, message, context)}]},
            )
            return response.status_code == 200
    except Exception as e:
        logger.error(f"Failed to send alert: {e}")
        return False


def alert_error(message: str, context: Optional[dict] = None) -> bool:
    """Shortcut for ERROR level alert."""
    return send_alert("ERROR", message, context)


def alert_warning(message: str, context: Optional[dict] = None) -> bool:
    """Shortcut for WARNING level alert."""
    return send_alert("WARNING", message, context)
