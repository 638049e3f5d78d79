import base64
import hashlib
import hmac
from typing import Optional

import httpx
from pydantic import BaseModel

from lineflow.config import settings
from lineflow.logging_config import get_logger

logger = get_logger("line_service")


class LineApiError(Exception):
    """A reply/push/profile call to the LINE Messaging API failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class SignatureError(Exception):
    pass


class SignatureMissing(SignatureError):
    pass


class SignatureInvalid(SignatureError):
    pass


class LineProfile(BaseModel):
    userId: Optional[str] = None
    displayName: Optional[str] = None
    pictureUrl: Optional[str] = None
    statusMessage: Optional[str] = None


def compute_signature(body: bytes, channel_secret: str) -> str:
    """Base64 HMAC-SHA256 of the raw request body, as sent in X-Line-Signature."""
    digest = hmac.new(channel_secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_signature(body: bytes, signature: str, channel_secret: str) -> bool:
    if not signature or not channel_secret:
        return False
    expected = compute_signature(body, channel_secret)
    return hmac.compare_digest(expected.encode("ascii"), signature.strip().encode("ascii", errors="replace"))


def check_signature(body: bytes, signature: Optional[str], channel_secret: str) -> None:
    """Raise SignatureMissing or SignatureInvalid unless the header matches the body."""
    if not signature:
        raise SignatureMissing("Missing signature")
    if not verify_signature(body, signature, channel_secret):
        raise SignatureInvalid("Invalid signature")


def text_message(text: str) -> dict:
    return {"type": "text", "text": text}


class LineService:
    """Client for the LINE Messaging API (reply, push, profile)."""

    def __init__(self, access_token: str, base_url: str = "https://api.line.me", timeout: float = 15.0):
        self.access_token = access_token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }

    def _request(self, method: str, path: str, payload: Optional[dict] = None) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.request(method, url, headers=self._headers(), json=payload)
        except httpx.HTTPError as e:
            logger.error(f"LINE API transport error: {e}", extra={"context": {"path": path}})
            raise LineApiError(f"LINE API transport error: {e}") from e

        if response.status_code >= 400:
            logger.error(
                "LINE API error",
                extra={"context": {"path": path, "status": response.status_code, "body": response.text[:500]}},
            )
            raise LineApiError(f"LINE API error: {response.status_code} {response.text}", response.status_code)
        return response

    def reply_message(self, reply_token: str, messages: list[dict]) -> None:
        """Reply tokens are single-use and expire quickly; the caller gets one shot."""
        self._request("POST", "/v2/bot/message/reply", {"replyToken": reply_token, "messages": messages})

    def push_message(self, to: str, messages: list[dict]) -> None:
        self._request("POST", "/v2/bot/message/push", {"to": to, "messages": messages})

    def get_profile(self, line_user_id: str) -> LineProfile:
        response = self._request("GET", f"/v2/bot/profile/{line_user_id}")
        return LineProfile.model_validate(response.json())


_line_service: Optional[LineService] = None


def get_line_service() -> LineService:
    """Get or create the shared LINE client."""
    global _line_service
    if _line_service is None:
        _line_service = LineService(settings.line_channel_access_token, base_url=settings.line_api_base)
    return _line_service
