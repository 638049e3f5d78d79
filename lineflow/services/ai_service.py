"""AI reply pipeline: lexical knowledge lookup, history, LLM call, escalation and audit log."""

import time
from dataclasses import dataclass, field
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from lineflow.config import settings
from lineflow.database import utcnow
from lineflow.logging_config import get_logger
from lineflow.models import AiChatLog, KnowledgeArticle
from lineflow.services.alert_service import alert_error
from lineflow.services.escalation_service import create_escalation
from lineflow.services.knowledge_service import format_knowledge_context, search_knowledge
from lineflow.services.llm import AnthropicProvider, LLMProvider, LLMUnavailableError, OpenAIProvider
from lineflow.services.message_service import get_recent_messages

logger = get_logger("ai_service")

HISTORY_LIMIT = 10
HISTORY_TURNS_SENT = 8
KNOWLEDGE_LIMIT = 5

# Operator-handoff phrases; any of them in the generated reply means escalate
ESCALATION_PHRASES: Tuple[str, ...] = (
    "担当者に確認",
    "担当者にお繋ぎ",
    "オペレーター",
    "確認いたします",
    "わかりかねます",
)

# (knowledge retrieved, escalation fired) -> confidence
CONFIDENCE_TABLE = {
    (True, False): 0.8,
    (True, True): 0.3,
    (False, False): 0.2,
    (False, True): 0.2,
}
LLM_FAILURE_CONFIDENCE = 0.0

LLM_FAILURE_REPLY = "申し訳ございません。現在応答を生成できません。担当者におつなぎいたします。"
EMPTY_REPLY = "申し訳ございません。応答を生成できませんでした。"
ECHO_PREFIX = "受信: "

SYSTEM_PROMPT_TEMPLATE = """あなたはLINE公式アカウントのAIアシスタントです。
以下のルールに従って応答してください:
- 丁寧で親しみやすい日本語で応答する
- 簡潔に回答する（LINE メッセージなので200文字以内が理想）
- ナレッジベースの情報を優先して回答する
- ナレッジベースに該当する情報がない場合は正直に「担当者に確認いたします」と回答する
- 絵文字は控えめに使う
- 個人情報や機密情報を聞き出そうとしない

{knowledge_section}"""

NO_KNOWLEDGE_SECTION = "## ナレッジベース\n登録された情報がありません。担当者への確認を案内してください。"


@dataclass
class AiReplyResult:
    text: str
    should_escalate: bool
    confidence: float
    knowledge_ids: List[UUID] = field(default_factory=list)
    latency_ms: int = 0
    chat_log_id: Optional[UUID] = None


_llm_provider: Optional[LLMProvider] = None


def get_llm_provider() -> LLMProvider:
    """Get or create LLM provider instance for the configured backend."""
    global _llm_provider
    if _llm_provider is None:
        if settings.llm_provider == "openai":
            _llm_provider = OpenAIProvider(
                api_key=settings.openai_api_key,
                default_model=settings.openai_model,
                timeout_seconds=settings.llm_timeout_seconds,
            )
        else:
            _llm_provider = AnthropicProvider(
                api_key=settings.anthropic_api_key,
                default_model=settings.anthropic_model,
                resource=settings.anthropic_resource,
                timeout_seconds=settings.llm_timeout_seconds,
            )
    return _llm_provider


def detect_escalation(reply_text: str, phrases: Tuple[str, ...] = ESCALATION_PHRASES) -> bool:
    return any(phrase in reply_text for phrase in phrases)


def score_reply(knowledge_used: bool, should_escalate: bool) -> float:
    """Heuristic confidence; the model does not report one."""
    return CONFIDENCE_TABLE[(knowledge_used, should_escalate)]


def build_system_prompt(articles: List[KnowledgeArticle]) -> str:
    context = format_knowledge_context(articles)
    section = f"## ナレッジベース（参考情報）\n{context}" if context else NO_KNOWLEDGE_SECTION
    return SYSTEM_PROMPT_TEMPLATE.format(knowledge_section=section)


def get_conversation_history(db: Session, contact_id: UUID, limit: int = HISTORY_LIMIT) -> List[dict]:
    """Stored messages as chat turns, oldest first."""
    history = []
    for message in get_recent_messages(db, contact_id, limit=limit):
        role = "user" if message.direction == "inbound" else "assistant"
        history.append({"role": role, "content": message.content})
    return history


def build_turns(history: List[dict], user_message: str) -> List[dict]:
    """Last turns of history plus the new user message."""
    # The inbound message is usually stored before the reply is generated
    if history and history[-1]["role"] == "user" and history[-1]["content"] == user_message:
        history = history[:-1]
    return [*history[-HISTORY_TURNS_SENT:], {"role": "user", "content": user_message}]


def _record_chat(
    db: Session,
    contact_id: UUID,
    user_message: str,
    result: AiReplyResult,
) -> None:
    """Audit row plus escalation. Failures here are logged and swallowed."""
    try:
        chat_log = AiChatLog(
            contact_id=contact_id,
            user_message=user_message,
            ai_reply=result.text,
            confidence=result.confidence,
            should_escalate=result.should_escalate,
            knowledge_ids=[str(kid) for kid in result.knowledge_ids],
            response_time_ms=result.latency_ms,
            created_at=utcnow(),
        )
        db.add(chat_log)
        db.flush()
        result.chat_log_id = chat_log.id

        if result.should_escalate:
            create_escalation(db, chat_log)
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(
            f"Failed to log AI chat: {e}",
            exc_info=True,
            extra={"context": {"contact_id": str(contact_id)}},
        )


def generate_ai_reply(
    db: Session,
    contact_id: UUID,
    user_message: str,
    provider: Optional[LLMProvider] = None,
) -> AiReplyResult:
    """
    Produce an AI reply for one inbound message.

    Never raises for LLM problems: an outage becomes a fixed apology with
    forced escalation and zero confidence. Every call leaves an AiChatLog
    row (and an Escalation when flagged) unless the audit write itself fails.
    """
    started = time.monotonic()

    articles = search_knowledge(db, user_message, limit=KNOWLEDGE_LIMIT)
    history = get_conversation_history(db, contact_id)
    system_prompt = build_system_prompt(articles)
    turns = build_turns(history, user_message)

    try:
        llm = provider or get_llm_provider()
        response = llm.complete(system_prompt, turns, max_tokens=settings.llm_max_tokens)
        reply_text = (response.content or "").strip() or EMPTY_REPLY
        should_escalate = detect_escalation(reply_text)
        confidence = score_reply(bool(articles), should_escalate)
    except LLMUnavailableError as e:
        logger.error(f"LLM unavailable: {e}", extra={"context": {"contact_id": str(contact_id)}})
        alert_error("LLM unavailable", {"contact_id": str(contact_id), "error": str(e)[:200]})
        reply_text = LLM_FAILURE_REPLY
        should_escalate = True
        confidence = LLM_FAILURE_CONFIDENCE

    result = AiReplyResult(
        text=reply_text,
        should_escalate=should_escalate,
        confidence=confidence,
        knowledge_ids=[article.id for article in articles],
        latency_ms=int((time.monotonic() - started) * 1000),
    )
    _record_chat(db, contact_id, user_message, result)

    logger.info(
        "AI reply generated",
        extra={
            "context": {
                "contact_id": str(contact_id),
                "confidence": result.confidence,
                "escalate": result.should_escalate,
                "knowledge": len(result.knowledge_ids),
                "latency_ms": result.latency_ms,
            }
        },
    )
    return result


def echo_reply(user_message: str) -> str:
    return f"{ECHO_PREFIX}{user_message}"
