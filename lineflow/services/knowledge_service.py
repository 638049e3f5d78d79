import re
from typing import List

from sqlalchemy import or_
from sqlalchemy.orm import Session

from lineflow.logging_config import get_logger
from lineflow.models import KnowledgeArticle

logger = get_logger("knowledge_service")

TOKEN_SPLIT_RE = re.compile(r"[\s、。，．,.！？!?「」『』（）()・:：;；]+")
MIN_TOKEN_LENGTH = 2
DEFAULT_LIMIT = 5


def tokenize_query(query: str) -> List[str]:
    """Split on whitespace/punctuation and drop tokens shorter than two characters."""
    tokens = []
    for token in TOKEN_SPLIT_RE.split(query or ""):
        if len(token) >= MIN_TOKEN_LENGTH and token not in tokens:
            tokens.append(token)
    return tokens


def search_knowledge(db: Session, query: str, limit: int = DEFAULT_LIMIT) -> List[KnowledgeArticle]:
    """
    Keyword lookup over active articles, most recently updated first.

    Any token found in a title or body is a hit. With no usable tokens
    the latest active articles are returned instead of nothing.
    """
    tokens = tokenize_query(query)
    articles = db.query(KnowledgeArticle).filter(KnowledgeArticle.is_active.is_(True))

    if tokens:
        clauses = []
        for token in tokens:
            clauses.append(KnowledgeArticle.title.contains(token, autoescape=True))
            clauses.append(KnowledgeArticle.content.contains(token, autoescape=True))
        articles = articles.filter(or_(*clauses))

    results = articles.order_by(KnowledgeArticle.updated_at.desc()).limit(limit).all()
    logger.info(
        f"Knowledge search: found {len(results)} articles",
        extra={"context": {"tokens": tokens[:10], "fallback": not tokens}},
    )
    return results


def format_knowledge_context(articles: List[KnowledgeArticle]) -> str:
    """Format retrieved articles for the LLM system prompt."""
    if not articles:
        return ""
    return "\n\n---\n\n".join(f"【{article.title}】\n{article.content}" for article in articles)
