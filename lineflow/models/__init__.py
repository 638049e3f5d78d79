from lineflow.models.ai_chat_log import AiChatLog
from lineflow.models.contact import Contact
from lineflow.models.contact_attribute import ContactAttribute
from lineflow.models.delivery_log import DeliveryLog
from lineflow.models.escalation import Escalation
from lineflow.models.knowledge_article import KnowledgeArticle
from lineflow.models.message import Message
from lineflow.models.scenario import Scenario, ScenarioStep
from lineflow.models.tag import ContactTag, Tag

__all__ = [
    "Contact",
    "ContactAttribute",
    "Tag",
    "ContactTag",
    "Message",
    "Scenario",
    "ScenarioStep",
    "DeliveryLog",
    "KnowledgeArticle",
    "AiChatLog",
    "Escalation",
]
