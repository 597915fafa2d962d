"""
Intake Domain Entities
======================

Domain entities for the conversational intake module.

Contains pure Python business objects: the conversation session and its
dialogue, the classifier's structured decision, ticket drafts, retrieval
records over the read-only corpora, and the typed action returned to the
chat transport.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Generic, List, Optional, Tuple, TypeVar

from helpdesk_ai.config import (
    Priority, RequestType, ContextSource, DEFAULT_CATEGORY,
)


class ConversationState(str, Enum):
    """States of one intake conversation."""
    GATHERING_INFORMATION = "gathering_information"
    AWAITING_TIP_FEEDBACK = "awaiting_tip_feedback"
    CONFIRM_TICKET = "confirm_ticket"
    EDITING_FROM_CONFIRM = "editing_from_confirm"
    CLOSED = "closed"


class ActionType(str, Enum):
    """What the transport should render for a turn."""
    ANSWER = "answer"
    QUESTION = "question"
    TICKET_CONFIRMATION = "ticketConfirmation"
    TICKET_CREATED = "ticketCreated"


class FeedbackSignal(str, Enum):
    """Button-style signals sent by the transport."""
    HELPED = "helped"
    NOT_HELPED = "notHelped"
    APPROVE = "approve"
    EDIT = "edit"
    CANCEL = "cancel"


class TerminalAction(str, Enum):
    """The single outcome a classification resolves to."""
    KNOWLEDGE_ARTICLE = "knowledge_article"
    QUICK_SOLUTION = "quick_solution"
    OFF_TOPIC_RESPONSE = "off_topic_response"
    DRAFT_TICKET = "draft_ticket"
    NONE = "none"


ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"


def utc_now() -> datetime:
    """Default clock."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class DialogMessage:
    """One entry of the append-only dialogue history."""
    role: str
    content: str


@dataclass(frozen=True)
class UserContext:
    """
    Snapshot of requester attributes captured when the session starts.

    Every field is optional; the transport may know only the requester id.
    """
    requester_id: Optional[str] = None
    name: Optional[str] = None
    city: Optional[str] = None
    institution: Optional[str] = None
    position: Optional[str] = None
    equipment_summary: Optional[str] = None

    @property
    def location(self) -> Optional[str]:
        """City and institution joined, used as the outage/duplicate key."""
        parts = [p.strip() for p in (self.city, self.institution) if p and p.strip()]
        return " / ".join(parts) if parts else None


# ========== Read-only corpora ==========

@dataclass(frozen=True)
class KnowledgeArticle:
    """Published knowledge-base article as seen by retrieval."""
    id: str
    title: str
    body: str
    tags: Tuple[str, ...] = ()
    attachments: Tuple[str, ...] = ()
    embedding: Optional[Tuple[float, ...]] = None

    @property
    def text(self) -> str:
        """Title, body and tags as one searchable string."""
        return "\n".join(p for p in (self.title, self.body, " ".join(self.tags)) if p)


@dataclass(frozen=True)
class HistoricalTicket:
    """Resolved ticket used as precedent for classification and drafting."""
    id: str
    title: str
    description: str
    category: Optional[str] = None
    resolution_summary: Optional[str] = None
    quality_rating: Optional[int] = None
    embedding: Optional[Tuple[float, ...]] = None

    @property
    def text(self) -> str:
        """Title, description and resolution as one searchable string."""
        parts = (self.title, self.description, self.resolution_summary)
        return "\n".join(p for p in parts if p)


@dataclass(frozen=True)
class OpenTicketSnapshot:
    """Open ticket as seen by the deterministic detectors."""
    id: str
    title: str
    description: str
    status: str
    created_at: datetime
    category: Optional[str] = None
    location: Optional[str] = None
    requester_id: Optional[str] = None

    @property
    def text(self) -> str:
        return f"{self.title}\n{self.description}"


T = TypeVar("T")


@dataclass(frozen=True)
class RetrievalRecord(Generic[T]):
    """
    A (source item, similarity score) pair produced fresh per query.

    ``method`` records how the item was found: ``semantic``, ``phrase``
    or ``keywords``.
    """
    item: T
    score: float
    method: str = "semantic"

    def __post_init__(self):
        if not 0.0 <= self.score <= 1.0:
            raise ValueError("Retrieval score must be between 0 and 1")


@dataclass(frozen=True)
class KnowledgeArticleRef:
    """Article reference carried by a classification and shown to the user."""
    id: str
    title: str
    body: str
    attachments: Tuple[str, ...] = ()

    @classmethod
    def from_article(cls, article: KnowledgeArticle) -> "KnowledgeArticleRef":
        return cls(
            id=article.id,
            title=article.title,
            body=article.body,
            attachments=article.attachments,
        )


@dataclass(frozen=True)
class ArticleCandidate:
    """Medium-confidence suggestion."""
    id: str
    title: str
    score: float


# ========== Classification ==========

@dataclass
class ClassificationResult:
    """
    Structured decision produced by the intent classifier.

    At most one of ``knowledge_article``, ``quick_solution`` and
    ``off_topic_response`` survives construction; they are kept in that
    order of precedence.
    """
    request_type: str = RequestType.QUESTION
    confidence: float = 0.0
    is_ticket_intent: bool = False
    needs_more_info: bool = False
    missing_info: FrozenSet[str] = frozenset()
    category: Optional[str] = None
    priority: str = Priority.MEDIUM
    emotional_tone: Optional[str] = None
    quick_solution: Optional[str] = None
    off_topic_response: Optional[str] = None
    knowledge_article: Optional[KnowledgeArticleRef] = None
    knowledge_article_candidates: Tuple[ArticleCandidate, ...] = ()
    need_more_context: bool = False
    more_context_source: str = ContextSource.NONE
    duplicate_ticket_id: Optional[str] = None
    needs_full_analysis: bool = False
    source: str = "full"
    passes: int = 1

    def __post_init__(self):
        """Validate confidence and keep a single terminal answer."""
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError("Confidence must be between 0 and 1")
        if self.knowledge_article is not None:
            self.quick_solution = None
            self.off_topic_response = None
        elif self.quick_solution:
            self.off_topic_response = None
        if not self.need_more_context:
            self.more_context_source = ContextSource.NONE

    @classmethod
    def safe_default(cls, source: str = "default") -> "ClassificationResult":
        """Conservative result used when classification fails outright."""
        return cls(
            request_type=RequestType.QUESTION,
            confidence=0.0,
            is_ticket_intent=False,
            source=source,
        )

    @classmethod
    def from_knowledge_article(
        cls,
        article: KnowledgeArticleRef,
        score: float,
        candidates: Tuple[ArticleCandidate, ...] = (),
    ) -> "ClassificationResult":
        """Result of a turn settled by an accepted high-band knowledge article."""
        return cls(
            request_type=RequestType.QUESTION,
            confidence=min(1.0, max(0.0, score)),
            knowledge_article=article,
            knowledge_article_candidates=tuple(candidates),
            source="knowledge_base",
        )

    @property
    def terminal_action(self) -> TerminalAction:
        if self.knowledge_article is not None:
            return TerminalAction.KNOWLEDGE_ARTICLE
        if self.quick_solution:
            return TerminalAction.QUICK_SOLUTION
        if self.off_topic_response:
            return TerminalAction.OFF_TOPIC_RESPONSE
        if self.is_ticket_intent:
            return TerminalAction.DRAFT_TICKET
        return TerminalAction.NONE


# ========== Tickets ==========

@dataclass
class TicketDraft:
    """Structured ticket awaiting user confirmation."""
    title: str
    description: str
    category: str = DEFAULT_CATEGORY
    priority: str = Priority.MEDIUM
    environment_clues: Dict[str, str] = field(default_factory=dict)
    attachments: List[str] = field(default_factory=list)

    def full_description(self) -> str:
        """Description with the environment clues appendix, if any."""
        if not self.environment_clues:
            return self.description
        lines = [f"- {key}: {value}" for key, value in self.environment_clues.items()]
        return self.description + "\n\nEnvironment:\n" + "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "priority": self.priority,
            "environment_clues": dict(self.environment_clues),
            "attachments": list(self.attachments),
        }


# ========== Session ==========

@dataclass
class ConversationSession:
    """
    Ephemeral state of one intake conversation.

    Owned by the engine; created on the first message and discarded on
    ticket creation, cancellation or idle timeout.
    """
    session_id: str
    user_context: UserContext = field(default_factory=UserContext)
    state: ConversationState = ConversationState.GATHERING_INFORMATION
    dialog_history: List[DialogMessage] = field(default_factory=list)

    # Carried-forward classifier outputs
    cached_priority: Optional[str] = None
    cached_category: Optional[str] = None
    cached_emotional_tone: Optional[str] = None
    cached_request_type: Optional[str] = None

    ticket_draft: Optional[TicketDraft] = None
    attachments: List[str] = field(default_factory=list)
    questions_asked: int = 0
    low_confidence_attempts: int = 0
    suppress_quick_solution: bool = False
    last_quick_solution: Optional[str] = None
    cancelled: bool = False
    created_at: datetime = field(default_factory=utc_now)
    last_activity_at: datetime = field(default_factory=utc_now)

    def add_user_message(self, content: str, max_chars: int) -> None:
        self.dialog_history.append(DialogMessage(ROLE_USER, content.strip()[:max_chars]))

    def add_assistant_message(self, content: str, max_chars: int) -> None:
        self.dialog_history.append(DialogMessage(ROLE_ASSISTANT, content.strip()[:max_chars]))

    @property
    def user_messages(self) -> List[str]:
        return [m.content for m in self.dialog_history if m.role == ROLE_USER]

    @property
    def latest_user_message(self) -> str:
        messages = self.user_messages
        return messages[-1] if messages else ""

    @property
    def is_closed(self) -> bool:
        return self.cancelled or self.state == ConversationState.CLOSED

    def touch(self, now: datetime) -> None:
        self.last_activity_at = now

    def remember_classification(self, result: ClassificationResult) -> None:
        """Carry forward the fields later steps rely on."""
        if result.priority:
            self.cached_priority = result.priority
        if result.category:
            self.cached_category = result.category
        if result.emotional_tone:
            self.cached_emotional_tone = result.emotional_tone
        if result.request_type:
            self.cached_request_type = result.request_type


# ========== Turn output ==========

@dataclass
class EngineAction:
    """Typed result of one turn, independent of any transport."""
    action: ActionType
    session_id: str
    state: ConversationState
    text: str = ""
    knowledge_article: Optional[KnowledgeArticleRef] = None
    suggestions: List[ArticleCandidate] = field(default_factory=list)
    draft: Optional[TicketDraft] = None
    ticket_id: Optional[str] = None
    existing_ticket_id: Optional[str] = None
    manual_fallback: bool = False
