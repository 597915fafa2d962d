"""
Intake Domain Layer
===================

Domain layer for the conversational intake module.

Contains:
- Entities: ConversationSession, ClassificationResult, TicketDraft, EngineAction
- Value Objects: IntakePolicy, FastTrackCatalog, BusinessSchedule, situational facts
- Validation, model-output parsing, prompt builders and pure state transitions

This layer is framework-agnostic and contains pure business logic.
"""

from helpdesk_ai.intake.domain.entities import (
    ActionType,
    ArticleCandidate,
    ClassificationResult,
    ConversationSession,
    ConversationState,
    DialogMessage,
    EngineAction,
    FeedbackSignal,
    HistoricalTicket,
    KnowledgeArticle,
    KnowledgeArticleRef,
    OpenTicketSnapshot,
    RetrievalRecord,
    TicketDraft,
    UserContext,
)
from helpdesk_ai.intake.domain.validation import ResponseValidator, ValidationResult
from helpdesk_ai.intake.domain.value_objects import (
    BusinessSchedule,
    FastTrackCatalog,
    FastTrackKind,
    FastTrackRule,
    HealthReport,
    ComponentHealth,
    IntakePolicy,
    SituationalContext,
)

__all__ = [
    "ActionType",
    "ArticleCandidate",
    "ClassificationResult",
    "ConversationSession",
    "ConversationState",
    "DialogMessage",
    "EngineAction",
    "FeedbackSignal",
    "HistoricalTicket",
    "KnowledgeArticle",
    "KnowledgeArticleRef",
    "OpenTicketSnapshot",
    "RetrievalRecord",
    "TicketDraft",
    "UserContext",
    "ResponseValidator",
    "ValidationResult",
    "BusinessSchedule",
    "FastTrackCatalog",
    "FastTrackKind",
    "FastTrackRule",
    "HealthReport",
    "ComponentHealth",
    "IntakePolicy",
    "SituationalContext",
]
