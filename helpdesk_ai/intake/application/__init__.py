"""
Intake Application Layer
========================

Application layer for the conversational intake module.

Contains:
- Engine: per-turn orchestration of the conversation state machine
- Services: classification, retrieval, detectors, drafting
- DTOs: Data transfer objects for API serialization
- Interfaces: collaborator abstractions implemented by infrastructure
"""

from helpdesk_ai.intake.application.classifier import ClassificationService, IntentClassifier
from helpdesk_ai.intake.application.context_builders import ContextAssembler
from helpdesk_ai.intake.application.dto import (
    EngineActionResponse,
    FeedbackRequest,
    MessageRequest,
    RequesterInfo,
)
from helpdesk_ai.intake.application.engine import ConversationEngine
from helpdesk_ai.intake.application.fast_track import FastTrackMatch, FastTrackMatcher
from helpdesk_ai.intake.application.interfaces import (
    IEmbeddingProvider,
    IHealthCheck,
    IHistoricalTicketStore,
    IKnowledgeBaseStore,
    ILanguageModel,
    IOpenTicketStore,
    ITicketCreator,
)
from helpdesk_ai.intake.application.provider_settings import (
    ProviderSettings,
    ProviderSettingsCache,
    env_settings_loader,
)
from helpdesk_ai.intake.application.retrieval import (
    EmbeddingIndex,
    KnowledgeLookup,
    KnowledgeRetrievalService,
    TicketRetrievalService,
)
from helpdesk_ai.intake.application.services import (
    QuestionGenerator,
    RelevanceChecker,
    TicketDrafter,
)
from helpdesk_ai.intake.application.sessions import SessionStore

__all__ = [
    # Engine
    "ConversationEngine",
    "SessionStore",
    # Services
    "ClassificationService",
    "IntentClassifier",
    "ContextAssembler",
    "FastTrackMatch",
    "FastTrackMatcher",
    "EmbeddingIndex",
    "KnowledgeLookup",
    "KnowledgeRetrievalService",
    "TicketRetrievalService",
    "QuestionGenerator",
    "RelevanceChecker",
    "TicketDrafter",
    "ProviderSettings",
    "ProviderSettingsCache",
    "env_settings_loader",
    # DTOs
    "EngineActionResponse",
    "FeedbackRequest",
    "MessageRequest",
    "RequesterInfo",
    # Interfaces
    "IEmbeddingProvider",
    "IHealthCheck",
    "IHistoricalTicketStore",
    "IKnowledgeBaseStore",
    "ILanguageModel",
    "IOpenTicketStore",
    "ITicketCreator",
]
