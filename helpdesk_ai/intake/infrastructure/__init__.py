"""
Intake Infrastructure Layer
===========================

Infrastructure implementations for the intake module.

Contains:
- Models: SQLAlchemy ORM models
- Repositories: knowledge base, tickets and AI settings
- External: model providers, fast-track catalogue, health, session sweeping
- Indexing: embedding backfill for the retrieval corpora
"""

from helpdesk_ai.intake.infrastructure.models import (
    AISettingsModel,
    KnowledgeArticleModel,
    TicketModel,
)
from helpdesk_ai.intake.infrastructure.repositories import (
    SQLAlchemyAISettingsRepository,
    SQLAlchemyKnowledgeBaseStore,
    SQLAlchemyTicketStore,
    database_settings_loader,
)
from helpdesk_ai.intake.infrastructure.external import (
    FastTrackConfigManager,
    HealthCheckService,
    ProviderClientPool,
    ProviderEmbeddingProvider,
    ProviderLanguageModel,
    SessionSweeper,
)
from helpdesk_ai.intake.infrastructure.indexing import BackfillReport, EmbeddingBackfill

__all__ = [
    "AISettingsModel",
    "KnowledgeArticleModel",
    "TicketModel",
    "SQLAlchemyAISettingsRepository",
    "SQLAlchemyKnowledgeBaseStore",
    "SQLAlchemyTicketStore",
    "database_settings_loader",
    "FastTrackConfigManager",
    "HealthCheckService",
    "ProviderClientPool",
    "ProviderEmbeddingProvider",
    "ProviderLanguageModel",
    "SessionSweeper",
    "BackfillReport",
    "EmbeddingBackfill",
]
