"""
Intake Infrastructure Repositories
==================================

Concrete implementations of the intake collaborator interfaces using
SQLAlchemy.

Each call opens its own unit of work from the injected session maker, so
one repository instance is safely shared across concurrent sessions.
"""

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from helpdesk_ai.config import OPEN_STATUSES, RESOLVED_STATUSES, TicketStatus
from helpdesk_ai.core import RepositoryException
from helpdesk_ai.infrastructure.database import session_scope
from helpdesk_ai.intake.application.interfaces import (
    IHistoricalTicketStore, IKnowledgeBaseStore, IOpenTicketStore, ITicketCreator,
)
from helpdesk_ai.intake.application.provider_settings import ProviderSettings
from helpdesk_ai.intake.domain.entities import (
    HistoricalTicket, KnowledgeArticle, OpenTicketSnapshot, TicketDraft, UserContext,
)
from helpdesk_ai.intake.infrastructure.models import (
    AISettingsModel, KnowledgeArticleModel, TicketModel,
)
from helpdesk_ai.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


def _like_pattern(phrase: str) -> str:
    escaped = phrase.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything is stored in UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _vector(value) -> Optional[tuple]:
    return tuple(float(x) for x in value) if value else None


class SQLAlchemyKnowledgeBaseStore(IKnowledgeBaseStore):
    """
    SQLAlchemy implementation of the knowledge-base store.

    Only published, active articles are visible.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def find(
        self,
        query: Optional[str] = None,
        indexed_only: bool = False,
        limit: Optional[int] = None
    ) -> List[KnowledgeArticle]:
        stmt = select(KnowledgeArticleModel).where(
            and_(KnowledgeArticleModel.is_published.is_(True), KnowledgeArticleModel.is_active.is_(True))
        )
        if query:
            pattern = _like_pattern(query.strip())
            stmt = stmt.where(or_(
                KnowledgeArticleModel.title.ilike(pattern, escape="\\"),
                KnowledgeArticleModel.body.ilike(pattern, escape="\\"),
            ))
        if indexed_only:
            stmt = stmt.where(KnowledgeArticleModel.embedding.is_not(None))
        stmt = stmt.order_by(KnowledgeArticleModel.updated_at.desc())
        if limit:
            stmt = stmt.limit(limit)

        try:
            async with session_scope(self._session_maker) as session:
                rows = (await session.execute(stmt)).scalars().all()
        except SQLAlchemyError as e:
            raise RepositoryException("Knowledge base query failed", {"error": str(e)}) from e

        return [
            KnowledgeArticle(
                id=str(row.id),
                title=row.title,
                body=row.body,
                tags=tuple(row.tags or ()),
                attachments=tuple(row.attachments or ()),
                embedding=_vector(row.embedding),
            )
            for row in rows
            if not indexed_only or row.embedding
        ]


class SQLAlchemyTicketStore(IHistoricalTicketStore, IOpenTicketStore, ITicketCreator):
    """
    SQLAlchemy implementation of every ticket-facing collaborator.

    - Historical corpus: resolved and closed tickets
    - Detector lookups: open and in-progress tickets
    - Ticket creation: the sole way a finished draft leaves the engine
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def find(
        self,
        query: Optional[str] = None,
        indexed_only: bool = False,
        limit: Optional[int] = None
    ) -> List[HistoricalTicket]:
        stmt = select(TicketModel).where(TicketModel.status.in_(RESOLVED_STATUSES))
        if query:
            pattern = _like_pattern(query.strip())
            stmt = stmt.where(or_(
                TicketModel.title.ilike(pattern, escape="\\"),
                TicketModel.description.ilike(pattern, escape="\\"),
                TicketModel.resolution_summary.ilike(pattern, escape="\\"),
            ))
        if indexed_only:
            stmt = stmt.where(TicketModel.embedding.is_not(None))
        stmt = stmt.order_by(TicketModel.created_at.desc())
        if limit:
            stmt = stmt.limit(limit)

        rows = await self._fetch(stmt, "historical tickets")
        return [
            HistoricalTicket(
                id=str(row.id),
                title=row.title,
                description=row.description,
                category=row.category,
                resolution_summary=row.resolution_summary,
                quality_rating=row.quality_rating,
                embedding=_vector(row.embedding),
            )
            for row in rows
            if not indexed_only or row.embedding
        ]

    async def find_open_since(
        self,
        since: datetime,
        location: Optional[str] = None
    ) -> List[OpenTicketSnapshot]:
        stmt = select(TicketModel).where(
            and_(TicketModel.status.in_(OPEN_STATUSES), TicketModel.created_at >= since)
        )
        if location:
            stmt = stmt.where(TicketModel.location == location)
        stmt = stmt.order_by(TicketModel.created_at.desc())
        return [self._snapshot(row) for row in await self._fetch(stmt, "open tickets")]

    async def find_open_for_requester(self, requester_id: str) -> List[OpenTicketSnapshot]:
        stmt = (
            select(TicketModel)
            .where(and_(TicketModel.status.in_(OPEN_STATUSES), TicketModel.requester_id == requester_id))
            .order_by(TicketModel.created_at.desc())
        )
        return [self._snapshot(row) for row in await self._fetch(stmt, "requester tickets")]

    async def create_ticket(self, draft: TicketDraft, requester: UserContext) -> str:
        now = datetime.now(timezone.utc)
        model = TicketModel(
            title=draft.title,
            description=draft.full_description(),
            category=draft.category,
            priority=draft.priority,
            status=TicketStatus.OPEN,
            requester_id=requester.requester_id,
            location=requester.location,
            attachments=list(draft.attachments),
            created_at=now,
            updated_at=now,
        )
        try:
            async with session_scope(self._session_maker) as session:
                session.add(model)
                await session.flush()
                ticket_id = str(model.id)
        except SQLAlchemyError as e:
            raise RepositoryException("Ticket creation failed", {"error": str(e)}) from e

        logger.info(
            "Ticket stored",
            extra={"ticket_id": ticket_id, "category": draft.category, "priority": draft.priority}
        )
        return ticket_id

    async def _fetch(self, stmt, what: str) -> list:
        try:
            async with session_scope(self._session_maker) as session:
                return list((await session.execute(stmt)).scalars().all())
        except SQLAlchemyError as e:
            raise RepositoryException(f"Query for {what} failed", {"error": str(e)}) from e

    @staticmethod
    def _snapshot(row: TicketModel) -> OpenTicketSnapshot:
        return OpenTicketSnapshot(
            id=str(row.id),
            title=row.title,
            description=row.description,
            status=row.status,
            created_at=_aware(row.created_at),
            category=row.category,
            location=row.location,
            requester_id=row.requester_id,
        )


class SQLAlchemyAISettingsRepository:
    """Reads the stored AI settings row."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def get(self, key: str = "default") -> Optional[AISettingsModel]:
        try:
            async with session_scope(self._session_maker) as session:
                return await session.get(AISettingsModel, key)
        except SQLAlchemyError as e:
            raise RepositoryException("AI settings query failed", {"error": str(e)}) from e


def database_settings_loader(repository: SQLAlchemyAISettingsRepository, fallback: ProviderSettings):
    """
    Provider-settings loader backed by the ``ai_settings`` row.

    Falls back to the environment settings when the row is missing;
    missing columns inherit the environment values.
    """
    async def load() -> ProviderSettings:
        row = await repository.get()
        if row is None:
            return fallback
        return ProviderSettings(
            enabled=row.enabled,
            provider=(row.provider or fallback.provider).lower(),
            api_key=row.api_key or fallback.api_key,
            model=row.model or fallback.model,
            embedding_model=row.embedding_model or fallback.embedding_model,
            base_url=row.base_url or fallback.base_url,
        )
    return load
