"""
Intake Infrastructure Models
============================

SQLAlchemy ORM models for the intake module.

These are the database representations of the read-only corpora the
engine searches, the tickets it creates, and the stored AI settings.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from helpdesk_ai.config import DEFAULT_CATEGORY, Priority, TicketStatus
from helpdesk_ai.infrastructure.database import Base


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class KnowledgeArticleModel(Base):
    """
    Database model for knowledge-base articles.

    Maps to the 'knowledge_articles' table.
    """
    __tablename__ = "knowledge_articles"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    title: Mapped[str] = mapped_column(String(500), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    tags: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    attachments: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    is_published: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Unit-normalized vector of title + body + tags
    embedding: Mapped[Optional[List[float]]] = mapped_column(JSON(none_as_null=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utc_now)


class TicketModel(Base):
    """
    Database model for tickets.

    Maps to the 'tickets' table. Open tickets feed the duplicate, outage
    and active-ticket detectors; resolved/closed ones are the historical
    corpus.
    """
    __tablename__ = "tickets"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False, default=DEFAULT_CATEGORY)
    priority: Mapped[str] = mapped_column(String(50), nullable=False, default=Priority.MEDIUM)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default=TicketStatus.OPEN, index=True)

    # Requester
    requester_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    location: Mapped[Optional[str]] = mapped_column(String(300), nullable=True, index=True)

    # Resolution
    resolution_summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    quality_rating: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    attachments: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    embedding: Mapped[Optional[List[float]]] = mapped_column(JSON(none_as_null=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utc_now, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utc_now)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class AISettingsModel(Base):
    """
    Database model for the AI switch and provider selection.

    Maps to the 'ai_settings' table; a single row keyed 'default'.
    """
    __tablename__ = "ai_settings"

    key: Mapped[str] = mapped_column(String(50), primary_key=True, default="default")
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    provider: Mapped[str] = mapped_column(String(50), nullable=False, default="openai")
    api_key: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    model: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    embedding_model: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    base_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utc_now)
