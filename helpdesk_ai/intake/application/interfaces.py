"""
Intake Collaborator Interfaces
==============================

Abstractions the intake engine depends on. Infrastructure provides the
implementations (SQLAlchemy repositories, provider-backed model clients,
health checks); tests provide in-memory fakes.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from helpdesk_ai.intake.domain.entities import (
    HistoricalTicket, KnowledgeArticle, OpenTicketSnapshot, TicketDraft, UserContext,
)
from helpdesk_ai.intake.domain.value_objects import HealthReport


# ========== Model providers ==========

class ILanguageModel(ABC):
    """Interface for text completion."""

    @abstractmethod
    async def is_available(self) -> bool:
        """True when credentials are configured and the model is enabled."""

    @abstractmethod
    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        temperature: float,
        json_mode: bool = False,
        operation: str = "completion"
    ) -> str:
        """
        Generate a completion.

        Raises:
            ConfigurationException: Model disabled or not configured
            ExternalServiceException: Provider failure after retries
        """


class IEmbeddingProvider(ABC):
    """Interface for text embeddings (fixed dimension, unit-normalized)."""

    @abstractmethod
    async def is_available(self) -> bool:
        """True when embeddings can be requested."""

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        """Embed text."""


# ========== Repository Interfaces ==========

class IKnowledgeBaseStore(ABC):
    """Read-only access to published knowledge-base articles."""

    @abstractmethod
    async def find(
        self,
        query: Optional[str] = None,
        indexed_only: bool = False,
        limit: Optional[int] = None
    ) -> List[KnowledgeArticle]:
        """
        Find active articles.

        Args:
            query: Case-insensitive phrase that must occur in title or body
            indexed_only: Only articles that carry an embedding
            limit: Maximum rows
        """


class IHistoricalTicketStore(ABC):
    """Read-only access to resolved tickets."""

    @abstractmethod
    async def find(
        self,
        query: Optional[str] = None,
        indexed_only: bool = False,
        limit: Optional[int] = None
    ) -> List[HistoricalTicket]:
        """Find resolved or closed tickets, optionally by phrase."""


class IOpenTicketStore(ABC):
    """Lookups over open tickets used by the deterministic detectors."""

    @abstractmethod
    async def find_open_since(
        self,
        since: datetime,
        location: Optional[str] = None
    ) -> List[OpenTicketSnapshot]:
        """Open tickets created at or after ``since``, optionally for one location."""

    @abstractmethod
    async def find_open_for_requester(self, requester_id: str) -> List[OpenTicketSnapshot]:
        """Open tickets of one requester, newest first."""


class ITicketCreator(ABC):
    """The single way a finished draft leaves the intake engine."""

    @abstractmethod
    async def create_ticket(self, draft: TicketDraft, requester: UserContext) -> str:
        """Create the ticket and return its id."""


class IHealthCheck(ABC):
    """Operational health of the platform."""

    @abstractmethod
    async def run_all_checks(self) -> HealthReport:
        """Status per component."""
