"""
Corpus Embedding Backfill
=========================

Computes embeddings for knowledge-base articles and resolved tickets that
do not have one yet, so semantic retrieval can rank them.

Indexable text:
- articles: title + body + tags
- tickets: title + description + resolution summary
"""

from dataclasses import dataclass
from typing import Callable, List, Type, TypeVar

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from helpdesk_ai.config import RESOLVED_STATUSES
from helpdesk_ai.infrastructure.database import session_scope
from helpdesk_ai.intake.application.interfaces import IEmbeddingProvider
from helpdesk_ai.intake.infrastructure.models import KnowledgeArticleModel, TicketModel
from helpdesk_ai.shared.infrastructure.logging import get_logger, log_latency

logger = get_logger(__name__)

M = TypeVar("M")


@dataclass
class BackfillReport:
    articles: int = 0
    tickets: int = 0
    failed: int = 0


def article_text(row: KnowledgeArticleModel) -> str:
    return "\n".join(p for p in (row.title, row.body, " ".join(row.tags or ())) if p)


def ticket_text(row: TicketModel) -> str:
    return "\n".join(p for p in (row.title, row.description, row.resolution_summary) if p)


class EmbeddingBackfill:
    """
    Fills the ``embedding`` column of unindexed corpus rows.

    Rows are processed in batches, one unit of work per batch. A row whose
    embedding call fails is skipped and stays unindexed for the next run.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        embedder: IEmbeddingProvider,
        max_chars: int = 8000,
        batch_size: int = 50,
    ):
        self._session_maker = session_maker
        self._embedder = embedder
        self._max_chars = max_chars
        self._batch_size = batch_size

    async def run(self) -> BackfillReport:
        report = BackfillReport()
        with log_latency(logger, "embedding_backfill"):
            report.articles = await self._backfill(
                KnowledgeArticleModel,
                and_(
                    KnowledgeArticleModel.is_published.is_(True),
                    KnowledgeArticleModel.is_active.is_(True),
                    KnowledgeArticleModel.embedding.is_(None),
                ),
                article_text,
                report,
            )
            report.tickets = await self._backfill(
                TicketModel,
                and_(TicketModel.status.in_(RESOLVED_STATUSES), TicketModel.embedding.is_(None)),
                ticket_text,
                report,
            )
        logger.info(
            "Embedding backfill finished",
            extra={"articles": report.articles, "tickets": report.tickets, "failed": report.failed}
        )
        return report

    async def _backfill(
        self,
        model: Type[M],
        criteria,
        text_of: Callable[[M], str],
        report: BackfillReport,
    ) -> int:
        indexed = 0
        skipped: List = []
        while True:
            query = select(model).where(criteria)
            if skipped:
                query = query.where(model.id.not_in(skipped))
            query = query.limit(self._batch_size)
            async with session_scope(self._session_maker) as session:
                rows = (await session.execute(query)).scalars().all()
                if not rows:
                    return indexed
                for row in rows:
                    try:
                        row.embedding = await self._embedder.embed(text_of(row)[:self._max_chars])
                        indexed += 1
                    except Exception as e:
                        logger.warning(
                            "Embedding failed, row left unindexed",
                            extra={"row_id": str(row.id), "error": str(e)}
                        )
                        skipped.append(row.id)
                        report.failed += 1
