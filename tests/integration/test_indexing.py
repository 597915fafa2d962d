"""Integration tests for the corpus embedding backfill."""

import pytest
from sqlalchemy import select

from helpdesk_ai.core import EmbeddingException
from helpdesk_ai.infrastructure.database import session_scope
from helpdesk_ai.intake.infrastructure.indexing import EmbeddingBackfill
from helpdesk_ai.intake.infrastructure.models import KnowledgeArticleModel, TicketModel
from tests.doubles import KeywordEmbedder


class RecordingEmbedder(KeywordEmbedder):
    def __init__(self, fail_on=None):
        super().__init__()
        self.texts = []
        self.fail_on = fail_on

    async def embed(self, text):
        self.texts.append(text)
        if self.fail_on and self.fail_on in text:
            raise EmbeddingException("provider rejected input")
        return await super().embed(text)


async def embeddings(session_maker, model):
    async with session_scope(session_maker) as session:
        rows = (await session.execute(select(model).order_by(model.title))).scalars().all()
    return {row.title: row.embedding for row in rows}


@pytest.mark.integration
@pytest.mark.asyncio
class TestEmbeddingBackfill:

    async def test_indexes_only_missing_searchable_rows(self, session_maker):
        async with session_scope(session_maker) as session:
            session.add_all([
                KnowledgeArticleModel(title="VPN guide", body="Install the vpn client", tags=["remote"]),
                KnowledgeArticleModel(title="Already indexed", body="x", embedding=[9.0]),
                KnowledgeArticleModel(title="Unpublished", body="printer", is_published=False),
                TicketModel(title="Printer jam", description="paper stuck", status="resolved",
                            resolution_summary="Removed the paper"),
                TicketModel(title="Open printer issue", description="printer", status="open"),
            ])
        embedder = RecordingEmbedder()

        report = await EmbeddingBackfill(session_maker, embedder, batch_size=1).run()

        assert (report.articles, report.tickets, report.failed) == (1, 1, 0)
        assert "VPN guide\nInstall the vpn client\nremote" in embedder.texts
        assert "Printer jam\npaper stuck\nRemoved the paper" in embedder.texts

        articles = await embeddings(session_maker, KnowledgeArticleModel)
        assert articles["VPN guide"] == KeywordEmbedder().vector("VPN guide\nInstall the vpn client\nremote")
        assert articles["Already indexed"] == [9.0]
        assert articles["Unpublished"] is None
        tickets = await embeddings(session_maker, TicketModel)
        assert tickets["Open printer issue"] is None

    async def test_failed_rows_stay_unindexed(self, session_maker):
        async with session_scope(session_maker) as session:
            session.add_all([
                KnowledgeArticleModel(title="Broken", body="bad input"),
                KnowledgeArticleModel(title="Fine", body="wifi setup"),
            ])

        report = await EmbeddingBackfill(session_maker, RecordingEmbedder(fail_on="bad input")).run()

        assert (report.articles, report.failed) == (1, 1)
        articles = await embeddings(session_maker, KnowledgeArticleModel)
        assert articles["Broken"] is None
        assert articles["Fine"] is not None

    async def test_long_text_is_truncated(self, session_maker):
        async with session_scope(session_maker) as session:
            session.add(KnowledgeArticleModel(title="Long", body="a" * 500))
        embedder = RecordingEmbedder()

        await EmbeddingBackfill(session_maker, embedder, max_chars=100).run()

        assert [len(t) for t in embedder.texts] == [100]
