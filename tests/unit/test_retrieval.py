"""Unit tests for knowledge-base and similar-ticket retrieval."""

import pytest

from helpdesk_ai.core import EmbeddingException
from helpdesk_ai.intake.application.retrieval import (
    METHOD_KEYWORDS, METHOD_PHRASE, METHOD_SEMANTIC,
    EmbeddingIndex, KnowledgeRetrievalService, TicketRetrievalService,
)
from helpdesk_ai.intake.application.services import RelevanceChecker
from helpdesk_ai.intake.domain.entities import HistoricalTicket, KnowledgeArticle, RetrievalRecord
from helpdesk_ai.intake.domain.prompts import OP_RELEVANCE
from tests.doubles import InMemoryKnowledgeStore, InMemoryTicketStore, KeywordEmbedder

EMBED = KeywordEmbedder().vector


def article(article_id, title, body, indexed_text=None):
    return KnowledgeArticle(
        id=article_id,
        title=title,
        body=body,
        embedding=tuple(EMBED(indexed_text)) if indexed_text else None,
    )


def ticket(ticket_id, title, rating=None, indexed_text=None, resolution=None):
    return HistoricalTicket(
        id=ticket_id,
        title=title,
        description=title,
        quality_rating=rating,
        resolution_summary=resolution,
        embedding=tuple(EMBED(indexed_text)) if indexed_text else None,
    )


@pytest.mark.unit
class TestEmbeddingIndex:

    def test_scores_are_sorted_and_bounded(self):
        items = [("a", [1.0, 0.0]), ("b", [1.0, 1.0]), ("c", [-1.0, 0.0]), ("d", [0.0, 1.0])]

        ranked = EmbeddingIndex.rank([1.0, 0.2], items, lambda item: item[1])

        scores = [score for _, score in ranked]
        assert [item[0] for item, _ in ranked][:2] == ["a", "b"]
        assert scores == sorted(scores, reverse=True)
        assert all(0.0 <= s <= 1.0 for s in scores)

    def test_items_without_matching_vector_are_skipped(self):
        items = [("none", None), ("short", [1.0]), ("ok", [1.0, 0.0])]

        ranked = EmbeddingIndex.rank([1.0, 0.0], items, lambda item: item[1])

        assert [item[0] for item, _ in ranked] == ["ok"]

    def test_zero_query_ranks_nothing(self):
        assert EmbeddingIndex.rank([0.0, 0.0], [("a", [1.0, 0.0])], lambda item: item[1]) == []


@pytest.mark.unit
@pytest.mark.asyncio
class TestKnowledgeRetrieval:

    @pytest.fixture
    def store(self):
        return InMemoryKnowledgeStore([
            article(
                "kb-1", "Printer paper jam",
                "Open the tray and remove the stuck paper, then close the printer cover.",
                indexed_text="printer paper",
            ),
            article("kb-2", "Printer driver reinstall", "Reinstall the printer driver.", indexed_text="printer"),
            article("kb-3", "VPN connection drops", "Reconnect the VPN client.", indexed_text="vpn"),
        ])

    @pytest.fixture
    def build(self, store, language_model, policy):
        def build(embedder=None):
            return KnowledgeRetrievalService(
                store, embedder or KeywordEmbedder(), RelevanceChecker(language_model), policy
            )
        return build

    async def test_high_band_article_returned_after_check(self, build, language_model):
        lookup = await build().lookup("printer paper jam")

        assert lookup.article.id == "kb-1"
        assert lookup.method == METHOD_SEMANTIC
        assert lookup.score == pytest.approx(1.0)
        assert len(language_model.calls_for(OP_RELEVANCE)) == 1

    async def test_rejected_high_band_article_falls_back_to_candidates(self, build, language_model):
        language_model.script(OP_RELEVANCE, "NO\nDifferent problem")

        lookup = await build().lookup("printer paper jam")

        assert lookup.article is None
        assert [c.id for c in lookup.candidates] == ["kb-2"]
        assert 0.5 <= lookup.candidates[0].score < 0.78

    async def test_rejected_article_is_not_returned_by_text_search(self, build, language_model):
        language_model.script(OP_RELEVANCE, "NO", "NO")

        lookup = await build().lookup("printer paper jam")

        assert not lookup.found
        assert len(language_model.calls_for(OP_RELEVANCE)) == 2

    async def test_phrase_match_without_embeddings(self, build):
        lookup = await build(KeywordEmbedder(available=False)).lookup("paper jam")

        assert lookup.article.id == "kb-1"
        assert lookup.method == METHOD_PHRASE
        assert lookup.score == 1.0

    async def test_keyword_match_yields_candidates_only(self, build):
        lookup = await build(KeywordEmbedder(available=False)).lookup("my printer keeps eating paper")

        assert lookup.article is None
        assert lookup.method == METHOD_KEYWORDS
        assert [(c.id, c.score) for c in lookup.candidates] == [("kb-1", 0.5)]

    async def test_single_significant_word_is_not_enough(self, build):
        lookup = await build(KeywordEmbedder(available=False)).lookup("the printer does not work")

        assert not lookup.found

    async def test_storage_failure_degrades_to_empty(self, build, store):
        store.fail = True

        lookup = await build().lookup("printer paper jam")

        assert not lookup.found

    async def test_model_check_disabled_uses_topic_guard(self, build, language_model):
        lookup = await build().lookup("printer paper jam", use_model_check=False)

        assert lookup.article.id == "kb-1"
        assert language_model.calls == []

    async def test_empty_query(self, build):
        assert not (await build().lookup("   ")).found

    async def test_given_vector_is_not_embedded_again(self, build):
        embedder = KeywordEmbedder()
        service = build(embedder)

        vector = await service.embed_query("printer paper jam")
        lookup = await service.lookup("printer paper jam", query_vector=vector)

        assert lookup.article.id == "kb-1"
        assert embedder.embedded == ["printer paper jam"]

    async def test_empty_vector_skips_semantic_ranking(self, build):
        embedder = KeywordEmbedder()

        lookup = await build(embedder).lookup("paper jam", query_vector=[])

        assert lookup.method == METHOD_PHRASE
        assert embedder.embedded == []

    async def test_failed_embedding_is_attempted_once(self, build):
        embedder = KeywordEmbedder(error=EmbeddingException("timeout", transient=True))

        lookup = await build(embedder).lookup("paper jam")

        assert lookup.method == METHOD_PHRASE
        assert len(embedder.embedded) == 1


@pytest.mark.unit
class TestTicketRetrieval:

    @pytest.fixture
    def store(self):
        return InMemoryTicketStore(resolved=[
            ticket("t1", "VPN drops every hour", rating=5, indexed_text="vpn",
                   resolution="Updated the VPN client to 5.2"),
            ticket("t2", "VPN and wifi unstable", rating=3, indexed_text="vpn wifi"),
            ticket("t3", "VPN client crash", rating=1, indexed_text="vpn"),
            ticket("t4", "Outlook search broken", rating=4, indexed_text="outlook"),
        ])

    @pytest.fixture
    def service(self, store, language_model, policy):
        return TicketRetrievalService(store, KeywordEmbedder(), RelevanceChecker(language_model), policy)

    @pytest.mark.asyncio
    async def test_low_rated_and_dissimilar_tickets_excluded(self, service):
        records = await service.similar("vpn")

        assert [r.item.id for r in records] == ["t1", "t2"]
        assert records[0].score == 1.0

    @pytest.mark.asyncio
    async def test_rejected_top_ticket_drops_block(self, service, language_model):
        language_model.script(OP_RELEVANCE, "NO")

        assert await service.similar("vpn") == []

    def test_rerank_boosts_rating_five_and_resorts(self, service):
        records = [
            RetrievalRecord(ticket("plain", "a", rating=3), 0.8),
            RetrievalRecord(ticket("great", "b", rating=5), 0.7),
            RetrievalRecord(ticket("poor", "c", rating=2), 0.95),
        ]

        reranked = service.rerank(records)

        assert [r.item.id for r in reranked] == ["great", "plain"]
        assert reranked[0].score == pytest.approx(0.84)

    def test_boost_is_capped(self, service):
        reranked = service.rerank([RetrievalRecord(ticket("great", "b", rating=5), 0.95)])

        assert reranked[0].score == 1.0

    @pytest.mark.asyncio
    async def test_context_text_includes_resolutions(self, service, language_model):
        text = await service.fetch_context_text("vpn")

        assert "Resolution: Updated the VPN client to 5.2" in text
        assert language_model.calls == []
