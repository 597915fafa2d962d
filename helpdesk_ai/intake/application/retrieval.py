"""
Intake Retrieval
================

Semantic search with text fallbacks over the two read-only corpora.

Chain per corpus:
1. Embed the query and rank every indexed item by cosine similarity
   (brute force; corpora are small)
2. High band: accept the best candidate that passes the relevance re-check
3. Medium band: up to N relevance-checked candidates
4. Phrase match, then a keyword co-occurrence match (>= 2 significant words)

Storage and embedding failures degrade to the next cheaper method; they
never raise to the engine.
"""

from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Set, Tuple, TypeVar

import numpy as np

from helpdesk_ai.intake.application.interfaces import (
    IEmbeddingProvider, IHistoricalTicketStore, IKnowledgeBaseStore,
)
from helpdesk_ai.intake.application.services import RelevanceChecker
from helpdesk_ai.intake.domain.entities import (
    ArticleCandidate, HistoricalTicket, KnowledgeArticle, KnowledgeArticleRef, RetrievalRecord,
)
from helpdesk_ai.intake.domain.topics import normalize, significant_words
from helpdesk_ai.intake.domain.value_objects import IntakePolicy
from helpdesk_ai.shared.infrastructure.logging import get_logger, log_latency
from helpdesk_ai.shared.infrastructure.retry import STORAGE_CALL_POLICY, call_with_retry

logger = get_logger(__name__)

T = TypeVar("T")

METHOD_SEMANTIC = "semantic"
METHOD_PHRASE = "phrase"
METHOD_KEYWORDS = "keywords"
METHOD_NONE = "none"

MIN_KEYWORD_MATCHES = 2
TEXT_SEARCH_SCAN_LIMIT = 200


class EmbeddingIndex:
    """Brute-force cosine ranking over items that carry an embedding."""

    @staticmethod
    def rank(
        query_vector: Sequence[float],
        items: Sequence[T],
        vector_of: Callable[[T], Optional[Sequence[float]]],
    ) -> List[Tuple[T, float]]:
        """
        Rank items by cosine similarity to the query.

        Items without a vector, or with a vector of a different dimension,
        are skipped. Scores are clipped to [0, 1] and returned in
        non-increasing order; ties keep corpus order.
        """
        query = np.asarray(query_vector, dtype=np.float64)
        query_norm = np.linalg.norm(query)
        if query.ndim != 1 or query.size == 0 or query_norm == 0:
            return []

        kept: List[T] = []
        rows: List[Sequence[float]] = []
        for item in items:
            vector = vector_of(item)
            if vector is None or len(vector) != query.size:
                continue
            kept.append(item)
            rows.append(vector)
        if not kept:
            return []

        matrix = np.asarray(rows, dtype=np.float64)
        norms = np.linalg.norm(matrix, axis=1)
        norms[norms == 0] = 1.0
        scores = np.clip(matrix @ query / (norms * query_norm), 0.0, 1.0)
        order = np.argsort(-scores, kind="stable")
        return [(kept[i], float(scores[i])) for i in order]


class TextMatchSearch:
    """
    Lexical fallbacks used when semantic search finds nothing usable.

    The phrase stage asks the store for records containing the whole
    query; the keyword stage scans recent records for ones containing at
    least two significant query words, scored by query-word coverage.
    """

    def __init__(self, find: Callable, text_of: Callable[[T], str]):
        self._find = find
        self._text_of = text_of

    async def phrase(self, query: str, limit: int, timeout: float) -> List[RetrievalRecord]:
        phrase = normalize(query)
        if not phrase:
            return []
        items = await _guarded_find(
            lambda: self._find(query=phrase, limit=limit), "phrase_search", timeout
        )
        return [RetrievalRecord(item, 1.0, METHOD_PHRASE) for item in items[:limit]]

    async def keywords(self, query: str, limit: int, timeout: float) -> List[RetrievalRecord]:
        words = significant_words(query)
        if len(words) < MIN_KEYWORD_MATCHES:
            return []
        items = await _guarded_find(
            lambda: self._find(limit=TEXT_SEARCH_SCAN_LIMIT), "keyword_search", timeout
        )

        scored = []
        for item in items:
            text = normalize(self._text_of(item))
            matched = sum(1 for word in words if word in text)
            if matched >= MIN_KEYWORD_MATCHES:
                scored.append((item, matched / len(words)))
        scored.sort(key=lambda pair: pair[1], reverse=True)
        return [RetrievalRecord(item, score, METHOD_KEYWORDS) for item, score in scored[:limit]]


async def _guarded_find(call: Callable, operation: str, timeout: float) -> list:
    """Storage read under the storage retry policy; failures degrade to []."""
    try:
        return list(await call_with_retry(call, STORAGE_CALL_POLICY, operation, timeout=timeout))
    except Exception as e:
        logger.warning("Storage read failed", extra={"operation": operation, "error": str(e)})
        return []


async def embed_query(embedder: IEmbeddingProvider, query: str) -> List[float]:
    """
    Vector for a retrieval query, or [] when embeddings are unavailable.

    The provider applies its own retry policy and per-attempt timeout, so
    the call is made once here.
    """
    query = (query or "").strip()
    if not query:
        return []
    try:
        if not await embedder.is_available():
            return []
        with log_latency(logger, "query_embedding"):
            return list(await embedder.embed(query))
    except Exception as e:
        logger.warning("Query embedding failed, using text search", extra={"error": str(e)})
        return []


@dataclass
class KnowledgeLookup:
    """Outcome of a knowledge-base lookup."""
    article: Optional[KnowledgeArticleRef] = None
    candidates: List[ArticleCandidate] = field(default_factory=list)
    method: str = METHOD_NONE
    score: float = 0.0

    @property
    def found(self) -> bool:
        return self.article is not None or bool(self.candidates)


class KnowledgeRetrievalService:
    """
    Knowledge-base lookup for the current user request.

    A high-band article is only returned after the relevance re-check
    accepts it; a rejected top match is never returned and the search
    continues down the candidate list.
    """

    def __init__(
        self,
        store: IKnowledgeBaseStore,
        embedder: IEmbeddingProvider,
        relevance: RelevanceChecker,
        policy: IntakePolicy,
    ):
        self._store = store
        self._embedder = embedder
        self._relevance = relevance
        self._policy = policy
        self._text = TextMatchSearch(store.find, lambda article: article.text)

    async def embed_query(self, query: str) -> List[float]:
        """Query vector shared by the lookups of one turn; [] when unavailable."""
        return await embed_query(self._embedder, query)

    async def lookup(
        self,
        query: str,
        use_model_check: bool = True,
        query_vector: Optional[Sequence[float]] = None
    ) -> KnowledgeLookup:
        """
        Find an article (high band) or candidates (medium band / keywords).

        Args:
            query: The user's request text
            use_model_check: Allow the language model for relevance checks;
                False restricts them to the rule-based topic guard
            query_vector: Vector from ``embed_query`` to reuse; embedded
                here when None, and an empty vector skips semantic ranking
        """
        query = (query or "").strip()
        if not query:
            return KnowledgeLookup()

        ranked = await self._semantic_rank(query, query_vector)
        policy = self._policy
        high = [(a, s) for a, s in ranked if s >= policy.kb_high_threshold]
        medium = [(a, s) for a, s in ranked if policy.kb_medium_threshold <= s < policy.kb_high_threshold]
        rejected: Set[str] = set()

        for article, score in high:
            if await self._is_relevant(query, article, use_model_check, rejected):
                logger.info(
                    "Knowledge article matched",
                    extra={"article_id": article.id, "score": round(score, 3), "method": METHOD_SEMANTIC}
                )
                return KnowledgeLookup(
                    article=KnowledgeArticleRef.from_article(article),
                    method=METHOD_SEMANTIC,
                    score=score,
                )

        candidates = await self._checked_candidates(query, medium, use_model_check, rejected)
        if candidates:
            return KnowledgeLookup(candidates=candidates, method=METHOD_SEMANTIC)

        for record in await self._text.phrase(query, policy.kb_max_candidates, policy.storage_timeout):
            if await self._is_relevant(query, record.item, use_model_check, rejected):
                return KnowledgeLookup(
                    article=KnowledgeArticleRef.from_article(record.item),
                    method=METHOD_PHRASE,
                    score=record.score,
                )

        keyword_hits = await self._text.keywords(query, policy.kb_max_candidates, policy.storage_timeout)
        candidates = await self._checked_candidates(
            query, [(r.item, r.score) for r in keyword_hits], use_model_check, rejected
        )
        if candidates:
            return KnowledgeLookup(candidates=candidates, method=METHOD_KEYWORDS)
        return KnowledgeLookup()

    async def fetch_context_text(self, query: str, limit: int = 3) -> str:
        """Article excerpts for the agentic loop; empty when nothing matches."""
        lookup = await self.lookup(query, use_model_check=False)
        blocks = []
        if lookup.article is not None:
            blocks.append(f"{lookup.article.title}\n{lookup.article.body[:800]}")
        if lookup.candidates:
            by_id = {
                a.id: a for a in await _guarded_find(
                    lambda: self._store.find(limit=TEXT_SEARCH_SCAN_LIMIT),
                    "kb_context",
                    self._policy.storage_timeout,
                )
            }
            for candidate in lookup.candidates[:limit]:
                article = by_id.get(candidate.id)
                if article is not None:
                    blocks.append(f"{article.title}\n{article.body[:500]}")
        return "\n\n".join(blocks)

    async def _semantic_rank(
        self,
        query: str,
        query_vector: Optional[Sequence[float]]
    ) -> List[Tuple[KnowledgeArticle, float]]:
        vector = query_vector if query_vector is not None else await embed_query(self._embedder, query)
        if not vector:
            return []
        articles = await _guarded_find(
            lambda: self._store.find(indexed_only=True), "kb_indexed", self._policy.storage_timeout
        )
        return EmbeddingIndex.rank(vector, articles, lambda a: a.embedding)

    async def _checked_candidates(
        self,
        query: str,
        ranked: Sequence[Tuple[KnowledgeArticle, float]],
        use_model_check: bool,
        rejected: Set[str],
    ) -> List[ArticleCandidate]:
        accepted: List[ArticleCandidate] = []
        for article, score in ranked:
            if len(accepted) >= self._policy.kb_max_candidates:
                break
            if await self._is_relevant(query, article, use_model_check, rejected):
                accepted.append(ArticleCandidate(article.id, article.title, round(score, 4)))
        return accepted

    async def _is_relevant(
        self,
        query: str,
        article: KnowledgeArticle,
        use_model: bool,
        rejected: Set[str],
    ) -> bool:
        """Relevance re-check; an article rejected once stays rejected for this query."""
        if article.id in rejected:
            return False
        verdict = await self._relevance.check(query, article.title, article.body, use_model=use_model)
        if not verdict.relevant:
            logger.info(
                "Knowledge candidate rejected",
                extra={"article_id": article.id, "reason": verdict.reason, "method": verdict.method}
            )
            rejected.add(article.id)
        return verdict.relevant


class TicketRetrievalService:
    """
    Similar resolved tickets used as precedent by the classifier and drafter.

    Tickets rated 1-2 are never returned; rating-5 tickets are boosted.
    When the relevance re-check rejects the best ticket, the whole block
    is dropped.
    """

    def __init__(
        self,
        store: IHistoricalTicketStore,
        embedder: IEmbeddingProvider,
        relevance: RelevanceChecker,
        policy: IntakePolicy,
    ):
        self._store = store
        self._embedder = embedder
        self._relevance = relevance
        self._policy = policy
        self._text = TextMatchSearch(store.find, lambda ticket: ticket.text)

    async def similar(
        self,
        query: str,
        use_model_check: bool = True,
        query_vector: Optional[Sequence[float]] = None
    ) -> List[RetrievalRecord[HistoricalTicket]]:
        query = (query or "").strip()
        if not query:
            return []
        policy = self._policy

        records = await self._semantic(query, query_vector)
        if not records:
            records = await self._text.phrase(query, policy.similar_tickets_limit, policy.storage_timeout)
        if not records:
            records = await self._text.keywords(query, policy.similar_tickets_limit, policy.storage_timeout)

        records = self.rerank(records)[:policy.similar_tickets_limit]
        if not records:
            return []

        top = records[0].item
        verdict = await self._relevance.check(query, top.title, top.text, use_model=use_model_check)
        if not verdict.relevant:
            logger.info(
                "Similar tickets dropped",
                extra={"ticket_id": top.id, "reason": verdict.reason, "method": verdict.method}
            )
            return []
        return records

    def rerank(self, records: Sequence[RetrievalRecord]) -> List[RetrievalRecord]:
        """Exclude low-rated tickets, boost rating 5, and re-sort by score."""
        policy = self._policy
        result = []
        for record in records:
            rating = record.item.quality_rating
            if rating in policy.excluded_ticket_ratings:
                continue
            weight = policy.ticket_rating_boost if rating == 5 else 1.0
            result.append(RetrievalRecord(record.item, min(1.0, record.score * weight), record.method))
        result.sort(key=lambda r: r.score, reverse=True)
        return result

    async def fetch_context_text(self, query: str) -> str:
        """Resolutions of similar tickets for the agentic loop."""
        records = await self.similar(query, use_model_check=False)
        blocks = []
        for record in records:
            ticket = record.item
            block = f"{ticket.title}\n{ticket.description[:300]}"
            if ticket.resolution_summary:
                block += f"\nResolution: {ticket.resolution_summary[:400]}"
            blocks.append(block)
        return "\n\n".join(blocks)

    async def _semantic(self, query: str, query_vector: Optional[Sequence[float]]) -> List[RetrievalRecord]:
        vector = query_vector if query_vector is not None else await embed_query(self._embedder, query)
        if not vector:
            return []
        tickets = await _guarded_find(
            lambda: self._store.find(indexed_only=True), "tickets_indexed", self._policy.storage_timeout
        )
        return [
            RetrievalRecord(ticket, score, METHOD_SEMANTIC)
            for ticket, score in EmbeddingIndex.rank(vector, tickets, lambda t: t.embedding)
            if score >= self._policy.kb_medium_threshold
        ]
