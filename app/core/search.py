import asyncio
import enum
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence

from app.core.catalog import ItemCatalog, RankedItem
from app.core.embeddings import EmbeddingProvider
from app.core.enrichment import ResultEnricher
from app.core.errors import CatalogFailure, EmbeddingFailure, InvalidQuery, SearchError
from app.core.scope import CircleScopeResolver

logger = logging.getLogger(__name__)

MIN_QUERY_LENGTH = 2


class SearchState(str, enum.Enum):
    SCOPE_RESOLVED = "scope_resolved"
    QUERY_EMBEDDED = "query_embedded"
    RANKED = "ranked"
    ENRICHED = "enriched"
    EMPTY = "empty"
    FAILED = "failed"


@dataclass
class SearchQuery:
    user_id: str
    text: Optional[str] = None
    image_url: Optional[str] = None
    circle_ids: Optional[List[str]] = None
    category: Optional[str] = None
    tag: Optional[str] = None
    limit: int = 20
    threshold: float = 0.3


@dataclass
class SearchOutcome:
    state: SearchState
    hits: List[dict] = field(default_factory=list)
    error: Optional[SearchError] = None

    @property
    def failed(self) -> bool:
        return self.state == SearchState.FAILED


def rank(candidates: Iterable[RankedItem], threshold: float, limit: int) -> List[RankedItem]:
    """
    Apply the result-set policy: threshold, dedupe by id, order, truncate.

    Order is similarity descending, then newest ``created_at`` first, then id,
    so equal queries over an unchanged catalog always return the same sequence.
    """
    best = {}
    for c in candidates:
        if c.similarity is None or c.similarity < threshold:
            continue
        seen = best.get(c.item_id)
        if seen is None or c.similarity > seen.similarity:
            best[c.item_id] = c

    ordered = sorted(best.values(), key=lambda c: c.item_id)
    ordered.sort(key=lambda c: c.created_at, reverse=True)
    ordered.sort(key=lambda c: c.similarity, reverse=True)
    return ordered[:limit]


class SimilaritySearchEngine:
    """
    Scoped semantic search over the item catalog.

    One pass per request: resolve the caller's circle scope, embed the query,
    rank visible items by cosine similarity, then enrich. Embedding and storage
    failures come back as a ``FAILED`` outcome carrying the error; an empty
    scope short-circuits to ``EMPTY`` before any provider or index call.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        catalog: ItemCatalog,
        resolver: CircleScopeResolver,
        enricher: ResultEnricher,
        *,
        timeout: float = 10.0,
        max_limit: int = 100,
    ):
        self.provider = provider
        self.catalog = catalog
        self.resolver = resolver
        self.enricher = enricher
        self.timeout = timeout
        self.max_limit = max_limit

    async def search(self, query: SearchQuery) -> SearchOutcome:
        text = (query.text or "").strip() or None
        image_url = (query.image_url or "").strip() or None
        if text is None and image_url is None:
            raise InvalidQuery("Query text or image URL is required")
        if text is not None and len(text) < MIN_QUERY_LENGTH:
            raise InvalidQuery("Search query is too short")
        if not 0.0 <= query.threshold <= 1.0:
            raise InvalidQuery("Threshold must be between 0 and 1")
        if query.limit < 1:
            raise InvalidQuery("Limit must be at least 1")
        limit = min(query.limit, self.max_limit)

        scope = await self.resolver.resolve(query.user_id, query.circle_ids)
        if not scope:
            logger.info(f"Empty circle scope for user {query.user_id}, skipping search")
            return SearchOutcome(SearchState.EMPTY)
        state = SearchState.SCOPE_RESOLVED

        try:
            vector = await self._embed_query(text, image_url)
        except EmbeddingFailure as e:
            logger.error(f"Failed to generate search embedding in state {state.value}: {e}")
            return SearchOutcome(SearchState.FAILED, error=e)
        state = SearchState.QUERY_EMBEDDED

        try:
            candidates = await asyncio.wait_for(
                self.catalog.rank_visible(
                    vector,
                    scope,
                    threshold=query.threshold,
                    limit=limit,
                    category=query.category,
                    tag=query.tag,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            error = CatalogFailure(f"Similarity query timed out after {self.timeout}s")
            logger.error(f"Search failed in state {state.value}: {error}")
            return SearchOutcome(SearchState.FAILED, error=error)
        except CatalogFailure as e:
            logger.error(f"Search failed in state {state.value}: {e}", exc_info=True)
            return SearchOutcome(SearchState.FAILED, error=e)

        ranked = rank(candidates, query.threshold, limit)
        state = SearchState.RANKED
        logger.info(
            f"Search for user {query.user_id}: {len(scope)} circle(s), "
            f"{len(candidates)} candidate(s), {len(ranked)} ranked"
        )
        if not ranked:
            return SearchOutcome(state)

        try:
            hits = await asyncio.wait_for(
                self.enricher.enrich(ranked, query.user_id),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            error = CatalogFailure(f"Result enrichment timed out after {self.timeout}s")
            logger.error(f"Search failed in state {state.value}: {error}")
            return SearchOutcome(SearchState.FAILED, error=error)
        except CatalogFailure as e:
            logger.error(f"Search failed in state {state.value}: {e}", exc_info=True)
            return SearchOutcome(SearchState.FAILED, error=e)

        return SearchOutcome(SearchState.ENRICHED, hits=hits)

    async def _embed_query(self, text: Optional[str], image_url: Optional[str]) -> Sequence[float]:
        if text and image_url:
            call = self.provider.embed_fused(image_url, text)
        elif image_url:
            call = self.provider.embed_image(image_url)
        else:
            call = self.provider.embed_text(text)

        try:
            return await asyncio.wait_for(call, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise EmbeddingFailure(f"Embedding timed out after {self.timeout}s") from e
