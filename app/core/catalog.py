import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Collection, Dict, List, Optional, Protocol, Sequence

from sqlalchemy import any_, exists, func, literal, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core import config
from app.core.errors import CatalogFailure
from app.db.models import Item, ItemCircle

logger = logging.getLogger(__name__)

# Category the client sends when no category is selected
ALL_CATEGORIES = "All Categories"

# pgvector rejects larger hnsw.ef_search values
MAX_EF_SEARCH = 1000


def category_filter(category: Optional[str]) -> Optional[str]:
    """The category to filter on, or None for no category filter."""
    if not category or category == ALL_CATEGORIES:
        return None
    return category


@dataclass(frozen=True)
class RankedItem:
    item_id: str
    similarity: Optional[float]  # None when the item has no embedding
    created_at: datetime


class ItemCatalog(Protocol):
    async def rank_visible(
        self,
        query_vector: Sequence[float],
        circle_ids: Collection[str],
        *,
        threshold: float,
        limit: int,
        category: Optional[str] = None,
        tag: Optional[str] = None,
    ) -> List[RankedItem]:
        ...

    async def fetch_items(self, item_ids: Collection[str]) -> Dict[str, Item]:
        ...


class SqlItemCatalog:
    """Item reads backed by PostgreSQL + pgvector."""

    def __init__(
        self,
        db: AsyncSession,
        *,
        ef_search: int = config.HNSW_EF_SEARCH,
        iterative_scan: str = config.HNSW_ITERATIVE_SCAN,
    ):
        self.db = db
        self.ef_search = ef_search
        self.iterative_scan = iterative_scan

    async def rank_visible(
        self,
        query_vector: Sequence[float],
        circle_ids: Collection[str],
        *,
        threshold: float,
        limit: int,
        category: Optional[str] = None,
        tag: Optional[str] = None,
    ) -> List[RankedItem]:
        """
        Nearest-neighbour query over items visible in ``circle_ids``.

        Similarity is ``1 - cosine distance`` clamped to [0, 1]. The circle
        filter is an EXISTS subquery so an item shared into several circles in
        scope yields a single row. The vector is bound as a parameter by the
        pgvector type, never formatted into the SQL text.
        """
        distance = Item.embedding.cosine_distance(list(query_vector))
        score = func.greatest(literal(0.0), literal(1.0) - distance)

        in_scope = exists().where(
            ItemCircle.item_id == Item.id,
            ItemCircle.circle_id.in_(list(circle_ids)),
        )

        stmt = (
            select(Item.id, Item.created_at, score.label("similarity"))
            .where(Item.embedding.isnot(None), in_scope)
            .where(score >= threshold)
            .order_by(distance, Item.created_at.desc(), Item.id)
            .limit(limit)
        )
        category = category_filter(category)
        if category:
            stmt = stmt.where(literal(category) == any_(Item.categories))
        if tag:
            stmt = stmt.where(literal(tag) == any_(Item.tags))

        try:
            await self._tune_index_scan(limit)
            rows = await self.db.execute(stmt)
        except SQLAlchemyError as e:
            raise CatalogFailure(f"Similarity query failed: {e}") from e

        return [
            RankedItem(item_id=r.id, similarity=float(r.similarity), created_at=r.created_at)
            for r in rows
        ]

    async def _tune_index_scan(self, limit: int) -> None:
        """
        Widen the HNSW scan for the current transaction.

        Scope, threshold and filters are applied to the rows the index yields,
        so the candidate pool must be at least ``limit`` and, with iterative
        scans, keeps growing until enough rows survive the filters.
        """
        ef_search = min(max(limit, self.ef_search), MAX_EF_SEARCH)
        await self.db.execute(select(func.set_config("hnsw.ef_search", str(ef_search), True)))
        if self.iterative_scan:
            await self.db.execute(
                select(func.set_config("hnsw.iterative_scan", self.iterative_scan, True))
            )

    async def fetch_items(self, item_ids: Collection[str]) -> Dict[str, Item]:
        """Load items with their owners in a single query, keyed by id."""
        if not item_ids:
            return {}
        try:
            result = await self.db.execute(
                select(Item)
                .where(Item.id.in_(list(item_ids)))
                .options(selectinload(Item.owner))
            )
        except SQLAlchemyError as e:
            raise CatalogFailure(f"Item lookup failed: {e}") from e
        return {item.id: item for item in result.scalars().all()}
