import logging
from typing import Dict, List, Optional, Sequence

from app.core.catalog import ItemCatalog, RankedItem
from app.core.errors import EnrichmentGap
from app.core.storage import StorageError, SupabaseImageStorage
from app.db.models import Item

logger = logging.getLogger(__name__)


def owner_summary(item: Item) -> dict:
    owner = item.owner
    if owner is None:
        return {"id": item.owner_id, "name": None, "image": None}
    return {"id": owner.id, "name": owner.name, "image": owner.image}


class ResultEnricher:
    """Turns ranked ids into presentable results with owner data and signed image URLs."""

    def __init__(self, catalog: ItemCatalog, storage: SupabaseImageStorage):
        self.catalog = catalog
        self.storage = storage

    async def enrich(self, ranked: Sequence[RankedItem], viewer_id: str) -> List[dict]:
        if not ranked:
            return []

        items = await self.catalog.fetch_items([r.item_id for r in ranked])
        urls = await self._sign([item.image_path for item in items.values()])

        results = []
        gaps: List[EnrichmentGap] = []
        for r in ranked:
            item = items.get(r.item_id)
            if item is None:
                gaps.append(EnrichmentGap(r.item_id, "item no longer exists"))
                continue
            image_url = urls.get(item.image_path)
            if image_url is None:
                gaps.append(EnrichmentGap(r.item_id, "image URL could not be signed"))
                continue

            results.append(
                {
                    "id": item.id,
                    "name": item.name,
                    "description": item.description,
                    "imageUrl": image_url,
                    "imagePath": item.image_path,
                    "categories": list(item.categories or []),
                    "tags": list(item.tags or []),
                    "createdAt": item.created_at,
                    "similarity": r.similarity,
                    "owner": owner_summary(item),
                    "circles": [],  # not loaded for search results
                    "isOwner": item.owner_id == viewer_id,
                }
            )

        for gap in gaps:
            logger.warning(f"Omitting search result: {gap}")
        return results

    async def _sign(self, paths: List[str]) -> Dict[str, Optional[str]]:
        try:
            return await self.storage.sign_urls(paths)
        except StorageError as e:
            # Every item becomes a gap; the request itself still succeeds
            logger.error(f"Signing image URLs failed: {e}")
            return {}
