from typing import Optional

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.catalog import SqlItemCatalog
from app.core.enrichment import ResultEnricher
from app.core.scope import CircleScopeResolver
from app.core.search import SimilaritySearchEngine
from app.db.session import get_db


async def get_current_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    """The authenticating proxy forwards the signed-in user's id in X-User-Id."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Unauthorized")
    return x_user_id.strip()


def get_search_engine(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> SimilaritySearchEngine:
    catalog = SqlItemCatalog(db)
    return SimilaritySearchEngine(
        provider=request.app.state.embedding_provider,
        catalog=catalog,
        resolver=CircleScopeResolver(db),
        enricher=ResultEnricher(catalog, request.app.state.image_storage),
        timeout=config.SEARCH_TIMEOUT_SECONDS,
        max_limit=config.SEARCH_MAX_LIMIT,
    )
