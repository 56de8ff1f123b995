import logging

from fastapi import APIRouter, Depends, HTTPException

from app.api.deps import get_current_user_id, get_search_engine
from app.core.errors import InvalidQuery
from app.core.search import SearchQuery, SimilaritySearchEngine
from app.schemas.search import SearchRequest, SearchResult

logger = logging.getLogger(__name__)

router = APIRouter(tags=["search"])

SEARCH_FAILED_DETAIL = "Failed to process search query"


@router.post("/api/search", response_model=list[SearchResult])
@router.post("/search", response_model=list[SearchResult], include_in_schema=False)
async def search_items(
    body: SearchRequest,
    user_id: str = Depends(get_current_user_id),
    engine: SimilaritySearchEngine = Depends(get_search_engine),
):
    """Search items in the caller's circles by text, image, or both."""
    query = SearchQuery(
        user_id=user_id,
        text=body.query,
        image_url=body.image_url,
        circle_ids=body.circle_ids,
        category=body.category,
        tag=body.tag,
        limit=body.limit,
        threshold=body.threshold,
    )

    try:
        outcome = await engine.search(query)
    except InvalidQuery as e:
        raise HTTPException(status_code=400, detail=str(e))

    if outcome.failed:
        logger.error(f"Search for user {user_id} failed: {outcome.error!r}")
        raise HTTPException(status_code=500, detail=SEARCH_FAILED_DETAIL)

    return outcome.hits
