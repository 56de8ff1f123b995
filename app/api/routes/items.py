import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import any_, literal, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.api.deps import get_current_user_id
from app.core import config
from app.core.catalog import category_filter
from app.core.enrichment import owner_summary
from app.core.indexing import apply_image_change, enqueue_embedding
from app.core.scope import CircleScopeResolver
from app.core.services import AnalysisError, AnalysisRateLimited, analyze_item_image
from app.core.storage import StorageError
from app.db.models import Item, ItemCircle
from app.db.session import get_db
from app.schemas.item import AnalyzeRequest, ItemCreate, ItemRead, ItemUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/items", tags=["items"])


def item_to_read(item: Item, image_url: Optional[str], viewer_id: str) -> dict:
    return {
        "id": item.id,
        "name": item.name,
        "description": item.description,
        "imageUrl": image_url,
        "imagePath": item.image_path,
        "categories": list(item.categories or []),
        "tags": list(item.tags or []),
        "createdAt": item.created_at,
        "updatedAt": item.updated_at,
        "owner": owner_summary(item),
        "circles": [
            {"id": link.circle.id, "name": link.circle.name}
            for link in item.circles
            if link.circle is not None
        ],
        "isOwner": item.owner_id == viewer_id,
        "hasEmbedding": item.embedding is not None,
    }


async def sign_image_urls(request: Request, paths: List[str]) -> Dict[str, Optional[str]]:
    try:
        return await request.app.state.image_storage.sign_urls(paths)
    except StorageError as e:
        logger.error(f"Failed to sign item image URLs: {e}")
        return {}


async def load_item(db: AsyncSession, item_id: str) -> Optional[Item]:
    result = await db.execute(
        select(Item)
        .where(Item.id == item_id)
        .options(
            selectinload(Item.owner),
            selectinload(Item.circles).selectinload(ItemCircle.circle),
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def require_membership(db: AsyncSession, user_id: str, circle_ids: List[str]) -> List[str]:
    """Return the de-duplicated circle ids, or 403 if any is not an active membership."""
    wanted = list(dict.fromkeys(circle_ids))
    active = await CircleScopeResolver(db).active_circles_of(user_id)
    if any(cid not in active for cid in wanted):
        raise HTTPException(status_code=403, detail="You are not a member of some selected circles")
    return wanted


async def require_owned_item(db: AsyncSession, item_id: str, user_id: str, action: str) -> Item:
    item = await load_item(db, item_id)
    if not item:
        raise HTTPException(status_code=404, detail="Item not found")
    if item.owner_id != user_id:
        raise HTTPException(status_code=403, detail=f"You can only {action} your own items")
    return item


@router.get("", response_model=List[ItemRead])
async def list_items(
    request: Request,
    circle_id: Optional[str] = Query(default=None, alias="circleId"),
    category: Optional[str] = None,
    tag: Optional[str] = None,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """List items visible to the caller, newest first."""
    scope = await CircleScopeResolver(db).active_circles_of(user_id)
    if circle_id:
        if circle_id not in scope:
            raise HTTPException(status_code=403, detail="You are not a member of this circle")
        scope = {circle_id}
    if not scope:
        return []

    in_scope = select(ItemCircle.item_id).where(ItemCircle.circle_id.in_(list(scope)))
    stmt = (
        select(Item)
        .where(Item.id.in_(in_scope))
        .options(
            selectinload(Item.owner),
            selectinload(Item.circles).selectinload(ItemCircle.circle),
        )
        .order_by(Item.created_at.desc())
    )
    category = category_filter(category)
    if category:
        stmt = stmt.where(literal(category) == any_(Item.categories))
    if tag:
        stmt = stmt.where(literal(tag) == any_(Item.tags))

    result = await db.execute(stmt)
    items = result.scalars().all()

    urls = await sign_image_urls(request, [i.image_path for i in items])
    return [item_to_read(i, urls.get(i.image_path), user_id) for i in items]


@router.post("", response_model=ItemRead, status_code=status.HTTP_201_CREATED)
async def create_item(
    request: Request,
    body: ItemCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    circle_ids = await require_membership(db, user_id, body.circle_ids)

    # Item and its circle links commit together; the embedding arrives later
    new_item = Item(
        name=body.name,
        description=body.description,
        image_path=body.image_path,
        categories=body.categories,
        tags=body.tags,
        owner_id=user_id,
        embedding=None,
    )
    new_item.circles = [ItemCircle(circle_id=cid) for cid in circle_ids]
    db.add(new_item)
    await db.commit()

    item = await load_item(db, new_item.id)
    await enqueue_embedding(request.app.state.redis, item.id, item.image_path)

    urls = await sign_image_urls(request, [item.image_path])
    return item_to_read(item, urls.get(item.image_path), user_id)


@router.post("/analyze")
async def analyze_item(
    request: Request,
    body: AnalyzeRequest,
    user_id: str = Depends(get_current_user_id),
):
    """Suggest item details from a photo."""
    try:
        analysis = await analyze_item_image(
            request.app.state.openai, body.image_url, config.ANALYSIS_MODEL
        )
    except AnalysisRateLimited:
        raise HTTPException(
            status_code=429,
            detail="AI service rate limit reached. Please try again later.",
        )
    except AnalysisError as e:
        logger.error(f"Image analysis failed for user {user_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to analyze image")
    return analysis.model_dump()


@router.get("/{item_id}", response_model=ItemRead)
async def get_item(
    request: Request,
    item_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    scope = await CircleScopeResolver(db).active_circles_of(user_id)
    item = await load_item(db, item_id)
    if not item or not any(link.circle_id in scope for link in item.circles):
        raise HTTPException(status_code=404, detail="Item not found or not accessible")

    urls = await sign_image_urls(request, [item.image_path])
    return item_to_read(item, urls.get(item.image_path), user_id)


@router.patch("/{item_id}", response_model=ItemRead)
async def update_item(
    request: Request,
    item_id: str,
    body: ItemUpdate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    item = await require_owned_item(db, item_id, user_id, "edit")

    circle_ids = None
    if body.circle_ids is not None:
        if not body.circle_ids:
            raise HTTPException(status_code=400, detail="At least one circle must be selected")
        circle_ids = await require_membership(db, user_id, body.circle_ids)

    if body.name is not None:
        item.name = body.name
    if "description" in body.model_fields_set:
        item.description = (body.description or "").strip() or None
    if body.categories is not None:
        item.categories = body.categories
    if body.tags is not None:
        item.tags = body.tags
    if circle_ids is not None:
        item.circles = [ItemCircle(circle_id=cid) for cid in circle_ids]

    # New image and cleared embedding are written in the same transaction
    image_changed = apply_image_change(item, body.image_path)
    await db.commit()

    if image_changed:
        logger.info(f"Image changed for item {item_id}, embedding reset")
        await enqueue_embedding(request.app.state.redis, item.id, item.image_path)

    item = await load_item(db, item_id)
    urls = await sign_image_urls(request, [item.image_path])
    return item_to_read(item, urls.get(item.image_path), user_id)


@router.post("/{item_id}/embedding", status_code=status.HTTP_202_ACCEPTED)
async def refresh_embedding(
    request: Request,
    item_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Re-run embedding generation for an item (e.g. after a failed attempt)."""
    item = await require_owned_item(db, item_id, user_id, "refresh")
    await enqueue_embedding(request.app.state.redis, item.id, item.image_path)
    return {"message": f"Embedding refresh queued for item {item_id}"}


@router.delete("/{item_id}")
async def delete_item(
    item_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    item = await require_owned_item(db, item_id, user_id, "delete")

    # Circle links go with it (ON DELETE CASCADE)
    await db.delete(item)
    await db.commit()

    return {"message": "Item deleted successfully"}
