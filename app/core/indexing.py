import logging
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.embeddings import EmbeddingProvider
from app.core.errors import EmbeddingFailure
from app.core.storage import StorageError, SupabaseImageStorage
from app.db.models import Item

logger = logging.getLogger(__name__)

# Signed URLs handed to the embedding provider only need to outlive one request
EMBEDDING_URL_TTL_SECONDS = 300


def apply_image_change(item: Item, new_image_path: Optional[str]) -> bool:
    """
    Point the item at a new image and drop its embedding in the same unit of work.

    Returns True when the image actually changed, in which case the caller must
    schedule :func:`refresh_item_embedding` after committing.
    """
    if not new_image_path or new_image_path == item.image_path:
        return False
    item.image_path = new_image_path
    item.embedding = None
    return True


async def enqueue_embedding(redis, item_id: str, image_path: str) -> None:
    """Fire-and-forget: ask the worker to (re)compute an item's embedding."""
    try:
        await redis.enqueue_job("generate_embedding", item_id, image_path)
    except Exception as e:
        # The item stays unembedded until its next image change or manual refresh
        logger.error(f"Failed to enqueue embedding for item {item_id}: {e}", exc_info=True)


async def store_embedding(
    db: AsyncSession,
    item_id: str,
    image_path: str,
    embedding: List[float],
) -> bool:
    """
    Overwrite the item's embedding if it still shows ``image_path``.

    A job computed for an image that has since been replaced matches no row
    and is discarded.
    """
    result = await db.execute(
        update(Item)
        .where(Item.id == item_id, Item.image_path == image_path)
        .values(embedding=embedding)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount > 0


async def refresh_item_embedding(
    sessionmaker: async_sessionmaker[AsyncSession],
    provider: EmbeddingProvider,
    storage: SupabaseImageStorage,
    item_id: str,
    image_path: str,
) -> bool:
    """
    Compute and store the embedding for one item image.

    Failures are logged and leave the embedding NULL; the item itself is never
    touched otherwise.
    """
    try:
        image_url = await storage.sign_url(image_path, expires_in=EMBEDDING_URL_TTL_SECONDS)
        embedding = await provider.embed_image(image_url)
    except (StorageError, EmbeddingFailure) as e:
        logger.error(f"Failed to generate embedding for item {item_id}: {e}")
        return False

    async with sessionmaker() as db:
        stored = await store_embedding(db, item_id, image_path, embedding)

    if stored:
        logger.info(f"Stored embedding for item {item_id}, dimensions: {len(embedding)}")
    else:
        logger.info(f"Discarded embedding for item {item_id}: item deleted or image replaced")
    return stored
