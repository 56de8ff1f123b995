import asyncio
import logging
import sys
import time

import httpx
from arq import cron, Worker
from arq.worker import func
from arq.connections import RedisSettings

from app.core import config
from app.core.embeddings import VoyageEmbeddingProvider
from app.core.indexing import refresh_item_embedding
from app.core.storage import SupabaseImageStorage
from app.db.session import build_engine, build_sessionmaker

# Logging configuration
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    stream=sys.stdout,
    force=True,
)
logger = logging.getLogger(__name__)


async def startup(ctx):
    ctx["db_engine"] = build_engine(config.DATABASE_URL)
    ctx["sessionmaker"] = build_sessionmaker(ctx["db_engine"])
    ctx["http"] = httpx.AsyncClient()
    ctx["provider"] = VoyageEmbeddingProvider(
        ctx["http"],
        config.VOYAGE_API_KEY,
        api_url=config.VOYAGE_API_URL,
        model=config.VOYAGE_MODEL,
        dimension=config.EMBEDDING_DIM,
        timeout=config.EMBEDDING_TIMEOUT_SECONDS,
        fusion_mode=config.FUSION_MODE,
        text_weight=config.FUSION_TEXT_WEIGHT,
    )
    ctx["storage"] = SupabaseImageStorage(
        ctx["http"],
        config.SUPABASE_URL,
        config.SUPABASE_SERVICE_ROLE_KEY,
        bucket=config.ITEM_IMAGE_BUCKET,
    )
    logger.info("Worker resources initialized")


async def shutdown(ctx):
    await ctx["http"].aclose()
    await ctx["db_engine"].dispose()
    logger.info("Worker resources released")


async def generate_embedding(ctx, item_id: str, image_path: str):
    """Background job: generate and store the image embedding for a single item."""
    logger.info(f"🔹 Generating embedding for item {item_id}")
    await refresh_item_embedding(
        ctx["sessionmaker"],
        ctx["provider"],
        ctx["storage"],
        item_id,
        image_path,
    )


async def worker_heartbeat(ctx):
    redis = ctx["redis"]
    await redis.set(
        "arq:heartbeat", str(time.time()), ex=60
    )  # expire in 60 seconds


async def run_worker_forever():
    """
    Resilient loop that keeps the ARQ worker running.
    Restarts worker on failure with exponential backoff.
    """
    backoff = 1
    while True:
        try:
            worker = Worker(
                # one attempt per job; a failed item keeps a NULL embedding until refreshed
                functions=[func(generate_embedding, max_tries=1)],
                redis_settings=RedisSettings.from_dsn(config.REDIS_URL),
                on_startup=startup,
                on_shutdown=shutdown,
                cron_jobs=[
                    cron(worker_heartbeat, second=0),
                ],
                keep_result=0,
                max_jobs=5,
            )
            logger.info("🚀 Starting ARQ worker...")
            await worker.async_run()
        except asyncio.CancelledError:
            logger.warning("🌀 Worker shutdown triggered by CancelledError, stopping.")
            raise
        except Exception as e:
            logger.error(f"❌ Worker crashed: {e}", exc_info=True)
            logger.info(f"🔁 Restarting worker in {backoff} seconds...")
            await asyncio.sleep(backoff)
            backoff = min(backoff * 2, 60)  # Max backoff 1 minute
        else:
            backoff = 1  # Reset backoff on clean exit


if __name__ == "__main__":
    try:
        asyncio.run(run_worker_forever())
    except KeyboardInterrupt:
        logger.info("🛑 Worker manually stopped.")
