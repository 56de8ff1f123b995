import os
import logging
import logging.config
import asyncio
from datetime import datetime
from contextlib import asynccontextmanager

import httpx
from arq import create_pool
from arq.connections import RedisSettings
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from openai import AsyncOpenAI
from sqlalchemy import text

from app.core import config
from app.core.embeddings import VoyageEmbeddingProvider
from app.core.storage import SupabaseImageStorage
from app.db.base import Base
from app.db.session import build_engine, build_sessionmaker
from app.api.routes import items, search, system

# Load logging config if present
if os.path.exists("logging.conf"):
    logging.config.fileConfig("logging.conf", disable_existing_loggers=False)
logger = logging.getLogger("root")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup logic
    app.state.db_engine = build_engine(config.DATABASE_URL)
    app.state.sessionmaker = build_sessionmaker(app.state.db_engine)
    async with app.state.db_engine.begin() as conn:
        await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database initialized")

    app.state.http = httpx.AsyncClient()
    app.state.embedding_provider = VoyageEmbeddingProvider(
        app.state.http,
        config.VOYAGE_API_KEY,
        api_url=config.VOYAGE_API_URL,
        model=config.VOYAGE_MODEL,
        dimension=config.EMBEDDING_DIM,
        timeout=config.EMBEDDING_TIMEOUT_SECONDS,
        fusion_mode=config.FUSION_MODE,
        text_weight=config.FUSION_TEXT_WEIGHT,
    )
    app.state.image_storage = SupabaseImageStorage(
        app.state.http,
        config.SUPABASE_URL,
        config.SUPABASE_SERVICE_ROLE_KEY,
        bucket=config.ITEM_IMAGE_BUCKET,
        expires_in=config.SIGNED_URL_TTL_SECONDS,
    )
    app.state.openai = AsyncOpenAI(api_key=config.OPENAI_API_KEY, max_retries=0)
    app.state.redis = await create_pool(RedisSettings.from_dsn(config.REDIS_URL))
    logger.info(f"Search ready (fusion mode: {config.FUSION_MODE})")

    yield  # App runs here

    # Shutdown logic
    await app.state.redis.close()
    await app.state.http.aclose()
    await app.state.openai.close()
    await app.state.db_engine.dispose()
    logger.info("Shutting down...")


# Create FastAPI app with lifespan
app = FastAPI(
    title="Circles API",
    version="0.1",
    lifespan=lifespan,
)

# Dev-only CORS settings
if config.ENV == "development":
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    logger.info("CORS allowed for development environment")
elif config.CORS_ORIGINS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    logger.info("Running in production environment - CORS restricted")


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies are caller errors: answer 400, not 422."""
    return JSONResponse(
        status_code=400,
        content={"detail": jsonable_encoder(exc.errors())},
    )


# API routes
app.include_router(items.router)
app.include_router(search.router)
app.include_router(system.router)


@app.api_route("/api/health", methods=["GET", "HEAD"])
async def health(request: Request):
    status = {
        "api": "ok",
        "database": None,
        "redis": None,
        "worker": None,
    }

    http_status = 200

    # --- Database check ---
    try:
        async with request.app.state.sessionmaker() as db:
            await db.execute(text("SELECT 1"))
        status["database"] = "connected"
    except Exception as e:
        logger.error(f"Health check: database unavailable: {e}")
        status["database"] = "error"
        http_status = 503

    # --- Redis check with lazy reconnect + backoff ---
    try:
        redis = request.app.state.redis
        try:
            await redis.ping()
            status["redis"] = "connected"
        except Exception:
            logger.warning("Redis connection lost, attempting reconnect...")
            redis = await reconnect_redis_with_backoff()
            request.app.state.redis = redis
            status["redis"] = "reinitialized"
    except Exception as e:
        logger.error(f"Health check: redis unavailable: {e}")
        status["redis"] = "error"
        http_status = 503

    # --- Worker heartbeat ---
    try:
        heartbeat = await request.app.state.redis.get("arq:heartbeat")
        if heartbeat:
            last_heartbeat = datetime.fromtimestamp(float(heartbeat))
            status["worker"] = f"running (last heartbeat {last_heartbeat.isoformat()})"
        else:
            # Search still works; only new embeddings are delayed
            status["worker"] = "not reporting"
    except Exception as e:
        logger.error(f"Health check: worker heartbeat unreadable: {e}")
        status["worker"] = "error"

    return JSONResponse(content=status, status_code=http_status)


async def reconnect_redis_with_backoff(max_retries: int = 3, base_delay: float = 1.0):
    """
    Attempt to reconnect to Redis using exponential backoff.
    Returns the new Redis pool or raises after all retries fail.
    """
    for attempt in range(max_retries):
        try:
            redis = await create_pool(RedisSettings.from_dsn(config.REDIS_URL))
            await redis.ping()
            logger.info(f"Redis reconnected on attempt {attempt + 1}")
            return redis
        except Exception as e:
            wait_time = base_delay * (2**attempt)
            logger.warning(f"Redis reconnect attempt {attempt + 1} failed: {e}")
            await asyncio.sleep(wait_time)
    raise RuntimeError("Failed to reconnect to Redis after multiple attempts")
