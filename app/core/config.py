import os

# Environment (default to production)
ENV = os.getenv("APP_ENV", "production").lower()

DATABASE_URL = os.getenv("DATABASE_URL", "")
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379")
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "").split(",")
    if origin.strip()
]

# Voyage multimodal embeddings
VOYAGE_API_KEY = os.getenv("VOYAGE_API_KEY")
VOYAGE_API_URL = os.getenv(
    "VOYAGE_API_URL", "https://api.voyageai.com/v1/multimodalembeddings"
)
VOYAGE_MODEL = os.getenv("VOYAGE_MODEL", "voyage-multimodal-3")
EMBEDDING_DIM = int(os.getenv("EMBEDDING_DIM", "1024"))
EMBEDDING_TIMEOUT_SECONDS = float(os.getenv("EMBEDDING_TIMEOUT_SECONDS", "15"))

# "joint" lets the provider fuse image + text, "weighted" combines two vectors locally
FUSION_MODE = os.getenv("FUSION_MODE", "joint").lower()
FUSION_TEXT_WEIGHT = float(os.getenv("FUSION_TEXT_WEIGHT", "0.6"))

# Search
SEARCH_TIMEOUT_SECONDS = float(os.getenv("SEARCH_TIMEOUT_SECONDS", "10"))
SEARCH_DEFAULT_LIMIT = int(os.getenv("SEARCH_DEFAULT_LIMIT", "20"))
SEARCH_MAX_LIMIT = int(os.getenv("SEARCH_MAX_LIMIT", "100"))
SEARCH_DEFAULT_THRESHOLD = float(os.getenv("SEARCH_DEFAULT_THRESHOLD", "0.3"))

# pgvector HNSW scan: candidate pool size, and "relaxed_order" / "strict_order"
# to keep scanning past filtered-out rows (pgvector >= 0.8; empty disables)
HNSW_EF_SEARCH = int(os.getenv("HNSW_EF_SEARCH", "100"))
HNSW_ITERATIVE_SCAN = os.getenv("HNSW_ITERATIVE_SCAN", "relaxed_order").strip()

# Supabase storage (signed image URLs)
SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
ITEM_IMAGE_BUCKET = os.getenv("ITEM_IMAGE_BUCKET", "items")
SIGNED_URL_TTL_SECONDS = int(os.getenv("SIGNED_URL_TTL_SECONDS", "3600"))

# OpenAI (item image analysis)
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
ANALYSIS_MODEL = os.getenv("ANALYSIS_MODEL", "gpt-4.1-nano")
