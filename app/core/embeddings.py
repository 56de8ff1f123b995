import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, List, Optional, Sequence

import httpx
import numpy as np

from app.core.errors import EmbeddingFailure

logger = logging.getLogger(__name__)

FUSION_MODES = ("joint", "weighted")


def normalize(vector: Sequence[float]) -> np.ndarray:
    arr = np.asarray(vector, dtype=np.float64)
    norm = np.linalg.norm(arr)
    if norm == 0:
        raise EmbeddingFailure("Cannot normalize a zero vector")
    return arr / norm


def fuse_vectors(
    image_vector: Sequence[float],
    text_vector: Sequence[float],
    text_weight: float,
) -> List[float]:
    """
    Combine an image and a text embedding into one query vector.

    Both inputs are L2-normalised first so neither dominates by magnitude, then
    mixed as ``(1 - text_weight) * image + text_weight * text`` and normalised
    again. A text weight above 0.5 lets a narrowing hint ("the blue one")
    reorder results that look alike, while the image still contributes the
    base signal.
    """
    if not 0.0 <= text_weight <= 1.0:
        raise ValueError(f"text_weight must be within [0, 1], got {text_weight}")
    if len(image_vector) != len(text_vector):
        raise EmbeddingFailure(
            f"Cannot fuse vectors of different dimension ({len(image_vector)} vs {len(text_vector)})"
        )

    fused = (1.0 - text_weight) * normalize(image_vector) + text_weight * normalize(text_vector)
    return normalize(fused).tolist()


class EmbeddingProvider(ABC):
    """Produces vectors for text, images and image+text in one shared space."""

    dimension: int

    @abstractmethod
    async def embed_text(self, text: str) -> List[float]:
        ...

    @abstractmethod
    async def embed_image(self, image_url: str) -> List[float]:
        ...

    @abstractmethod
    async def embed_fused(self, image_url: str, text: str) -> List[float]:
        ...


class VoyageEmbeddingProvider(EmbeddingProvider):
    """
    Embeddings from Voyage AI's multimodal model.

    Text and images land in the same 1024-dim space, so a text query can be
    compared against item embeddings computed from photos.

    Fused queries depend on ``fusion_mode``:

    * ``"joint"``: image and text are sent as a single multimodal input and
      the model produces one vector. This is the default.
    * ``"weighted"``: image and text are embedded separately and combined with
      :func:`fuse_vectors` using ``text_weight``.

    Every request is bounded by ``timeout`` seconds; timeouts, HTTP errors and
    malformed payloads are all raised as :class:`EmbeddingFailure`.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: Optional[str],
        *,
        api_url: str = "https://api.voyageai.com/v1/multimodalembeddings",
        model: str = "voyage-multimodal-3",
        dimension: int = 1024,
        timeout: float = 15.0,
        fusion_mode: str = "joint",
        text_weight: float = 0.6,
    ):
        if fusion_mode not in FUSION_MODES:
            raise ValueError(f"Unknown fusion mode '{fusion_mode}', expected one of {FUSION_MODES}")
        self.client = client
        self.api_key = api_key
        self.api_url = api_url
        self.model = model
        self.dimension = dimension
        self.timeout = timeout
        self.fusion_mode = fusion_mode
        self.text_weight = text_weight

    async def embed_text(self, text: str) -> List[float]:
        if not text or not text.strip():
            raise EmbeddingFailure("Cannot embed empty text")
        return await self._embed([{"type": "text", "text": text}])

    async def embed_image(self, image_url: str) -> List[float]:
        if not image_url or not image_url.startswith(("http://", "https://")):
            raise EmbeddingFailure(f"Image reference is not a fetchable URL: {image_url!r}")
        return await self._embed([{"type": "image_url", "image_url": image_url}])

    async def embed_fused(self, image_url: str, text: str) -> List[float]:
        if self.fusion_mode == "weighted":
            image_vector, text_vector = await asyncio.gather(
                self.embed_image(image_url),
                self.embed_text(text),
            )
            return fuse_vectors(image_vector, text_vector, self.text_weight)

        if not image_url or not image_url.startswith(("http://", "https://")):
            raise EmbeddingFailure(f"Image reference is not a fetchable URL: {image_url!r}")
        return await self._embed(
            [
                {"type": "image_url", "image_url": image_url},
                {"type": "text", "text": text},
            ]
        )

    async def _embed(self, content: List[dict]) -> List[float]:
        if not self.api_key:
            raise EmbeddingFailure("VOYAGE_API_KEY is not configured")

        try:
            response = await asyncio.wait_for(
                self.client.post(
                    self.api_url,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json={"model": self.model, "inputs": [{"content": content}]},
                    timeout=self.timeout,
                ),
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload: Any = response.json()
            embedding = [float(x) for x in payload["data"][0]["embedding"]]
        except asyncio.TimeoutError as e:
            raise EmbeddingFailure(f"Embedding request timed out after {self.timeout}s") from e
        except httpx.HTTPStatusError as e:
            raise EmbeddingFailure(
                f"Voyage AI embedding failed: {e.response.status_code} - {e.response.text[:200]}"
            ) from e
        except httpx.HTTPError as e:
            raise EmbeddingFailure(f"Voyage AI request failed: {e}") from e
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise EmbeddingFailure(f"Malformed embedding response: {e}") from e

        if len(embedding) != self.dimension:
            raise EmbeddingFailure(
                f"Expected a {self.dimension}-dim embedding, got {len(embedding)}"
            )
        return embedding
