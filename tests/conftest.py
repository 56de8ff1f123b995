import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Dict, List, Optional, Set

import numpy as np
import pytest

from app.core.catalog import RankedItem
from app.core.embeddings import EmbeddingProvider, fuse_vectors
from app.core.enrichment import ResultEnricher
from app.core.scope import CircleScopeResolver
from app.core.search import SimilaritySearchEngine

BASE_TIME = datetime(2026, 1, 1, tzinfo=timezone.utc)


def unit(*values: float) -> List[float]:
    arr = np.asarray(values, dtype=np.float64)
    return (arr / np.linalg.norm(arr)).tolist()


def with_similarity(score: float) -> List[float]:
    """A unit vector whose cosine similarity with [1, 0, 0, 0] is exactly ``score``."""
    return [score, math.sqrt(1 - score**2), 0.0, 0.0]


QUERY_AXIS = [1.0, 0.0, 0.0, 0.0]


@dataclass
class FakeItem:
    id: str
    name: str
    embedding: Optional[List[float]]
    circles: List[str]
    owner_id: str = "owner-1"
    created_at: datetime = BASE_TIME
    description: Optional[str] = None
    categories: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    image_path: str = ""
    owner: Optional[SimpleNamespace] = None

    def __post_init__(self):
        if not self.image_path:
            self.image_path = f"{self.owner_id}/{self.id}.jpg"
        if self.owner is None:
            self.owner = SimpleNamespace(id=self.owner_id, name=f"User {self.owner_id}", image=None)


class FakeProvider(EmbeddingProvider):
    """Looks vectors up in dictionaries and counts every call."""

    dimension = 4

    def __init__(self, texts=None, images=None, text_weight: float = 0.6, error: Optional[Exception] = None):
        self.texts: Dict[str, List[float]] = texts or {}
        self.images: Dict[str, List[float]] = images or {}
        self.text_weight = text_weight
        self.error = error
        self.calls: List[tuple] = []

    async def embed_text(self, text: str) -> List[float]:
        self.calls.append(("text", text))
        if self.error:
            raise self.error
        return self.texts.get(text, QUERY_AXIS)

    async def embed_image(self, image_url: str) -> List[float]:
        self.calls.append(("image", image_url))
        if self.error:
            raise self.error
        return self.images[image_url]

    async def embed_fused(self, image_url: str, text: str) -> List[float]:
        self.calls.append(("fused", image_url, text))
        if self.error:
            raise self.error
        return fuse_vectors(self.images[image_url], self.texts[text], self.text_weight)


class FakeCatalog:
    """
    In-memory catalog that behaves like a naive join: one row per matching
    circle, unsorted, items without embeddings included with no score.
    """

    def __init__(self, items: List[FakeItem], error: Optional[Exception] = None):
        self.items = {i.id: i for i in items}
        self.error = error
        self.rank_calls = 0
        self.fetch_calls = 0
        self.deleted: Set[str] = set()

    async def rank_visible(self, query_vector, circle_ids, *, threshold, limit, category=None, tag=None):
        self.rank_calls += 1
        if self.error:
            raise self.error
        q = np.asarray(query_vector, dtype=np.float64)
        rows = []
        for item in reversed(list(self.items.values())):
            if category and category not in item.categories:
                continue
            if tag and tag not in item.tags:
                continue
            for circle_id in item.circles:
                if circle_id not in circle_ids:
                    continue
                score = None
                if item.embedding is not None:
                    v = np.asarray(item.embedding, dtype=np.float64)
                    score = max(0.0, float(q @ v / (np.linalg.norm(q) * np.linalg.norm(v))))
                rows.append(RankedItem(item_id=item.id, similarity=score, created_at=item.created_at))
        return rows

    async def fetch_items(self, item_ids):
        self.fetch_calls += 1
        return {i: self.items[i] for i in item_ids if i in self.items and i not in self.deleted}


class FakeResolver(CircleScopeResolver):
    def __init__(self, memberships: Dict[str, Set[str]]):
        self.memberships = memberships

    async def active_circles_of(self, user_id: str) -> Set[str]:
        return set(self.memberships.get(user_id, set()))


class FakeStorage:
    def __init__(self, unsignable: Optional[Set[str]] = None, error: Optional[Exception] = None):
        self.unsignable = unsignable or set()
        self.error = error
        self.calls = 0

    async def sign_urls(self, paths, expires_in=None):
        self.calls += 1
        if self.error:
            raise self.error
        return {
            p: None if p in self.unsignable else f"https://storage.test/{p}?token=signed"
            for p in paths
        }


def build_engine(items, memberships, provider=None, storage=None, catalog_error=None, timeout=5.0):
    catalog = FakeCatalog(items, error=catalog_error)
    provider = provider or FakeProvider()
    storage = storage or FakeStorage()
    engine = SimilaritySearchEngine(
        provider=provider,
        catalog=catalog,
        resolver=FakeResolver(memberships),
        enricher=ResultEnricher(catalog, storage),
        timeout=timeout,
        max_limit=100,
    )
    return engine, catalog, provider, storage


@pytest.fixture
def camping_items():
    return [
        FakeItem("tent", "Camping Tent", with_similarity(0.82), ["hikers"],
                 created_at=BASE_TIME + timedelta(days=1)),
        FakeItem("bag", "Sleeping Bag", with_similarity(0.61), ["hikers", "neighbours"],
                 created_at=BASE_TIME + timedelta(days=2)),
        FakeItem("blender", "Blender", with_similarity(0.12), ["neighbours"],
                 created_at=BASE_TIME + timedelta(days=3)),
        FakeItem("kayak", "Kayak", with_similarity(0.55), ["paddlers"],
                 created_at=BASE_TIME + timedelta(days=4)),
        FakeItem("lamp", "Old Lantern", None, ["hikers"],
                 created_at=BASE_TIME + timedelta(days=5)),
    ]


@pytest.fixture
def memberships():
    return {
        "alice": {"hikers", "neighbours"},
        "bob": {"paddlers"},
        "carol": set(),
    }

