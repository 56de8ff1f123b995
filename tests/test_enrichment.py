import asyncio
from datetime import timedelta

from app.core.catalog import RankedItem
from app.core.enrichment import ResultEnricher
from app.core.storage import StorageError
from tests.conftest import BASE_TIME, FakeCatalog, FakeItem, FakeStorage


def ranked(*pairs):
    return [RankedItem(item_id, score, BASE_TIME + timedelta(minutes=n)) for n, (item_id, score) in enumerate(pairs)]


def make_items():
    return [
        FakeItem("tent", "Camping Tent", None, ["hikers"], owner_id="alice",
                 categories=["Outdoor"], tags=["tent", "camping"], description="Two-person tent"),
        FakeItem("bag", "Sleeping Bag", None, ["hikers"], owner_id="bob"),
    ]


def test_enrich_builds_presentable_results_in_rank_order():
    catalog = FakeCatalog(make_items())
    enricher = ResultEnricher(catalog, FakeStorage())

    results = asyncio.run(enricher.enrich(ranked(("bag", 0.9), ("tent", 0.8)), viewer_id="alice"))

    assert [r["id"] for r in results] == ["bag", "tent"]
    tent = results[1]
    assert tent["imageUrl"] == "https://storage.test/alice/tent.jpg?token=signed"
    assert tent["imagePath"] == "alice/tent.jpg"
    assert tent["categories"] == ["Outdoor"]
    assert tent["tags"] == ["tent", "camping"]
    assert tent["similarity"] == 0.8
    assert tent["owner"] == {"id": "alice", "name": "User alice", "image": None}
    assert tent["isOwner"] is True
    assert results[0]["isOwner"] is False


def test_single_lookup_for_whole_batch():
    catalog = FakeCatalog(make_items())
    storage = FakeStorage()

    asyncio.run(ResultEnricher(catalog, storage).enrich(ranked(("bag", 0.9), ("tent", 0.8)), "alice"))

    assert catalog.fetch_calls == 1
    assert storage.calls == 1


def test_missing_item_is_dropped(caplog):
    catalog = FakeCatalog(make_items())
    catalog.deleted.add("bag")

    results = asyncio.run(
        ResultEnricher(catalog, FakeStorage()).enrich(ranked(("bag", 0.9), ("tent", 0.8)), "alice")
    )

    assert [r["id"] for r in results] == ["tent"]
    assert "item bag: item no longer exists" in caplog.text


def test_storage_outage_drops_everything_without_raising():
    catalog = FakeCatalog(make_items())
    storage = FakeStorage(error=StorageError("storage unreachable"))

    results = asyncio.run(ResultEnricher(catalog, storage).enrich(ranked(("tent", 0.8)), "alice"))

    assert results == []


def test_owner_fallback_when_owner_row_missing():
    items = make_items()
    items[0].owner = None
    catalog = FakeCatalog(items)

    results = asyncio.run(ResultEnricher(catalog, FakeStorage()).enrich(ranked(("tent", 0.8)), "bob"))

    assert results[0]["owner"] == {"id": "alice", "name": None, "image": None}


def test_empty_ranking_does_no_io():
    catalog = FakeCatalog(make_items())
    storage = FakeStorage()

    assert asyncio.run(ResultEnricher(catalog, storage).enrich([], "alice")) == []
    assert catalog.fetch_calls == 0
    assert storage.calls == 0
