import asyncio
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import OperationalError

from app.core.catalog import ALL_CATEGORIES, SqlItemCatalog, category_filter
from app.core.errors import CatalogFailure

QUERY = [0.123456, 0.654321, 0.0, 0.5]
CREATED = datetime(2026, 3, 1, tzinfo=timezone.utc)


def catalog_with_rows(rows):
    db = MagicMock()
    db.execute = AsyncMock(return_value=rows)
    return SqlItemCatalog(db), db


def compiled(db):
    stmt = db.execute.call_args.args[0]
    return str(stmt.compile(dialect=postgresql.dialect()))


def test_rank_visible_builds_parameterized_scoped_query():
    catalog, db = catalog_with_rows([])

    asyncio.run(catalog.rank_visible(QUERY, {"hikers"}, threshold=0.3, limit=20))

    sql = compiled(db)
    assert "<=>" in sql
    assert "items.embedding IS NOT NULL" in sql
    assert "EXISTS" in sql
    assert "item_circles.circle_id IN" in sql
    assert "ORDER BY" in sql and "items.created_at DESC" in sql
    assert "LIMIT" in sql
    # the query vector travels as a bound parameter
    assert "0.123456" not in sql


def test_rank_visible_adds_category_and_tag_filters():
    catalog, db = catalog_with_rows([])

    asyncio.run(
        catalog.rank_visible(QUERY, {"hikers"}, threshold=0.3, limit=20, category="Tools", tag="drill")
    )

    sql = compiled(db)
    assert "ANY (items.categories)" in sql
    assert "ANY (items.tags)" in sql


def test_all_categories_means_no_category_filter():
    catalog, db = catalog_with_rows([])

    asyncio.run(
        catalog.rank_visible(QUERY, {"hikers"}, threshold=0.3, limit=20, category=ALL_CATEGORIES)
    )

    assert "items.categories" not in compiled(db)


@pytest.mark.parametrize("category", [None, "", ALL_CATEGORIES])
def test_category_filter_ignores_unselected(category):
    assert category_filter(category) is None


def test_category_filter_keeps_real_category():
    assert category_filter("Outdoor") == "Outdoor"


def settings_applied(db):
    applied = {}
    for call in db.execute.call_args_list[:-1]:
        params = call.args[0].compile(dialect=postgresql.dialect()).params
        name, value = [v for v in params.values() if isinstance(v, str)]
        applied[name] = value
    return applied


@pytest.mark.parametrize("limit, ef_search, expected", [(20, 100, "100"), (80, 40, "80"), (5000, 40, "1000")])
def test_index_scan_pool_covers_limit(limit, ef_search, expected):
    db = MagicMock()
    db.execute = AsyncMock(return_value=[])
    catalog = SqlItemCatalog(db, ef_search=ef_search, iterative_scan="relaxed_order")

    asyncio.run(catalog.rank_visible(QUERY, {"hikers"}, threshold=0.3, limit=limit))

    assert settings_applied(db) == {
        "hnsw.ef_search": expected,
        "hnsw.iterative_scan": "relaxed_order",
    }
    # the ranking query runs after the settings
    assert "<=>" in compiled(db)


def test_iterative_scan_can_be_disabled():
    db = MagicMock()
    db.execute = AsyncMock(return_value=[])
    catalog = SqlItemCatalog(db, ef_search=100, iterative_scan="")

    asyncio.run(catalog.rank_visible(QUERY, {"hikers"}, threshold=0.3, limit=20))

    assert settings_applied(db) == {"hnsw.ef_search": "100"}


def test_rank_visible_maps_rows():
    rows = [
        SimpleNamespace(id="tent", similarity=0.82, created_at=CREATED),
        SimpleNamespace(id="bag", similarity=0.61, created_at=CREATED),
    ]
    catalog, _ = catalog_with_rows(rows)

    ranked = asyncio.run(catalog.rank_visible(QUERY, {"hikers"}, threshold=0.3, limit=20))

    assert [(r.item_id, r.similarity) for r in ranked] == [("tent", 0.82), ("bag", 0.61)]


def test_rank_visible_wraps_storage_errors():
    db = MagicMock()
    db.execute = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("db down")))

    with pytest.raises(CatalogFailure):
        asyncio.run(SqlItemCatalog(db).rank_visible(QUERY, {"hikers"}, threshold=0.3, limit=20))


def test_fetch_items_batches_into_one_query():
    items = [SimpleNamespace(id="tent"), SimpleNamespace(id="bag")]
    result = MagicMock()
    result.scalars.return_value.all.return_value = items
    catalog, db = catalog_with_rows(result)

    fetched = asyncio.run(catalog.fetch_items(["tent", "bag"]))

    assert set(fetched) == {"tent", "bag"}
    assert db.execute.await_count == 1


def test_fetch_items_with_no_ids_skips_query():
    catalog, db = catalog_with_rows([])

    assert asyncio.run(catalog.fetch_items([])) == {}
    db.execute.assert_not_called()
