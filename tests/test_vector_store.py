from __future__ import annotations

import numpy as np
import pytest

from chatlog_agent.rag.vector_store import LRUVectorCache, SQLiteVectorStore, cosine_similarity
from chatlog_agent.storage.models import TimeFilter


def _vec(*values: float) -> np.ndarray:
    return np.array(values, dtype=np.float32)


def test_lru_evicts_least_recently_used():
    cache = LRUVectorCache(max_size=2)
    cache.put("a", _vec(1))
    cache.put("b", _vec(2))
    assert cache.get("a") is not None
    cache.put("c", _vec(3))

    assert "a" in cache and "c" in cache
    assert "b" not in cache
    assert len(cache) == 2


def test_cosine_similarity():
    assert cosine_similarity(_vec(1, 0), _vec(1, 0)) == pytest.approx(1.0)
    assert cosine_similarity(_vec(1, 0), _vec(0, 1)) == pytest.approx(0.0)
    assert cosine_similarity(_vec(0, 0), _vec(1, 1)) == 0.0


async def test_upsert_get_and_persistence(tmp_path):
    path = tmp_path / "vectors.db"
    store = SQLiteVectorStore(path)
    await store.initialize()
    await store.upsert([("c1", _vec(1, 2, 3), {"session_id": "demo"})])
    await store.upsert([("c1", _vec(3, 2, 1), {"session_id": "demo"})])
    assert (await store.get(["c1", "missing"]))["c1"].tolist() == [3, 2, 1]
    await store.close()

    reopened = SQLiteVectorStore(path)
    await reopened.initialize()
    found = await reopened.get(["c1"])
    assert found["c1"].tolist() == [3, 2, 1]
    assert (await reopened.stats()).count == 1
    await reopened.close()


async def test_search_skips_other_dimensions_and_applies_filter(vector_store):
    await vector_store.upsert(
        [
            ("near", _vec(1, 0.1), {"session_id": "demo"}),
            ("far", _vec(0, 1), {"session_id": "demo"}),
            ("other-chat", _vec(1, 0), {"session_id": "other"}),
            ("wide", _vec(1, 0, 0), {"session_id": "demo"}),
        ]
    )
    hits = await vector_store.search(_vec(1, 0), k=5, filter={"session_id": "demo"})

    assert [h.id for h in hits] == ["near", "far"]
    assert hits[0].score > hits[1].score
    assert hits[0].metadata == {"session_id": "demo"}


async def test_search_time_filter_keeps_overlapping_spans(vector_store):
    await vector_store.upsert(
        [
            ("morning", _vec(1, 0), {"start_ts": 100, "end_ts": 200}),
            ("straddles", _vec(1, 0.2), {"start_ts": 250, "end_ts": 400}),
            ("evening", _vec(1, 0.1), {"start_ts": 500, "end_ts": 600}),
            ("undated", _vec(1, 0), {}),
        ]
    )

    hits = await vector_store.search(_vec(1, 0), k=10, time_filter=TimeFilter(start_ts=150, end_ts=300))
    assert [h.id for h in hits] == ["morning", "straddles"]

    point = await vector_store.search(_vec(1, 0), k=10, time_filter=TimeFilter(start_ts=600, end_ts=900))
    assert [h.id for h in point] == ["evening"]


async def test_clear_empties_cache_and_table(vector_store):
    await vector_store.upsert([("a", _vec(1, 0), {}), ("b", _vec(0, 1), {})])
    assert len(await vector_store.get(["a", "b"])) == 2

    await vector_store.clear()

    assert await vector_store.get(["a", "b"]) == {}
    stats = await vector_store.stats()
    assert stats.count == 0
    assert stats.to_dict()["count"] == 0


async def test_stats_report_size(vector_store):
    await vector_store.upsert([("a", _vec(*range(64)), {})])
    stats = await vector_store.stats()
    assert stats.count == 1
    assert stats.size_bytes > 0
    assert set(stats.to_dict()) == {"enabled", "count", "sizeBytes"}


async def test_use_before_initialize_fails(tmp_path):
    with pytest.raises(RuntimeError):
        await SQLiteVectorStore(tmp_path / "v.db").get(["x"])
