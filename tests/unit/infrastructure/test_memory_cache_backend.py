from __future__ import annotations

import pytest

from backoffice.infrastructure.cache.memory import InMemoryCacheBackend


@pytest.mark.unit
def test_entries_expire_after_ttl(clock) -> None:
    backend = InMemoryCacheBackend(clock=clock)
    backend.set("product:1", {"id": 1}, 30)

    clock.advance(29)
    assert backend.get("product:1") == {"id": 1}
    clock.advance(1)
    assert backend.get("product:1") is None
    assert backend.stats()["expired"] == 1


@pytest.mark.unit
def test_delete_matching_uses_glob_semantics(clock) -> None:
    backend = InMemoryCacheBackend(clock=clock)
    for key in ("product:1", "product:2:detail", "products", "brand:1"):
        backend.set(key, key, 60)

    assert backend.delete_matching("product:*") == 2
    assert sorted(backend.keys()) == ["brand:1", "products"]
    assert backend.delete_matching("nothing:*") == 0


@pytest.mark.unit
def test_delete_key_reports_existence(clock) -> None:
    backend = InMemoryCacheBackend(clock=clock)
    backend.set("k", 1, 60)

    assert backend.delete_key("k") is True
    assert backend.delete_key("k") is False


@pytest.mark.unit
def test_least_recently_used_entry_is_evicted(clock) -> None:
    backend = InMemoryCacheBackend(max_entries=2, clock=clock)
    backend.set("a", 1, 60)
    backend.set("b", 2, 60)
    backend.get("a")
    backend.set("c", 3, 60)

    assert backend.snapshot() == {"a": 1, "c": 3}
    assert backend.stats()["evictions"] == 1


@pytest.mark.unit
def test_invalid_arguments_are_rejected(clock) -> None:
    with pytest.raises(ValueError):
        InMemoryCacheBackend(max_entries=0)
    with pytest.raises(ValueError):
        InMemoryCacheBackend(clock=clock).set("k", 1, 0)
