from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from backoffice.infrastructure.audit_store import InMemoryAuditStore, SqlAlchemyAuditStore
from backoffice.pipeline.models import AuditRecord

BASE_TIME = datetime(2026, 1, 10, 9, 30, tzinfo=timezone.utc)


def _record(
    action_type: str,
    entity_id: str,
    *,
    minutes: int,
    actor_id: str | None = "admin-1",
    entity_type: str = "product",
) -> AuditRecord:
    return AuditRecord(
        action_type=action_type,
        entity_type=entity_type,
        entity_id=entity_id,
        old_values={"price": 10},
        new_values={"price": 12, "changed_at": BASE_TIME},
        actor_id=actor_id,
        context={"service": "catalog"},
        created_at=BASE_TIME + timedelta(minutes=minutes),
    )


@pytest.fixture(params=["sqlalchemy", "memory"])
def store(request, session_factory):
    if request.param == "sqlalchemy":
        return SqlAlchemyAuditStore(session_factory)
    return InMemoryAuditStore()


@pytest.fixture
def populated(store):
    store.insert(_record("product.create", "1", minutes=0))
    store.insert(_record("product.update_price", "1", minutes=5))
    store.insert(_record("link.update_price", "9", minutes=10, entity_type="link", actor_id=None))
    store.insert(_record("product.update_price", "2", minutes=15, actor_id="admin-2"))
    return store


@pytest.mark.unit
def test_entity_trail_is_returned_newest_first(populated) -> None:
    trail = populated.list_records(entity_type="product", entity_id=1)

    assert [record.action_type for record in trail] == ["product.update_price", "product.create"]
    assert trail[0].created_at == BASE_TIME + timedelta(minutes=5)
    assert trail[0].created_at.tzinfo is not None


@pytest.mark.unit
def test_filters_by_actor_and_action_prefix(populated) -> None:
    by_actor = populated.list_records(actor_id="admin-2")
    by_prefix = populated.list_records(action_prefix="product.")

    assert [record.entity_id for record in by_actor] == ["2"]
    assert [record.entity_id for record in by_prefix] == ["2", "1", "1"]


@pytest.mark.unit
def test_limit_and_offset_page_through_recent_activity(populated) -> None:
    first_page = populated.list_records(limit=2)
    second_page = populated.list_records(limit=2, offset=2)

    assert [record.entity_id for record in first_page] == ["2", "9"]
    assert [record.entity_id for record in second_page] == ["1", "1"]
    assert populated.count() == 4


@pytest.mark.unit
def test_record_round_trip_keeps_identity(store) -> None:
    original = _record("product.create", "5", minutes=1)
    assert store.insert(original) is True

    (loaded,) = store.list_records(entity_id="5")

    assert loaded.record_id == original.record_id
    assert loaded.old_values == {"price": 10}
    assert loaded.context == {"service": "catalog"}


@pytest.mark.unit
def test_invalid_paging_is_rejected(store) -> None:
    with pytest.raises(ValueError):
        store.list_records(limit=0)
    with pytest.raises(ValueError):
        store.list_records(offset=-1)


@pytest.mark.unit
def test_count_on_empty_store_is_zero(store) -> None:
    assert store.count() == 0
    store.insert(_record("product.create", "1", minutes=0))
    assert store.count() == 1
