from __future__ import annotations

import warnings
from datetime import datetime, timezone

import pytest

from backoffice.exceptions import AuditWriteWarning
from backoffice.pipeline.audit import AuditRecorder
from backoffice.pipeline.models import Actor

FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def recorder(coordinator, audit_store) -> AuditRecorder:
    return AuditRecorder(coordinator, audit_store, service_name="catalog", clock=lambda: FIXED_NOW)


@pytest.mark.unit
def test_records_are_buffered_until_commit(coordinator, recorder, audit_store) -> None:
    visible_during_body: list[int] = []

    def body() -> None:
        recorder.audit("link.update_price", "link", 12, {"price": 10}, {"price": 12})
        visible_during_body.append(len(audit_store))

    coordinator.transaction(body, "update_price")

    assert visible_during_body == [0]
    (record,) = audit_store.records
    assert record.action_type == "link.update_price"
    assert record.entity_id == "12"
    assert record.old_values == {"price": 10}
    assert record.new_values == {"price": 12}
    assert record.created_at == FIXED_NOW
    assert record.context == {"service": "catalog", "transaction": "update_price"}


@pytest.mark.unit
def test_rolled_back_records_never_reach_the_store(coordinator, recorder, audit_store) -> None:
    def body() -> None:
        recorder.audit("product.delete", "product", 3)
        raise RuntimeError("abort")

    with pytest.raises(RuntimeError):
        coordinator.transaction(body, "delete")

    assert len(audit_store) == 0


@pytest.mark.unit
def test_actor_defaults_to_unit_of_work_actor(coordinator, recorder, audit_store) -> None:
    actor = Actor(actor_id="admin-1", ip_address="10.0.0.5", user_agent="pytest")
    override = Actor(actor_id="admin-2")

    def body() -> None:
        recorder.audit("product.create", "product", 1)
        recorder.audit("product.publish", "product", 1, actor=override)

    coordinator.transaction(body, "create", actor=actor)

    first, second = audit_store.records
    assert first.actor_id == "admin-1"
    assert first.context["ip_address"] == "10.0.0.5"
    assert first.context["user_agent"] == "pytest"
    assert second.actor_id == "admin-2"
    assert "ip_address" not in second.context


@pytest.mark.unit
def test_outside_transaction_record_is_written_immediately(recorder, audit_store) -> None:
    recorder.audit("system.cleanup", "cache", "all", context={"removed": 4})

    (record,) = audit_store.records
    assert record.actor_id is None
    assert record.context == {"service": "catalog", "removed": 4}


@pytest.mark.unit
def test_immediate_write_failure_is_a_warning_not_an_error(recorder, audit_store) -> None:
    audit_store.reject_actions.add("system.cleanup")

    with pytest.warns(AuditWriteWarning, match="rejected"):
        recorder.audit("system.cleanup", "cache", "all")

    assert len(audit_store) == 0


@pytest.mark.unit
def test_disabled_recorder_is_a_no_op(coordinator, audit_store) -> None:
    recorder = AuditRecorder(coordinator, audit_store, enabled=False)

    with warnings.catch_warnings():
        warnings.simplefilter("error")
        coordinator.transaction(lambda: recorder.audit("product.create", "product", 1), "create")

    assert len(audit_store) == 0


@pytest.mark.unit
def test_action_and_entity_type_are_required(recorder) -> None:
    with pytest.raises(ValueError):
        recorder.audit("", "product", 1)
    with pytest.raises(ValueError):
        recorder.audit("product.create", "", 1)


@pytest.mark.unit
def test_snapshots_are_copied_when_recorded(coordinator, recorder, audit_store) -> None:
    new_values = {"price": 12, "tags": ["sale"], "dimensions": {"width": 10}}

    def body() -> None:
        recorder.audit("product.update", "product", 7, new_values=new_values)
        new_values["tags"].append("clearance")
        new_values["dimensions"]["width"] = 99

    coordinator.transaction(body, "update")

    (record,) = audit_store.records
    assert record.new_values == {"price": 12, "tags": ["sale"], "dimensions": {"width": 10}}
