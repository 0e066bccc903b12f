from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

from sqlmodel import SQLModel

from servicebroker.db import create_db_engine, init_db
from servicebroker.services import instances
from servicebroker.services.instances import Outcome
from servicebroker.store import MemoryInstanceStore, SqlInstanceStore


def _provision(store, instance_id, org_id="org-a", space_id="space-1", **kwargs):
    return instances.provision_instance(store, instance_id, org_id=org_id, space_id=space_id, **kwargs)


def _error_records(caplog):
    return [r for r in caplog.records if r.name == instances.__name__ and r.levelno == logging.ERROR]


def test_provision_is_idempotent(store):
    assert _provision(store, "inst-1") == Outcome.CREATED
    assert _provision(store, "inst-1") == Outcome.ALREADY_EXISTS

    stored = store.list_all()
    assert [i.service_instance_id for i in stored] == ["inst-1"]
    assert (stored[0].org_id, stored[0].space_id) == ("org-a", "space-1")


def test_provision_with_different_scope_conflicts(store, caplog):
    assert _provision(store, "x", org_id="A", space_id="S1") == Outcome.CREATED
    original = store.find_by_id("x")

    with caplog.at_level(logging.INFO):
        assert _provision(store, "x", org_id="B", space_id="S2") == Outcome.CONFLICT
        assert _provision(store, "x", org_id="A", space_id="S2") == Outcome.CONFLICT

    assert store.find_by_id("x") == original
    assert len(store.list_all()) == 1
    assert _error_records(caplog) == []


def test_absent_and_empty_scope_are_distinct(store):
    assert _provision(store, "bare", org_id=None, space_id=None) == Outcome.CREATED
    assert _provision(store, "bare", org_id=None, space_id=None) == Outcome.ALREADY_EXISTS
    assert _provision(store, "bare", org_id="", space_id="") == Outcome.CONFLICT


def test_deprovision_of_absent_instance(store):
    assert instances.deprovision_instance(store, "never-existed") == Outcome.NOT_FOUND
    assert store.list_all() == []


def test_deprovision_removes_record(store):
    assert _provision(store, "y", org_id="A", space_id="S1") == Outcome.CREATED
    _provision(store, "other", org_id="A", space_id="S1")

    assert instances.deprovision_instance(store, "y") == Outcome.DELETED
    assert store.find_by_id("y") is None
    assert [i.service_instance_id for i in store.list_all()] == ["other"]

    assert instances.deprovision_instance(store, "y") == Outcome.NOT_FOUND


def test_reprovision_after_deprovision_may_change_scope(store):
    _provision(store, "z", org_id="A", space_id="S1")
    instances.deprovision_instance(store, "z")
    assert _provision(store, "z", org_id="B", space_id="S2") == Outcome.CREATED
    assert store.find_by_id("z").org_id == "B"


def test_store_failure_during_provision_is_logged(memory_store, caplog):
    context = {"method": "PUT", "path": "/v2/service_instances/f1"}
    memory_store.fail_next("connection refused")

    with caplog.at_level(logging.ERROR):
        assert _provision(memory_store, "f1", request_context=context) == Outcome.STORE_FAILURE

    [record] = _error_records(caplog)
    assert record.request == context
    assert record.error == "connection refused"
    assert memory_store.list_all() == []

    # The failure is one-shot; the handler keeps serving.
    assert _provision(memory_store, "f1") == Outcome.CREATED
    assert _provision(memory_store, "f2") == Outcome.CREATED


def test_store_failure_during_deprovision_is_logged(memory_store, caplog):
    _provision(memory_store, "d1")
    memory_store.fail_next("timeout")

    with caplog.at_level(logging.ERROR):
        outcome = instances.deprovision_instance(memory_store, "d1", request_context={"path": "/d1"})

    assert outcome == Outcome.STORE_FAILURE
    [record] = _error_records(caplog)
    assert record.request == {"path": "/d1"}
    assert record.error == "timeout"
    assert memory_store.find_by_id("d1") is not None
    assert instances.deprovision_instance(memory_store, "d1") == Outcome.DELETED


def test_sql_store_errors_become_store_failures(engine, sql_store, caplog):
    _provision(sql_store, "gone-table")
    SQLModel.metadata.drop_all(engine)

    with caplog.at_level(logging.ERROR):
        assert _provision(sql_store, "gone-table") == Outcome.STORE_FAILURE
        assert instances.deprovision_instance(sql_store, "gone-table") == Outcome.STORE_FAILURE

    assert len(_error_records(caplog)) == 2


def _race(store, *, workers: int) -> list[Outcome]:
    with ThreadPoolExecutor(max_workers=workers) as executor:
        return list(executor.map(lambda _: _provision(store, "raced"), range(workers)))


def _assert_single_creation(store, outcomes):
    assert outcomes.count(Outcome.CREATED) == 1
    assert set(outcomes) <= {Outcome.CREATED, Outcome.ALREADY_EXISTS}
    assert [i.service_instance_id for i in store.list_all()] == ["raced"]


def test_concurrent_provision_creates_one_record_in_memory():
    store = MemoryInstanceStore()
    _assert_single_creation(store, _race(store, workers=16))


def test_concurrent_provision_creates_one_record_in_sqlite(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'race.db'}")
    init_db(engine)
    try:
        store = SqlInstanceStore(engine)
        _assert_single_creation(store, _race(store, workers=8))
    finally:
        engine.dispose()


class _ExplodingStore(MemoryInstanceStore):
    def find_or_create(self, instance_id, *, org_id, space_id):
        raise RuntimeError("driver exploded")

    def delete_where(self, instance_id):
        raise RuntimeError("delete exploded")


def test_unexpected_store_errors_become_store_failures(caplog):
    store = _ExplodingStore()
    MemoryInstanceStore.find_or_create(store, "kept", org_id="o", space_id="s")

    with caplog.at_level(logging.ERROR):
        assert _provision(store, "a", request_context={"path": "/a"}) == Outcome.STORE_FAILURE
        assert instances.deprovision_instance(store, "kept", request_context={"path": "/kept"}) == Outcome.STORE_FAILURE

    assert [(r.request, r.error) for r in _error_records(caplog)] == [
        ({"path": "/a"}, "driver exploded"),
        ({"path": "/kept"}, "delete exploded"),
    ]


def test_created_at_round_trips_as_utc(sql_store):
    before = datetime.now(timezone.utc) - timedelta(seconds=1)
    created, was_created = sql_store.find_or_create("ts", org_id="A", space_id="S1")
    assert was_created

    stored = sql_store.find_by_id("ts")
    assert stored.created_at.tzinfo is not None
    assert before <= stored.created_at <= datetime.now(timezone.utc)
    assert stored.created_at == created.created_at
    assert sql_store.list_all()[0].created_at == stored.created_at
