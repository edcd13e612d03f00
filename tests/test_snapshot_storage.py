"""
Tests for snapshot storage adapters and the SnapshotChannel
"""

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

from checkout_workflow.execution.snapshot_channel import SnapshotChannel
from checkout_workflow.repositories.snapshot import (
    InMemorySnapshotStorage,
    JsonFileSnapshotStorage,
    SnapshotStorage,
    SqlSnapshotStorage,
    create_snapshot_storage,
)
from checkout_workflow.state.models import MachineSnapshot, MachineStatus


@pytest.fixture
def sql_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    return engine


@pytest.fixture(params=["memory", "file", "sql"])
def storage(request, tmp_path, sql_engine):
    if request.param == "memory":
        return InMemorySnapshotStorage("session-a")
    if request.param == "file":
        return JsonFileSnapshotStorage("session-a", directory=str(tmp_path))
    return SqlSnapshotStorage("session-a", engine=sql_engine)


class FailingStorage(SnapshotStorage):
    def write(self, blob):
        raise OSError("disk full")

    def read(self):
        raise OSError("disk unreadable")

    def clear(self):
        raise OSError("disk unreadable")


class TestStorageContract:
    def test_empty_storage(self, storage):
        assert storage.read() is None
        assert not storage.exists()

    def test_write_replaces_previous_blob(self, storage):
        storage.write('{"value": "a"}')
        storage.write('{"value": "b"}')

        assert storage.read() == '{"value": "b"}'
        assert storage.exists()

    def test_clear(self, storage):
        storage.write("blob")
        storage.clear()

        assert storage.read() is None
        storage.clear()

    def test_keys_are_isolated(self):
        shared = {}
        first = InMemorySnapshotStorage("a", store=shared)
        second = InMemorySnapshotStorage("b", store=shared)
        first.write("one")

        assert second.read() is None
        assert InMemorySnapshotStorage("a", store=shared).read() == "one"

    def test_factory_rejects_unknown_backend(self):
        with pytest.raises(ValueError):
            create_snapshot_storage("key", backend="redis")


class TestSnapshotChannel:
    def test_writes_and_loads_snapshot(self):
        channel = SnapshotChannel(InMemorySnapshotStorage("k"))
        snapshot = MachineSnapshot(
            machine_id="checkout",
            value="checkout.order_review",
            context={"order_total": 21.49, "selected_items": [{"id": 1}]},
        )

        channel(snapshot)
        loaded = channel.load()

        assert channel.last_written == snapshot
        assert loaded.value == "checkout.order_review"
        assert loaded.context == snapshot.context
        assert loaded.status == MachineStatus.RUNNING
        assert loaded.matches("checkout")

    def test_write_failure_is_swallowed(self):
        channel = SnapshotChannel(FailingStorage("k"))

        channel(MachineSnapshot(machine_id="checkout", value="idle"))

        assert channel.last_written is None
        assert channel.load() is None
        channel.clear()

    def test_unserializable_context_is_swallowed(self):
        channel = SnapshotChannel(InMemorySnapshotStorage("k"))

        channel(MachineSnapshot(machine_id="checkout", value="idle", context={"bad": object()}))

        assert channel.load() is None

    def test_corrupt_blob_is_ignored(self):
        storage = InMemorySnapshotStorage("k")
        storage.write("not json")

        assert SnapshotChannel(storage).load() is None
