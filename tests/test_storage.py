"""
Tests for storage backends, versioned saves and sequence counters
"""

import pytest
import threading
from datetime import datetime, timezone

from loanbook.errors import ConflictError
from loanbook.storage import InMemoryStorage, SQLiteStorage, create_storage


# Test data
test_data = {
    "id": "test_001",
    "name": "Test Record",
    "amount": "100.50",
    "created_at": datetime.now(timezone.utc).isoformat(),
    "updated_at": datetime.now(timezone.utc).isoformat()
}


@pytest.fixture(params=["memory", "sqlite"])
def storage(request, tmp_path):
    if request.param == "memory":
        backend = InMemoryStorage()
    else:
        backend = SQLiteStorage(tmp_path / "test.db")
    yield backend
    backend.close()


class TestStorageBasics:
    """Test basic CRUD on both backends"""

    def test_basic_operations(self, storage):
        """Test save, load, find and delete"""
        storage.save("test_table", "record_1", test_data)
        assert storage.load("test_table", "record_1") == test_data
        assert storage.load("test_table", "non_existent") is None

        storage.save("test_table", "record_2", {"id": "record_2", "name": "Other"})
        assert len(storage.load_all("test_table")) == 2
        assert [r["id"] for r in storage.find("test_table", {"name": "Other"})] == ["record_2"]

        assert storage.delete("test_table", "record_1")
        assert not storage.delete("test_table", "record_1")
        assert storage.load("test_table", "record_1") is None
        assert len(storage.load_all("test_table")) == 1

    def test_loaded_copies_are_independent(self, storage):
        """Test mutating a loaded record does not touch the store"""
        storage.save("test_table", "record_1", {"id": "record_1", "items": [1, 2]})
        loaded = storage.load("test_table", "record_1")
        loaded["items"].append(3)
        assert storage.load("test_table", "record_1")["items"] == [1, 2]


class TestVersionedSave:
    """Test compare-and-swap writes"""

    def test_insert_then_update(self, storage):
        """Test versions increase with each successful save"""
        assert storage.save_versioned("loans", "LON-0001", {"id": "LON-0001"}, 0) == 1
        assert storage.save_versioned("loans", "LON-0001", {"id": "LON-0001", "x": 1}, 1) == 2
        assert storage.load("loans", "LON-0001") == {"id": "LON-0001", "x": 1, "version": 2}

    def test_duplicate_insert_conflicts(self, storage):
        """Test expected version 0 requires a new record"""
        storage.save_versioned("loans", "LON-0001", {"id": "LON-0001"}, 0)
        with pytest.raises(ConflictError):
            storage.save_versioned("loans", "LON-0001", {"id": "LON-0001"}, 0)

    def test_stale_update_conflicts(self, storage):
        """Test saving against an old version fails and keeps the newer data"""
        storage.save_versioned("loans", "LON-0001", {"id": "LON-0001", "x": 1}, 0)
        storage.save_versioned("loans", "LON-0001", {"id": "LON-0001", "x": 2}, 1)

        with pytest.raises(ConflictError):
            storage.save_versioned("loans", "LON-0001", {"id": "LON-0001", "x": 3}, 1)
        assert storage.load("loans", "LON-0001")["x"] == 2

    def test_update_of_missing_record_conflicts(self, storage):
        """Test a deleted record cannot be updated"""
        with pytest.raises(ConflictError):
            storage.save_versioned("loans", "LON-0404", {"id": "LON-0404"}, 3)


class TestSequences:
    """Test named counters"""

    def test_counters_are_independent(self, storage):
        """Test each counter starts at 1"""
        assert [storage.next_sequence("loan_id") for _ in range(3)] == [1, 2, 3]
        assert storage.next_sequence("customer_id") == 1

    def test_concurrent_increments_are_unique(self):
        """Test threads never receive the same value"""
        storage = InMemoryStorage()
        values = []
        lock = threading.Lock()

        def worker():
            for _ in range(50):
                value = storage.next_sequence("loan_id")
                with lock:
                    values.append(value)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(values) == list(range(1, 201))

    def test_sqlite_counter_persists(self, tmp_path):
        """Test counters survive reopening the database"""
        storage = SQLiteStorage(tmp_path / "seq.db")
        storage.next_sequence("loan_id")
        storage.close()

        reopened = SQLiteStorage(tmp_path / "seq.db")
        assert reopened.next_sequence("loan_id") == 2
        reopened.close()


class TestTransactions:
    """Test SQLite transaction support"""

    def test_atomic_rollback(self, tmp_path):
        """Test a failing block leaves no writes behind"""
        storage = SQLiteStorage(tmp_path / "tx.db")
        storage.save("test_table", "keep", {"id": "keep"})

        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save("test_table", "drop", {"id": "drop"})
                raise RuntimeError("boom")

        assert storage.load("test_table", "keep") == {"id": "keep"}
        assert storage.load("test_table", "drop") is None
        storage.close()

    def test_atomic_returns_counter_on_conflict(self, tmp_path):
        """Test a rejected insert does not consume a sequence value"""
        storage = SQLiteStorage(tmp_path / "tx.db")
        storage.save_versioned("loans", "LON-0001", {"id": "LON-0001"}, 0)

        with pytest.raises(ConflictError):
            with storage.atomic():
                storage.next_sequence("loan_id")
                storage.save_versioned("loans", "LON-0001", {"id": "LON-0001"}, 0)

        assert storage.next_sequence("loan_id") == 1
        storage.close()


class TestCreateStorage:
    """Test backend selection"""

    def test_backends(self, tmp_path):
        assert isinstance(create_storage("memory"), InMemoryStorage)
        sqlite = create_storage("sqlite", str(tmp_path / "x.db"))
        assert isinstance(sqlite, SQLiteStorage)
        sqlite.close()

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_storage("postgres")
