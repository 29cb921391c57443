"""Tests for agentfund.storage — pluggable persistence backends."""

import threading

import pytest

from agentfund.storage import MemoryBackend, SQLiteBackend, open_backend


@pytest.fixture
def memory():
    return MemoryBackend()

@pytest.fixture
def sqlite_backend(tmp_path):
    db = SQLiteBackend(str(tmp_path / "test.db"))
    yield db
    db.close()


# ─── StorageBackend interface (parametrized) ───────────────────────

ALL_BACKENDS = ["memory", "sqlite_backend"]


@pytest.fixture
def backend(request):
    return request.getfixturevalue(request.param)


@pytest.mark.parametrize("backend", ALL_BACKENDS, indirect=True)
class TestBackendInterface:
    """Test the common interface across all backends."""

    def test_save_load(self, backend):
        backend.save("k1", {"a": 1})
        assert backend.load("k1") == {"a": 1}

    def test_load_missing(self, backend):
        assert backend.load("nonexistent") is None

    def test_exists(self, backend):
        assert not backend.exists("k1")
        backend.save("k1", {"a": 1})
        assert backend.exists("k1")

    def test_delete(self, backend):
        backend.save("k1", {"a": 1})
        assert backend.delete("k1")
        assert not backend.exists("k1")
        assert not backend.delete("k1")

    def test_list_keys_by_prefix(self, backend):
        backend.save("listing:1", {"x": 1})
        backend.save("listing:2", {"x": 2})
        backend.save("vote:1", {"x": 3})
        assert sorted(backend.list_keys("listing:")) == ["listing:1", "listing:2"]
        assert backend.list_keys("vote:") == ["vote:1"]
        assert len(backend.list_keys()) == 3

    def test_prefix_is_literal(self, backend):
        backend.save("vote:a_b:1", {"x": 1})
        backend.save("vote:axb:1", {"x": 2})
        assert backend.list_keys("vote:a_b:") == ["vote:a_b:1"]

    def test_load_prefix(self, backend):
        backend.save("comment:1", {"v": 1})
        backend.save("comment:2", {"v": 2})
        backend.save("other:3", {"v": 3})
        assert sorted(d["v"] for d in backend.load_prefix("comment:")) == [1, 2]

    def test_loaded_data_is_a_copy(self, backend):
        backend.save("k", {"tags": ["a"]})
        loaded = backend.load("k")
        loaded["tags"].append("b")
        assert backend.load("k") == {"tags": ["a"]}

    def test_transaction_commits(self, backend):
        with backend.transaction():
            backend.save("a", {"v": 1})
            backend.save("b", {"v": 2})
        assert backend.load("a") == {"v": 1}
        assert backend.load("b") == {"v": 2}

    def test_transaction_rolls_back_on_error(self, backend):
        backend.save("keep", {"v": 0})
        with pytest.raises(RuntimeError):
            with backend.transaction():
                backend.save("keep", {"v": 1})
                backend.save("new", {"v": 2})
                backend.delete("keep")
                raise RuntimeError("boom")
        assert backend.load("keep") == {"v": 0}
        assert not backend.exists("new")

    def test_nested_transaction_joins_outer(self, backend):
        with pytest.raises(RuntimeError):
            with backend.transaction():
                with backend.transaction():
                    backend.save("inner", {"v": 1})
                raise RuntimeError("outer fails")
        assert not backend.exists("inner")

    def test_transaction_serializes_read_modify_write(self, backend):
        backend.save("counter", {"n": 0})

        def bump():
            for _ in range(25):
                with backend.transaction():
                    n = backend.load("counter")["n"]
                    backend.save("counter", {"n": n + 1})

        threads = [threading.Thread(target=bump) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert backend.load("counter") == {"n": 100}


# ─── SQLite-specific ───────────────────────────────────────────────

class TestSQLiteSpecific:

    def test_wal_mode(self, sqlite_backend):
        row = sqlite_backend._conn.execute("PRAGMA journal_mode").fetchone()
        assert row[0] == "wal"

    def test_persists_across_reopen(self, tmp_path):
        path = str(tmp_path / "persist.db")
        db = SQLiteBackend(path)
        db.save("agent:1", {"agent_id": "1"})
        db.close()
        db = SQLiteBackend(path)
        assert db.load("agent:1") == {"agent_id": "1"}
        db.close()


def test_open_backend(tmp_path):
    assert isinstance(open_backend(""), MemoryBackend)
    db = open_backend(str(tmp_path / "x.db"))
    assert isinstance(db, SQLiteBackend)
    db.close()
