"""
Unit tests for the SQLite host engine.

Tests cover:
- Versioned open and upgrade callbacks
- Containers, indexes and the key generator
- Unique index enforcement
- Cursors and transaction rollback
- Index key encoding
"""

import tempfile

import pytest

from versadb.engine import (
    AbortError,
    BlockedError,
    ConstraintError,
    ContainerNotFound,
    DataError,
    IndexNotFound,
    InvalidStateError,
    KeyRange,
    SqliteEngine,
    TransactionMode,
    VersionError,
    encode_index_key,
)

RW = TransactionMode.READWRITE


def make_users(conn, tx, old, new):
    """Upgrade callback creating a users container."""
    users = tx.create_container("users")
    users.create_index("email", unique=True)
    users.create_index("city")


class TestEncodeIndexKey:
    """Tests for encode_index_key."""

    @pytest.mark.parametrize("value", [None, True, False, {"a": 1}])
    def test_not_indexable(self, value):
        assert encode_index_key(value) is None

    def test_integral_float_matches_int(self):
        assert encode_index_key(1.0) == encode_index_key(1)

    def test_string_and_number_differ(self):
        assert encode_index_key("1") != encode_index_key(1)

    def test_list_with_invalid_member(self):
        assert encode_index_key([1, None]) is None
        assert encode_index_key([1, "a"]) is not None


class TestKeyRange:
    """Tests for KeyRange."""

    def test_only(self):
        assert KeyRange.only(3).to_sql() == ("key >= ? AND key <= ?", [3, 3])

    def test_open_bounds(self):
        assert KeyRange(lower=1, upper_open=True, upper=5, lower_open=True).to_sql() == (
            "key > ? AND key < ?",
            [1, 5],
        )


class TestSqliteEngine:
    """Tests for SqliteEngine."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture
    def engine(self, data_dir):
        return SqliteEngine(data_dir, wal_mode=False)

    @pytest.fixture
    def conn(self, engine):
        """Connection to a database holding a users container."""
        connection = engine.open("app", 1, on_upgrade=make_users)
        yield connection
        connection.close()

    def test_new_database_opens_at_version_one(self, engine):
        calls = []
        conn = engine.open("fresh", on_upgrade=lambda c, tx, old, new: calls.append((old, new)))
        try:
            assert conn.version == 1
            assert calls == [(0, 1)]
        finally:
            conn.close()
        assert engine.exists("fresh")
        assert engine.databases() == ["fresh"]

    def test_lower_version_rejected(self, engine, conn):
        conn.close()
        engine.open("app", 3).close()
        with pytest.raises(VersionError):
            engine.open("app", 2)

    def test_upgrade_blocked_by_open_connection(self, engine, conn):
        """A version change is refused while another connection is open."""
        with pytest.raises(BlockedError):
            engine.open("app", 2)
        conn.close()
        engine.open("app", 2).close()

    def test_failed_upgrade_rolls_back(self, engine, conn):
        conn.close()

        def broken(c, tx, old, new):
            tx.create_container("orders")
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            engine.open("app", 2, on_upgrade=broken)

        again = engine.open("app")
        try:
            assert again.version == 1
            assert not again.has_container("orders")
        finally:
            again.close()

    def test_aborted_upgrade(self, engine, conn):
        conn.close()
        with pytest.raises(AbortError):
            engine.open("app", 2, on_upgrade=lambda c, tx, old, new: tx.abort())
        again = engine.open("app")
        assert again.version == 1
        again.close()

    def test_structural_changes_need_upgrade(self, conn):
        with conn.transaction("users", RW) as tx:
            with pytest.raises(InvalidStateError):
                tx.create_container("orders")

    def test_unknown_container(self, conn):
        with pytest.raises(ContainerNotFound):
            conn.transaction("orders")

    def test_add_and_lookup(self, conn):
        with conn.transaction("users", RW) as tx:
            users = tx.container("users")
            first = users.add({"email": "a@example.com", "city": "Lisbon"})
            second = users.add({"email": "b@example.com", "city": "Lisbon"})

        assert (first, second) == (1, 2)
        with conn.transaction("users") as tx:
            users = tx.container("users")
            assert users.index("email").get("b@example.com")["email"] == "b@example.com"
            assert users.index("city").get_all_keys("Lisbon") == [1, 2]
            assert users.index("email").get("nobody@example.com") is None

    def test_unique_index_rejects_duplicate(self, conn):
        with conn.transaction("users", RW) as tx:
            tx.container("users").add({"email": "a@example.com"})

        with pytest.raises(ConstraintError):
            with conn.transaction("users", RW) as tx:
                tx.container("users").add({"email": "b@example.com"})
                tx.container("users").add({"email": "a@example.com"})

        with conn.transaction("users") as tx:
            assert tx.container("users").count() == 1

    def test_unindexable_values_skipped(self, conn):
        """Records without a usable key are stored but not indexed."""
        with conn.transaction("users", RW) as tx:
            users = tx.container("users")
            users.add({"email": None})
            users.add({"email": None})
            users.add({"name": "no email"})
            assert users.count() == 3

    def test_invalid_lookup_value(self, conn):
        with conn.transaction("users") as tx:
            with pytest.raises(DataError):
                tx.container("users").index("email").get(None)

    def test_unknown_index(self, conn):
        with conn.transaction("users") as tx:
            with pytest.raises(IndexNotFound):
                tx.container("users").index("phone")

    def test_keys_not_reused_after_clear(self, conn):
        with conn.transaction("users", RW) as tx:
            users = tx.container("users")
            users.add({"email": "a@example.com"})
            users.add({"email": "b@example.com"})
            users.clear()
            assert users.add({"email": "c@example.com"}) == 3

    def test_put_keeps_key(self, conn):
        with conn.transaction("users", RW) as tx:
            users = tx.container("users")
            key = users.add({"email": "a@example.com"})
            users.put({"email": "z@example.com"}, key=key)
            assert users.entries() == [(key, {"email": "z@example.com"})]
            assert users.index("email").get_key("a@example.com") is None

    def test_records_must_be_mappings(self, conn):
        with conn.transaction("users", RW) as tx:
            with pytest.raises(DataError):
                tx.container("users").add(["not", "a", "record"])

    def test_read_only_transaction(self, conn):
        with conn.transaction("users") as tx:
            with pytest.raises(InvalidStateError):
                tx.container("users").add({"email": "a@example.com"})

    def test_cursor_update_and_delete(self, conn):
        with conn.transaction("users", RW) as tx:
            users = tx.container("users")
            for i in range(4):
                users.add({"email": f"{i}@example.com", "n": i})
            for position in users.open_cursor():
                if position.value["n"] % 2:
                    position.delete()
                else:
                    position.update({**position.value, "even": True})

        with conn.transaction("users") as tx:
            assert tx.container("users").get_all() == [
                {"email": "0@example.com", "n": 0, "even": True},
                {"email": "2@example.com", "n": 2, "even": True},
            ]

    def test_index_cursor_in_key_order(self, conn):
        with conn.transaction("users", RW) as tx:
            users = tx.container("users")
            for i in range(3):
                users.add({"email": f"{i}@example.com", "city": "Porto"})
            keys = [p.key for p in users.index("city").open_cursor("Porto")]
            assert keys == [1, 2, 3]

    def test_cursor_key_range(self, conn):
        with conn.transaction("users", RW) as tx:
            users = tx.container("users")
            for i in range(5):
                users.add({"n": i})
            keys = [p.key for p in users.open_cursor(KeyRange(lower=2, upper=4, upper_open=True))]
            assert keys == [2, 3]

    def test_create_unique_index_on_duplicates_fails(self, engine, conn):
        with conn.transaction("users", RW) as tx:
            tx.container("users").add({"email": "a@example.com", "city": "Lisbon"})
            tx.container("users").add({"email": "b@example.com", "city": "Lisbon"})
        conn.close()

        def unique_city(c, tx, old, new):
            users = tx.container("users")
            users.delete_index("city")
            users.create_index("city", unique=True)

        with pytest.raises(ConstraintError):
            engine.open("app", 2, on_upgrade=unique_city)

    def test_delete_database(self, engine, conn):
        with pytest.raises(BlockedError):
            engine.delete_database("app")
        conn.close()
        engine.delete_database("app")
        assert not engine.exists("app")
        engine.delete_database("app")

    def test_distinct_names_distinct_files(self, engine):
        engine.open("a/b").close()
        engine.open("a_b").close()
        assert sorted(engine.databases()) == ["a/b", "a_b"]
