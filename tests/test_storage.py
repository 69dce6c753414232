"""
Tests for SQLite persistence.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from chainwallet.errors import (
    CreateDatabaseError,
    DatabaseWriteError,
    LoadDatabaseError,
    ReadHeaderError,
)
from chainwallet.models import KeychainKind
from chainwallet.wallet.storage import StagedDelta, WalletStore, remove_database

HEADER = b"\x05\x00\x00\x00hello"


@pytest.fixture
def store(db_path: Path):
    s = WalletStore.create(db_path, HEADER)
    yield s
    s.close()


class TestCreateAndOpen:
    def test_header_is_first_record(self, store: WalletStore) -> None:
        assert store.read_header() == HEADER

    def test_refuses_existing_file(self, store: WalletStore, db_path: Path) -> None:
        with pytest.raises(CreateDatabaseError):
            WalletStore.create(db_path, HEADER)
        # The existing database is untouched
        assert store.read_header() == HEADER

    def test_failed_create_leaves_no_file(self, db_path: Path, monkeypatch) -> None:
        def broken_schema(self: WalletStore) -> None:
            raise sqlite3.OperationalError("disk I/O error")

        monkeypatch.setattr(WalletStore, "_create_schema", broken_schema)
        with pytest.raises(CreateDatabaseError):
            WalletStore.create(db_path, HEADER)
        assert not db_path.exists()

    def test_open_existing(self, store: WalletStore, db_path: Path) -> None:
        store.close()
        reopened = WalletStore.open(db_path)
        try:
            assert reopened.read_header() == HEADER
        finally:
            reopened.close()

    def test_open_missing(self, tmp_path: Path) -> None:
        with pytest.raises(LoadDatabaseError):
            WalletStore.open(tmp_path / "missing.dat")
        assert not (tmp_path / "missing.dat").exists()

    def test_open_not_a_database(self, tmp_path: Path) -> None:
        path = tmp_path / "garbage.dat"
        path.write_bytes(b"this is definitely not an sqlite database file" * 10)
        with pytest.raises(LoadDatabaseError):
            WalletStore.open(path)

    def test_missing_header_record(self, store: WalletStore) -> None:
        with store._conn:
            store._conn.execute("DELETE FROM header")
        with pytest.raises(ReadHeaderError):
            store.read_header()


class TestCommit:
    def test_round_trip(self, store: WalletStore) -> None:
        delta = StagedDelta(
            descriptors={KeychainKind.EXTERNAL: "tr(ext)", KeychainKind.INTERNAL: "tr(int)"},
            blocks={0: "00" * 32, 5: "05" * 32},
            next_unrevealed={KeychainKind.EXTERNAL: 3},
            txs={"bb" * 32: b"\x02tx-b", "aa" * 32: b"\x02tx-a"},
            anchors={"bb" * 32: (5, "05" * 32)},
            first_seen={"aa" * 32: 1_700_000_000},
            trusted={"aa" * 32},
        )
        store.commit(delta)

        loaded = store.read_delta()
        assert loaded.descriptors == delta.descriptors
        assert loaded.blocks == delta.blocks
        assert loaded.next_unrevealed == {KeychainKind.EXTERNAL: 3}
        # Insertion order survives
        assert list(loaded.txs) == ["bb" * 32, "aa" * 32]
        assert loaded.txs["aa" * 32] == b"\x02tx-a"
        assert loaded.anchors == {"bb" * 32: (5, "05" * 32)}
        assert loaded.first_seen == {"aa" * 32: 1_700_000_000}
        assert loaded.trusted == {"aa" * 32}

    def test_removals(self, store: WalletStore) -> None:
        store.commit(
            StagedDelta(
                blocks={0: "00" * 32, 1: "01" * 32, 2: "02" * 32},
                txs={"aa" * 32: b"tx"},
                anchors={"aa" * 32: (2, "02" * 32)},
            )
        )
        store.commit(StagedDelta(blocks={2: None}, anchors={"aa" * 32: None}))

        loaded = store.read_delta()
        assert loaded.blocks == {0: "00" * 32, 1: "01" * 32}
        assert loaded.anchors == {}
        assert "aa" * 32 in loaded.txs

    def test_later_values_replace_earlier(self, store: WalletStore) -> None:
        store.commit(StagedDelta(next_unrevealed={KeychainKind.INTERNAL: 1}))
        store.commit(StagedDelta(next_unrevealed={KeychainKind.INTERNAL: 4}))
        store.commit(StagedDelta(txs={"aa" * 32: b"first"}))
        store.commit(StagedDelta(txs={"aa" * 32: b"first"}))
        loaded = store.read_delta()
        assert loaded.next_unrevealed == {KeychainKind.INTERNAL: 4}
        assert list(loaded.txs) == ["aa" * 32]

    def test_failed_commit_writes_nothing(self, store: WalletStore) -> None:
        # object() cannot be bound as a parameter, so the second table write fails
        unbindable: dict = {"aa" * 32: object()}
        delta = StagedDelta(blocks={1: "01" * 32}, txs=unbindable)
        with pytest.raises(DatabaseWriteError):
            store.commit(delta)
        assert store.read_delta().blocks == {}

    def test_commit_on_closed_store(self, store: WalletStore) -> None:
        store.close()
        with pytest.raises(DatabaseWriteError):
            store.commit(StagedDelta(blocks={1: "01" * 32}))

    def test_empty_delta_is_skipped(self, store: WalletStore) -> None:
        store.close()
        # No database access happens at all
        store.commit(StagedDelta())


class TestStagedDelta:
    def test_is_empty(self) -> None:
        assert StagedDelta().is_empty()
        assert not StagedDelta(trusted={"aa"}).is_empty()
        assert not StagedDelta(blocks={3: None}).is_empty()


class TestRemoveDatabase:
    def test_removes_sidecars(self, tmp_path: Path) -> None:
        path = tmp_path / "w.dat"
        for name in ("w.dat", "w.dat-journal", "w.dat-wal"):
            (tmp_path / name).write_bytes(b"x")
        remove_database(path)
        assert list(tmp_path.iterdir()) == []

    def test_missing_file_is_fine(self, tmp_path: Path) -> None:
        remove_database(tmp_path / "nothing.dat")
