"""
SQLite persistence for wallet state.

The store holds the wallet header plus the accumulated staged deltas. Each
delta is written in a single SQLite transaction, so a failed commit leaves
the file exactly as it was before.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger

from chainwallet.errors import (
    CreateDatabaseError,
    DatabaseWriteError,
    LoadDatabaseError,
    ReadHeaderError,
)
from chainwallet.models import KeychainKind

SCHEMA = """
CREATE TABLE IF NOT EXISTS header (
    data BLOB NOT NULL
);
CREATE TABLE IF NOT EXISTS descriptors (
    keychain TEXT PRIMARY KEY,
    descriptor TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS blocks (
    height INTEGER PRIMARY KEY,
    hash TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS keychain_indices (
    keychain TEXT PRIMARY KEY,
    next_unrevealed INTEGER NOT NULL
);
CREATE TABLE IF NOT EXISTS txs (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    txid TEXT NOT NULL UNIQUE,
    raw BLOB NOT NULL
);
CREATE TABLE IF NOT EXISTS anchors (
    txid TEXT PRIMARY KEY,
    height INTEGER NOT NULL,
    block_hash TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS first_seen (
    txid TEXT PRIMARY KEY,
    first_seen INTEGER NOT NULL
);
CREATE TABLE IF NOT EXISTS trusted (
    txid TEXT PRIMARY KEY
);
"""


@dataclass
class StagedDelta:
    """
    Wallet mutations produced by one operation.

    None values in blocks and anchors mean the entry was removed.
    """

    descriptors: dict[KeychainKind, str] = field(default_factory=dict)
    blocks: dict[int, str | None] = field(default_factory=dict)
    next_unrevealed: dict[KeychainKind, int] = field(default_factory=dict)
    txs: dict[str, bytes] = field(default_factory=dict)
    anchors: dict[str, tuple[int, str] | None] = field(default_factory=dict)
    first_seen: dict[str, int] = field(default_factory=dict)
    trusted: set[str] = field(default_factory=set)

    def is_empty(self) -> bool:
        return not (
            self.descriptors
            or self.blocks
            or self.next_unrevealed
            or self.txs
            or self.anchors
            or self.first_seen
            or self.trusted
        )


class WalletStore:
    """Durable store backed by a single SQLite file."""

    def __init__(self, path: Path, conn: sqlite3.Connection):
        self.path = path
        self._conn = conn

    @classmethod
    def create(cls, path: str | Path, header_record: bytes) -> WalletStore:
        """
        Create a new database whose first record is the wallet header.

        Any partially created file is removed when creation fails.
        """
        path = Path(path)
        if path.exists():
            raise CreateDatabaseError(f"failed to create new db file: {path} already exists")

        conn: sqlite3.Connection | None = None
        try:
            conn = sqlite3.connect(path, check_same_thread=False)
            store = cls(path, conn)
            store._create_schema()
            with conn:
                conn.execute("INSERT INTO header (data) VALUES (?)", (header_record,))
        except sqlite3.Error as e:
            if conn is not None:
                conn.close()
            remove_database(path)
            raise CreateDatabaseError(f"failed to create new db file: {e}") from e

        logger.debug(f"Created wallet database at {path}")
        return store

    @classmethod
    def open(cls, path: str | Path) -> WalletStore:
        path = Path(path)
        if not path.is_file():
            raise LoadDatabaseError(f"failed to load db: {path} does not exist")

        try:
            # mode=rw never creates a missing file
            conn = sqlite3.connect(
                f"{path.resolve().as_uri()}?mode=rw", uri=True, check_same_thread=False
            )
            conn.execute("SELECT count(*) FROM sqlite_master").fetchone()
        except sqlite3.Error as e:
            raise LoadDatabaseError(f"failed to load db: {e}") from e

        return cls(path, conn)

    def _create_schema(self) -> None:
        with self._conn:
            self._conn.executescript(SCHEMA)

    def close(self) -> None:
        self._conn.close()

    def read_header(self) -> bytes:
        try:
            row = self._conn.execute("SELECT data FROM header LIMIT 1").fetchone()
        except sqlite3.Error as e:
            raise LoadDatabaseError(f"failed to load db: {e}") from e
        if row is None:
            raise ReadHeaderError("failed to read wallet header: no header record")
        return bytes(row[0])

    def read_delta(self) -> StagedDelta:
        """Everything committed so far, merged into one delta."""
        delta = StagedDelta()
        try:
            for keychain, descriptor in self._conn.execute(
                "SELECT keychain, descriptor FROM descriptors"
            ):
                delta.descriptors[KeychainKind(keychain)] = descriptor
            for height, block_hash in self._conn.execute(
                "SELECT height, hash FROM blocks ORDER BY height"
            ):
                delta.blocks[height] = block_hash
            for keychain, next_unrevealed in self._conn.execute(
                "SELECT keychain, next_unrevealed FROM keychain_indices"
            ):
                delta.next_unrevealed[KeychainKind(keychain)] = next_unrevealed
            for txid, raw in self._conn.execute("SELECT txid, raw FROM txs ORDER BY seq"):
                delta.txs[txid] = bytes(raw)
            for txid, height, block_hash in self._conn.execute(
                "SELECT txid, height, block_hash FROM anchors"
            ):
                delta.anchors[txid] = (height, block_hash)
            for txid, first_seen in self._conn.execute("SELECT txid, first_seen FROM first_seen"):
                delta.first_seen[txid] = first_seen
            for (txid,) in self._conn.execute("SELECT txid FROM trusted"):
                delta.trusted.add(txid)
        except (sqlite3.Error, ValueError) as e:
            raise LoadDatabaseError(f"failed to load db: {e}") from e
        return delta

    def commit(self, delta: StagedDelta) -> None:
        """Write a delta atomically."""
        if delta.is_empty():
            return

        try:
            with self._conn:
                self._write(delta)
        except sqlite3.Error as e:
            logger.error(f"Failed to write to wallet db: {e}")
            raise DatabaseWriteError(f"failed to write to db: {e}") from e

    def _write(self, delta: StagedDelta) -> None:
        conn = self._conn
        for keychain, descriptor in delta.descriptors.items():
            conn.execute(
                "INSERT OR REPLACE INTO descriptors (keychain, descriptor) VALUES (?, ?)",
                (keychain.value, descriptor),
            )
        for height, block_hash in sorted(delta.blocks.items()):
            if block_hash is None:
                conn.execute("DELETE FROM blocks WHERE height = ?", (height,))
            else:
                conn.execute(
                    "INSERT OR REPLACE INTO blocks (height, hash) VALUES (?, ?)",
                    (height, block_hash),
                )
        for keychain, next_unrevealed in delta.next_unrevealed.items():
            conn.execute(
                "INSERT OR REPLACE INTO keychain_indices (keychain, next_unrevealed) "
                "VALUES (?, ?)",
                (keychain.value, next_unrevealed),
            )
        for txid, raw in delta.txs.items():
            conn.execute("INSERT OR IGNORE INTO txs (txid, raw) VALUES (?, ?)", (txid, raw))
        for txid, anchor in delta.anchors.items():
            if anchor is None:
                conn.execute("DELETE FROM anchors WHERE txid = ?", (txid,))
            else:
                conn.execute(
                    "INSERT OR REPLACE INTO anchors (txid, height, block_hash) VALUES (?, ?, ?)",
                    (txid, anchor[0], anchor[1]),
                )
        for txid, first_seen in delta.first_seen.items():
            conn.execute(
                "INSERT OR REPLACE INTO first_seen (txid, first_seen) VALUES (?, ?)",
                (txid, first_seen),
            )
        for txid in sorted(delta.trusted):
            conn.execute("INSERT OR IGNORE INTO trusted (txid) VALUES (?)", (txid,))


def remove_database(path: Path) -> None:
    """Delete a database file and any SQLite sidecar files."""
    sidecars = [path.with_name(path.name + suffix) for suffix in ("-journal", "-wal", "-shm")]
    for candidate in [path, *sidecars]:
        try:
            candidate.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not remove {candidate}: {e}")
