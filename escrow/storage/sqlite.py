# escrow/storage/sqlite.py
import json
import logging
import os
import sqlite3
from pathlib import Path
from typing import List, Optional

from escrow.core.types import EventRecord, LedgerTerms
from escrow.core.canon import canonical_json_str
from escrow.core.hashing import record_hash
from . import StorageBackend

logger = logging.getLogger(__name__)


class SQLiteStorage(StorageBackend):
    """SQLite persistent storage for escrow ledger terms and event journals."""

    def __init__(self, db_path: str | Path | None = None):
        if db_path is None:
            env_path = os.environ.get("ESCROW_DB_PATH")
            db_path = env_path if env_path else Path.cwd() / "escrow-ledger.db"

        self.db_path = Path(db_path)

        # Ensure the entire parent directory tree exists
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self.db_path = self.db_path.resolve()

        self._conn: Optional[sqlite3.Connection] = None
        self._connect()

    def _connect(self):
        conn_str = str(self.db_path)
        self._conn = sqlite3.connect(conn_str, isolation_level=None)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._create_schema()

    def _create_schema(self):
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS ledgers (
                ledger_id       TEXT    PRIMARY KEY,
                admin           TEXT    NOT NULL,
                deadline        INTEGER NOT NULL,
                deposit_amount  TEXT    NOT NULL
            )
        """)
        # amount is TEXT: base-unit values exceed SQLite's 64-bit integers
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS events (
                ledger_id       TEXT    NOT NULL,
                sequence        INTEGER NOT NULL,
                prev_hash       TEXT    NOT NULL,
                record_hash     TEXT    NOT NULL,
                kind            TEXT    NOT NULL,
                party           TEXT    NOT NULL,
                amount          TEXT    NOT NULL,
                at              INTEGER NOT NULL,
                canonical_json  TEXT    NOT NULL,
                PRIMARY KEY (ledger_id, sequence)
            )
        """)
        self.conn.execute("CREATE INDEX IF NOT EXISTS idx_party ON events(ledger_id, party)")

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Storage connection is closed")
        return self._conn

    def save_terms(self, terms: LedgerTerms) -> None:
        existing = self.load_terms(terms.ledger_id)
        if existing is not None:
            if existing != terms:
                raise ValueError(f"Ledger {terms.ledger_id} already stored with different terms")
            return
        self.conn.execute(
            "INSERT INTO ledgers (ledger_id, admin, deadline, deposit_amount) VALUES (?, ?, ?, ?)",
            (terms.ledger_id, terms.admin, terms.deadline, str(terms.deposit_amount)),
        )

    def load_terms(self, ledger_id: str) -> Optional[LedgerTerms]:
        row = self.conn.execute(
            "SELECT ledger_id, admin, deadline, deposit_amount FROM ledgers WHERE ledger_id = ?",
            (ledger_id,),
        ).fetchone()
        if row is None:
            return None
        lid, admin, deadline, amount = row
        return LedgerTerms(admin=admin, deadline=deadline, deposit_amount=int(amount), ledger_id=lid)

    def append(self, record: EventRecord) -> None:
        event = record.event
        self.conn.execute("""
            INSERT INTO events
            (ledger_id, sequence, prev_hash, record_hash, kind,
             party, amount, at, canonical_json)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            record.ledger_id, record.sequence, record.prev_hash, record_hash(record),
            event.kind, event.party, str(event.amount), event.when,
            canonical_json_str(record.to_dict()),
        ))

    def load_records(self, ledger_id: str) -> List[EventRecord]:
        cursor = self.conn.execute(
            "SELECT record_hash, canonical_json FROM events WHERE ledger_id = ? ORDER BY sequence ASC",
            (ledger_id,),
        )
        loaded = []
        for stored_hash, cjson in cursor:
            record = EventRecord.from_dict(json.loads(cjson))
            if record_hash(record) != stored_hash:
                raise ValueError(f"Record hash mismatch at sequence {record.sequence}")
            loaded.append(record)
        for i, record in enumerate(loaded):
            if record.sequence != i:
                raise ValueError(f"Sequence gap at {i} (found {record.sequence})")
            if i > 0 and record.prev_hash != record_hash(loaded[i - 1]):
                raise ValueError(f"Chain broken at sequence {record.sequence}")
        logger.debug("Loaded %d records for ledger %s from %s", len(loaded), ledger_id, self.db_path)
        return loaded

    def truncate(self, ledger_id: str, length: int) -> None:
        self.conn.execute(
            "DELETE FROM events WHERE ledger_id = ? AND sequence >= ?",
            (ledger_id, length),
        )

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def list_ledgers(self) -> list[str]:
        """
        List all ledger ids, most recently active first (ledgers without events last).
        """
        cursor = self.conn.execute("""
            SELECT l.ledger_id
            FROM ledgers l LEFT JOIN events e ON e.ledger_id = l.ledger_id
            GROUP BY l.ledger_id
            ORDER BY MAX(e.at) IS NULL, MAX(e.at) DESC, l.ledger_id
        """)
        return [row[0] for row in cursor.fetchall()]

    def get_event_count(self, ledger_id: str) -> int:
        cursor = self.conn.execute(
            "SELECT COUNT(*) FROM events WHERE ledger_id = ?",
            (ledger_id,)
        )
        return cursor.fetchone()[0]

    def get_latest_timestamp(self, ledger_id: str) -> Optional[int]:
        cursor = self.conn.execute(
            "SELECT MAX(at) FROM events WHERE ledger_id = ?",
            (ledger_id,)
        )
        row = cursor.fetchone()
        return row[0] if row and row[0] is not None else None

    def query_records(self, ledger_id: str, limit: int = 50) -> List[EventRecord]:
        cursor = self.conn.execute("""
            SELECT canonical_json
            FROM events
            WHERE ledger_id = ?
            ORDER BY sequence DESC
            LIMIT ?
        """, (ledger_id, limit))
        loaded = [EventRecord.from_dict(json.loads(cjson)) for (cjson,) in cursor]
        loaded.reverse()  # latest last
        return loaded
