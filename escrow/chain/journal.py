# escrow/chain/journal.py
import logging
from typing import List, Optional, Union
from dataclasses import dataclass, field

from escrow.core.types import EventRecord, LedgerEvent, LedgerTerms
from escrow.core.hashing import record_hash
from escrow.storage import StorageBackend, resolve_storage

logger = logging.getLogger(__name__)


@dataclass
class EventJournal:
    """
    Ordered, hash-linked log of the events one ledger has emitted.
    Supports optional persistent storage (SQLite).
    """
    ledger_id: str
    records: List[EventRecord] = field(default_factory=list)
    storage: Optional[Union[StorageBackend, str]] = None

    def __post_init__(self):
        # "sqlite://..." URI, plain file path or backend instance
        owned = isinstance(self.storage, str)
        self.storage = resolve_storage(self.storage)

        # Auto-load if persistent storage provided and records list is empty
        if self.storage and not self.records:
            try:
                self.records = self.storage.load_records(self.ledger_id)
            except Exception:
                if owned:
                    self.close()
                raise
            if self.records:
                logger.info("Loaded %d events from storage for ledger %s", len(self.records), self.ledger_id)

    @property
    def length(self) -> int:
        return len(self.records)

    def bind_terms(self, terms: LedgerTerms) -> None:
        """Record the ledger header in storage, or check it against the stored one."""
        if terms.ledger_id != self.ledger_id:
            raise ValueError(f"Terms for {terms.ledger_id} do not belong to journal {self.ledger_id}")
        if self.storage:
            self.storage.save_terms(terms)

    def append(self, event: LedgerEvent) -> EventRecord:
        """
        Link the event to the current tail, append it and persist it.
        Nothing is kept in memory when persisting fails.
        """
        record = EventRecord(
            ledger_id=self.ledger_id,
            sequence=self.length,
            event=event,
            prev_hash=self.get_last_hash() or "",
        )
        if self.storage:
            self.storage.append(record)
        self.records.append(record)
        return record

    def truncate(self, length: int) -> None:
        """Drop records from `length` onwards (used to roll back a failed operation)."""
        if length < 0 or length > self.length:
            raise ValueError(f"Cannot truncate journal of {self.length} records to {length}")
        if length == self.length:
            return
        if self.storage:
            self.storage.truncate(self.ledger_id, length)
        del self.records[length:]

    def get_chain(self) -> List[EventRecord]:
        """Returns copy of the full record chain (immutable view)"""
        return self.records.copy()

    def get_last_hash(self) -> Optional[str]:
        if not self.records:
            return None
        return record_hash(self.records[-1])

    def close(self) -> None:
        """Release storage resources (e.g. database connection)."""
        if self.storage:
            self.storage.close()
            logger.debug("Storage closed for ledger %s", self.ledger_id)
            self.storage = None
