# escrow/storage/__init__.py
"""
Storage backends for persisted escrow ledgers and their event journals.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Union
from pathlib import Path
from escrow.core.types import EventRecord, LedgerTerms


class StorageBackend(ABC):
    """Abstract base for all persistent storage implementations."""

    @abstractmethod
    def save_terms(self, terms: LedgerTerms) -> None:
        pass

    @abstractmethod
    def load_terms(self, ledger_id: str) -> Optional[LedgerTerms]:
        pass

    @abstractmethod
    def append(self, record: EventRecord) -> None:
        pass

    @abstractmethod
    def load_records(self, ledger_id: str) -> List[EventRecord]:
        pass

    @abstractmethod
    def truncate(self, ledger_id: str, length: int) -> None:
        """Drop every record with sequence >= length."""
        pass

    @abstractmethod
    def close(self) -> None:
        pass


def create_storage(uri: str) -> StorageBackend:
    if uri.startswith("sqlite://"):
        from .sqlite import SQLiteStorage
        # sqlite:///abs/path.db or sqlite://relative.db
        raw_path = uri[len("sqlite://"):]
        if not raw_path.strip():
            raise ValueError(f"Missing database path in storage URI: {uri}")

        absolute_path = Path(raw_path).resolve()
        return SQLiteStorage(absolute_path)

    elif uri.startswith("jsonl:"):
        raise ValueError("JSONL backend is not supported")
    else:
        raise ValueError(f"Unsupported storage URI: {uri}")


def resolve_storage(storage: Optional[Union[StorageBackend, str]]) -> Optional[StorageBackend]:
    """Accept a backend, a storage URI, a plain file path (→ SQLite) or nothing."""
    if not isinstance(storage, str):
        return storage
    stripped = storage.strip()
    if stripped.startswith(("sqlite://", "jsonl:")):
        return create_storage(stripped)
    if stripped:
        return create_storage(f"sqlite://{stripped}")
    return None


from .sqlite import SQLiteStorage

__all__ = ["StorageBackend", "create_storage", "resolve_storage", "SQLiteStorage"]
