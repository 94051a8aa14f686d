# escrow/core/hashing.py
import hashlib

from escrow.core.canon import canonical_json
from escrow.core.types import EventRecord


def record_hash(record: EventRecord) -> str:
    """hex(sha256) over the record's canonical JSON; the next record's prev_hash."""
    return hashlib.sha256(canonical_json(record.to_dict())).hexdigest()
