# escrow/core/types.py
from dataclasses import dataclass, field
from typing import ClassVar, Dict, Type, Union
from uuid import uuid4


@dataclass(frozen=True)
class LedgerTerms:
    """Construction header of one escrow ledger. Never changes after creation."""
    admin: str                      # sweep recipient
    deadline: int                   # unix seconds; refunds allowed strictly before
    deposit_amount: int             # base units, exact amount per deposit
    ledger_id: str = field(default_factory=lambda: f"escrow-{uuid4().hex[:12]}")

    def to_dict(self) -> dict:
        return {
            "ledger_id": self.ledger_id,
            "admin": self.admin,
            "deadline": self.deadline,
            "deposit_amount": str(self.deposit_amount),
        }

    @classmethod
    def from_dict(cls, d: dict) -> "LedgerTerms":
        return cls(
            admin=d["admin"],
            deadline=int(d["deadline"]),
            deposit_amount=int(d["deposit_amount"]),
            ledger_id=d["ledger_id"],
        )


@dataclass(frozen=True)
class DepositMade:
    kind: ClassVar[str] = "DepositMade"
    who: str
    amount: int
    when: int

    @property
    def party(self) -> str:
        return self.who

    def to_dict(self) -> dict:
        # amounts as strings: 18-decimal values overflow JSON doubles
        return {"who": self.who, "amount": str(self.amount), "when": self.when}


@dataclass(frozen=True)
class DepositRedeemed:
    kind: ClassVar[str] = "DepositRedeemed"
    who: str
    amount: int
    when: int

    @property
    def party(self) -> str:
        return self.who

    def to_dict(self) -> dict:
        return {"who": self.who, "amount": str(self.amount), "when": self.when}


@dataclass(frozen=True)
class AdminWithdrawal:
    kind: ClassVar[str] = "AdminWithdrawal"
    admin: str
    amount: int
    when: int

    @property
    def party(self) -> str:
        return self.admin

    def to_dict(self) -> dict:
        return {"admin": self.admin, "amount": str(self.amount), "when": self.when}


LedgerEvent = Union[DepositMade, DepositRedeemed, AdminWithdrawal]

EVENT_TYPES: Dict[str, Type] = {
    cls.kind: cls for cls in (DepositMade, DepositRedeemed, AdminWithdrawal)
}


def event_from_dict(kind: str, data: dict) -> LedgerEvent:
    """Rebuild an event from its kind tag and to_dict() payload."""
    cls = EVENT_TYPES.get(kind)
    if cls is None:
        raise ValueError(f"Unknown event kind: {kind}")
    fields = dict(data)
    fields["amount"] = int(fields["amount"])
    fields["when"] = int(fields["when"])
    return cls(**fields)


@dataclass(frozen=True)
class EventRecord:
    """One emitted event, positioned and hash-linked inside a ledger's journal."""
    ledger_id: str
    sequence: int
    event: LedgerEvent
    prev_hash: str = ""             # hex(sha256) of previous record, empty for the first

    @property
    def kind(self) -> str:
        return self.event.kind

    def to_dict(self) -> dict:
        """Helper for canonicalization / hashing / export."""
        return {
            "ledger_id": self.ledger_id,
            "sequence": self.sequence,
            "prev_hash": self.prev_hash,
            "kind": self.event.kind,
            "data": self.event.to_dict(),
        }

    @classmethod
    def from_dict(cls, d: dict) -> "EventRecord":
        return cls(
            ledger_id=d["ledger_id"],
            sequence=int(d["sequence"]),
            event=event_from_dict(d["kind"], d["data"]),
            prev_hash=d.get("prev_hash", ""),
        )


@dataclass(frozen=True)
class Transfer:
    """An outward value movement performed on behalf of the ledger."""
    recipient: str
    amount: int
