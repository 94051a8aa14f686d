# escrow/verify/verifier.py
from typing import List, Optional
from dataclasses import dataclass

from escrow.core.types import (
    AdminWithdrawal,
    DepositMade,
    DepositRedeemed,
    EventRecord,
    LedgerTerms,
)
from escrow.core.hashing import record_hash
from escrow.core.units import format_units
from escrow.storage import StorageBackend


@dataclass
class VerificationFailure:
    index: int
    message: str
    category: str = "general"  # "ledger", "sequence", "hash_chain", "accounting", "timing", "admin", "storage"


@dataclass
class VerificationResult:
    is_valid: bool
    message: str = ""
    failures: List[VerificationFailure] = None

    def __post_init__(self):
        if self.failures is None:
            self.failures = []

    @property
    def first_failure(self) -> Optional[VerificationFailure]:
        return self.failures[0] if self.failures else None

    def fail(self, index: int, message: str, category: str) -> None:
        self.failures.append(VerificationFailure(index, message, category))
        self.is_valid = False

    def __bool__(self):
        return self.is_valid

    def __str__(self):
        if self.is_valid:
            return "Journal is valid ✓"
        lines = [f"Verification FAILED ({len(self.failures)} issues):"]
        for f in self.failures:
            lines.append(f"  • [{f.index}] {f.category}: {f.message}")
        return "\n".join(lines)


class JournalVerifier:
    """
    Offline verifier for a ledger's event journal.
    Checks the hash chain and replays the events against the ledger terms,
    so an indexer can trust balances it derives from the stream.
    """

    def __init__(self, terms: LedgerTerms):
        if terms is None:
            raise ValueError("ledger terms are required")
        self.terms = terms

    def verify(self, chain: List[EventRecord]) -> VerificationResult:
        if not chain:
            return VerificationResult(True, "Empty journal is valid")

        result = VerificationResult(True)

        # 1. Ledger & sequence consistency
        for i, record in enumerate(chain):
            if record.ledger_id != self.terms.ledger_id:
                result.fail(i, f"Ledger mismatch: {record.ledger_id}", "ledger")
            if record.sequence != i:
                result.fail(i, f"Sequence mismatch: expected {i}, got {record.sequence}", "sequence")

        if not result.is_valid:
            return result

        # 2. Hash chain
        if chain[0].prev_hash != "":
            result.fail(0, "First record must not reference a predecessor", "hash_chain")
        for i in range(1, len(chain)):
            if chain[i].prev_hash != record_hash(chain[i - 1]):
                result.fail(i, "prev_hash does not match previous record hash", "hash_chain")

        # 3. Replay accounting and timing
        self._replay(chain, result)

        result.message = "Valid journal" if result.is_valid else f"Failed with {len(result.failures)} issues"
        return result

    def _replay(self, chain: List[EventRecord], result: VerificationResult) -> None:
        terms = self.terms
        active = set()
        balance = 0

        for i, record in enumerate(chain):
            event = record.event

            if isinstance(event, DepositMade):
                if event.amount != terms.deposit_amount:
                    result.fail(i, f"Deposit of {format_units(event.amount)} differs from fixed amount", "accounting")
                if event.who in active:
                    result.fail(i, f"Duplicate deposit by {event.who}", "accounting")
                active.add(event.who)
                balance += event.amount

            elif isinstance(event, DepositRedeemed):
                if event.when >= terms.deadline:
                    result.fail(i, f"Refund to {event.who} at {event.when} is not before deadline {terms.deadline}", "timing")
                if event.who not in active:
                    result.fail(i, f"Refund to {event.who} without an active deposit", "accounting")
                if event.amount != terms.deposit_amount:
                    result.fail(i, f"Refund of {format_units(event.amount)} differs from fixed amount", "accounting")
                active.discard(event.who)
                balance -= event.amount

            elif isinstance(event, AdminWithdrawal):
                if event.when < terms.deadline:
                    result.fail(i, f"Sweep at {event.when} before deadline {terms.deadline}", "timing")
                if event.admin != terms.admin:
                    result.fail(i, f"Sweep paid to {event.admin}, admin is {terms.admin}", "admin")
                if balance <= 0:
                    result.fail(i, "Sweep of an empty ledger", "accounting")
                elif event.amount != balance:
                    result.fail(
                        i,
                        f"Sweep of {format_units(event.amount)} but ledger held {format_units(balance)}",
                        "accounting",
                    )
                active.clear()
                balance = 0

            else:
                result.fail(i, f"Unknown event {event!r}", "accounting")

    def verify_from_storage(self, ledger_id: str, storage: StorageBackend) -> VerificationResult:
        """
        Load records from persistent storage and verify the journal.
        Returns result with extra info if load fails.
        """
        try:
            chain = storage.load_records(ledger_id)
        except Exception as e:
            return VerificationResult(
                False,
                f"Failed to load ledger '{ledger_id}' from storage: {str(e)}",
                [VerificationFailure(-1, str(e), "storage")]
            )

        return self.verify(chain)
