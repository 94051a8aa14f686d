# escrow/contract/ledger.py
"""
Escrow ledger: participants lock a fixed amount, may take it back before the
deadline, and from the deadline on any caller can sweep everything held to
the admin.

Per depositor:

    Empty --deposit--> Deposited --redeem (now <  deadline)--> Empty
                                 --redeem (now >= deadline)--> Empty   (whole ledger swept)

Every operation is all-or-nothing: preconditions are checked first, then the
state change is applied and journaled, and only then is value paid out. A
failed payout rolls both back.
"""

import logging
from typing import List, Optional, Union

from escrow.chain.journal import EventJournal
from escrow.contract.depositors import DepositorRegistry
from escrow.contract.transfers import InMemoryTransfers, TransferBackend
from escrow.core.errors import (
    DuplicateDeposit,
    InvalidAmount,
    NoDeposit,
    NothingToWithdraw,
    TransferFailed,
)
from escrow.core.types import (
    AdminWithdrawal,
    DepositMade,
    DepositRedeemed,
    EventRecord,
    LedgerEvent,
    LedgerTerms,
    Transfer,
)
from escrow.core.units import DEPOSIT_AMOUNT, TOKEN_SYMBOL, format_units
from escrow.storage import StorageBackend, resolve_storage

logger = logging.getLogger(__name__)


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _require_timestamp(now) -> None:
    if not _is_int(now):
        raise ValueError(f"now must be an integer unix timestamp, got {now!r}")


class EscrowLedger:
    """Single escrow instance. All time comes in through `now` arguments."""

    def __init__(
        self,
        admin: str,
        deadline: int,
        deposit_amount: int = DEPOSIT_AMOUNT,
        *,
        ledger_id: Optional[str] = None,
        transfers: Optional[TransferBackend] = None,
        storage: Optional[Union[StorageBackend, str]] = None,
    ):
        if not admin:
            raise ValueError("admin identity is required")
        if not _is_int(deadline) or deadline < 0:
            raise ValueError(f"deadline must be a non-negative unix timestamp, got {deadline!r}")
        if not _is_int(deposit_amount) or deposit_amount <= 0:
            raise ValueError(f"deposit_amount must be a positive integer, got {deposit_amount!r}")

        extra = {} if ledger_id is None else {"ledger_id": ledger_id}
        self._terms = LedgerTerms(admin=admin, deadline=deadline, deposit_amount=deposit_amount, **extra)
        self._depositors = DepositorRegistry()
        self._balance = 0
        self._sweeps = 0

        self.transfers = transfers if transfers is not None else InMemoryTransfers()
        self.journal = EventJournal(self._terms.ledger_id, storage=storage)
        try:
            self.journal.bind_terms(self._terms)
            self._replay(self.journal.records)
        except Exception:
            # a backend handed in by the caller stays theirs to close
            if isinstance(storage, str):
                self.journal.close()
            raise

    @classmethod
    def open(
        cls,
        ledger_id: str,
        storage: Union[StorageBackend, str],
        transfers: Optional[TransferBackend] = None,
    ) -> "EscrowLedger":
        """Rebuild a stored ledger from its terms and recorded events."""
        backend = resolve_storage(storage)
        if backend is None:
            raise ValueError("storage is required to open a ledger")
        try:
            terms = backend.load_terms(ledger_id)
            if terms is None:
                raise ValueError(f"Unknown ledger: {ledger_id}")
            return cls(
                terms.admin,
                terms.deadline,
                terms.deposit_amount,
                ledger_id=terms.ledger_id,
                transfers=transfers,
                storage=backend,
            )
        except Exception:
            if isinstance(storage, str):
                backend.close()
            raise

    # ── constants ────────────────────────────────────────────────────────

    @property
    def terms(self) -> LedgerTerms:
        return self._terms

    @property
    def ledger_id(self) -> str:
        return self._terms.ledger_id

    @property
    def admin(self) -> str:
        return self._terms.admin

    @property
    def deposit_amount(self) -> int:
        return self._terms.deposit_amount

    @property
    def deadline(self) -> int:
        return self._terms.deadline

    # ── queries ──────────────────────────────────────────────────────────

    @property
    def balance(self) -> int:
        return self._balance

    @property
    def depositor_count(self) -> int:
        return len(self._depositors)

    @property
    def sweep_count(self) -> int:
        return self._sweeps

    def has_deposited(self, identity: str) -> bool:
        return identity in self._depositors

    def depositor_at(self, index: int) -> str:
        return self._depositors.at(index)

    def depositors(self) -> List[str]:
        return self._depositors.to_list()

    def events(self) -> List[EventRecord]:
        return self.journal.get_chain()

    def refunds_open(self, now: int) -> bool:
        return now < self.deadline

    def is_balanced(self) -> bool:
        """Held value equals one deposit per active depositor."""
        return self._balance == self.deposit_amount * len(self._depositors)

    # ── operations ───────────────────────────────────────────────────────

    def deposit(self, caller: str, value: int, now: int) -> DepositMade:
        """Lock exactly `deposit_amount` for `caller`."""
        _require_timestamp(now)
        if not _is_int(value) or value != self.deposit_amount:
            raise InvalidAmount(self.deposit_amount, value)
        if caller in self._depositors:
            raise DuplicateDeposit(caller)

        event = DepositMade(who=caller, amount=value, when=now)
        self._commit(event)
        logger.debug("Deposit from %s accepted on %s (%d active)", caller, self.ledger_id, self.depositor_count)
        return event

    def redeem(self, caller: str, now: int) -> Union[DepositRedeemed, AdminWithdrawal]:
        """
        Before the deadline: refund the caller's own deposit.
        At or after the deadline: anyone may trigger the sweep of the whole
        balance to the admin, the caller's own deposit included.
        """
        _require_timestamp(now)
        if now < self.deadline:
            return self._refund(caller, now)
        return self._sweep(now)

    def _refund(self, caller: str, now: int) -> DepositRedeemed:
        if caller not in self._depositors:
            raise NoDeposit(caller)

        event = DepositRedeemed(who=caller, amount=self.deposit_amount, when=now)
        self._commit(event, payout=Transfer(recipient=caller, amount=self.deposit_amount))
        logger.debug("Refunded %s on %s (%d active)", caller, self.ledger_id, self.depositor_count)
        return event

    def _sweep(self, now: int) -> AdminWithdrawal:
        amount = self._balance
        if amount <= 0:
            raise NothingToWithdraw()

        swept = len(self._depositors)
        event = AdminWithdrawal(admin=self.admin, amount=amount, when=now)
        self._commit(event, payout=Transfer(recipient=self.admin, amount=amount))
        logger.info(
            "Swept %s %s from %d depositors on %s to admin %s",
            format_units(amount), TOKEN_SYMBOL, swept, self.ledger_id, self.admin,
        )
        return event

    # ── state transitions ────────────────────────────────────────────────

    def _commit(self, event: LedgerEvent, payout: Optional[Transfer] = None) -> None:
        saved = (self._depositors.snapshot(), self._balance, self._sweeps)
        mark = self.journal.length

        # state first: a re-entrant call from inside send() sees the result
        self._apply(event)
        try:
            self.journal.append(event)
        except Exception:
            self._restore(saved)
            raise

        if payout is None:
            return
        try:
            self.transfers.send(payout.recipient, payout.amount)
        except Exception as exc:
            self._restore(saved)
            self.journal.truncate(mark)
            logger.warning("Rolled back %s on %s: payout to %s failed (%s)", event.kind, self.ledger_id, payout.recipient, exc)
            if isinstance(exc, TransferFailed):
                raise
            raise TransferFailed(payout.recipient, payout.amount, str(exc)) from exc

    def _restore(self, saved) -> None:
        registry_state, self._balance, self._sweeps = saved
        self._depositors.restore(registry_state)

    def _apply(self, event: LedgerEvent) -> None:
        if isinstance(event, DepositMade):
            self._depositors.add(event.who)
            self._balance += event.amount
        elif isinstance(event, DepositRedeemed):
            self._depositors.remove(event.who)
            self._balance -= event.amount
        elif isinstance(event, AdminWithdrawal):
            self._depositors.clear()
            self._balance -= event.amount
            self._sweeps += 1
        else:
            raise TypeError(f"Not a ledger event: {event!r}")

    def _replay(self, records: List[EventRecord]) -> None:
        for record in records:
            try:
                self._apply(record.event)
            except (KeyError, ValueError) as exc:
                raise ValueError(
                    f"Journal for {self.ledger_id} is inconsistent at sequence {record.sequence}: {exc}"
                ) from exc
        if records:
            logger.info("Replayed %d events for %s (balance %s)", len(records), self.ledger_id, format_units(self._balance))

    # ── lifecycle ────────────────────────────────────────────────────────

    def close(self) -> None:
        self.journal.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __repr__(self) -> str:
        return (
            f"EscrowLedger(id={self.ledger_id!r}, admin={self.admin!r}, deadline={self.deadline}, "
            f"depositors={self.depositor_count}, balance={self._balance})"
        )
