# tests/test_ledger.py
import pytest

from escrow.contract.ledger import EscrowLedger
from escrow.contract.transfers import InMemoryTransfers, TransferBackend
from escrow.core.errors import (
    DuplicateDeposit,
    IndexOutOfRange,
    InvalidAmount,
    NoDeposit,
    NothingToWithdraw,
    TransferFailed,
)
from escrow.core.types import AdminWithdrawal, DepositMade, DepositRedeemed
from escrow.core.units import DEPOSIT_AMOUNT, parse_units

ADMIN = "0xadmin"
ALICE = "0xalice"
BOB = "0xbob"
CAROL = "0xcarol"

NOW = 1_760_000_000
WEEK = 7 * 24 * 60 * 60
DEADLINE = NOW + WEEK


@pytest.fixture
def transfers():
    return InMemoryTransfers()


@pytest.fixture
def ledger(transfers):
    return EscrowLedger(ADMIN, DEADLINE, transfers=transfers, ledger_id="escrow-unit")


@pytest.fixture
def funded(ledger):
    ledger.deposit(ALICE, DEPOSIT_AMOUNT, NOW)
    ledger.deposit(BOB, DEPOSIT_AMOUNT, NOW + 1)
    return ledger


class FailingTransfers(TransferBackend):
    def send(self, recipient, amount):
        raise ConnectionError("node unreachable")


# ── construction ────────────────────────────────────────────────────────


def test_constants(ledger):
    assert ledger.admin == ADMIN
    assert ledger.deposit_amount == parse_units("1")
    assert ledger.deadline == DEADLINE
    assert ledger.ledger_id == "escrow-unit"
    assert ledger.balance == 0
    assert ledger.depositor_count == 0


def test_constants_are_read_only(ledger):
    with pytest.raises(AttributeError):
        ledger.admin = "0xmallory"
    with pytest.raises(AttributeError):
        ledger.deadline = 0


@pytest.mark.parametrize(
    "admin, deadline, amount",
    [("", DEADLINE, DEPOSIT_AMOUNT), (ADMIN, -1, DEPOSIT_AMOUNT), (ADMIN, DEADLINE, 0), (ADMIN, "soon", DEPOSIT_AMOUNT)],
)
def test_invalid_construction(admin, deadline, amount):
    with pytest.raises(ValueError):
        EscrowLedger(admin, deadline, amount)


def test_custom_deposit_amount():
    ledger = EscrowLedger(ADMIN, DEADLINE, deposit_amount=5)
    ledger.deposit(ALICE, 5, NOW)
    assert ledger.balance == 5
    with pytest.raises(InvalidAmount):
        ledger.deposit(BOB, DEPOSIT_AMOUNT, NOW)


# ── deposits ────────────────────────────────────────────────────────────


def test_deposit_emits_event(ledger):
    event = ledger.deposit(ALICE, DEPOSIT_AMOUNT, NOW)
    assert event == DepositMade(who=ALICE, amount=DEPOSIT_AMOUNT, when=NOW)

    records = ledger.events()
    assert len(records) == 1
    assert records[0].event == event
    assert records[0].sequence == 0


def test_deposit_tracks_depositor(ledger):
    ledger.deposit(ALICE, DEPOSIT_AMOUNT, NOW)
    assert ledger.has_deposited(ALICE)
    assert not ledger.has_deposited(BOB)
    assert ledger.balance == DEPOSIT_AMOUNT


def test_multiple_depositors_in_order(funded):
    assert funded.has_deposited(ALICE)
    assert funded.has_deposited(BOB)
    assert funded.depositor_at(0) == ALICE
    assert funded.depositor_at(1) == BOB
    assert funded.depositors() == [ALICE, BOB]
    with pytest.raises(IndexOutOfRange):
        funded.depositor_at(2)


@pytest.mark.parametrize("value", [parse_units("0.5"), parse_units("2"), 0, DEPOSIT_AMOUNT - 1, DEPOSIT_AMOUNT + 1])
def test_wrong_amount_changes_nothing(ledger, value):
    with pytest.raises(InvalidAmount, match="Must send exactly 1.0 DOT"):
        ledger.deposit(ALICE, value, NOW)
    assert not ledger.has_deposited(ALICE)
    assert ledger.balance == 0
    assert ledger.events() == []


def test_non_integer_amount_rejected(ledger):
    # 1e18 compares equal to the exact amount but is not a base-unit integer
    with pytest.raises(InvalidAmount):
        ledger.deposit(ALICE, float(DEPOSIT_AMOUNT), NOW)
    assert not ledger.has_deposited(ALICE)
    assert ledger.events() == []


def test_bool_amount_rejected():
    ledger = EscrowLedger(ADMIN, DEADLINE, deposit_amount=1)
    with pytest.raises(InvalidAmount):
        ledger.deposit(ALICE, True, NOW)
    assert ledger.balance == 0
    assert ledger.events() == []


@pytest.mark.parametrize("now", [float(NOW), str(NOW), None, True])
def test_non_integer_time_rejected(funded, transfers, now):
    with pytest.raises(ValueError, match="integer unix timestamp"):
        funded.deposit(CAROL, DEPOSIT_AMOUNT, now)
    with pytest.raises(ValueError, match="integer unix timestamp"):
        funded.redeem(ALICE, now)
    assert funded.depositors() == [ALICE, BOB]
    assert len(funded.events()) == 2
    assert transfers.history == []


def test_double_deposit_rejected(ledger):
    ledger.deposit(ALICE, DEPOSIT_AMOUNT, NOW)
    with pytest.raises(DuplicateDeposit, match="already deposited"):
        ledger.deposit(ALICE, DEPOSIT_AMOUNT, NOW + 5)
    assert ledger.balance == DEPOSIT_AMOUNT
    assert ledger.depositor_count == 1
    assert len(ledger.events()) == 1


def test_wrong_amount_checked_before_duplicate(ledger):
    ledger.deposit(ALICE, DEPOSIT_AMOUNT, NOW)
    with pytest.raises(InvalidAmount):
        ledger.deposit(ALICE, 1, NOW)


def test_deposit_again_after_refund(ledger):
    ledger.deposit(ALICE, DEPOSIT_AMOUNT, NOW)
    ledger.redeem(ALICE, NOW + 10)
    ledger.deposit(ALICE, DEPOSIT_AMOUNT, NOW + 20)
    assert ledger.has_deposited(ALICE)
    assert ledger.balance == DEPOSIT_AMOUNT


# ── redemption before the deadline ─────────────────────────────────────


def test_refund_before_deadline(funded, transfers):
    event = funded.redeem(ALICE, DEADLINE - 10)

    assert event == DepositRedeemed(who=ALICE, amount=DEPOSIT_AMOUNT, when=DEADLINE - 10)
    assert transfers.balance_of(ALICE) == DEPOSIT_AMOUNT
    assert not funded.has_deposited(ALICE)
    assert funded.has_deposited(BOB)
    assert funded.depositors() == [BOB]
    assert funded.balance == DEPOSIT_AMOUNT


def test_refund_preserves_order_of_others(ledger):
    for who in (ALICE, BOB, CAROL):
        ledger.deposit(who, DEPOSIT_AMOUNT, NOW)
    ledger.redeem(BOB, NOW + 1)
    assert ledger.depositors() == [ALICE, CAROL]
    assert ledger.depositor_at(1) == CAROL


def test_refund_without_deposit(funded, transfers):
    with pytest.raises(NoDeposit, match="No deposit found"):
        funded.redeem(CAROL, NOW + 5)
    assert funded.depositors() == [ALICE, BOB]
    assert funded.balance == 2 * DEPOSIT_AMOUNT
    assert transfers.history == []
    assert len(funded.events()) == 2


def test_refund_twice_fails(funded):
    funded.redeem(ALICE, NOW + 5)
    with pytest.raises(NoDeposit):
        funded.redeem(ALICE, NOW + 6)


def test_one_second_before_deadline_is_still_a_refund(funded, transfers):
    event = funded.redeem(BOB, DEADLINE - 1)
    assert isinstance(event, DepositRedeemed)
    assert transfers.balance_of(ADMIN) == 0


# ── redemption at / after the deadline ─────────────────────────────────


def test_sweep_at_exact_deadline(funded, transfers):
    event = funded.redeem(ALICE, DEADLINE)
    assert isinstance(event, AdminWithdrawal)
    assert transfers.balance_of(ADMIN) == 2 * DEPOSIT_AMOUNT
    assert transfers.balance_of(ALICE) == 0


def test_anyone_can_trigger_sweep(funded, transfers):
    held = funded.balance
    event = funded.redeem(CAROL, DEADLINE + 8 * 24 * 3600)

    assert event == AdminWithdrawal(admin=ADMIN, amount=held, when=DEADLINE + 8 * 24 * 3600)
    assert transfers.balance_of(ADMIN) == held
    assert transfers.balance_of(CAROL) == 0


def test_sweep_includes_callers_own_deposit(funded, transfers):
    funded.redeem(BOB, DEADLINE + 1)
    assert transfers.balance_of(BOB) == 0
    assert transfers.balance_of(ADMIN) == 2 * DEPOSIT_AMOUNT


def test_sweep_clears_all_depositors(funded):
    funded.redeem(ALICE, DEADLINE + 1)
    assert not funded.has_deposited(ALICE)
    assert not funded.has_deposited(BOB)
    assert funded.depositors() == []
    assert funded.balance == 0
    assert funded.sweep_count == 1
    with pytest.raises(IndexOutOfRange):
        funded.depositor_at(0)


def test_second_sweep_fails(funded):
    funded.redeem(ALICE, DEADLINE + 1)
    with pytest.raises(NothingToWithdraw, match="No funds to withdraw"):
        funded.redeem(BOB, DEADLINE + 2)
    assert len(funded.events()) == 3


def test_sweep_of_empty_ledger_fails(ledger, transfers):
    with pytest.raises(NothingToWithdraw):
        ledger.redeem(ADMIN, DEADLINE)
    assert transfers.history == []
    assert ledger.events() == []


def test_deposit_after_deadline_is_swept_later(ledger, transfers):
    ledger.deposit(ALICE, DEPOSIT_AMOUNT, DEADLINE + 5)
    assert ledger.has_deposited(ALICE)
    ledger.redeem(ALICE, DEADLINE + 6)
    assert transfers.balance_of(ADMIN) == DEPOSIT_AMOUNT
    assert transfers.balance_of(ALICE) == 0


# ── accounting ─────────────────────────────────────────────────────────


def test_balance_invariant_over_mixed_sequence(ledger, transfers):
    script = [
        ("deposit", ALICE, NOW),
        ("deposit", BOB, NOW + 1),
        ("redeem", CAROL, NOW + 2),
        ("deposit", BOB, NOW + 3),
        ("deposit", CAROL, NOW + 4),
        ("redeem", ALICE, NOW + 5),
        ("deposit", ALICE, NOW + 6),
        ("redeem", BOB, NOW + 7),
        ("redeem", CAROL, DEADLINE),
        ("redeem", ALICE, DEADLINE + 1),
    ]
    for op, who, at in script:
        try:
            if op == "deposit":
                ledger.deposit(who, DEPOSIT_AMOUNT, at)
            else:
                ledger.redeem(who, at)
        except (DuplicateDeposit, NoDeposit, NothingToWithdraw):
            pass
        assert ledger.is_balanced()
        assert len(set(ledger.depositors())) == ledger.depositor_count

    # everything that came in went out exactly once
    deposited = sum(r.event.amount for r in ledger.events() if r.kind == "DepositMade")
    assert transfers.total_sent() == deposited
    assert ledger.balance == 0


def test_scenario_refund_then_sweep_by_outsider(transfers):
    T = 2_000_000_000
    ledger = EscrowLedger(ADMIN, T, deposit_amount=1, transfers=transfers)

    ledger.deposit(ALICE, 1, T - 100)
    ledger.deposit(BOB, 1, T - 100)

    ledger.redeem(ALICE, T - 10)
    assert transfers.balance_of(ALICE) == 1
    assert ledger.depositors() == [BOB]

    ledger.redeem(CAROL, T + 1)
    assert transfers.balance_of(ADMIN) == 1
    assert ledger.depositors() == []

    with pytest.raises(NothingToWithdraw):
        ledger.redeem(CAROL, T + 2)

    kinds = [r.kind for r in ledger.events()]
    assert kinds == ["DepositMade", "DepositMade", "DepositRedeemed", "AdminWithdrawal"]


# ── payout failures ────────────────────────────────────────────────────


def test_failed_refund_rolls_back():
    ledger = EscrowLedger(ADMIN, DEADLINE, transfers=FailingTransfers())
    ledger.deposit(ALICE, DEPOSIT_AMOUNT, NOW)
    ledger.deposit(BOB, DEPOSIT_AMOUNT, NOW)

    with pytest.raises(TransferFailed, match="node unreachable") as excinfo:
        ledger.redeem(ALICE, NOW + 1)

    assert isinstance(excinfo.value.__cause__, ConnectionError)
    assert ledger.depositors() == [ALICE, BOB]
    assert ledger.balance == 2 * DEPOSIT_AMOUNT
    assert [r.kind for r in ledger.events()] == ["DepositMade", "DepositMade"]


def test_failed_sweep_rolls_back():
    ledger = EscrowLedger(ADMIN, DEADLINE, transfers=FailingTransfers())
    ledger.deposit(ALICE, DEPOSIT_AMOUNT, NOW)

    with pytest.raises(TransferFailed):
        ledger.redeem(BOB, DEADLINE)

    assert ledger.has_deposited(ALICE)
    assert ledger.balance == DEPOSIT_AMOUNT
    assert ledger.sweep_count == 0
    assert len(ledger.events()) == 1


def test_reentrant_refund_cannot_double_spend():
    class ReentrantTransfers(InMemoryTransfers):
        def __init__(self):
            super().__init__()
            self.ledger = None
            self.nested_error = None

        def send(self, recipient, amount):
            if self.ledger is not None and self.nested_error is None:
                try:
                    self.ledger.redeem(recipient, NOW + 2)
                except NoDeposit as exc:
                    self.nested_error = exc
            super().send(recipient, amount)

    transfers = ReentrantTransfers()
    ledger = EscrowLedger(ADMIN, DEADLINE, transfers=transfers)
    ledger.deposit(ALICE, DEPOSIT_AMOUNT, NOW)
    transfers.ledger = ledger

    ledger.redeem(ALICE, NOW + 1)

    assert isinstance(transfers.nested_error, NoDeposit)
    assert transfers.balance_of(ALICE) == DEPOSIT_AMOUNT
    assert ledger.balance == 0
