# escrow/__init__.py
"""
Escrow — a minimal time-locked deposit ledger.
Participants lock a fixed amount, may reclaim it before a deadline, and after
the deadline everything still held is swept to the admin. Every state change
is emitted as a hash-linked event record for external indexers.
"""

from escrow.contract.ledger import EscrowLedger
from escrow.contract.transfers import InMemoryTransfers, TransferBackend
from escrow.core.errors import (
    DuplicateDeposit,
    EscrowError,
    IndexOutOfRange,
    InvalidAmount,
    NoDeposit,
    NothingToWithdraw,
    TransferFailed,
)
from escrow.core.types import AdminWithdrawal, DepositMade, DepositRedeemed, EventRecord, LedgerTerms
from escrow.core.units import DEPOSIT_AMOUNT, format_units, parse_units
from escrow.verify.verifier import JournalVerifier

__version__ = "0.1.0-dev"

__all__ = [
    "EscrowLedger",
    "InMemoryTransfers",
    "TransferBackend",
    "EscrowError",
    "InvalidAmount",
    "DuplicateDeposit",
    "NoDeposit",
    "NothingToWithdraw",
    "IndexOutOfRange",
    "TransferFailed",
    "DepositMade",
    "DepositRedeemed",
    "AdminWithdrawal",
    "EventRecord",
    "LedgerTerms",
    "DEPOSIT_AMOUNT",
    "parse_units",
    "format_units",
    "JournalVerifier",
]
