# escrow/core/errors.py
"""
Caller-visible rejections raised by the escrow ledger.

Hierarchy
---------
EscrowError
 ├─ InvalidAmount      : attached value differs from the fixed deposit amount
 ├─ DuplicateDeposit   : caller already holds an active deposit
 ├─ NoDeposit          : refund requested by an identity without a deposit
 ├─ NothingToWithdraw  : sweep requested while the ledger holds nothing
 ├─ IndexOutOfRange    : depositor_at() past the end (also an IndexError)
 └─ TransferFailed     : the hosting transfer mechanism refused the payout

Every one of these leaves the ledger exactly as it was before the call.
"""

from typing import Optional

from escrow.core.units import TOKEN_SYMBOL, format_units


class EscrowError(Exception):
    """Base class for ledger rejections."""

    code: str = "EscrowError"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code

    def __str__(self) -> str:
        return self.message


class InvalidAmount(EscrowError):
    code = "InvalidAmount"

    def __init__(self, expected: int, got: int) -> None:
        super().__init__(f"Must send exactly {format_units(expected)} {TOKEN_SYMBOL}")
        self.expected = expected
        self.got = got


class DuplicateDeposit(EscrowError):
    code = "DuplicateDeposit"

    def __init__(self, who: str) -> None:
        super().__init__("User has already deposited")
        self.who = who


class NoDeposit(EscrowError):
    code = "NoDeposit"

    def __init__(self, who: str) -> None:
        super().__init__("No deposit found for this address")
        self.who = who


class NothingToWithdraw(EscrowError):
    code = "NothingToWithdraw"

    def __init__(self) -> None:
        super().__init__("No funds to withdraw")


class IndexOutOfRange(EscrowError, IndexError):
    code = "IndexOutOfRange"

    def __init__(self, index: int, length: int) -> None:
        super().__init__(f"Depositor index {index} out of range (have {length})")
        self.index = index
        self.length = length


class TransferFailed(EscrowError):
    code = "TransferFailed"

    def __init__(self, recipient: str, amount: int, reason: Optional[str] = None) -> None:
        msg = f"Transfer of {format_units(amount)} {TOKEN_SYMBOL} to {recipient} failed"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
        self.recipient = recipient
        self.amount = amount
        self.reason = reason
