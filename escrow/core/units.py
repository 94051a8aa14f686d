# escrow/core/units.py
"""
Base-unit helpers for the native token.

All ledger arithmetic is done on integers (base units). Decimal strings only
appear at the edges: CLI output, error messages and exported JSON.
"""

from decimal import Decimal, InvalidOperation, localcontext
from typing import Union

TOKEN_DECIMALS = 18
TOKEN_SYMBOL = "DOT"


def parse_units(value: Union[str, int, Decimal], decimals: int = TOKEN_DECIMALS) -> int:
    """Parse "1", "0.5", 2 ... into integer base units."""
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValueError(f"Not a decimal amount: {value!r}")

    if not amount.is_finite() or amount < 0:
        raise ValueError(f"Amount must be a finite, non-negative number: {value!r}")

    with localcontext() as ctx:
        ctx.prec = 80
        scaled = amount.scaleb(decimals)
        if scaled != scaled.to_integral_value():
            raise ValueError(f"Too many decimal places for {decimals}-decimal unit: {value!r}")
        return int(scaled)


def format_units(amount: int, decimals: int = TOKEN_DECIMALS) -> str:
    """Inverse of parse_units; always keeps one fractional digit ("1.0")."""
    with localcontext() as ctx:
        ctx.prec = 80
        text = format(Decimal(amount).scaleb(-decimals).normalize(), "f")
    if "." not in text:
        text += ".0"
    return text


# One whole token per deposit
DEPOSIT_AMOUNT = parse_units("1")
