"""
Currency codec - converts between ledger currency codes and readable symbols.

The ledger represents a currency either as a 3-character ISO-style code or as
a 160-bit (40 hex digit) code. Non-standard symbols such as "SOLO" are stored
as their ASCII bytes, left-aligned and zero-padded to 20 bytes.
"""

import math
import string
from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN
from typing import Any, Dict, Optional, Tuple, Union

from .config import DROPS_PER_XRP

HEX_CODE_LENGTH = 40
MAX_SYMBOL_BYTES = HEX_CODE_LENGTH // 2
NATIVE_CURRENCY = "XRP"

_HEX_DIGITS = set(string.hexdigits)
_PRINTABLE = set(range(0x21, 0x7F))


def is_hex_code(code: str) -> bool:
    """True if code is a 40 hex digit currency code."""
    return len(code) == HEX_CODE_LENGTH and all(c in _HEX_DIGITS for c in code)


def to_readable(code: Optional[str]) -> str:
    """
    Convert a ledger currency code to a readable symbol.

    Never raises: anything that does not decode cleanly is returned unchanged.
    """
    if not code:
        return ""

    if len(code) <= 3:
        return code.strip()

    if not is_hex_code(code):
        return code

    raw = bytes.fromhex(code)
    symbol = raw.split(b"\x00", 1)[0]
    if not symbol or any(b not in _PRINTABLE for b in symbol):
        return code

    return symbol.decode("ascii")


def to_ledger_format(symbol: str) -> str:
    """
    Convert a readable symbol to the ledger's currency code.

    Raises ValueError for symbols that cannot be encoded in 20 ASCII bytes.
    """
    symbol = symbol.strip()
    if not symbol:
        raise ValueError("Currency symbol is empty")

    if len(symbol) <= 3:
        return symbol

    if is_hex_code(symbol):
        return symbol.upper()

    try:
        raw = symbol.encode("ascii")
    except UnicodeEncodeError:
        raise ValueError(f"Currency symbol must be ASCII: {symbol!r}")

    if len(raw) > MAX_SYMBOL_BYTES:
        raise ValueError(f"Currency symbol longer than {MAX_SYMBOL_BYTES} bytes: {symbol!r}")

    return raw.hex().upper().ljust(HEX_CODE_LENGTH, "0")


@dataclass(frozen=True)
class TokenIdentity:
    """An issued token: the pair (currency code, issuer address)."""
    currency: str
    issuer: str

    @property
    def readable(self) -> str:
        return to_readable(self.currency)

    @property
    def short(self) -> str:
        """Compact form for log context."""
        return f"{self.readable}.{self.issuer[:8]}"

    def as_asset(self) -> Dict[str, str]:
        """Asset object as used by amm_info."""
        return {"currency": self.currency, "issuer": self.issuer}

    def as_amount(self, value: Union[str, float]) -> Dict[str, str]:
        """Issued-currency amount object for transactions."""
        if not isinstance(value, str):
            value = format_token_value(value)
        return {"currency": self.currency, "issuer": self.issuer, "value": value}

    def matches(self, entry: Dict[str, Any]) -> bool:
        """True if a stored {currency, issuer} record refers to this token."""
        return entry.get("currency") == self.currency and entry.get("issuer") == self.issuer


def drops_to_xrp(drops: Union[str, int]) -> float:
    """Convert drops to XRP."""
    return int(drops) / DROPS_PER_XRP


def xrp_to_drops(xrp: float) -> str:
    """Convert XRP to a drops string, rounding down to whole drops."""
    if not math.isfinite(xrp) or xrp < 0:
        raise ValueError(f"Invalid XRP amount: {xrp}")
    drops = (Decimal(repr(xrp)) * DROPS_PER_XRP).to_integral_value(rounding=ROUND_DOWN)
    return str(int(drops))


def format_token_value(value: float) -> str:
    """Format an issued-currency value with at most 6 decimals."""
    text = f"{value:.6f}".rstrip("0").rstrip(".")
    return text or "0"


def parse_amount(amount: Any) -> Tuple[Optional[float], Optional[TokenIdentity]]:
    """
    Split a ledger amount into (value, token).

    A drops string is native XRP (token None). Returns (None, None) for
    anything that is not a recognisable amount.
    """
    try:
        if isinstance(amount, str):
            return drops_to_xrp(amount), None
        if isinstance(amount, dict):
            value = float(amount["value"])
            currency = amount.get("currency")
            issuer = amount.get("issuer")
            if currency and issuer:
                return value, TokenIdentity(currency, issuer)
    except (KeyError, TypeError, ValueError):
        pass
    return None, None
