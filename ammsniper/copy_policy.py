"""
Copy-Amount Policy - sizes a mirrored trade from the trader's observed trade.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional

DEFAULT_FIXED_AMOUNT = 1.0       # XRP
DEFAULT_MATCH_PERCENTAGE = 10.0
FALLBACK_FRACTION = 0.1


class CopyAmountMode(Enum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"
    DEFAULT = "default"

    @classmethod
    def parse(cls, value: Optional[str]) -> "CopyAmountMode":
        try:
            return cls(value)
        except ValueError:
            return cls.DEFAULT


@dataclass
class CopySizing:
    """Per-user copy sizing settings."""
    mode: CopyAmountMode = CopyAmountMode.DEFAULT
    fixed_amount: Optional[float] = None
    percentage: Optional[float] = None
    max_spend_per_trade: Optional[float] = None


def compute_copy_amount(observed_native: float, sizing: CopySizing) -> float:
    """
    XRP to spend on the mirrored trade.

    Callers must skip the trade when this is not tradeable (see
    is_tradeable_amount) rather than attempt a zero-size swap.
    """
    if sizing.mode == CopyAmountMode.FIXED:
        return sizing.fixed_amount or DEFAULT_FIXED_AMOUNT

    if sizing.mode == CopyAmountMode.PERCENTAGE:
        percentage = sizing.percentage or DEFAULT_MATCH_PERCENTAGE
        amount = (observed_native or 0) * percentage / 100

        if sizing.max_spend_per_trade and amount > sizing.max_spend_per_trade:
            return sizing.max_spend_per_trade
        return amount

    return sizing.fixed_amount or (observed_native or 0) * FALLBACK_FRACTION


def is_tradeable_amount(amount: Optional[float]) -> bool:
    """Positive and finite."""
    return amount is not None and math.isfinite(amount) and amount > 0
