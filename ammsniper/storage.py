"""
User state store - JSON file of per-user settings, lists and trade records.
Last writer wins; sessions reload state at the start of every cycle.
"""

import json
from dataclasses import dataclass, asdict, field, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from .copy_policy import CopyAmountMode, CopySizing
from .currency import TokenIdentity
from .evaluator import SnipePolicy
from .executor import SwapOutcome

logger = structlog.get_logger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class UserState:
    """Everything persisted for one user."""
    user_id: str

    # Sniper
    sniper_active: bool = False
    sniper_start_time: Optional[str] = None
    auto_buy: bool = True                      # False = allow-list only
    min_pool_liquidity: Optional[float] = None
    snipe_amount: float = 1.0
    slippage: Optional[float] = None

    # Copy trading
    copy_trader_active: bool = False
    copy_trading_start_time: Optional[str] = None
    copy_traders: List[str] = field(default_factory=list)
    copy_amount_mode: str = CopyAmountMode.DEFAULT.value
    copy_fixed_amount: Optional[float] = None
    copy_percentage: Optional[float] = None
    copy_max_spend: Optional[float] = None

    # Lists and history
    allow_list: List[Dict[str, Any]] = field(default_factory=list)
    block_list: List[Dict[str, Any]] = field(default_factory=list)
    sniper_purchases: List[Dict[str, Any]] = field(default_factory=list)
    transactions: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserState":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    @property
    def copy_start(self) -> Optional[datetime]:
        if not self.copy_trading_start_time:
            return None
        return datetime.fromisoformat(self.copy_trading_start_time)

    def copy_sizing(self) -> CopySizing:
        return CopySizing(
            mode=CopyAmountMode.parse(self.copy_amount_mode),
            fixed_amount=self.copy_fixed_amount,
            percentage=self.copy_percentage,
            max_spend_per_trade=self.copy_max_spend
        )

    def snipe_policy(self, default_min_liquidity: float) -> SnipePolicy:
        return SnipePolicy(
            auto_buy=self.auto_buy,
            min_liquidity=self.min_pool_liquidity or default_min_liquidity,
            purchases=self.sniper_purchases,
            allow_list=self.allow_list,
            block_list=self.block_list
        )

    def was_copied(self, original_tx_hash: str) -> bool:
        return any(t.get("original_tx_hash") == original_tx_hash for t in self.transactions)

    def record_purchase(self, token: TokenIdentity, amount: float, outcome: SwapOutcome) -> None:
        self.sniper_purchases.append({
            "token_symbol": token.readable,
            "currency": token.currency,
            "issuer": token.issuer,
            "amount": amount,
            "tokens_received": outcome.amount_received or 0.0,
            "timestamp": utc_now().isoformat(),
            "tx_hash": outcome.tx_hash,
            "status": "active"
        })

    def record_transaction(
        self,
        trade_type: str,
        token: TokenIdentity,
        amount: float,
        outcome: SwapOutcome,
        original_tx_hash: Optional[str] = None,
        trader_address: Optional[str] = None
    ) -> None:
        self.transactions.append({
            "type": trade_type,
            "our_tx_hash": outcome.tx_hash,
            "original_tx_hash": original_tx_hash,
            "trader_address": trader_address,
            "amount": amount,
            "token_symbol": token.readable,
            "currency": token.currency,
            "issuer": token.issuer,
            "timestamp": utc_now().isoformat(),
            "status": "success" if outcome.success else "failed",
            "amount_sent": outcome.amount_sent,
            "amount_received": outcome.amount_received,
            "actual_rate": outcome.effective_rate,
            "realized_slippage_percent": outcome.realized_slippage_percent
        })


class UserStore:
    """Loads and saves UserState records in a JSON file."""

    def __init__(self, data_file: str):
        self.data_file = Path(data_file)
        self.data_file.parent.mkdir(parents=True, exist_ok=True)

    def _read_all(self) -> Dict[str, Dict[str, Any]]:
        if not self.data_file.exists():
            return {}
        with open(self.data_file, 'r') as f:
            data = json.load(f)
        return {u["user_id"]: u for u in data.get("users", []) if "user_id" in u}

    def load(self, user_id: str) -> Optional[UserState]:
        """Load one user's state, None if unknown."""
        try:
            users = self._read_all()
        except (OSError, json.JSONDecodeError) as e:
            logger.error("state_load_failed", error=str(e))
            return None

        data = users.get(user_id)
        return UserState.from_dict(data) if data else None

    def save(self, state: UserState) -> None:
        """Write one user's state back to the file."""
        try:
            users = self._read_all()
            users[state.user_id] = asdict(state)

            payload = {
                "users": list(users.values()),
                "last_updated": utc_now().isoformat()
            }

            tmp_file = self.data_file.with_suffix(".tmp")
            with open(tmp_file, 'w') as f:
                json.dump(payload, f, indent=2)
            tmp_file.replace(self.data_file)

            logger.debug("state_saved", user=state.user_id)
        except (OSError, json.JSONDecodeError) as e:
            logger.error("state_save_failed", user=state.user_id, error=str(e))
