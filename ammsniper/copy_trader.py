"""
Copy Trader - Main module for copy trading functionality.
Monitors trader wallets, detects AMM/order-book trades, and executes copies.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import structlog

from .copy_policy import compute_copy_amount, is_tradeable_amount
from .executor import SwapExecutor, SwapOutcome
from .rpc import LedgerRPCError
from .session import PollingSession
from .storage import UserState, UserStore, utc_now
from .tx_parser import TradeEvent
from .wallet_monitor import WalletMonitor

logger = structlog.get_logger(__name__)


@dataclass
class TradeStats:
    """Statistics for copy trading."""
    total_detected: int = 0
    total_copied: int = 0
    total_skipped: int = 0
    total_failed: int = 0
    total_xrp_spent: float = 0.0
    total_xrp_received: float = 0.0


class CopyTradingSession(PollingSession):
    """
    Copy Trading Bot - Monitors trader wallets and copies their trades for one user.
    """

    name = "copy_trading"

    def __init__(
        self,
        user_id: str,
        store: UserStore,
        monitor: WalletMonitor,
        executor: SwapExecutor,
        interval_seconds: float = 3.0
    ):
        super().__init__(user_id, interval_seconds)
        self.store = store
        self.monitor = monitor
        self.executor = executor
        self.stats = TradeStats()

    async def start(self) -> Tuple[bool, Optional[str]]:
        """Start copy trading. Returns (started, error message)."""
        if self.running:
            return False, "Copy trading already running"

        user = self.store.load(self.user_id)
        if user is None:
            return False, "User not found"
        if not user.copy_traders:
            return False, "No traders configured to copy"

        user.copy_trader_active = True
        user.copy_trading_start_time = utc_now().isoformat()
        self.store.save(user)

        self._start_loop()
        logger.info("copy_trader_started", user=self.user_id, traders=len(user.copy_traders))
        return True, None

    async def stop(self) -> None:
        """Stop copy trading; a cycle in progress finishes first."""
        await self._stop_loop()

        user = self.store.load(self.user_id)
        if user is not None and user.copy_trader_active:
            user.copy_trader_active = False
            self.store.save(user)

    async def _cycle(self) -> None:
        user = self.store.load(self.user_id)
        if user is None or not user.copy_trader_active:
            logger.info("copy_trading_disabled", user=self.user_id)
            await self._stop_loop()
            return

        for trader in user.copy_traders:
            trades = await self.monitor.check_trader_transactions(trader, start_time=user.copy_start)
            for trade in trades:
                self.stats.total_detected += 1
                await self._on_trade(user, trade)

    async def _on_trade(self, user: UserState, trade: TradeEvent) -> Optional[SwapOutcome]:
        """Called for every new trade detected from a copied trader."""
        should_copy, reason = self._should_copy(user, trade)
        if not should_copy:
            self.stats.total_skipped += 1
            logger.info("skip_copy", reason=reason, token=trade.readable_symbol, hash=trade.tx_hash[:16])
            return None

        amount = compute_copy_amount(trade.native_amount, user.copy_sizing())
        if not is_tradeable_amount(amount):
            self.stats.total_skipped += 1
            logger.info("skip_copy", reason="invalid_copy_amount", amount=amount)
            return None

        try:
            if trade.is_buy:
                outcome = await self.executor.execute_buy(trade.token, amount, user.slippage)
            else:
                outcome = await self._copy_sell(user, trade, amount)
        except LedgerRPCError as e:
            self.stats.total_failed += 1
            logger.warning("copy_failed", token=trade.readable_symbol, hash=trade.tx_hash[:16], error=str(e))
            return None

        if outcome is None:
            self.stats.total_skipped += 1
            return None

        if not outcome.success:
            self.stats.total_failed += 1
            logger.warning("copy_failed", token=trade.readable_symbol, error=outcome.failure_reason)
            return outcome

        self.stats.total_copied += 1
        if trade.is_buy:
            self.stats.total_xrp_spent += amount
        else:
            self.stats.total_xrp_received += outcome.amount_received or 0.0

        user.record_transaction(
            "copy_buy" if trade.is_buy else "copy_sell",
            trade.token,
            amount,
            outcome,
            original_tx_hash=trade.tx_hash,
            trader_address=trade.account
        )
        self.store.save(user)

        logger.info(
            "copy_success",
            type=trade.direction.value,
            token=trade.readable_symbol,
            hash=outcome.tx_hash[:16] if outcome.tx_hash else "none",
            xrp_amount=f"{amount:.4f}",
            **self._format_stats()
        )
        return outcome

    def _should_copy(self, user: UserState, trade: TradeEvent) -> Tuple[bool, str]:
        """Determine if we should copy this trade."""
        if user.was_copied(trade.tx_hash):
            return False, "already_copied"

        if any(trade.token.matches(entry) for entry in user.block_list):
            return False, "token_blacklisted"

        return True, "ok"

    async def _copy_sell(self, user: UserState, trade: TradeEvent, amount: float) -> Optional[SwapOutcome]:
        """
        Sell the trader's token quantity scaled to our copy size.

        Returns None (skip) when we hold none of the token.
        """
        held = await self.executor.token_balance(trade.token)
        if held <= 0:
            logger.info("skip_copy", reason="no_position", token=trade.readable_symbol)
            return None

        quantity = trade.token_amount * amount / trade.native_amount if trade.native_amount > 0 else held
        quantity = min(quantity, held)

        return await self.executor.execute_sell(trade.token, quantity, user.slippage)

    def _format_stats(self) -> Dict:
        """Format stats for logging."""
        return {
            "detected": self.stats.total_detected,
            "copied": self.stats.total_copied,
            "skipped": self.stats.total_skipped,
            "failed": self.stats.total_failed,
            "xrp_spent": f"{self.stats.total_xrp_spent:.4f}",
            "xrp_received": f"{self.stats.total_xrp_received:.4f}"
        }
