"""
Wallet Monitor - Polls a trader's recent transactions and classifies trades.
"""

from datetime import datetime, timedelta, timezone
from typing import List, Optional

import structlog

from .config import RIPPLE_EPOCH_OFFSET, SUCCESS_RESULT
from .rpc import LedgerRPCError, split_transaction_entry
from .tx_parser import TradeClassifier, TradeEvent

logger = structlog.get_logger(__name__)

# Only trades this recent are worth mirroring
FRESHNESS_WINDOW = timedelta(minutes=1)


def ledger_time(tx: dict) -> Optional[datetime]:
    """Close time of a transaction from its ledger-epoch `date` field."""
    date = tx.get("date")
    if date is None:
        return None
    try:
        return datetime.fromtimestamp(int(date) + RIPPLE_EPOCH_OFFSET, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


class WalletMonitor:
    """
    Detects new trades of trader wallets.

    Dedup state lives in the classifier, which callers may share
    between sessions.
    """

    def __init__(self, rpc, classifier: TradeClassifier, max_transactions: int = 20):
        self.rpc = rpc
        self.classifier = classifier
        self.max_transactions = max_transactions

    async def check_trader_transactions(
        self,
        trader: str,
        start_time: Optional[datetime] = None,
        now: Optional[datetime] = None
    ) -> List[TradeEvent]:
        """
        Get trades the trader made since start_time and within the last minute.

        Returns an empty list if the history cannot be fetched.
        """
        try:
            entries, _ = await self.rpc.account_transactions(
                trader,
                limit=self.max_transactions,
                forward=False
            )
        except LedgerRPCError as e:
            logger.warning("trader_poll_failed", trader=trader[:8], error=str(e))
            return []

        now = now or datetime.now(timezone.utc)
        fresh_after = now - FRESHNESS_WINDOW

        trades: List[TradeEvent] = []
        for entry in entries:
            tx, meta, tx_hash = split_transaction_entry(entry)
            if not tx_hash or tx_hash in self.classifier.seen:
                continue

            if meta.get("TransactionResult") != SUCCESS_RESULT:
                continue

            tx_time = ledger_time(tx)
            if tx_time and tx_time < fresh_after:
                continue
            if start_time and tx_time and tx_time < start_time:
                continue

            event = self.classifier.classify_trade(tx, meta, trader, tx_hash=tx_hash)
            if event:
                logger.info(
                    "trade_detected",
                    trader=trader[:8] + "...",
                    type=event.direction.value,
                    token=event.readable_symbol,
                    xrp=f"{event.native_amount:.4f}",
                    mechanism=event.mechanism.value
                )
                trades.append(event)

        return trades
