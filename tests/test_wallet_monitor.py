"""
Unit tests for trader history polling.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from ammsniper.config import RIPPLE_EPOCH_OFFSET
from ammsniper.rpc import LedgerRPCError
from ammsniper.tx_parser import TradeClassifier
from ammsniper.wallet_monitor import WalletMonitor, ledger_time

from conftest import TRADER, amm_node, success_meta

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def ledger_date(moment):
    return int(moment.timestamp()) - RIPPLE_EPOCH_OFFSET


def entry(tx_hash, seconds_ago, result="tesSUCCESS"):
    meta = success_meta(amm_node(1000, 990, 50000, 49500))
    meta["TransactionResult"] = result
    tx = {
        "TransactionType": "Payment",
        "Account": TRADER,
        "date": ledger_date(NOW - timedelta(seconds=seconds_ago))
    }
    return {"tx_json": tx, "meta": meta, "hash": tx_hash}


class TestLedgerTime:
    """Ledger epoch conversion."""

    def test_epoch_offset(self):
        assert ledger_time({"date": 0}) == datetime(2000, 1, 1, tzinfo=timezone.utc)

    def test_missing_date(self):
        assert ledger_time({}) is None


@pytest.mark.asyncio
class TestCheckTraderTransactions:
    """Filtering of a trader's recent history."""

    async def test_only_fresh_successful_trades(self, rpc):
        rpc.account_transactions = AsyncMock(return_value=([
            entry("FRESH", seconds_ago=10),
            entry("STALE", seconds_ago=120),
            entry("FAILED", seconds_ago=5, result="tecPATH_DRY"),
            {"tx_json": {"Account": TRADER}, "meta": {}},
        ], None))
        monitor = WalletMonitor(rpc, TradeClassifier(), max_transactions=20)

        trades = await monitor.check_trader_transactions(TRADER, now=NOW)

        assert [t.tx_hash for t in trades] == ["FRESH"]
        rpc.account_transactions.assert_awaited_once_with(TRADER, limit=20, forward=False)

    async def test_trades_before_start_watermark_skipped(self, rpc):
        rpc.account_transactions = AsyncMock(return_value=([
            entry("AFTER", seconds_ago=10),
            entry("BEFORE", seconds_ago=45),
        ], None))
        monitor = WalletMonitor(rpc, TradeClassifier())

        trades = await monitor.check_trader_transactions(
            TRADER, start_time=NOW - timedelta(seconds=30), now=NOW
        )

        assert [t.tx_hash for t in trades] == ["AFTER"]

    async def test_seen_hashes_not_reported_twice(self, rpc):
        rpc.account_transactions = AsyncMock(return_value=([entry("ONCE", seconds_ago=10)], None))
        monitor = WalletMonitor(rpc, TradeClassifier())

        first = await monitor.check_trader_transactions(TRADER, now=NOW)
        second = await monitor.check_trader_transactions(TRADER, now=NOW)

        assert len(first) == 1
        assert second == []

    async def test_transport_failure(self, rpc):
        rpc.account_transactions = AsyncMock(side_effect=LedgerRPCError("timeout"))
        monitor = WalletMonitor(rpc, TradeClassifier())

        assert await monitor.check_trader_transactions(TRADER, now=NOW) == []
