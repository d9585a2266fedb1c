"""
Unit tests for new pool discovery.
"""

from unittest.mock import AsyncMock

import pytest

from ammsniper.pool_discovery import SCAN_DEPTH, discover_new_pools, extract_pool_from_create
from ammsniper.rpc import LedgerClose, LedgerRPCError

from conftest import ISSUER, SOLO_HEX, token_amount


def amm_create(tx_hash="C1", amount="250000000", amount2=None, creator="rCreator"):
    tx = {"TransactionType": "AMMCreate", "Account": creator, "hash": tx_hash, "Amount": amount}
    tx["Amount2"] = amount2 if amount2 is not None else token_amount(1000000)
    return tx


class TestExtractPool:
    """Reading AMMCreate transactions."""

    def test_native_side_is_initial_liquidity(self):
        pool = extract_pool_from_create(amm_create())

        assert pool.initial_liquidity == 250.0
        assert pool.token.currency == SOLO_HEX
        assert pool.token.issuer == ISSUER
        assert pool.readable_symbol == "SOLO"
        assert pool.creator == "rCreator"

    def test_sides_may_be_swapped(self):
        tx = amm_create()
        tx["Amount"], tx["Amount2"] = tx["Amount2"], tx["Amount"]

        pool = extract_pool_from_create(tx)

        assert pool.initial_liquidity == 250.0
        assert pool.token.currency == SOLO_HEX

    def test_missing_native_side_gives_null_liquidity(self):
        tx = amm_create()
        del tx["Amount"]

        pool = extract_pool_from_create(tx)

        assert pool is not None
        assert pool.initial_liquidity is None

    def test_token_token_pool_skipped(self):
        tx = amm_create(amount=token_amount(5, None))

        assert extract_pool_from_create(tx) is None


@pytest.mark.asyncio
class TestDiscoverNewPools:
    """Scanning recent ledgers."""

    async def test_only_successful_creates_returned(self, rpc):
        ok = {"TransactionResult": "tesSUCCESS"}
        failed = {"TransactionResult": "tecDUPLICATE"}
        rpc.validated_ledgers = AsyncMock(return_value=[
            LedgerClose(ledger_index=101, transactions=[
                (amm_create("C1"), ok),
                (amm_create("C2"), failed),
                ({"TransactionType": "Payment", "hash": "P1"}, ok),
            ]),
            LedgerClose(ledger_index=100, transactions=[(amm_create("C3"), ok)]),
        ])

        pools = await discover_new_pools(rpc)

        assert [p.tx_hash for p in pools] == ["C1", "C3"]
        rpc.validated_ledgers.assert_awaited_once_with(SCAN_DEPTH)

    async def test_transport_failure_gives_empty_list(self, rpc):
        rpc.validated_ledgers = AsyncMock(side_effect=LedgerRPCError("down"))

        assert await discover_new_pools(rpc) == []
