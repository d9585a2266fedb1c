"""
Unit tests for the snipe evaluator gates.
"""

from unittest.mock import AsyncMock

import pytest

from ammsniper.evaluator import (
    SnipePolicy,
    check_liquidity_lock,
    count_pool_creations,
    evaluate_snipe_candidate,
    is_first_time_creator,
)
from ammsniper.pool_discovery import DiscoveredPool
from ammsniper.rpc import LedgerRPCError

from conftest import ISSUER, LP_CURRENCY, SOLO_HEX


def history(*types, account="rCreator", result="tesSUCCESS"):
    """account_tx page holding transactions of the given types."""
    return [
        {"tx_json": {"TransactionType": t, "Account": account}, "meta": {"TransactionResult": result}, "hash": f"T{i}"}
        for i, t in enumerate(types)
    ]


def discovered(token, liquidity=250.0, creator="rCreator"):
    return DiscoveredPool(
        token=token,
        readable_symbol="SOLO",
        initial_liquidity=liquidity,
        token_amount="1000000",
        tx_hash="C1",
        creator=creator
    )


@pytest.fixture
def first_time_rpc(rpc, pool):
    """Creator made exactly one pool; LP tokens burned."""
    rpc.account_transactions = AsyncMock(return_value=(history("Payment", "AMMCreate"), None))
    rpc.pool_info = AsyncMock(return_value=pool)
    rpc.account_lines = AsyncMock(return_value=[])
    return rpc


@pytest.mark.asyncio
class TestEvaluateSnipeCandidate:
    """Gate order and reasons."""

    async def test_all_gates_pass(self, first_time_rpc, token):
        verdict = await evaluate_snipe_candidate(first_time_rpc, discovered(token), SnipePolicy(auto_buy=True))

        assert verdict.should_act
        assert verdict.reasons == [
            "Liquidity check passed: 250.0 XRP",
            "First-time creator check passed",
            "LP burn check passed",
        ]

    async def test_null_liquidity_accepted(self, first_time_rpc, token):
        verdict = await evaluate_snipe_candidate(
            first_time_rpc, discovered(token, liquidity=None), SnipePolicy(auto_buy=True)
        )

        assert verdict.should_act
        assert verdict.reasons[0] == "Null initial liquidity accepted"

    async def test_insufficient_liquidity(self, first_time_rpc, token):
        verdict = await evaluate_snipe_candidate(
            first_time_rpc, discovered(token, liquidity=50.0), SnipePolicy(auto_buy=True, min_liquidity=100.0)
        )

        assert not verdict.should_act
        assert verdict.reasons == ["Insufficient liquidity: 50.0 XRP < 100.0 XRP"]
        first_time_rpc.account_transactions.assert_not_called()

    async def test_allow_list_rejection_short_circuits(self, first_time_rpc, token):
        """Allow-list mode rejects before any ledger query."""
        policy = SnipePolicy(auto_buy=False, allow_list=[{"currency": "USD", "issuer": ISSUER}])

        verdict = await evaluate_snipe_candidate(first_time_rpc, discovered(token), policy)

        assert not verdict.should_act
        assert verdict.reasons == ["Token not in whitelist"]
        first_time_rpc.account_transactions.assert_not_called()
        first_time_rpc.pool_info.assert_not_called()

    async def test_allow_listed_token_skips_liquidity_gate(self, first_time_rpc, token):
        policy = SnipePolicy(auto_buy=False, allow_list=[{"currency": SOLO_HEX, "issuer": ISSUER}])

        verdict = await evaluate_snipe_candidate(first_time_rpc, discovered(token, liquidity=1.0), policy)

        assert verdict.should_act
        assert verdict.reasons == ["First-time creator check passed", "LP burn check passed"]

    async def test_blacklisted(self, first_time_rpc, token):
        policy = SnipePolicy(auto_buy=True, block_list=[{"currency": SOLO_HEX, "issuer": ISSUER}])

        verdict = await evaluate_snipe_candidate(first_time_rpc, discovered(token), policy)

        assert verdict.reasons == ["Token is blacklisted"]

    async def test_already_held(self, first_time_rpc, token):
        purchases = [{"currency": SOLO_HEX, "issuer": ISSUER, "status": "active"}]

        verdict = await evaluate_snipe_candidate(
            first_time_rpc, discovered(token), SnipePolicy(auto_buy=True, purchases=purchases)
        )

        assert verdict.reasons == ["Token already in active purchases"]

    async def test_sold_purchase_does_not_block(self, first_time_rpc, token):
        purchases = [{"currency": SOLO_HEX, "issuer": ISSUER, "status": "sold"}]

        verdict = await evaluate_snipe_candidate(
            first_time_rpc, discovered(token), SnipePolicy(auto_buy=True, purchases=purchases)
        )

        assert verdict.should_act

    async def test_missing_creator(self, first_time_rpc, token):
        verdict = await evaluate_snipe_candidate(
            first_time_rpc, discovered(token, creator=""), SnipePolicy(auto_buy=True)
        )

        assert verdict.reasons[-1] == "No account information"

    async def test_repeat_creator_rejected(self, rpc, token):
        rpc.account_transactions = AsyncMock(return_value=(history("AMMCreate", "Payment", "AMMCreate"), None))

        verdict = await evaluate_snipe_candidate(rpc, discovered(token), SnipePolicy(auto_buy=True))

        assert not verdict.should_act
        assert verdict.reasons[-1] == "Not a first-time AMM creator"
        rpc.pool_info.assert_not_called()

    async def test_unburned_lp_rejected(self, first_time_rpc, token):
        first_time_rpc.account_lines = AsyncMock(return_value=[
            {"account": "rHolder", "currency": LP_CURRENCY, "balance": "-1000"}
        ])

        verdict = await evaluate_snipe_candidate(first_time_rpc, discovered(token), SnipePolicy(auto_buy=True))

        assert not verdict.should_act
        assert verdict.reasons[-1] == "LP tokens not burned yet (LP Balance: 1000.0)"


@pytest.mark.asyncio
class TestCreatorHistory:
    """Full-history AMMCreate counting."""

    async def test_pages_until_marker_exhausted(self, rpc):
        rpc.account_transactions = AsyncMock(side_effect=[
            (history("Payment", "AMMCreate"), {"ledger": 5, "seq": 1}),
            (history("TrustSet"), None),
        ])

        assert await count_pool_creations(rpc, "rCreator") == 1
        assert rpc.account_transactions.await_count == 2
        second_call = rpc.account_transactions.await_args_list[1]
        assert second_call.kwargs["marker"] == {"ledger": 5, "seq": 1}
        assert second_call.kwargs["forward"] is True

    async def test_stops_early(self, rpc):
        rpc.account_transactions = AsyncMock(side_effect=[
            (history("AMMCreate", "AMMCreate"), {"ledger": 5}),
            (history("AMMCreate"), None),
        ])

        assert await count_pool_creations(rpc, "rCreator", stop_after=2) == 2
        assert rpc.account_transactions.await_count == 1

    async def test_only_own_successful_creations_counted(self, rpc):
        page = (
            history("AMMCreate")
            + history("AMMCreate", account="rSomeoneElse")
            + history("AMMCreate", result="tecDUPLICATE")
        )
        rpc.account_transactions = AsyncMock(return_value=(page, None))

        assert await count_pool_creations(rpc, "rCreator") == 1
        assert await is_first_time_creator(rpc, "rCreator") is True

    async def test_history_error_is_not_first_time(self, rpc):
        rpc.account_transactions = AsyncMock(side_effect=LedgerRPCError("boom"))

        assert await is_first_time_creator(rpc, "rCreator") is False


@pytest.mark.asyncio
class TestLiquidityLock:
    """LP token balance at the pool."""

    async def test_small_balance_counts_as_locked(self, rpc, pool, token):
        rpc.pool_info = AsyncMock(return_value=pool)
        rpc.account_lines = AsyncMock(return_value=[{"currency": LP_CURRENCY, "balance": "0.5"}])

        status = await check_liquidity_lock(rpc, token)

        assert status.locked
        assert status.lp_balance == 0.5

    async def test_missing_pool_not_locked(self, rpc, token):
        status = await check_liquidity_lock(rpc, token)

        assert not status.locked
        assert status.error == "AMM pool not found"
