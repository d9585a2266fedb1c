"""
AMM Sniper - Buy tokens from freshly created AMM pools that pass the evaluator.

Each cycle scans the latest validated ledgers for AMMCreate transactions,
runs every unseen pool through the snipe gates and buys the ones that pass.
"""

from typing import List, Optional, Tuple

import structlog

from .copy_policy import is_tradeable_amount
from .evaluator import evaluate_snipe_candidate
from .executor import SwapExecutor, SwapOutcome
from .pool_discovery import DiscoveredPool, discover_new_pools
from .rpc import LedgerRPCError
from .session import PollingSession
from .storage import UserState, UserStore, utc_now
from .tx_parser import RecentHashes

logger = structlog.get_logger(__name__)


class SniperSession(PollingSession):
    """
    Watches for new pools and snipes them for one user.
    """

    name = "sniper"

    def __init__(
        self,
        user_id: str,
        store: UserStore,
        rpc,
        executor: SwapExecutor,
        interval_seconds: float = 8.0,
        min_liquidity: float = 100.0,
        max_snipe_amount: float = 5000.0,
        max_tokens_per_scan: int = 15,
        fee_reserve_xrp: float = 0.5
    ):
        super().__init__(user_id, interval_seconds)
        self.store = store
        self.rpc = rpc
        self.executor = executor
        self.min_liquidity = min_liquidity
        self.max_snipe_amount = max_snipe_amount
        self.max_tokens_per_scan = max_tokens_per_scan
        self.fee_reserve_xrp = fee_reserve_xrp

        # AMMCreate hashes already evaluated; consecutive scans overlap
        self.evaluated = RecentHashes()

    def validate_settings(self, user: UserState) -> Optional[str]:
        """Error message if the user's sniper settings are unusable."""
        if not user.auto_buy and not user.allow_list:
            return "Whitelist mode requires at least one whitelisted token"
        if not is_tradeable_amount(user.snipe_amount):
            return f"Invalid snipe amount: {user.snipe_amount}"
        if user.snipe_amount > self.max_snipe_amount:
            return f"Snipe amount {user.snipe_amount} XRP exceeds maximum of {self.max_snipe_amount} XRP"
        return None

    async def start(self) -> Tuple[bool, Optional[str]]:
        """Start sniping. Returns (started, error message)."""
        if self.running:
            return False, "Sniper already running"

        user = self.store.load(self.user_id)
        if user is None:
            return False, "User not found"

        error = self.validate_settings(user)
        if error:
            return False, error

        user.sniper_active = True
        user.sniper_start_time = utc_now().isoformat()
        self.store.save(user)

        self._start_loop()
        logger.info(
            "sniper_configured",
            user=self.user_id,
            mode="auto" if user.auto_buy else "whitelist",
            amount=f"{user.snipe_amount} XRP",
            min_liquidity=user.min_pool_liquidity or self.min_liquidity
        )
        return True, None

    async def stop(self) -> None:
        """Stop sniping; a cycle in progress finishes first."""
        await self._stop_loop()

        user = self.store.load(self.user_id)
        if user is not None and user.sniper_active:
            user.sniper_active = False
            self.store.save(user)

    async def _cycle(self) -> None:
        user = self.store.load(self.user_id)
        if user is None or not user.sniper_active:
            logger.info("sniper_disabled", user=self.user_id)
            await self._stop_loop()
            return

        pools = self._unseen(await discover_new_pools(self.rpc))
        for pool in pools[:self.max_tokens_per_scan]:
            self.evaluated.add(pool.tx_hash)

            verdict = await evaluate_snipe_candidate(
                self.rpc, pool, user.snipe_policy(self.min_liquidity)
            )
            if not verdict.should_act:
                logger.debug("token_filtered", token=pool.readable_symbol, reasons=verdict.reasons)
                continue

            logger.info(
                "token_passed_filters",
                token=pool.readable_symbol,
                issuer=pool.token.issuer[:8],
                liquidity=pool.initial_liquidity,
                reasons=verdict.reasons
            )
            await self._snipe(user, pool)

    def _unseen(self, pools: List[DiscoveredPool]) -> List[DiscoveredPool]:
        return [p for p in pools if p.tx_hash and p.tx_hash not in self.evaluated]

    async def _snipe(self, user: UserState, pool: DiscoveredPool) -> Optional[SwapOutcome]:
        """Buy the pool's token with the user's snipe amount."""
        amount = user.snipe_amount
        if not is_tradeable_amount(amount):
            logger.warning("snipe_skipped", reason="invalid_amount", amount=amount)
            return None

        try:
            balance = await self.rpc.native_balance(self.executor.wallet.address)
        except LedgerRPCError as e:
            logger.warning("snipe_skipped", reason="balance_check_failed", token=pool.readable_symbol, error=str(e))
            return None

        if balance < amount + self.fee_reserve_xrp:
            logger.warning(
                "snipe_skipped",
                reason="insufficient_balance",
                token=pool.readable_symbol,
                balance=f"{balance:.6f}",
                required=f"{amount + self.fee_reserve_xrp:.6f}"
            )
            return None

        outcome = await self.executor.execute_buy(pool.token, amount, user.slippage)
        if not outcome.success:
            logger.warning("snipe_failed", token=pool.readable_symbol, error=outcome.failure_reason)
            return outcome

        user.record_purchase(pool.token, amount, outcome)
        user.record_transaction("snipe_buy", pool.token, amount, outcome)
        self.store.save(user)

        logger.info(
            "snipe_success",
            token=pool.readable_symbol,
            hash=outcome.tx_hash[:16] if outcome.tx_hash else "none",
            tokens=outcome.amount_received,
            explorer=outcome.explorer_url
        )
        return outcome
