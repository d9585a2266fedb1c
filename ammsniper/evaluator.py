"""
Snipe Evaluator - Policy gates a newly discovered pool must pass before we buy.

Gates run cheapest first and stop at the first rejection:
already held, block list, allow list, initial liquidity, first-time
creator (full account history scan), liquidity lock.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

import structlog

from .config import SUCCESS_RESULT
from .currency import TokenIdentity
from .pool_discovery import DiscoveredPool
from .rpc import LedgerRPCError, split_transaction_entry

logger = structlog.get_logger(__name__)

# LP balance below this at the pool account means the liquidity is locked
LP_LOCK_THRESHOLD = 1.0

CREATOR_HISTORY_PAGE_SIZE = 1000


@dataclass
class SnipePolicy:
    """Caller-supplied sniping policy for one user."""
    auto_buy: bool                   # False = allow-list only
    min_liquidity: float = 100.0     # XRP
    purchases: List[Dict[str, Any]] = field(default_factory=list)
    allow_list: List[Dict[str, Any]] = field(default_factory=list)
    block_list: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class EvaluationVerdict:
    """Whether to act, and the gate outcomes that led there."""
    should_act: bool = False
    reasons: List[str] = field(default_factory=list)

    def reject(self, reason: str) -> "EvaluationVerdict":
        self.reasons.append(reason)
        self.should_act = False
        return self


@dataclass
class LiquidityLockStatus:
    """LP token balance held at the pool's own account."""
    locked: bool
    lp_balance: Optional[float]
    amm_account: Optional[str] = None
    error: Optional[str] = None


def is_token_listed(entries: Optional[Iterable[Dict[str, Any]]], token: TokenIdentity) -> bool:
    """True if a {currency, issuer} list contains the token."""
    if not entries:
        return False
    return any(token.matches(entry) for entry in entries)


def is_already_held(purchases: Optional[Iterable[Dict[str, Any]]], token: TokenIdentity) -> bool:
    """True if an active purchase of exactly this token exists."""
    if not purchases:
        return False
    return any(token.matches(p) and p.get("status") == "active" for p in purchases)


async def count_pool_creations(rpc, address: str, stop_after: Optional[int] = None) -> int:
    """
    Count successful AMMCreate transactions the account itself submitted,
    across its full history.

    Pages through account_tx until the history is exhausted, or until
    stop_after creations have been seen.
    """
    count = 0
    marker = None

    while True:
        entries, marker = await rpc.account_transactions(
            address,
            limit=CREATOR_HISTORY_PAGE_SIZE,
            marker=marker,
            forward=True
        )

        for entry in entries:
            tx, meta, _ = split_transaction_entry(entry)
            if tx.get("TransactionType") != "AMMCreate" or tx.get("Account") != address:
                continue
            if meta.get("TransactionResult") == SUCCESS_RESULT:
                count += 1

        if stop_after is not None and count >= stop_after:
            return count

        if marker is None or not entries:
            return count


async def is_first_time_creator(rpc, address: str) -> bool:
    """True if the address has created at most one pool ever."""
    try:
        return await count_pool_creations(rpc, address, stop_after=2) <= 1
    except LedgerRPCError as e:
        logger.warning("creator_history_failed", creator=address[:8], error=str(e))
        return False


async def check_liquidity_lock(rpc, token: TokenIdentity) -> LiquidityLockStatus:
    """Check whether the pool's LP tokens sit at the pool account itself."""
    try:
        pool = await rpc.pool_info(token)
        if pool is None:
            return LiquidityLockStatus(locked=False, lp_balance=None, error="AMM pool not found")

        lp_currency = (pool.lp_token or {}).get("currency")
        lines = await rpc.account_lines(pool.amm_account)

        lp_line = None
        for line in lines:
            currency = line.get("currency", "")
            if lp_currency and currency == lp_currency:
                lp_line = line
                break
            if not lp_currency and len(currency) == 40 and line.get("account") == pool.amm_account:
                lp_line = line
                break

        if lp_line is None:
            return LiquidityLockStatus(locked=True, lp_balance=0.0, amm_account=pool.amm_account)

        lp_balance = abs(float(lp_line.get("balance", "0")))
        return LiquidityLockStatus(
            locked=lp_balance < LP_LOCK_THRESHOLD,
            lp_balance=lp_balance,
            amm_account=pool.amm_account
        )

    except (LedgerRPCError, ValueError) as e:
        logger.warning("lp_lock_check_failed", token=token.short, error=str(e))
        return LiquidityLockStatus(locked=False, lp_balance=None, error=str(e))


async def evaluate_snipe_candidate(rpc, pool: DiscoveredPool, policy: SnipePolicy) -> EvaluationVerdict:
    """
    Run the snipe gates for a discovered pool.

    Returns:
        EvaluationVerdict; reasons holds the outcome of every gate
        traversed up to the first rejection
    """
    verdict = EvaluationVerdict()
    token = pool.token

    if is_already_held(policy.purchases, token):
        return verdict.reject("Token already in active purchases")

    if is_token_listed(policy.block_list, token):
        return verdict.reject("Token is blacklisted")

    if not policy.auto_buy and not is_token_listed(policy.allow_list, token):
        return verdict.reject("Token not in whitelist")

    if policy.auto_buy:
        if pool.initial_liquidity is None:
            verdict.reasons.append("Null initial liquidity accepted")
        elif pool.initial_liquidity < policy.min_liquidity:
            return verdict.reject(
                f"Insufficient liquidity: {pool.initial_liquidity} XRP < {policy.min_liquidity} XRP"
            )
        else:
            verdict.reasons.append(f"Liquidity check passed: {pool.initial_liquidity} XRP")

    if not pool.creator:
        return verdict.reject("No account information")

    if not await is_first_time_creator(rpc, pool.creator):
        return verdict.reject("Not a first-time AMM creator")
    verdict.reasons.append("First-time creator check passed")

    lock = await check_liquidity_lock(rpc, token)
    if not lock.locked:
        balance = lock.lp_balance if lock.lp_balance is not None else (lock.error or "unknown")
        return verdict.reject(f"LP tokens not burned yet (LP Balance: {balance})")
    verdict.reasons.append("LP burn check passed")

    verdict.should_act = True
    return verdict
