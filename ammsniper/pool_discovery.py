"""
Pool Discovery - Finds AMM pools created in the most recent ledgers.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import structlog

from .config import SUCCESS_RESULT
from .currency import TokenIdentity, drops_to_xrp, to_readable
from .rpc import LedgerRPCError

logger = structlog.get_logger(__name__)

# Latest validated ledger plus the three before it
SCAN_DEPTH = 3


@dataclass
class DiscoveredPool:
    """A freshly created XRP/token pool."""
    token: TokenIdentity
    readable_symbol: str
    initial_liquidity: Optional[float]  # XRP, None when the create omits it
    token_amount: Optional[str]
    tx_hash: str
    creator: str


def extract_pool_from_create(tx: Dict[str, Any]) -> Optional[DiscoveredPool]:
    """
    Read the token and initial XRP liquidity from an AMMCreate transaction.

    The drops side becomes the initial liquidity; the issued-currency side
    is the new token. Returns None when there is no issued side or when
    neither side is a drops amount.
    """
    amount = tx.get("Amount")
    amount2 = tx.get("Amount2")

    if isinstance(amount, dict):
        token_side, native_side = amount, amount2
    elif isinstance(amount2, dict):
        token_side, native_side = amount2, amount
    else:
        return None

    if isinstance(native_side, dict):
        # Token/token pool, nothing to snipe with XRP
        return None

    currency = token_side.get("currency")
    issuer = token_side.get("issuer")
    if not currency or not issuer:
        return None

    initial_liquidity = None
    if isinstance(native_side, str):
        try:
            initial_liquidity = drops_to_xrp(native_side)
        except ValueError:
            initial_liquidity = None

    return DiscoveredPool(
        token=TokenIdentity(currency, issuer),
        readable_symbol=to_readable(currency),
        initial_liquidity=initial_liquidity,
        token_amount=token_side.get("value"),
        tx_hash=tx.get("hash", ""),
        creator=tx.get("Account", "")
    )


async def discover_new_pools(rpc) -> List[DiscoveredPool]:
    """
    Scan the latest validated ledger and the ones before it for
    successful AMMCreate transactions.

    Pools seen by overlapping scans are returned again; callers filter.
    """
    try:
        ledgers = await rpc.validated_ledgers(SCAN_DEPTH)
    except LedgerRPCError as e:
        logger.error("pool_discovery_failed", error=str(e))
        return []

    pools: List[DiscoveredPool] = []
    for ledger in ledgers:
        for tx, meta in ledger.transactions:
            if tx.get("TransactionType") != "AMMCreate":
                continue
            if meta.get("TransactionResult") != SUCCESS_RESULT:
                continue

            pool = extract_pool_from_create(tx)
            if pool is None:
                logger.debug("amm_create_skipped", hash=tx.get("hash", "")[:16])
                continue

            logger.info(
                "pool_discovered",
                token=pool.readable_symbol,
                issuer=pool.token.issuer[:8],
                liquidity=pool.initial_liquidity,
                ledger=ledger.ledger_index
            )
            pools.append(pool)

    return pools
