"""
Transaction Parser - Classifies settled ledger transactions as trades.
Infers buys/sells against AMM pools and the order book from the
transaction's affected ledger nodes.
"""

from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import structlog

from .config import SUCCESS_RESULT
from .currency import TokenIdentity, parse_amount, to_readable

logger = structlog.get_logger(__name__)

# Deltas at or below this are treated as noise
AMOUNT_EPSILON = 0.000001

# Dedup capacity for classified transaction hashes
RECENT_HASHES_CAPACITY = 1000


class TradeDirection(Enum):
    BUY = "buy"      # XRP → Token
    SELL = "sell"    # Token → XRP


class Mechanism(Enum):
    AMM = "amm"
    ORDERBOOK = "orderbook"


@dataclass
class TradeEvent:
    """A buy or sell inferred from one settled transaction."""
    direction: TradeDirection
    token: TokenIdentity
    readable_symbol: str
    native_amount: float      # XRP
    token_amount: float
    mechanism: Mechanism
    tx_hash: str
    account: str
    close_time: Optional[int] = None  # Seconds since the ledger epoch

    @property
    def is_buy(self) -> bool:
        return self.direction == TradeDirection.BUY

    @property
    def is_sell(self) -> bool:
        return self.direction == TradeDirection.SELL


class RecentHashes:
    """
    Bounded insertion-ordered set of transaction hashes.

    When the set grows past capacity the oldest half is evicted.
    """

    def __init__(self, capacity: int = RECENT_HASHES_CAPACITY):
        self.capacity = capacity
        self._hashes: "OrderedDict[str, None]" = OrderedDict()

    def __contains__(self, tx_hash: object) -> bool:
        return tx_hash in self._hashes

    def __len__(self) -> int:
        return len(self._hashes)

    def add(self, tx_hash: str) -> None:
        self._hashes[tx_hash] = None
        if len(self._hashes) > self.capacity:
            for _ in range(self.capacity // 2):
                self._hashes.popitem(last=False)


@dataclass
class _Leg:
    """Native and token movement found in the affected nodes."""
    direction: TradeDirection
    token: TokenIdentity
    native_amount: float
    token_amount: float


class TradeClassifier:
    """
    Classifies settled transactions of a monitored account into TradeEvents.

    The hash cache is passed in so that independent sessions only share
    dedup state when the caller wants them to.
    """

    def __init__(self, seen: Optional[RecentHashes] = None, epsilon: float = AMOUNT_EPSILON):
        self.seen = seen if seen is not None else RecentHashes()
        self.epsilon = epsilon

    def classify_trade(
        self,
        tx: Dict[str, Any],
        meta: Dict[str, Any],
        monitored_address: str,
        tx_hash: Optional[str] = None
    ) -> Optional[TradeEvent]:
        """
        Classify one settled transaction.

        Args:
            tx: Top-level transaction fields
            meta: Transaction metadata with AffectedNodes
            monitored_address: Account whose trades we are looking for
            tx_hash: Hash if it is not carried inside tx

        Returns:
            TradeEvent if the transaction is a trade by the monitored
            account, None otherwise
        """
        try:
            if not tx or not meta:
                return None

            if tx.get("Account") != monitored_address:
                return None

            if meta.get("TransactionResult") != SUCCESS_RESULT:
                logger.debug("tx_not_successful", account=monitored_address[:8])
                return None

            tx_hash = tx_hash or tx.get("hash")
            if not tx_hash or tx_hash in self.seen:
                return None

            nodes = meta.get("AffectedNodes") or []

            leg = None
            mechanism = Mechanism.AMM
            if tx.get("TransactionType") == "Payment":
                # AMM wins when a payment also touched offers
                leg = self._parse_amm(nodes)

            if leg is None:
                leg = self._parse_offers(nodes)
                mechanism = Mechanism.ORDERBOOK

            if leg is None:
                return None

            self.seen.add(tx_hash)

            event = TradeEvent(
                direction=leg.direction,
                token=leg.token,
                readable_symbol=to_readable(leg.token.currency),
                native_amount=leg.native_amount,
                token_amount=leg.token_amount,
                mechanism=mechanism,
                tx_hash=tx_hash,
                account=monitored_address,
                close_time=tx.get("date")
            )

            logger.debug(
                "trade_classified",
                hash=tx_hash[:16],
                direction=event.direction.value,
                token=event.readable_symbol,
                xrp=f"{event.native_amount:.6f}",
                mechanism=mechanism.value
            )
            return event

        except Exception as e:
            logger.warning("parse_error", error=str(e))
            return None

    def _parse_amm(self, nodes: List[Dict[str, Any]]) -> Optional[_Leg]:
        """Find an AMM node whose native and token balances both moved."""
        for node in nodes:
            modified = node.get("ModifiedNode")
            if not modified or modified.get("LedgerEntryType") != "AMM":
                continue

            prev_fields = modified.get("PreviousFields") or {}
            final_fields = modified.get("FinalFields") or {}

            native_delta = None
            token_delta = None
            token = None

            for key in ("Amount", "Amount2", "amount", "amount2"):
                if key not in prev_fields or key not in final_fields:
                    continue

                prev_value, prev_token = parse_amount(prev_fields[key])
                final_value, final_token = parse_amount(final_fields[key])
                if prev_value is None or final_value is None:
                    continue

                if final_token is None and prev_token is None:
                    native_delta = final_value - prev_value
                elif final_token is not None:
                    token_delta = final_value - prev_value
                    token = final_token

            if native_delta is None or token_delta is None or token is None:
                continue

            if abs(native_delta) <= self.epsilon or abs(token_delta) <= self.epsilon:
                continue

            # Pool XRP going down is a buy, up is a sell
            direction = TradeDirection.BUY if native_delta < 0 else TradeDirection.SELL

            return _Leg(
                direction=direction,
                token=token,
                native_amount=abs(native_delta),
                token_amount=abs(token_delta)
            )

        return None

    def _parse_offers(self, nodes: List[Dict[str, Any]]) -> Optional[_Leg]:
        """Sum the offers consumed by this transaction."""
        total_native = 0.0
        total_tokens = 0.0
        token = None
        direction = None

        for node in nodes:
            consumed = None

            deleted = node.get("DeletedNode")
            if deleted and deleted.get("LedgerEntryType") == "Offer":
                offer = deleted.get("FinalFields") or deleted.get("PreviousFields")
                if offer:
                    consumed = self._analyze_removed_offer(offer)

            modified = node.get("ModifiedNode")
            if modified and modified.get("LedgerEntryType") == "Offer":
                prev_fields = modified.get("PreviousFields")
                final_fields = modified.get("FinalFields")
                if prev_fields and final_fields:
                    consumed = self._analyze_partial_fill(prev_fields, final_fields)

            if consumed is None:
                continue

            offer_direction, offer_token, native, tokens = consumed
            if token is None:
                token = offer_token
                direction = offer_direction
            elif offer_token != token or offer_direction != direction:
                # Other legs of a bridged path
                continue

            total_native += native
            total_tokens += tokens

        if token is None or direction is None:
            return None

        if total_native <= self.epsilon or total_tokens <= self.epsilon:
            return None

        return _Leg(
            direction=direction,
            token=token,
            native_amount=total_native,
            token_amount=total_tokens
        )

    def _analyze_removed_offer(
        self,
        offer: Dict[str, Any]
    ) -> Optional[Tuple[TradeDirection, TokenIdentity, float, float]]:
        """Read a removed offer's terminal amounts."""
        gets_value, gets_token = parse_amount(offer.get("TakerGets"))
        pays_value, pays_token = parse_amount(offer.get("TakerPays"))
        if gets_value is None or pays_value is None:
            return None

        if gets_token is None and pays_token is not None:
            return TradeDirection.SELL, pays_token, gets_value, pays_value

        if pays_token is None and gets_token is not None:
            return TradeDirection.BUY, gets_token, pays_value, gets_value

        return None

    def _analyze_partial_fill(
        self,
        prev_fields: Dict[str, Any],
        final_fields: Dict[str, Any]
    ) -> Optional[Tuple[TradeDirection, TokenIdentity, float, float]]:
        """Difference a partially filled offer's before/after amounts."""
        prev = self._analyze_removed_offer(prev_fields)
        final = self._analyze_removed_offer(final_fields)
        if prev is None or final is None:
            return None

        direction, token, prev_native, prev_tokens = prev
        final_direction, final_token, final_native, final_tokens = final
        if final_direction != direction or final_token != token:
            return None

        native = prev_native - final_native
        tokens = prev_tokens - final_tokens
        if native <= 0 or tokens <= 0:
            return None

        return direction, token, native, tokens
