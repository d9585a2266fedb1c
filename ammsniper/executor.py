"""
Swap executor for the sniper and copy trader.
Builds slippage-bounded AMM swaps as self-payments and reconciles the
settled result against the pre-trade quote.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Dict, Any

import structlog

from .config import DROPS_PER_XRP, TF_PARTIAL_PAYMENT
from .currency import TokenIdentity, xrp_to_drops
from .rpc import LedgerRPCError, SubmitResult
from .tx_parser import TradeDirection

logger = structlog.get_logger(__name__)

DEFAULT_SLIPPAGE = 4.0
DEFAULT_TRUST_LINE_LIMIT = 100000.0


class SwapFailure(Enum):
    TRUST_LINE = "trust_line"                      # Could not establish trust line
    POOL_NOT_FOUND = "pool_not_found"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    MISSING_TRUST_LINE = "missing_trust_line"      # Selling a token we never trusted
    INVALID_AMOUNT = "invalid_amount"
    SETTLEMENT = "settlement"                      # Ledger processed it, result not tesSUCCESS
    TRANSPORT = "transport"
    UNKNOWN = "unknown"


@dataclass
class SwapOutcome:
    """
    Result of a swap. Derived figures are only set on success, and stay
    unset when a settled swap could not be reconciled (failure_reason says why).
    """
    success: bool
    direction: TradeDirection
    token: TokenIdentity
    tx_hash: Optional[str] = None
    amount_sent: Optional[float] = None
    amount_received: Optional[float] = None
    effective_rate: Optional[float] = None
    quoted_rate: Optional[float] = None
    expected_amount: Optional[float] = None
    minimum_amount: Optional[float] = None
    realized_slippage_percent: Optional[float] = None
    slippage_used: Optional[float] = None
    failure: Optional[SwapFailure] = None
    failure_reason: Optional[str] = None
    result_code: Optional[str] = None

    @property
    def explorer_url(self) -> Optional[str]:
        """Get the ledger explorer URL for the transaction."""
        if not self.tx_hash:
            return None
        return f"https://livenet.xrpl.org/transactions/{self.tx_hash}"


def realized_slippage(actual_rate: float, quoted_rate: float) -> float:
    """Percent shortfall of the realized rate against the quote, 2 decimals."""
    return round((1 - actual_rate / quoted_rate) * 100, 2)


class SwapExecutor:
    """Executes XRP/token swaps against AMM pools."""

    def __init__(
        self,
        rpc,
        wallet,
        trust_line_limit: float = DEFAULT_TRUST_LINE_LIMIT,
        default_slippage: float = DEFAULT_SLIPPAGE
    ):
        self.rpc = rpc
        self.wallet = wallet
        self.trust_line_limit = trust_line_limit
        self.default_slippage = default_slippage

    def _fail(
        self,
        direction: TradeDirection,
        token: TokenIdentity,
        failure: SwapFailure,
        reason: str,
        result: Optional[SubmitResult] = None
    ) -> SwapOutcome:
        logger.warning(
            "swap_failed",
            direction=direction.value,
            token=token.short,
            failure=failure.value,
            reason=reason
        )
        return SwapOutcome(
            success=False,
            direction=direction,
            token=token,
            tx_hash=result.tx_hash if result else None,
            failure=failure,
            failure_reason=reason,
            result_code=result.result_code if result else None
        )

    def _unreconciled(
        self,
        direction: TradeDirection,
        token: TokenIdentity,
        result: SubmitResult,
        error: Exception,
        **quote: Any
    ) -> SwapOutcome:
        """Settled swap whose balances could not be read back afterwards."""
        reason = f"Reconciliation failed: {error}"
        logger.warning(
            "swap_unreconciled",
            direction=direction.value,
            token=token.short,
            hash=result.tx_hash,
            error=str(error)
        )
        return SwapOutcome(
            success=True,
            direction=direction,
            token=token,
            tx_hash=result.tx_hash,
            failure_reason=reason,
            result_code=result.result_code,
            **quote
        )

    async def get_trust_line(self, token: TokenIdentity) -> Optional[Dict[str, Any]]:
        """Our trust line for the token, if any."""
        lines = await self.rpc.account_lines(self.wallet.address)
        for line in lines:
            if line.get("currency") == token.currency and line.get("account") == token.issuer:
                return line
        return None

    async def token_balance(self, token: TokenIdentity) -> float:
        """Our balance of the token, 0 without a trust line."""
        line = await self.get_trust_line(token)
        return float(line.get("balance", "0")) if line else 0.0

    async def _establish_trust_line(self, token: TokenIdentity) -> SubmitResult:
        """Submit a TrustSet to the configured limit and wait for it."""
        trust_set = {
            "TransactionType": "TrustSet",
            "Account": self.wallet.address,
            "LimitAmount": token.as_amount(str(int(self.trust_line_limit)))
        }
        logger.info("creating_trust_line", token=token.short, limit=self.trust_line_limit)
        return await self.rpc.submit_and_wait(trust_set, self.wallet)

    async def execute_buy(
        self,
        token: TokenIdentity,
        xrp_amount: float,
        slippage: Optional[float] = None
    ) -> SwapOutcome:
        """
        Buy a token with exactly xrp_amount XRP or fail atomically.

        Args:
            token: Token to buy
            xrp_amount: XRP to spend
            slippage: Tolerance in percent (defaults to the executor's)

        Returns:
            SwapOutcome; failures are returned, never raised
        """
        direction = TradeDirection.BUY
        slippage = self.default_slippage if slippage is None else slippage

        if not math.isfinite(xrp_amount) or xrp_amount <= 0:
            return self._fail(direction, token, SwapFailure.INVALID_AMOUNT, f"Invalid XRP amount: {xrp_amount}")

        try:
            line = await self.get_trust_line(token)
            balance_before = float(line.get("balance", "0")) if line else 0.0

            if line is None or float(line.get("limit", "0")) < self.trust_line_limit:
                trust_result = await self._establish_trust_line(token)
                if not trust_result.success:
                    return self._fail(
                        direction, token, SwapFailure.TRUST_LINE,
                        f"Failed to create trust line: {trust_result.result_code}",
                        trust_result
                    )

            pool = await self.rpc.pool_info(token)
            if pool is None:
                return self._fail(direction, token, SwapFailure.POOL_NOT_FOUND, "AMM pool not found for this token pair")

            quoted_rate = pool.tokens_per_xrp
            expected_tokens = xrp_amount * quoted_rate
            min_tokens = expected_tokens * (100 - slippage) / 100

            payment = {
                "TransactionType": "Payment",
                "Account": self.wallet.address,
                "Destination": self.wallet.address,
                "Amount": token.as_amount(expected_tokens),
                "DeliverMin": token.as_amount(min_tokens),
                "SendMax": xrp_to_drops(xrp_amount),
                "Flags": TF_PARTIAL_PAYMENT
            }

            logger.info(
                "executing_buy",
                token=token.short,
                xrp=xrp_amount,
                rate=f"{quoted_rate:.8f}",
                expected=f"{expected_tokens:.6f}",
                min_tokens=f"{min_tokens:.6f}",
                slippage=slippage
            )

            result = await self.rpc.submit_and_wait(payment, self.wallet)
            if not result.success:
                return self._fail(
                    direction, token, SwapFailure.SETTLEMENT,
                    f"Transaction failed: {result.result_code}",
                    result
                )

            # Only read balances once the payment is validated
            try:
                balance_after = await self.token_balance(token)
            except Exception as e:
                return self._unreconciled(
                    direction, token, result, e,
                    amount_sent=xrp_amount,
                    quoted_rate=quoted_rate,
                    expected_amount=expected_tokens,
                    minimum_amount=min_tokens,
                    slippage_used=slippage
                )
            tokens_received = balance_after - balance_before
            actual_rate = tokens_received / xrp_amount if tokens_received > 0 else 0.0

            outcome = SwapOutcome(
                success=True,
                direction=direction,
                token=token,
                tx_hash=result.tx_hash,
                amount_sent=xrp_amount,
                amount_received=tokens_received,
                effective_rate=actual_rate,
                quoted_rate=quoted_rate,
                expected_amount=expected_tokens,
                minimum_amount=min_tokens,
                realized_slippage_percent=realized_slippage(actual_rate, quoted_rate),
                slippage_used=slippage,
                result_code=result.result_code
            )

            logger.info(
                "buy_executed",
                token=token.short,
                hash=result.tx_hash,
                tokens=f"{tokens_received:.6f}",
                rate=f"{actual_rate:.8f}",
                slippage=f"{outcome.realized_slippage_percent:.2f}%"
            )
            return outcome

        except LedgerRPCError as e:
            return self._fail(direction, token, SwapFailure.TRANSPORT, str(e))
        except Exception as e:
            logger.error("buy_execution_error", token=token.short, error=str(e))
            return self._fail(direction, token, SwapFailure.UNKNOWN, str(e) or "Unknown error")

    async def execute_sell(
        self,
        token: TokenIdentity,
        token_amount: float,
        slippage: Optional[float] = None
    ) -> SwapOutcome:
        """
        Sell token_amount tokens for at least the slippage-bounded XRP.

        The XRP received is measured from our XRP balance before and after
        settlement, with the transaction fee added back.
        """
        direction = TradeDirection.SELL
        slippage = self.default_slippage if slippage is None else slippage

        if not math.isfinite(token_amount) or token_amount <= 0:
            return self._fail(direction, token, SwapFailure.INVALID_AMOUNT, f"Invalid token amount: {token_amount}")

        try:
            line = await self.get_trust_line(token)
            if line is None:
                return self._fail(
                    direction, token, SwapFailure.MISSING_TRUST_LINE,
                    f"No trust line found for {token.readable}. Cannot sell tokens you don't have."
                )

            balance_before = float(line.get("balance", "0"))
            if balance_before < token_amount:
                return self._fail(
                    direction, token, SwapFailure.INSUFFICIENT_BALANCE,
                    f"Insufficient token balance. You have {balance_before} {token.readable} "
                    f"but trying to sell {token_amount}"
                )

            pool = await self.rpc.pool_info(token)
            if pool is None:
                return self._fail(
                    direction, token, SwapFailure.POOL_NOT_FOUND,
                    f"No AMM pool found for {token.readable}. Cannot sell via AMM."
                )

            quoted_rate = pool.xrp_per_token
            expected_xrp = token_amount * quoted_rate
            min_xrp = expected_xrp * (100 - slippage) / 100

            min_drops = xrp_to_drops(min_xrp)
            if int(min_drops) <= 0:
                return self._fail(direction, token, SwapFailure.INVALID_AMOUNT, "Sell amount worth less than one drop")

            xrp_before = await self.rpc.native_balance(self.wallet.address)

            payment = {
                "TransactionType": "Payment",
                "Account": self.wallet.address,
                "Destination": self.wallet.address,
                "Amount": xrp_to_drops(expected_xrp),
                "DeliverMin": min_drops,
                "SendMax": token.as_amount(token_amount),
                "Flags": TF_PARTIAL_PAYMENT
            }

            logger.info(
                "executing_sell",
                token=token.short,
                tokens=token_amount,
                rate=f"{quoted_rate:.8f}",
                expected_xrp=f"{expected_xrp:.6f}",
                min_xrp=f"{min_xrp:.6f}",
                slippage=slippage
            )

            result = await self.rpc.submit_and_wait(payment, self.wallet)
            if not result.success:
                return self._fail(
                    direction, token, SwapFailure.SETTLEMENT,
                    f"AMM transaction failed: {result.result_code}",
                    result
                )

            try:
                balance_after = await self.token_balance(token)
                xrp_after = await self.rpc.native_balance(self.wallet.address)
            except Exception as e:
                return self._unreconciled(
                    direction, token, result, e,
                    quoted_rate=quoted_rate,
                    expected_amount=expected_xrp,
                    minimum_amount=min_xrp,
                    slippage_used=slippage
                )

            tokens_sold = balance_before - balance_after
            xrp_received = xrp_after - xrp_before + result.fee_drops / DROPS_PER_XRP
            actual_rate = xrp_received / tokens_sold if tokens_sold > 0 else 0.0

            outcome = SwapOutcome(
                success=True,
                direction=direction,
                token=token,
                tx_hash=result.tx_hash,
                amount_sent=tokens_sold,
                amount_received=xrp_received,
                effective_rate=actual_rate,
                quoted_rate=quoted_rate,
                expected_amount=expected_xrp,
                minimum_amount=min_xrp,
                realized_slippage_percent=realized_slippage(actual_rate, quoted_rate),
                slippage_used=slippage,
                result_code=result.result_code
            )

            logger.info(
                "sell_executed",
                token=token.short,
                hash=result.tx_hash,
                tokens_sold=f"{tokens_sold:.6f}",
                xrp_received=f"{xrp_received:.6f}",
                slippage=f"{outcome.realized_slippage_percent:.2f}%"
            )
            return outcome

        except LedgerRPCError as e:
            return self._fail(direction, token, SwapFailure.TRANSPORT, str(e))
        except Exception as e:
            logger.error("sell_execution_error", token=token.short, error=str(e))
            return self._fail(direction, token, SwapFailure.UNKNOWN, str(e) or "Unknown error")


def create_executor(rpc, wallet, trust_line_limit: float, default_slippage: float) -> SwapExecutor:
    """Factory function to create a swap executor."""
    return SwapExecutor(rpc, wallet, trust_line_limit=trust_line_limit, default_slippage=default_slippage)
