"""
RPC client wrapper for the XRP Ledger.
JSON-RPC over HTTP against rippled/clio with rate limiting and backoff.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Tuple
import aiohttp
import structlog

from .config import (
    BACKOFF_BASE_SECONDS,
    BACKOFF_MAX_SECONDS,
    MAX_REQUESTS_PER_SECOND,
)
from .currency import TokenIdentity, drops_to_xrp, parse_amount

logger = structlog.get_logger(__name__)

# Engine results that mean the transaction never reached a ledger
LOCAL_FAILURE_PREFIXES = ("tem", "tef", "tel")

LAST_LEDGER_OFFSET = 20

REQUEST_TIMEOUT_SECONDS = 10


class LedgerRPCError(Exception):
    """Error response or transport failure talking to the ledger."""

    def __init__(self, message: str, error: Optional[str] = None):
        super().__init__(message)
        self.error = error


@dataclass(frozen=True)
class PoolSnapshot:
    """One read of an XRP/token AMM pool."""
    token: TokenIdentity
    xrp_reserve: float        # XRP
    token_reserve: float
    amm_account: str
    lp_token: Optional[Dict[str, str]] = None
    trading_fee: int = 0

    @property
    def tokens_per_xrp(self) -> float:
        return self.token_reserve / self.xrp_reserve

    @property
    def xrp_per_token(self) -> float:
        return self.xrp_reserve / self.token_reserve


@dataclass
class SubmitResult:
    """Outcome of submitting a signed transaction and waiting for it."""
    result_code: str
    tx_hash: Optional[str]
    validated: bool
    fee_drops: int = 0
    meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.validated and self.result_code == "tesSUCCESS"


@dataclass
class LedgerClose:
    """A validated ledger with its expanded transactions."""
    ledger_index: int
    transactions: List[Tuple[Dict[str, Any], Dict[str, Any]]]  # (tx, meta)


def split_transaction_entry(entry: Dict[str, Any]) -> Tuple[Dict[str, Any], Dict[str, Any], Optional[str]]:
    """
    Normalize an account_tx / ledger transaction entry.

    Handles both API v1 ({"tx": ..., "meta": ...} or inline fields with
    "metaData") and API v2 ({"tx_json": ..., "meta": ..., "hash": ...}).
    Returns (tx, meta, hash).
    """
    tx = entry.get("tx_json") or entry.get("tx") or entry
    meta = entry.get("meta") or entry.get("metaData") or tx.get("metaData") or {}
    tx_hash = entry.get("hash") or tx.get("hash")

    if tx_hash and "hash" not in tx:
        tx = dict(tx, hash=tx_hash)
    if "date" not in tx and "date" in entry:
        tx = dict(tx, date=entry["date"])

    return tx, meta, tx_hash


class RateLimiter:
    """Simple rate limiter using token bucket algorithm."""

    def __init__(self, max_per_second: float):
        self.max_per_second = max_per_second
        self.tokens = max_per_second
        self.last_update = time.monotonic()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Acquire a token, waiting if necessary."""
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self.last_update
            self.tokens = min(self.max_per_second, self.tokens + elapsed * self.max_per_second)
            self.last_update = now

            if self.tokens < 1:
                wait_time = (1 - self.tokens) / self.max_per_second
                await asyncio.sleep(wait_time)
                self.tokens = 0
            else:
                self.tokens -= 1


class LedgerClient:
    """Async JSON-RPC client for the XRP Ledger with rate limiting and backoff."""

    def __init__(
        self,
        rpc_url: str,
        max_per_second: float = MAX_REQUESTS_PER_SECOND,
        submit_timeout_seconds: float = 30.0
    ):
        self.rpc_url = rpc_url
        self.rate_limiter = RateLimiter(max_per_second)
        self.submit_timeout_seconds = submit_timeout_seconds
        self._session: Optional[aiohttp.ClientSession] = None
        self._backoff_until: float = 0
        self._consecutive_errors = 0

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=REQUEST_TIMEOUT_SECONDS)
            )
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def _wait_for_backoff(self) -> None:
        """Wait if we're in backoff period."""
        now = time.monotonic()
        if now < self._backoff_until:
            wait_time = self._backoff_until - now
            logger.warning("rpc_backoff_waiting", wait_seconds=wait_time)
            await asyncio.sleep(wait_time)

    def _apply_backoff(self) -> None:
        """Apply exponential backoff after an error."""
        self._consecutive_errors += 1
        backoff = min(
            BACKOFF_BASE_SECONDS * (2 ** self._consecutive_errors),
            BACKOFF_MAX_SECONDS
        )
        self._backoff_until = time.monotonic() + backoff
        logger.warning("rpc_backoff_applied", backoff_seconds=backoff)

    def _reset_backoff(self) -> None:
        """Reset backoff after successful request."""
        self._consecutive_errors = 0
        self._backoff_until = 0

    async def _request(self, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """Make a JSON-RPC request and return its result object."""
        await self._wait_for_backoff()
        await self.rate_limiter.acquire()

        session = await self._get_session()
        payload = {
            "method": method,
            "params": [params]
        }

        try:
            async with session.post(
                self.rpc_url,
                json=payload,
                headers={"Content-Type": "application/json"}
            ) as response:
                if response.status == 429:
                    self._apply_backoff()
                    raise LedgerRPCError("Rate limited by RPC", error="slowDown")

                response.raise_for_status()
                body = await response.json(content_type=None)

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self._apply_backoff()
            logger.error("rpc_request_failed", method=method, error=str(e) or type(e).__name__)
            raise LedgerRPCError(f"{method} failed: {str(e) or type(e).__name__}") from e
        except ValueError as e:
            # Body was not JSON
            logger.error("rpc_bad_response", method=method, error=str(e))
            raise LedgerRPCError(f"{method} returned a malformed response: {e}") from e

        result = body.get("result", {}) if isinstance(body, dict) else {}
        error = result.get("error") or (body.get("error") if isinstance(body, dict) else None)
        if error or result.get("status") == "error":
            message = result.get("error_message") or error
            raise LedgerRPCError(f"RPC error: {message}", error=error)

        self._reset_backoff()
        return result

    async def account_info(self, address: str, ledger_index: str = "validated") -> Dict[str, Any]:
        """Get the account root object."""
        result = await self._request("account_info", {
            "account": address,
            "ledger_index": ledger_index
        })
        return result.get("account_data", {})

    async def native_balance(self, address: str) -> float:
        """Get the XRP balance; unfunded accounts hold 0."""
        try:
            account_data = await self.account_info(address)
        except LedgerRPCError as e:
            if e.error == "actNotFound":
                return 0.0
            raise
        return drops_to_xrp(account_data.get("Balance", "0"))

    async def account_lines(self, address: str) -> List[Dict[str, Any]]:
        """Get all trust lines of an account."""
        lines: List[Dict[str, Any]] = []
        marker = None

        while True:
            params: Dict[str, Any] = {"account": address, "ledger_index": "validated"}
            if marker is not None:
                params["marker"] = marker

            try:
                result = await self._request("account_lines", params)
            except LedgerRPCError as e:
                if e.error == "actNotFound":
                    return []
                raise

            lines.extend(result.get("lines", []))
            marker = result.get("marker")
            if marker is None:
                return lines

    async def account_transactions(
        self,
        address: str,
        limit: int = 20,
        marker: Optional[Any] = None,
        forward: bool = False
    ) -> Tuple[List[Dict[str, Any]], Optional[Any]]:
        """Get one page of an account's validated transactions and the next marker."""
        params: Dict[str, Any] = {
            "account": address,
            "ledger_index_min": -1,
            "ledger_index_max": -1,
            "limit": limit,
            "forward": forward
        }
        if marker is not None:
            params["marker"] = marker

        result = await self._request("account_tx", params)
        return result.get("transactions", []), result.get("marker")

    async def pool_info(self, token: TokenIdentity) -> Optional[PoolSnapshot]:
        """Get the XRP/token AMM pool, or None if the pair has no pool."""
        try:
            result = await self._request("amm_info", {
                "asset": {"currency": "XRP"},
                "asset2": token.as_asset(),
                "ledger_index": "validated"
            })
        except LedgerRPCError as e:
            if e.error == "actNotFound":
                return None
            raise

        amm = result.get("amm")
        if not amm:
            return None

        xrp_reserve = None
        token_reserve = None
        for key in ("amount", "amount2"):
            value, amount_token = parse_amount(amm.get(key))
            if value is None:
                continue
            if amount_token is None:
                xrp_reserve = value
            else:
                token_reserve = value

        if not xrp_reserve or not token_reserve:
            return None

        return PoolSnapshot(
            token=token,
            xrp_reserve=xrp_reserve,
            token_reserve=token_reserve,
            amm_account=amm.get("account") or amm.get("amm_account", ""),
            lp_token=amm.get("lp_token"),
            trading_fee=int(amm.get("trading_fee", 0))
        )

    async def validated_ledgers(self, depth: int) -> List[LedgerClose]:
        """
        Get the latest validated ledger and the `depth` ledgers before it,
        with expanded transactions. A ledger that fails to load is skipped.
        """
        latest = await self._request("ledger", {
            "ledger_index": "validated",
            "transactions": True,
            "expand": True
        })
        try:
            latest_index = int(latest["ledger"]["ledger_index"])
            closes = [self._to_ledger_close(latest["ledger"])]
        except (KeyError, TypeError, ValueError) as e:
            raise LedgerRPCError(f"Malformed validated ledger: {e}") from e

        for offset in range(1, depth + 1):
            try:
                result = await self._request("ledger", {
                    "ledger_index": latest_index - offset,
                    "transactions": True,
                    "expand": True
                })
                closes.append(self._to_ledger_close(result["ledger"]))
            except (LedgerRPCError, KeyError, TypeError, ValueError) as e:
                logger.debug("ledger_fetch_skipped", ledger_index=latest_index - offset, error=str(e))
                continue

        return closes

    def _to_ledger_close(self, ledger: Dict[str, Any]) -> LedgerClose:
        transactions = []
        for entry in ledger.get("transactions", []):
            if not isinstance(entry, dict):
                continue
            tx, meta, _ = split_transaction_entry(entry)
            if tx and meta:
                transactions.append((tx, meta))
        return LedgerClose(ledger_index=int(ledger["ledger_index"]), transactions=transactions)

    async def autofill(self, tx_json: Dict[str, Any]) -> Dict[str, Any]:
        """Fill Sequence, Fee and LastLedgerSequence."""
        prepared = dict(tx_json)

        if "Sequence" not in prepared:
            account_data = await self.account_info(prepared["Account"], ledger_index="current")
            prepared["Sequence"] = int(account_data["Sequence"])

        if "Fee" not in prepared or "LastLedgerSequence" not in prepared:
            fee = await self._request("fee", {})
            drops = fee.get("drops", {})
            fee_drops = max(int(drops.get("open_ledger_fee", 10)), int(drops.get("base_fee", 10)))
            prepared.setdefault("Fee", str(fee_drops))
            prepared.setdefault(
                "LastLedgerSequence",
                int(fee["ledger_current_index"]) + LAST_LEDGER_OFFSET
            )

        return prepared

    async def submit_and_wait(self, tx_json: Dict[str, Any], wallet) -> SubmitResult:
        """
        Autofill, sign, submit and wait until the transaction is validated.

        Balances must only be read after this returns.
        """
        prepared = await self.autofill(tx_json)
        tx_blob, tx_hash = wallet.sign(prepared)
        fee_drops = int(prepared["Fee"])

        result = await self._request("submit", {"tx_blob": tx_blob})
        engine_result = result.get("engine_result", "")

        logger.info(
            "transaction_submitted",
            type=prepared.get("TransactionType"),
            hash=tx_hash[:16],
            engine_result=engine_result
        )

        if engine_result.startswith(LOCAL_FAILURE_PREFIXES):
            return SubmitResult(result_code=engine_result, tx_hash=tx_hash, validated=False, fee_drops=fee_drops)

        return await self._wait_for_validation(tx_hash, prepared["LastLedgerSequence"], fee_drops)

    async def _wait_for_validation(
        self,
        tx_hash: str,
        last_ledger_sequence: int,
        fee_drops: int
    ) -> SubmitResult:
        """Poll until the transaction is in a validated ledger or can no longer be."""
        start_time = time.monotonic()

        while time.monotonic() - start_time < self.submit_timeout_seconds:
            try:
                result = await self._request("tx", {"transaction": tx_hash})
                if result.get("validated"):
                    meta = result.get("meta") or result.get("metaData") or {}
                    result_code = meta.get("TransactionResult", "")
                    logger.info("transaction_validated", hash=tx_hash[:16], result=result_code)
                    return SubmitResult(
                        result_code=result_code,
                        tx_hash=tx_hash,
                        validated=True,
                        fee_drops=fee_drops,
                        meta=meta
                    )

                if int(result.get("ledger_index", 0) or 0) > last_ledger_sequence:
                    break

            except LedgerRPCError as e:
                if e.error != "txnNotFound":
                    logger.warning("confirm_transaction_error", hash=tx_hash[:16], error=str(e))

            await asyncio.sleep(1.0)

        logger.warning("transaction_timeout", hash=tx_hash[:16])
        return SubmitResult(result_code="timeout", tx_hash=tx_hash, validated=False, fee_drops=fee_drops)


def create_ledger_client(rpc_url: str, submit_timeout_seconds: float = 30.0) -> LedgerClient:
    """Factory function to create a ledger client."""
    return LedgerClient(rpc_url, submit_timeout_seconds=submit_timeout_seconds)
