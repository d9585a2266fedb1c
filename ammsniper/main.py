#!/usr/bin/env python3
"""
AMM Sniper - XRPL AMM sniper and copy trader
Main entry point.
"""

import asyncio
import logging
import signal
import sys
from typing import List, Optional

import structlog

from .config import load_config, Config
from .copy_trader import CopyTradingSession
from .executor import create_executor, SwapExecutor
from .rpc import create_ledger_client, LedgerClient
from .session import PollingSession
from .sniper import SniperSession
from .storage import UserState, UserStore
from .tx_parser import TradeClassifier
from .wallet import create_wallet, Wallet
from .wallet_monitor import WalletMonitor


# Configure structured logging
def configure_logging(log_level: str) -> None:
    """Configure structured JSON logging."""
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO)
    )


logger = structlog.get_logger()


class AmmSniperBot:
    """Main bot class that wires the ledger client, wallet and per-user sessions."""

    def __init__(self):
        self.config: Optional[Config] = None
        self.wallet: Optional[Wallet] = None
        self.rpc: Optional[LedgerClient] = None
        self.executor: Optional[SwapExecutor] = None
        self.store: Optional[UserStore] = None
        self.sessions: List[PollingSession] = []
        self._shutdown_event = asyncio.Event()

    async def initialize(self) -> None:
        """Initialize all components."""
        self.config = load_config()
        configure_logging(self.config.log_level)
        logger.info("initializing_ammsniper")

        self.wallet = create_wallet(self.config.wallet_seed, self.config.network)
        self.rpc = create_ledger_client(self.config.rpc_url, self.config.submit_timeout_seconds)
        self.executor = create_executor(
            self.rpc,
            self.wallet,
            trust_line_limit=self.config.trust_line_limit,
            default_slippage=self.config.default_slippage
        )
        self.store = UserStore(self.config.data_file)

        # Check wallet balance
        balance = await self.rpc.native_balance(self.wallet.address)
        logger.info("wallet_balance", address=self.wallet.address, balance_xrp=f"{balance:.6f}")
        if balance <= self.config.fee_reserve_xrp:
            logger.warning(
                "low_balance",
                message="Wallet balance is very low. May not be able to execute trades."
            )

        logger.info(
            "ammsniper_initialized",
            network=self.config.network,
            wallet=self.wallet.address[:12] + "...",
            mode=self.config.mode,
            user=self.config.user_id
        )

    def _ensure_user(self) -> UserState:
        """Load the configured user, creating a default record on first run."""
        user = self.store.load(self.config.user_id)
        if user is None:
            user = UserState(user_id=self.config.user_id, slippage=self.config.default_slippage)
            self.store.save(user)
            logger.info("user_created", user=user.user_id)
        return user

    async def start_sessions(self) -> None:
        """Start the sessions selected by the bot mode."""
        user = self._ensure_user()
        # One classifier per process so every session shares the dedup set
        classifier = TradeClassifier()

        if self.config.runs_copy_trading:
            session = CopyTradingSession(
                user.user_id,
                self.store,
                WalletMonitor(self.rpc, classifier, self.config.max_transactions_to_check),
                self.executor,
                interval_seconds=self.config.copy_interval_seconds
            )
            started, error = await session.start()
            if started:
                self.sessions.append(session)
            else:
                logger.warning("copy_trading_not_started", reason=error)

        if self.config.runs_sniper:
            session = SniperSession(
                user.user_id,
                self.store,
                self.rpc,
                self.executor,
                interval_seconds=self.config.sniper_interval_seconds,
                min_liquidity=self.config.min_liquidity,
                max_snipe_amount=self.config.max_snipe_amount,
                max_tokens_per_scan=self.config.max_tokens_per_scan,
                fee_reserve_xrp=self.config.fee_reserve_xrp
            )
            started, error = await session.start()
            if started:
                self.sessions.append(session)
            else:
                logger.warning("sniper_not_started", reason=error)

    async def cleanup(self) -> None:
        """Stop sessions, letting in-flight cycles finish, then close the client."""
        logger.info("cleaning_up")

        for session in self.sessions:
            await session.stop()
        if self.rpc:
            await self.rpc.close()

    async def run(self) -> None:
        """Main bot loop."""
        await self.initialize()

        try:
            await self.start_sessions()
            if not self.sessions:
                logger.error("no_sessions_started")
                return

            await self._shutdown_event.wait()
        except asyncio.CancelledError:
            logger.info("bot_cancelled")
        finally:
            await self.cleanup()

    def stop(self) -> None:
        """Signal the bot to stop."""
        logger.info("stop_requested")
        self._shutdown_event.set()


async def main() -> None:
    """Main entry point."""
    bot = AmmSniperBot()

    # Set up signal handlers
    loop = asyncio.get_running_loop()

    def signal_handler():
        bot.stop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await bot.run()
    except Exception as e:
        logger.error("fatal_error", error=str(e))
        raise
    finally:
        logger.info("ammsniper_shutdown_complete")


def run() -> None:
    """Entry point for the bot."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
