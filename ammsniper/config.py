"""
Configuration loader for the AMM sniper / copy trader.
Loads settings from environment variables with sensible defaults.
"""

import os
from dataclasses import dataclass
from dotenv import load_dotenv


@dataclass
class Config:
    """Bot configuration loaded from environment variables."""

    # Network
    rpc_url: str
    network: str  # 'mainnet' or 'testnet'

    # Wallet
    wallet_seed: str

    # Storage
    data_file: str
    user_id: str
    mode: str  # 'sniper', 'copy' or 'both'

    # Trading
    min_liquidity: float  # Default minimum pool liquidity in XRP
    max_snipe_amount: float  # Hard ceiling for a single snipe in XRP
    default_slippage: float  # Percent
    fee_reserve_xrp: float  # XRP kept back for fees and reserves
    trust_line_limit: float
    submit_timeout_seconds: float

    # Sniper
    sniper_check_interval_ms: int
    max_tokens_per_scan: int

    # Copy Trading
    copy_check_interval_ms: int
    max_transactions_to_check: int

    # Ops
    log_level: str

    @property
    def sniper_interval_seconds(self) -> float:
        return self.sniper_check_interval_ms / 1000.0

    @property
    def copy_interval_seconds(self) -> float:
        return self.copy_check_interval_ms / 1000.0

    @property
    def runs_sniper(self) -> bool:
        return self.mode in ('sniper', 'both')

    @property
    def runs_copy_trading(self) -> bool:
        return self.mode in ('copy', 'both')


def load_config() -> Config:
    """Load configuration from environment variables."""
    load_dotenv()

    # Validate required fields
    rpc_url = os.getenv('XRPL_RPC_URL')
    if not rpc_url:
        raise ValueError("XRPL_RPC_URL environment variable is required")

    wallet_seed = os.getenv('WALLET_SEED', '')
    if not wallet_seed:
        raise ValueError("WALLET_SEED environment variable is required")

    mode = os.getenv('BOT_MODE', 'both').lower()
    if mode not in ('sniper', 'copy', 'both'):
        raise ValueError(f"BOT_MODE must be sniper, copy or both (got {mode!r})")

    return Config(
        # Network
        rpc_url=rpc_url,
        network=os.getenv('XRPL_NETWORK', 'mainnet'),

        # Wallet
        wallet_seed=wallet_seed,

        # Storage
        data_file=os.getenv('DATA_FILE', './data/state.json'),
        user_id=os.getenv('USER_ID', 'default'),
        mode=mode,

        # Trading
        min_liquidity=float(os.getenv('MIN_LIQUIDITY', '100')),
        max_snipe_amount=float(os.getenv('MAX_SNIPE_AMOUNT', '5000')),
        default_slippage=float(os.getenv('DEFAULT_SLIPPAGE', '4.0')),
        fee_reserve_xrp=float(os.getenv('FEE_RESERVE_XRP', '0.5')),  # Keep 0.5 XRP for fees
        trust_line_limit=float(os.getenv('TRUST_LINE_LIMIT', '100000')),
        submit_timeout_seconds=float(os.getenv('SUBMIT_TIMEOUT_SECONDS', '30')),

        # Sniper
        sniper_check_interval_ms=int(os.getenv('SNIPER_CHECK_INTERVAL_MS', '8000')),
        max_tokens_per_scan=int(os.getenv('MAX_TOKENS_PER_SCAN', '15')),

        # Copy Trading
        copy_check_interval_ms=int(os.getenv('COPY_TRADING_CHECK_INTERVAL_MS', '3000')),
        max_transactions_to_check=int(os.getenv('MAX_TRANSACTIONS_TO_CHECK', '20')),

        # Ops
        log_level=os.getenv('LOG_LEVEL', 'INFO'),
    )


# Ledger constants
DROPS_PER_XRP = 1_000_000
RIPPLE_EPOCH_OFFSET = 946684800  # Seconds between 1970-01-01 and 2000-01-01
SUCCESS_RESULT = "tesSUCCESS"
TF_PARTIAL_PAYMENT = 0x00020000

# Rate limiting for public rippled/clio servers
MAX_REQUESTS_PER_SECOND = 10.0
BACKOFF_BASE_SECONDS = 1.0
BACKOFF_MAX_SECONDS = 60.0
