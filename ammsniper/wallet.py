"""
Wallet abstraction for the sniper.
Handles loading the seed and signing transactions via xrpl-py.
"""

from typing import Any, Dict, Optional, Tuple
import structlog
from xrpl.models.transactions.transaction import Transaction
from xrpl.transaction import sign
from xrpl.wallet import Wallet as XRPLWallet

logger = structlog.get_logger(__name__)


class Wallet:
    """Wallet abstraction for signing XRP Ledger transactions."""

    def __init__(self, seed: str, network: str = "mainnet"):
        """Initialize wallet from a family seed."""
        self.network = network
        self._wallet: Optional[XRPLWallet] = None
        self._load_seed(seed)

    def _load_seed(self, seed: str) -> None:
        """Derive the keypair from the seed."""
        try:
            self._wallet = XRPLWallet.from_seed(seed)
            logger.info(
                "wallet_loaded",
                address=self.address,
                network=self.network
            )
        except Exception as e:
            logger.error("wallet_load_failed", error=str(e))
            raise ValueError(f"Failed to create wallet from seed: {e}")

    @property
    def address(self) -> str:
        """Get the classic address."""
        if self._wallet is None:
            raise ValueError("Wallet not initialized")
        return self._wallet.classic_address

    def sign(self, tx_json: Dict[str, Any]) -> Tuple[str, str]:
        """
        Sign an autofilled transaction.

        Returns:
            (tx_blob, tx_hash)
        """
        transaction = Transaction.from_xrpl(tx_json)
        signed = sign(transaction, self._wallet)
        return signed.blob(), signed.get_hash()


def create_wallet(seed: str, network: str = "mainnet") -> Wallet:
    """Factory function to create a wallet instance."""
    return Wallet(seed, network)
