"""
Shared ledger fixtures for the test suite.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from ammsniper.currency import TokenIdentity
from ammsniper.rpc import PoolSnapshot, SubmitResult

ISSUER = "rHb9CJAWyB4rj91VRWn96DkukG4bwdtyTh"
TRADER = "rTraderXXXXXXXXXXXXXXXXXXXXXXXXXXX"
OUR_ADDRESS = "rOurWalletXXXXXXXXXXXXXXXXXXXXXXX"
AMM_ACCOUNT = "rAMMAccountXXXXXXXXXXXXXXXXXXXXXX"

# "SOLO" as a 160-bit currency code
SOLO_HEX = "534F4C4F00000000000000000000000000000000"
LP_CURRENCY = "03930D02208264E2E40EC1B0C09E4DB96EE197B1"


def token_amount(value, token=None):
    token = token or TokenIdentity(SOLO_HEX, ISSUER)
    return {"currency": token.currency, "issuer": token.issuer, "value": str(value)}


def amm_node(xrp_before, xrp_after, tokens_before, tokens_after, token=None):
    """ModifiedNode of an AMM entry with XRP in Amount and the token in Amount2."""
    return {
        "ModifiedNode": {
            "LedgerEntryType": "AMM",
            "PreviousFields": {
                "Amount": str(int(xrp_before * 1_000_000)),
                "Amount2": token_amount(tokens_before, token)
            },
            "FinalFields": {
                "Amount": str(int(xrp_after * 1_000_000)),
                "Amount2": token_amount(tokens_after, token)
            }
        }
    }


def success_meta(*nodes):
    return {"TransactionResult": "tesSUCCESS", "AffectedNodes": list(nodes)}


@pytest.fixture
def token():
    return TokenIdentity(SOLO_HEX, ISSUER)


@pytest.fixture
def pool(token):
    """1000 XRP against 50000 SOLO: 50 tokens per XRP."""
    return PoolSnapshot(
        token=token,
        xrp_reserve=1000.0,
        token_reserve=50000.0,
        amm_account=AMM_ACCOUNT,
        lp_token={"currency": LP_CURRENCY, "issuer": AMM_ACCOUNT, "value": "7071"}
    )


@pytest.fixture
def rpc():
    """Ledger gateway double with every async method mocked."""
    client = MagicMock()
    client.account_lines = AsyncMock(return_value=[])
    client.account_transactions = AsyncMock(return_value=([], None))
    client.pool_info = AsyncMock(return_value=None)
    client.native_balance = AsyncMock(return_value=0.0)
    client.validated_ledgers = AsyncMock(return_value=[])
    client.submit_and_wait = AsyncMock(
        return_value=SubmitResult(result_code="tesSUCCESS", tx_hash="A" * 64, validated=True, fee_drops=12)
    )
    return client


@pytest.fixture
def wallet():
    w = MagicMock()
    w.address = OUR_ADDRESS
    return w
