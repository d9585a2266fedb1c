"""
Unit tests for configuration loading.
"""

import pytest

from ammsniper import config as config_module
from ammsniper.config import load_config

ENV_VARS = (
    "XRPL_RPC_URL", "WALLET_SEED", "BOT_MODE", "MIN_LIQUIDITY",
    "SNIPER_CHECK_INTERVAL_MS", "COPY_TRADING_CHECK_INTERVAL_MS",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.setattr(config_module, "load_dotenv", lambda: None)
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestLoadConfig:
    """Environment parsing."""

    def test_defaults(self, monkeypatch):
        monkeypatch.setenv("XRPL_RPC_URL", "https://s1.ripple.com:51234/")
        monkeypatch.setenv("WALLET_SEED", "sEdTestSeed")

        config = load_config()

        assert config.min_liquidity == 100.0
        assert config.sniper_interval_seconds == 8.0
        assert config.copy_interval_seconds == 3.0
        assert config.runs_sniper and config.runs_copy_trading

    def test_missing_rpc_url(self, monkeypatch):
        monkeypatch.setenv("WALLET_SEED", "sEdTestSeed")

        with pytest.raises(ValueError):
            load_config()

    def test_missing_seed(self, monkeypatch):
        monkeypatch.setenv("XRPL_RPC_URL", "https://s1.ripple.com:51234/")

        with pytest.raises(ValueError):
            load_config()

    def test_invalid_mode(self, monkeypatch):
        monkeypatch.setenv("XRPL_RPC_URL", "https://s1.ripple.com:51234/")
        monkeypatch.setenv("WALLET_SEED", "sEdTestSeed")
        monkeypatch.setenv("BOT_MODE", "arbitrage")

        with pytest.raises(ValueError):
            load_config()

    def test_sniper_only(self, monkeypatch):
        monkeypatch.setenv("XRPL_RPC_URL", "https://s1.ripple.com:51234/")
        monkeypatch.setenv("WALLET_SEED", "sEdTestSeed")
        monkeypatch.setenv("BOT_MODE", "sniper")

        config = load_config()

        assert config.runs_sniper
        assert not config.runs_copy_trading
