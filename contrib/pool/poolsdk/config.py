# Copyright (c) 2025 The Pool Swap Watcher developers
# Distributed under the MIT software license

"""
Pool Swap SDK - Configuration

Environment-driven settings for the watcher daemon and API.
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

import base58
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from .errors import ConfigError
from .pool_types import AssetKind, MonitoredAccount
from .price_feed import COINGECKO_BASE_URL
from .rpc_client import associated_token_address

DEFAULT_RPC_URL = "https://api.mainnet-beta.solana.com"


def mask_secret(secret: str, visible_prefix: int = 6, visible_suffix: int = 4) -> str:
    """Mask a secret for safe logging. NEVER log full keys."""
    if not secret or len(secret) <= visible_prefix + visible_suffix:
        return "***"
    return f"{secret[:visible_prefix]}...{secret[-visible_suffix:]}"


def load_env_file(path: str, environ=None) -> bool:
    """Load KEY=VALUE lines into the environment; existing values win."""
    environ = os.environ if environ is None else environ
    if not os.path.exists(path):
        return False
    with open(path) as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith("#") and "=" in line:
                key, value = line.split("=", 1)
                environ.setdefault(key.strip(), value.strip().strip('"').strip("'"))
    return True


@dataclass
class PoolConfig:
    wallet: str
    rpc_url: str = DEFAULT_RPC_URL
    ws_url: str = ""
    private_key: str = ""

    # Counter asset
    token_mint: str = ""
    token_decimals: int = 9
    token_symbol: str = "LLC"

    # Settlement
    resolution_delay_s: float = 3.0
    resolution_lookback: int = 3
    queue_size: int = 256
    journal_path: str = ""

    # Price feed
    coingecko_url: str = COINGECKO_BASE_URL
    coingecko_timeout_s: float = 10.0

    # API
    host: str = "0.0.0.0"
    port: int = 8000

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "PoolConfig":
        env = os.environ if environ is None else environ

        wallet = env.get("WALLET_PUBLIC_KEY", "").strip()
        if not wallet:
            raise ConfigError("WALLET_PUBLIC_KEY not set")

        try:
            return cls(
                wallet=wallet,
                rpc_url=env.get("SOLANA_RPC_URL", DEFAULT_RPC_URL),
                ws_url=env.get("SOLANA_WS_URL", ""),
                private_key=env.get("ADMIN_PRIVATE_KEY", "").strip(),
                token_mint=env.get("LLC_TOKEN_MINT", "").strip(),
                token_decimals=int(env.get("LLC_TOKEN_DECIMALS", "9")),
                token_symbol=env.get("LLC_TOKEN_SYMBOL", "LLC"),
                resolution_delay_s=float(env.get("RESOLUTION_DELAY_S", "3.0")),
                resolution_lookback=int(env.get("RESOLUTION_LOOKBACK", "3")),
                queue_size=int(env.get("NOTIFICATION_QUEUE_SIZE", "256")),
                journal_path=env.get("SETTLEMENT_JOURNAL", ""),
                coingecko_url=env.get("COINGECKO_BASE_URL", COINGECKO_BASE_URL),
                coingecko_timeout_s=float(env.get("COINGECKO_TIMEOUT_S", "10")),
                host=env.get("HOST", "0.0.0.0"),
                port=int(env.get("PORT", "8000")),
            )
        except ValueError as e:
            raise ConfigError(f"Invalid numeric setting: {e}") from e

    @property
    def token_asset(self) -> AssetKind:
        return AssetKind.token(self.token_mint, self.token_decimals, self.token_symbol)

    def native_account(self) -> MonitoredAccount:
        try:
            Pubkey.from_string(self.wallet)
        except ValueError as e:
            raise ConfigError(f"Invalid WALLET_PUBLIC_KEY {self.wallet}: {e}") from e
        return MonitoredAccount(address=self.wallet, asset=AssetKind.native(), owner=self.wallet)

    def token_account(self) -> MonitoredAccount:
        """Pool's associated token account for the configured mint."""
        if not self.token_mint:
            raise ConfigError("LLC_TOKEN_MINT not set")
        try:
            address = associated_token_address(self.wallet, self.token_mint)
        except ValueError as e:
            raise ConfigError(f"Invalid LLC_TOKEN_MINT {self.token_mint}: {e}") from e
        return MonitoredAccount(address=address, asset=self.token_asset, owner=self.wallet)

    def load_keypair(self) -> Optional[Keypair]:
        if not self.private_key:
            return None
        try:
            return Keypair.from_bytes(base58.b58decode(self.private_key))
        except ValueError as e:
            raise ConfigError(f"Invalid ADMIN_PRIVATE_KEY {mask_secret(self.private_key)}: {e}") from e
