# Copyright (c) 2025 The Pool Swap Watcher developers
# Distributed under the MIT software license

"""
Pool Swap SDK

Reactive settlement for a two-asset custodial pool (SOL + one SPL token).

Architecture:
  - BalanceWatcher subscribes to both pool accounts and turns each
    notification into a BalanceChangeEvent (one ordered queue per account)
  - SettlementOrchestrator resolves the depositor, prices the deposit at
    the live pool ratio and pays the counter asset back
  - The pool ratio is always native balance / token balance, read fresh

Usage:
    from poolsdk import (PoolConfig, SolanaRPC, AccountStateStore, BalanceWatcher,
                         TransactionOriginResolver, RatioPricingEngine, SwapExecutor,
                         SettlementOrchestrator)

    config = PoolConfig.from_env()
    rpc = SolanaRPC(config.rpc_url, config.ws_url, keypair=config.load_keypair())
    native, token = config.native_account(), config.token_account()

    pricing = RatioPricingEngine(rpc, native, token)
    orchestrator = SettlementOrchestrator(
        native, token, TransactionOriginResolver(rpc), pricing, SwapExecutor(rpc))
    watcher = BalanceWatcher(rpc, AccountStateStore(), orchestrator.handle_event)
    await watcher.start([native, token])
"""

from .errors import (
    PoolError,
    ConfigError,
    UnknownAccountError,
    PricingError,
    ZeroBalanceError,
    TransferFailed,
    PriceFeedError,
)
from .pool_types import (
    AssetKind,
    MonitoredAccount,
    AccountState,
    BalanceDirection,
    BalanceChangeEvent,
    PoolSnapshot,
    ParsedTransaction,
    TransferInstruction,
    ResolvedOrigin,
    SwapRequest,
    TransferReference,
    SettlementStatus,
    SettlementOutcome,
)
from .account_store import AccountStateStore
from .balance_watcher import BalanceWatcher
from .origin_resolver import TransactionOriginResolver
from .ratio_pricing import RatioPricingEngine
from .swap_executor import SwapExecutor, quote_counter_amount
from .settlement import SettlementOrchestrator, SettlementPhase, SettlementJournal
from .price_feed import CoinGeckoPriceFeed
from .rpc_client import RPCError, SolanaRPC, associated_token_address
from .config import PoolConfig, load_env_file, mask_secret

__version__ = "0.1.0"
__all__ = [
    # Errors
    "PoolError", "ConfigError", "UnknownAccountError", "PricingError",
    "ZeroBalanceError", "TransferFailed", "PriceFeedError", "RPCError",
    # Types
    "AssetKind", "MonitoredAccount", "AccountState", "BalanceDirection",
    "BalanceChangeEvent", "PoolSnapshot", "ParsedTransaction",
    "TransferInstruction", "ResolvedOrigin", "SwapRequest",
    "TransferReference", "SettlementStatus", "SettlementOutcome",
    # Core
    "AccountStateStore", "BalanceWatcher", "TransactionOriginResolver",
    "RatioPricingEngine", "SwapExecutor", "quote_counter_amount",
    "SettlementOrchestrator", "SettlementPhase", "SettlementJournal",
    # Collaborators
    "SolanaRPC", "associated_token_address", "CoinGeckoPriceFeed",
    "PoolConfig", "load_env_file", "mask_secret",
]
