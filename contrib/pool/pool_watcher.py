#!/usr/bin/env python3
# Copyright (c) 2025 The Pool Swap Watcher developers
# Distributed under the MIT software license

"""
Pool Watcher - Automated counter-transfers for a SOL/token pool

Flow:
1. User sends SOL (or the pool token) to the pool wallet
2. The account subscription reports the new balance
3. Pool Watcher finds the sender in the last few transactions
4. Pool Watcher prices the deposit at the live SOL/token ratio
5. Pool Watcher sends the counter asset back to the sender

Configuration (.env or environment):
- WALLET_PUBLIC_KEY: pool wallet (required)
- LLC_TOKEN_MINT / LLC_TOKEN_DECIMALS: pool token (required mint)
- ADMIN_PRIVATE_KEY: base58 signing key; without it deposits are only logged
- SOLANA_RPC_URL / SOLANA_WS_URL: node endpoints
"""

import argparse
import asyncio
import logging
import os
import sys
from typing import Optional

from poolsdk import (
    AccountStateStore,
    BalanceWatcher,
    CoinGeckoPriceFeed,
    ConfigError,
    MonitoredAccount,
    PoolConfig,
    RatioPricingEngine,
    SettlementJournal,
    SettlementOrchestrator,
    SolanaRPC,
    SwapExecutor,
    TransactionOriginResolver,
    load_env_file,
    mask_secret,
)
from pool_api import create_app

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
log = logging.getLogger("pool-watcher")


class PoolWatcher:
    """Wires the watcher, settlement pipeline and API for one pool."""

    def __init__(self, config: PoolConfig, rpc: Optional[SolanaRPC] = None,
                 price_feed: Optional[CoinGeckoPriceFeed] = None):
        self.config = config
        self.native_account = config.native_account()
        self.token_account: Optional[MonitoredAccount] = None
        token_error = ""
        try:
            self.token_account = config.token_account()
        except ConfigError as e:
            # SOL keeps being watched; its deposits fail pricing
            log.error(f"{config.token_symbol} monitoring disabled: {e}")
            token_error = f"config: {e}"

        keypair = config.load_keypair()
        if keypair and str(keypair.pubkey()) != config.wallet:
            log.warning(f"ADMIN_PRIVATE_KEY signs for {keypair.pubkey()}, "
                        f"not the pool wallet {config.wallet}")
        self.auto_swap = keypair is not None

        self.rpc = rpc or SolanaRPC(config.rpc_url, config.ws_url, keypair=keypair)
        self.price_feed = price_feed or CoinGeckoPriceFeed(
            config.coingecko_url, config.coingecko_timeout_s
        )

        self.store = AccountStateStore()
        self.pricing = RatioPricingEngine(self.rpc, self.native_account, self.token_account)
        self.orchestrator = SettlementOrchestrator(
            self.native_account,
            self.token_account,
            TransactionOriginResolver(
                self.rpc,
                lookback=config.resolution_lookback,
                delay_s=config.resolution_delay_s,
            ),
            self.pricing,
            SwapExecutor(self.rpc),
            journal=SettlementJournal(config.journal_path) if config.journal_path else None,
        )
        self.watcher = BalanceWatcher(
            self.rpc, self.store, self.orchestrator.handle_event, queue_size=config.queue_size
        )
        if token_error:
            unresolved = MonitoredAccount(address="", asset=config.token_asset, owner=config.wallet)
            self.watcher.failures[unresolved] = token_error

    async def start(self):
        log.info("Starting wallet monitoring service...")
        accounts = [self.native_account]
        if self.token_account:
            accounts.append(self.token_account)
        monitored = await self.watcher.start(accounts)
        if not monitored:
            raise RuntimeError("No pool account could be monitored")
        for account, reason in self.watcher.failures.items():
            log.error(f"{account.asset.symbol} stream disabled: {reason}")
        log.info(f"Wallet monitoring service started ({len(monitored)} accounts)")

    async def stop(self):
        await self.watcher.stop()
        await self.rpc.close()
        await self.price_feed.close()

    async def run_forever(self):
        await self.start()
        try:
            await asyncio.Event().wait()
        finally:
            await self.stop()

    def create_app(self):
        return create_app(
            self.pricing,
            self.price_feed,
            watcher=self.watcher,
            orchestrator=self.orchestrator,
            on_startup=self.start,
            on_shutdown=self.stop,
        )


def main():
    parser = argparse.ArgumentParser(description="Pool Watcher - automatic SOL/token swaps")
    parser.add_argument("--env-file", default=os.path.join(os.path.dirname(os.path.abspath(__file__)), ".env"),
                        help="Path to .env file")
    parser.add_argument("--no-api", action="store_true", help="Run the watcher without the HTTP API")
    parser.add_argument("--host", default=None, help="API host (default: HOST or 0.0.0.0)")
    parser.add_argument("--port", type=int, default=None, help="API port (default: PORT or 8000)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    if load_env_file(args.env_file):
        log.info(f"Loaded config from {args.env_file}")

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        config = PoolConfig.from_env()
        pool = PoolWatcher(config)
    except ConfigError as e:
        log.error(f"Configuration error: {e}")
        sys.exit(1)

    if not pool.auto_swap:
        log.warning("=" * 60)
        log.warning("NO PRIVATE KEY - auto-swap DISABLED (deposits logged only)")
        log.warning("Set ADMIN_PRIVATE_KEY in .env")
        log.warning("=" * 60)
    else:
        log.info("=" * 60)
        log.info(f"ADMIN_PRIVATE_KEY loaded: {mask_secret(config.private_key)}")
        log.info(f"Pool wallet: {config.wallet}")
        log.info(f"Pool token:  {config.token_symbol} ({config.token_mint})")
        log.info("=" * 60)

    if args.no_api:
        try:
            asyncio.run(pool.run_forever())
        except KeyboardInterrupt:
            log.info("Shutting down...")
        except RuntimeError as e:
            log.error(str(e))
            sys.exit(1)
        return

    import uvicorn
    uvicorn.run(pool.create_app(), host=args.host or config.host, port=args.port or config.port)


if __name__ == "__main__":
    main()
