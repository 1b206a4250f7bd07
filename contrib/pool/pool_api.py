# Copyright (c) 2025 The Pool Swap Watcher developers
# Distributed under the MIT software license

"""
Pool API - read-only view of the pool

Endpoints:
  GET /                            - Service banner
  GET /api/wallet/sol-price        - SOL spot price (USD)
  GET /api/wallet/sol-balance      - Pool SOL balance
  GET /api/wallet/token-balance    - Pool token balance
  GET /api/wallet/balances         - Both balances
  GET /api/wallet/token-price      - Token price in SOL (pool ratio)
  GET /api/wallet/token-price-usd  - Token price in USD
  GET /api/wallet/token-ratio      - Ratio and derived prices
  GET /api/wallet/llc-balance      - Alias of token-balance (llcBalance)
  GET /api/wallet/llc-price        - Alias of token-price (llcPrice)
  GET /api/wallet/llc-price-usd    - Alias of token-price-usd (llcPriceUSD)
  GET /api/wallet/llc-ratio        - Alias of token-ratio (llcPriceSOL, llcPriceUSD)
  GET /api/wallet/pool-info        - Balances, prices, auto-swap flag
  GET /api/status                  - Watcher and settlement state

Served by pool_watcher.py in the same process as the watcher.
"""

import logging
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Awaitable, Callable, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from poolsdk import (
    BalanceWatcher,
    CoinGeckoPriceFeed,
    PoolSnapshot,
    PriceFeedError,
    PricingError,
    RatioPricingEngine,
    SettlementOrchestrator,
    ZeroBalanceError,
    __version__,
)

log = logging.getLogger(__name__)

Hook = Callable[[], Awaitable[None]]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def create_app(pricing: RatioPricingEngine,
               price_feed: CoinGeckoPriceFeed,
               watcher: Optional[BalanceWatcher] = None,
               orchestrator: Optional[SettlementOrchestrator] = None,
               on_startup: Optional[Hook] = None,
               on_shutdown: Optional[Hook] = None) -> FastAPI:
    app = FastAPI(title="Pool Swap Watcher", version=__version__)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    ledger = pricing.ledger
    native_account = pricing.native_account
    token_account = pricing.token_account
    symbol = token_account.asset.symbol if token_account else "token"

    async def sol_balance() -> Decimal:
        try:
            return await ledger.get_balance(native_account)
        except Exception as e:
            log.error(f"Error getting wallet SOL balance: {e}")
            raise HTTPException(status_code=502, detail="Failed to get wallet SOL balance")

    async def token_balance() -> Decimal:
        if token_account is None:
            raise HTTPException(status_code=503, detail=f"{symbol} account not configured")
        try:
            return await ledger.get_balance(token_account)
        except Exception as e:
            log.error(f"Error getting wallet {symbol} balance: {e}")
            raise HTTPException(status_code=502, detail=f"Failed to get wallet {symbol} balance")

    async def snapshot() -> PoolSnapshot:
        try:
            return await pricing.snapshot()
        except ZeroBalanceError:
            raise HTTPException(status_code=409,
                                detail=f"No {symbol} tokens available to calculate price")
        except PricingError as e:
            log.error(f"Error calculating {symbol} price: {e}")
            raise HTTPException(status_code=502, detail=f"Failed to calculate {symbol} price")

    async def sol_price() -> Decimal:
        try:
            return await price_feed.fetch_fiat_price("SOL")
        except PriceFeedError as e:
            raise HTTPException(status_code=502, detail=str(e))

    @app.on_event("startup")
    async def startup():
        if on_startup:
            await on_startup()

    @app.on_event("shutdown")
    async def shutdown():
        if on_shutdown:
            await on_shutdown()

    @app.get("/")
    async def root():
        return {"message": "Pool Monitor API", "version": __version__}

    @app.get("/api/wallet/sol-price")
    async def get_sol_price():
        return {"price": float(await sol_price())}

    @app.get("/api/wallet/sol-balance")
    async def get_sol_balance():
        return {"solBalance": float(await sol_balance())}

    @app.get("/api/wallet/token-balance")
    async def get_token_balance():
        return {"tokenBalance": float(await token_balance()), "symbol": symbol}

    @app.get("/api/wallet/balances")
    async def get_balances():
        return {
            "solBalance": float(await sol_balance()),
            "tokenBalance": float(await token_balance()),
            "timestamp": _now(),
        }

    @app.get("/api/wallet/token-price")
    async def get_token_price():
        snap = await snapshot()
        return {
            "tokenPrice": float(snap.ratio),
            "timestamp": _now(),
            "description": f"{symbol} price calculated as SOL balance / {symbol} balance ratio",
        }

    @app.get("/api/wallet/token-price-usd")
    async def get_token_price_usd():
        snap = await snapshot()
        usd = await sol_price()
        return {
            "tokenPriceUSD": float(snap.ratio * usd),
            "timestamp": _now(),
            "description": f"{symbol} price in USD calculated as "
                           f"(SOL balance / {symbol} balance) * SOL price",
        }

    @app.get("/api/wallet/token-ratio")
    async def get_token_ratio():
        snap = await snapshot()
        usd = await sol_price()
        return {
            "ratio": float(snap.ratio),
            "tokenPriceSOL": float(snap.ratio),
            "tokenPriceUSD": float(snap.ratio * usd),
            "solPriceUSD": float(usd),
            "timestamp": _now(),
            "description": f"Complete {symbol} pricing ratio: 1 {symbol} = X SOL = Y USD",
        }

    # Legacy route names kept for existing LLC dashboards
    @app.get("/api/wallet/llc-balance")
    async def get_llc_balance():
        return {"llcBalance": float(await token_balance())}

    @app.get("/api/wallet/llc-price")
    async def get_llc_price():
        body = await get_token_price()
        return {"llcPrice": body["tokenPrice"], "timestamp": body["timestamp"],
                "description": body["description"]}

    @app.get("/api/wallet/llc-price-usd")
    async def get_llc_price_usd():
        body = await get_token_price_usd()
        return {"llcPriceUSD": body["tokenPriceUSD"], "timestamp": body["timestamp"],
                "description": body["description"]}

    @app.get("/api/wallet/llc-ratio")
    async def get_llc_ratio():
        body = await get_token_ratio()
        return {
            "ratio": body["ratio"],
            "llcPriceSOL": body["tokenPriceSOL"],
            "llcPriceUSD": body["tokenPriceUSD"],
            "solPriceUSD": body["solPriceUSD"],
            "timestamp": body["timestamp"],
            "description": body["description"],
        }

    @app.get("/api/wallet/pool-info")
    async def get_pool_info():
        snap = await snapshot()
        usd = await sol_price()
        return {
            "solBalance": float(snap.native_balance),
            "tokenBalance": float(snap.token_balance),
            "tokenPriceSOL": float(snap.ratio),
            "tokenPriceUSD": float(snap.ratio * usd),
            "solPriceUSD": float(usd),
            "autoSwapEnabled": bool(watcher and orchestrator and watcher.monitored),
        }

    @app.get("/api/status")
    async def get_status():
        status = {
            "time": int(time.time()),
            "version": __version__,
            "accounts": {
                "native": native_account.to_dict(),
                "token": token_account.to_dict() if token_account else None,
            },
        }
        if watcher:
            status["watcher"] = watcher.status()
            status["state"] = watcher.store.to_dict()
        if orchestrator:
            status["phases"] = {
                account.address: orchestrator.phase(account).value
                for account in (native_account, token_account) if account
            }
            status["recent_outcomes"] = [o.to_dict() for o in orchestrator.recent_outcomes]
        return status

    return app
