# Copyright (c) 2025 The Pool Swap Watcher developers
# Distributed under the MIT software license

"""
Pool Swap SDK - Price Feed

Spot price of the native asset in fiat from CoinGecko. Used only by the
read-only API, never by settlement.
"""

import logging
from decimal import Decimal
from typing import Dict, Optional

import httpx

from .errors import PriceFeedError

log = logging.getLogger(__name__)

COINGECKO_BASE_URL = "https://api.coingecko.com/api/v3"

COINGECKO_IDS: Dict[str, str] = {
    "SOL": "solana",
}


class CoinGeckoPriceFeed:

    def __init__(self, base_url: str = COINGECKO_BASE_URL, timeout: float = 10.0,
                 client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self):
        await self._client.aclose()

    async def fetch_fiat_price(self, symbol: str = "SOL", currency: str = "usd") -> Decimal:
        coin_id = COINGECKO_IDS.get(symbol.upper(), symbol.lower())
        try:
            resp = await self._client.get(
                f"{self.base_url}/simple/price",
                params={"ids": coin_id, "vs_currencies": currency},
            )
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as e:
            log.error(f"Error fetching {symbol} price: {e}")
            raise PriceFeedError(f"Failed to fetch {symbol} price from CoinGecko: {e}") from e

        price = data.get(coin_id, {}).get(currency)
        if price is None:
            raise PriceFeedError(f"CoinGecko response has no {currency} price for {coin_id}")
        return Decimal(str(price))
