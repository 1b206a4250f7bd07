# Copyright (c) 2025 The Pool Swap Watcher developers
# Distributed under the MIT software license

"""
Pool Swap SDK - Ratio Pricing

ratio = native balance / token balance, read fresh from the ledger on
every call. Pool composition moves with every swap and every external
transfer, so nothing is cached.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Optional

from .errors import PricingError
from .pool_types import MonitoredAccount, PoolSnapshot

log = logging.getLogger(__name__)


class RatioPricingEngine:

    def __init__(self, ledger, native_account: MonitoredAccount,
                 token_account: Optional[MonitoredAccount]):
        self.ledger = ledger
        self.native_account = native_account
        self.token_account = token_account

    async def snapshot(self) -> PoolSnapshot:
        """
        Raises:
            ZeroBalanceError: token balance is zero
            PricingError: a balance query failed, or no token account is configured
        """
        if self.token_account is None:
            raise PricingError("No token account configured, pool ratio undefined")

        try:
            native_balance, token_balance = await asyncio.gather(
                self.ledger.get_balance(self.native_account),
                self.ledger.get_balance(self.token_account),
            )
        except Exception as e:
            raise PricingError(f"Failed to read pool balances: {e}") from e

        snapshot = PoolSnapshot.from_balances(native_balance, token_balance)
        symbol = self.token_account.asset.symbol
        log.info(f"Current ratio: 1 {symbol} = {snapshot.ratio:.6f} SOL "
                 f"(SOL: {native_balance:.6f}, {symbol}: {token_balance:.6f})")
        return snapshot

    async def current_ratio(self) -> Decimal:
        return (await self.snapshot()).ratio
