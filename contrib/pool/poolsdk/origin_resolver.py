# Copyright (c) 2025 The Pool Swap Watcher developers
# Distributed under the MIT software license

"""
Pool Swap SDK - Transaction Origin Resolver

Finds who sent a detected deposit by scanning the last few confirmed
transactions that touch the monitored account.

The lookback window is 3 transactions: the deposit that triggered the
notification should be at the top of the history, and anything older is
more likely an earlier transfer than the one being settled. When two
external deposits land inside the window the first match wins; that case
can misattribute and is not handled.
"""

import asyncio
import logging
from typing import Iterable, Optional

from .pool_types import MonitoredAccount, ParsedTransaction, ResolvedOrigin

log = logging.getLogger(__name__)

DEFAULT_LOOKBACK = 3
DEFAULT_DELAY_S = 3.0


class TransactionOriginResolver:

    def __init__(self, ledger, lookback: int = DEFAULT_LOOKBACK, delay_s: float = DEFAULT_DELAY_S):
        self.ledger = ledger
        self.lookback = lookback
        self.delay_s = delay_s

    async def resolve(self, account: MonitoredAccount,
                      exclude: Iterable[str] = ()) -> Optional[ResolvedOrigin]:
        """
        Counterparty of the most recent incoming transfer to account.

        Waits delay_s first so the triggering transaction can reach
        confirmed status. Only the calling task is suspended.

        Args:
            account: monitored account that received the deposit
            exclude: signatures already attributed to earlier settlements

        Returns:
            ResolvedOrigin, or None when nothing in the window matches
        """
        if self.delay_s > 0:
            await asyncio.sleep(self.delay_s)

        try:
            history = await self.ledger.get_recent_transactions(account.address, self.lookback)
        except Exception as e:
            log.error(f"Error getting recent sender for {account.label}: {e}")
            return None

        skip = set(exclude)
        for tx in history[:self.lookback]:
            if not tx.succeeded or tx.signature in skip:
                continue
            sender = self._incoming_sender(tx, account)
            if sender:
                log.debug(f"Attributed {account.label} deposit to {sender} (tx {tx.signature})")
                return ResolvedOrigin(address=sender, signature=tx.signature, slot=tx.slot)

        return None

    @staticmethod
    def _incoming_sender(tx: ParsedTransaction, account: MonitoredAccount) -> Optional[str]:
        for transfer in tx.transfers:
            if transfer.destination != account.address or transfer.source == account.address:
                continue
            if account.asset.is_native:
                return transfer.source
            # Token source is a token account; pay the wallet that signed it
            return transfer.authority or transfer.source
        return None
