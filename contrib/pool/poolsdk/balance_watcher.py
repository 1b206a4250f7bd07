# Copyright (c) 2025 The Pool Swap Watcher developers
# Distributed under the MIT software license

"""
Pool Swap SDK - Balance Watcher

One subscription per monitored account. Notifications go onto a bounded
per-account queue drained by a single consumer task, which applies the
balance to the store and awaits the settlement handler before taking the
next one. Accounts never block each other.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from .account_store import AccountStateStore
from .pool_types import BalanceChangeEvent, BalanceDirection, MonitoredAccount, utcnow

log = logging.getLogger(__name__)

EventHandler = Callable[[BalanceChangeEvent], Awaitable[Any]]


@dataclass
class _AccountWorker:
    account: MonitoredAccount
    queue: "asyncio.Queue[Tuple[Decimal, datetime]]"
    subscription: Any
    reader: Optional[asyncio.Task] = None
    consumer: Optional[asyncio.Task] = None
    closed: bool = False


class BalanceWatcher:
    """
    Usage:
        watcher = BalanceWatcher(rpc, store, orchestrator.handle_event)
        await watcher.start([native_account, token_account])
        ...
        await watcher.stop()
    """

    def __init__(self, ledger, store: AccountStateStore, on_event: EventHandler,
                 queue_size: int = 256):
        self.ledger = ledger
        self.store = store
        self.on_event = on_event
        self.queue_size = queue_size
        self.failures: Dict[MonitoredAccount, str] = {}
        self._workers: Dict[MonitoredAccount, _AccountWorker] = {}

    @property
    def monitored(self) -> List[MonitoredAccount]:
        return [a for a, w in self._workers.items() if not w.closed]

    async def start(self, accounts: List[MonitoredAccount]) -> List[MonitoredAccount]:
        """Watch every account; failures are recorded, not raised."""
        for account in accounts:
            await self.watch(account)
        return self.monitored

    async def watch(self, account: MonitoredAccount) -> bool:
        symbol = account.asset.symbol

        # Baseline first, so no notification can arrive without one
        try:
            initial = await self.ledger.get_balance(account)
        except Exception as e:
            log.error(f"Initial {symbol} balance query failed for {account.address}: {e}")
            self.failures[account] = f"initial balance: {e}"
            return False

        self.store.seed(account, initial, utcnow())
        log.info(f"Monitoring {symbol} balance for {account.address}...")
        log.info(f"Initial {symbol} balance: {initial:.{account.asset.decimals}f} {symbol}")

        try:
            subscription = await self.ledger.subscribe(account)
        except Exception as e:
            log.error(f"Subscription failed for {account.label}: {e}")
            self.failures[account] = f"subscribe: {e}"
            return False

        self.store.attach_subscription(account, subscription.handle)
        worker = _AccountWorker(
            account=account,
            queue=asyncio.Queue(maxsize=self.queue_size),
            subscription=subscription,
        )
        worker.consumer = asyncio.create_task(self._consume(worker))
        worker.reader = asyncio.create_task(self._read(worker))
        self._workers[account] = worker
        return True

    async def _read(self, worker: _AccountWorker):
        account = worker.account
        try:
            async for balance, timestamp in worker.subscription:
                await worker.queue.put((balance, timestamp))
        except Exception as e:
            log.error(f"Subscription error for {account.label}: {e}")
        worker.closed = True
        # Re-subscribing is left to the process supervisor
        log.warning(f"Subscription for {account.label} ended; "
                    f"{account.asset.symbol} deposits are no longer observed")

    async def _consume(self, worker: _AccountWorker):
        account = worker.account
        while True:
            balance, timestamp = await worker.queue.get()
            try:
                event = self.store.apply_notification(account, balance, timestamp)
                self._log_change(event)
                await self.on_event(event)
            except Exception as e:
                log.exception(f"Error processing {account.asset.symbol} account change: {e}")
            finally:
                worker.queue.task_done()

    @staticmethod
    def _log_change(event: BalanceChangeEvent):
        asset = event.account.asset
        d, symbol = asset.decimals, asset.symbol
        stamp = event.timestamp.isoformat()

        if event.direction is BalanceDirection.NEGLIGIBLE:
            log.info(f"[{stamp}] {symbol} balance updated: {event.current:.{d}f} {symbol} "
                     f"(no significant change)")
            return

        label = "INCOMING" if event.direction is BalanceDirection.INCOMING else "OUTGOING"
        log.info(f"{label} {symbol} [{stamp}] {event.account.address}:")
        log.info(f"   Previous: {event.previous:.{d}f} {symbol}")
        log.info(f"   Current:  {event.current:.{d}f} {symbol}")
        log.info(f"   Change:   {event.delta:+.{d}f} {symbol}")

    async def drain(self):
        """Wait until every queued notification has been handled."""
        await asyncio.gather(*(w.queue.join() for w in self._workers.values()))

    async def stop(self):
        tasks = []
        for worker in self._workers.values():
            for task in (worker.reader, worker.consumer):
                if task and not task.done():
                    task.cancel()
                    tasks.append(task)
        await asyncio.gather(*tasks, return_exceptions=True)

        for worker in self._workers.values():
            try:
                await worker.subscription.close()
            except Exception as e:
                log.debug(f"Closing subscription for {worker.account.label}: {e}")
        self._workers.clear()

    def status(self) -> dict:
        return {
            "monitored": [a.to_dict() for a in self.monitored],
            "closed": [a.address for a, w in self._workers.items() if w.closed],
            "pending": {a.address: w.queue.qsize() for a, w in self._workers.items()},
            "failures": {a.address or a.asset.symbol: reason for a, reason in self.failures.items()},
        }
