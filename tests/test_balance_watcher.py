from __future__ import annotations

import asyncio
from decimal import Decimal

from fakes import (
    NATIVE_ACCOUNT,
    POOL_TOKEN_ACCOUNT,
    POOL_WALLET,
    TOKEN,
    TOKEN_ACCOUNT,
    FakeLedger,
    native_deposit,
)
from poolsdk import (
    AccountStateStore,
    BalanceWatcher,
    RatioPricingEngine,
    SettlementOrchestrator,
    SettlementStatus,
    SwapExecutor,
    TransactionOriginResolver,
)

XAVIER = "XavierWa11et111111111111111111111111111111"


async def _yield_to_tasks():
    # Let reader and consumer tasks pick up pushed notifications
    for _ in range(10):
        await asyncio.sleep(0)


def test_start_seeds_initial_balances() -> None:
    ledger = FakeLedger(native="100", token="50")
    store = AccountStateStore()

    async def handler(event):
        pass

    async def scenario():
        watcher = BalanceWatcher(ledger, store, handler)
        monitored = await watcher.start([NATIVE_ACCOUNT, TOKEN_ACCOUNT])
        status = watcher.status()
        await watcher.stop()
        return monitored, status

    monitored, status = asyncio.run(scenario())

    assert monitored == [NATIVE_ACCOUNT, TOKEN_ACCOUNT]
    assert store.get(NATIVE_ACCOUNT).current_balance == Decimal("100")
    assert store.get(TOKEN_ACCOUNT).previous_balance == Decimal("50")
    assert store.get(TOKEN_ACCOUNT).subscription_handle == 2
    assert status["failures"] == {}
    assert all(sub.closed for sub in ledger.subscriptions.values())


def test_same_account_notifications_are_handled_in_order_one_at_a_time() -> None:
    ledger = FakeLedger(native="100", token="50")
    store = AccountStateStore()
    seen = []
    active = 0
    max_active = 0

    async def scenario():
        gate = asyncio.Event()

        async def handler(event):
            nonlocal active, max_active
            active += 1
            max_active = max(max_active, active)
            seen.append(event)
            if len(seen) == 1:
                await gate.wait()
            active -= 1

        watcher = BalanceWatcher(ledger, store, handler)
        await watcher.start([NATIVE_ACCOUNT])
        sub = ledger.subscriptions[POOL_WALLET]
        sub.push("101")
        sub.push("103")
        await _yield_to_tasks()

        # Second notification waits behind the first
        assert len(seen) == 1
        assert store.get(NATIVE_ACCOUNT).current_balance == Decimal("101")

        gate.set()
        await watcher.drain()
        await watcher.stop()

    asyncio.run(scenario())

    assert max_active == 1
    assert [e.current for e in seen] == [Decimal("101"), Decimal("103")]
    assert seen[1].previous == Decimal("101")
    assert [e.delta for e in seen] == [Decimal("1"), Decimal("2")]


def test_accounts_do_not_block_each_other() -> None:
    ledger = FakeLedger(native="100", token="50")
    store = AccountStateStore()
    seen = []

    async def scenario():
        gate = asyncio.Event()

        async def handler(event):
            seen.append(event.account)
            if event.account == NATIVE_ACCOUNT:
                await gate.wait()

        watcher = BalanceWatcher(ledger, store, handler)
        await watcher.start([NATIVE_ACCOUNT, TOKEN_ACCOUNT])
        ledger.subscriptions[POOL_WALLET].push("101")
        await _yield_to_tasks()
        ledger.subscriptions[POOL_TOKEN_ACCOUNT].push("51")
        await _yield_to_tasks()

        assert seen == [NATIVE_ACCOUNT, TOKEN_ACCOUNT]
        gate.set()
        await watcher.drain()
        await watcher.stop()

    asyncio.run(scenario())


def test_handler_error_does_not_stop_the_stream() -> None:
    ledger = FakeLedger(native="100", token="50")
    store = AccountStateStore()
    seen = []

    async def handler(event):
        seen.append(event.current)
        if len(seen) == 1:
            raise RuntimeError("boom")

    async def scenario():
        watcher = BalanceWatcher(ledger, store, handler)
        await watcher.start([NATIVE_ACCOUNT])
        sub = ledger.subscriptions[POOL_WALLET]
        sub.push("101")
        sub.push("102")
        await _yield_to_tasks()
        await watcher.drain()
        await watcher.stop()

    asyncio.run(scenario())

    assert seen == [Decimal("101"), Decimal("102")]


def test_failed_account_is_dropped_and_the_other_keeps_running() -> None:
    ledger = FakeLedger(native="100", token="50")
    ledger.failing_balances.add(POOL_TOKEN_ACCOUNT)
    store = AccountStateStore()

    async def handler(event):
        pass

    async def scenario():
        watcher = BalanceWatcher(ledger, store, handler)
        monitored = await watcher.start([NATIVE_ACCOUNT, TOKEN_ACCOUNT])
        failures = dict(watcher.failures)
        await watcher.stop()
        return monitored, failures

    monitored, failures = asyncio.run(scenario())

    assert monitored == [NATIVE_ACCOUNT]
    assert TOKEN_ACCOUNT in failures
    assert failures[TOKEN_ACCOUNT].startswith("initial balance")
    assert store.get(TOKEN_ACCOUNT) is None
    assert POOL_TOKEN_ACCOUNT not in ledger.subscriptions


def test_subscription_failure_is_recorded() -> None:
    ledger = FakeLedger(native="100", token="50")
    ledger.failing_subscriptions.add(POOL_WALLET)

    async def handler(event):
        pass

    async def scenario():
        watcher = BalanceWatcher(ledger, AccountStateStore(), handler)
        monitored = await watcher.start([NATIVE_ACCOUNT, TOKEN_ACCOUNT])
        failures = dict(watcher.failures)
        await watcher.stop()
        return monitored, failures

    monitored, failures = asyncio.run(scenario())

    assert monitored == [TOKEN_ACCOUNT]
    assert failures[NATIVE_ACCOUNT].startswith("subscribe")


def test_closed_stream_is_reported_after_pending_notifications() -> None:
    ledger = FakeLedger(native="100", token="50")
    seen = []

    async def handler(event):
        seen.append(event.current)

    async def scenario():
        watcher = BalanceWatcher(ledger, AccountStateStore(), handler)
        await watcher.start([NATIVE_ACCOUNT])
        sub = ledger.subscriptions[POOL_WALLET]
        sub.push("101")
        sub.end()
        await _yield_to_tasks()
        await watcher.drain()
        status = watcher.status()
        monitored = watcher.monitored
        await watcher.stop()
        return status, monitored

    status, monitored = asyncio.run(scenario())

    assert seen == [Decimal("101")]
    assert monitored == []
    assert status["closed"] == [POOL_WALLET]


def test_deposit_is_settled_at_live_ratio_and_ratio_is_requeried() -> None:
    ledger = FakeLedger(native="100", token="50")
    ledger.history[POOL_WALLET] = [native_deposit("sig-x", XAVIER, 4_000_000_000)]
    store = AccountStateStore()
    pricing = RatioPricingEngine(ledger, NATIVE_ACCOUNT, TOKEN_ACCOUNT)
    orchestrator = SettlementOrchestrator(
        NATIVE_ACCOUNT,
        TOKEN_ACCOUNT,
        TransactionOriginResolver(ledger, delay_s=0),
        pricing,
        SwapExecutor(ledger),
    )

    async def scenario():
        watcher = BalanceWatcher(ledger, store, orchestrator.handle_event)
        await watcher.start([NATIVE_ACCOUNT, TOKEN_ACCOUNT])

        # Ledger already reflects the deposit when the notification arrives
        ledger.set_balance(POOL_WALLET, "104")
        ledger.subscriptions[POOL_WALLET].push("104")
        await _yield_to_tasks()
        await watcher.drain()

        after = await pricing.snapshot()
        await watcher.stop()
        return after

    after = asyncio.run(scenario())

    outcome = orchestrator.recent_outcomes[-1]
    assert outcome.status is SettlementStatus.SETTLED
    assert outcome.counterparty == XAVIER
    assert outcome.request.computed_at_ratio == Decimal("2")
    assert outcome.request.counter_amount == Decimal("2")
    assert ledger.transfers == [(XAVIER, TOKEN, 2_000_000)]

    assert after.native_balance == Decimal("104")
    assert after.token_balance == Decimal("48")
    assert after.ratio == Decimal("104") / Decimal("48")
