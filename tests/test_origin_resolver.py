from __future__ import annotations

import asyncio

import pytest

from fakes import (
    NATIVE_ACCOUNT,
    POOL_WALLET,
    TOKEN_ACCOUNT,
    FakeLedger,
    native_deposit,
    native_payout,
    token_deposit,
)
from poolsdk import RPCError, TransactionOriginResolver

ALICE = "A1iceWa11et11111111111111111111111111111111"
BOB = "BobWa11et111111111111111111111111111111111"


def _resolve(ledger, account, **kwargs):
    resolver = TransactionOriginResolver(ledger, delay_s=0)
    return asyncio.run(resolver.resolve(account, **kwargs))


def test_most_recent_incoming_native_transfer_wins() -> None:
    ledger = FakeLedger()
    ledger.history[POOL_WALLET] = [
        native_payout("sig-out", BOB, 10),
        native_deposit("sig-alice", ALICE, 4_000_000_000),
        native_deposit("sig-bob", BOB, 1_000_000_000),
    ]

    origin = _resolve(ledger, NATIVE_ACCOUNT)

    assert origin.address == ALICE
    assert origin.signature == "sig-alice"
    assert ledger.history_requests == [(POOL_WALLET, 3)]


def test_deposit_beyond_lookback_window_is_unresolved() -> None:
    ledger = FakeLedger()
    ledger.history[POOL_WALLET] = [
        native_payout("sig-1", BOB, 10),
        native_payout("sig-2", BOB, 10),
        native_payout("sig-3", BOB, 10),
        native_deposit("sig-4", ALICE, 4_000_000_000),
    ]

    assert _resolve(ledger, NATIVE_ACCOUNT) is None


def test_failed_transactions_are_skipped() -> None:
    ledger = FakeLedger()
    ledger.history[POOL_WALLET] = [
        native_deposit("sig-failed", BOB, 1, err={"InstructionError": [0, "InsufficientFunds"]}),
        native_deposit("sig-ok", ALICE, 2),
    ]

    assert _resolve(ledger, NATIVE_ACCOUNT).address == ALICE


def test_already_attributed_signatures_are_excluded() -> None:
    ledger = FakeLedger()
    ledger.history[POOL_WALLET] = [
        native_deposit("sig-alice", ALICE, 2),
        native_deposit("sig-bob", BOB, 2),
    ]

    origin = _resolve(ledger, NATIVE_ACCOUNT, exclude=["sig-alice"])
    assert origin.address == BOB

    assert _resolve(ledger, NATIVE_ACCOUNT, exclude=["sig-alice", "sig-bob"]) is None


def test_token_deposit_resolves_to_signing_wallet() -> None:
    ledger = FakeLedger()
    ledger.history[TOKEN_ACCOUNT.address] = [token_deposit("sig-tok", ALICE, 5_000_000)]

    origin = _resolve(ledger, TOKEN_ACCOUNT)

    assert origin.address == ALICE
    assert origin.signature == "sig-tok"


def test_history_failure_is_unresolved() -> None:
    class BrokenLedger(FakeLedger):
        async def get_recent_transactions(self, address, limit):
            raise RPCError(-32005, "Node is behind")

    assert _resolve(BrokenLedger(), NATIVE_ACCOUNT) is None


def test_resolution_waits_before_reading_history(monkeypatch: pytest.MonkeyPatch) -> None:
    ledger = FakeLedger()
    ledger.history[POOL_WALLET] = [native_deposit("sig-alice", ALICE, 2)]
    order = []

    real_sleep = asyncio.sleep

    async def recording_sleep(delay, *args, **kwargs):
        order.append(("sleep", delay, len(ledger.history_requests)))
        await real_sleep(0)

    monkeypatch.setattr("poolsdk.origin_resolver.asyncio.sleep", recording_sleep)

    resolver = TransactionOriginResolver(ledger, lookback=3, delay_s=3.0)
    origin = asyncio.run(resolver.resolve(NATIVE_ACCOUNT))

    assert origin.address == ALICE
    assert order == [("sleep", 3.0, 0)]
    assert ledger.history_requests == [(POOL_WALLET, 3)]
