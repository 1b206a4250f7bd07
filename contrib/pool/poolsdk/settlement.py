# Copyright (c) 2025 The Pool Swap Watcher developers
# Distributed under the MIT software license

"""
Pool Swap SDK - Settlement Orchestrator

Per-account state machine driven by balance change events:

  IDLE               - waiting for an incoming deposit
  AWAITING_RESOLUTION - looking up who sent it
  PRICING            - reading the live pool ratio
  SETTLING           - counter-transfer submitted, awaiting confirmation

Every pass ends back in IDLE with a SettlementOutcome. Failures are logged
with enough detail for manual reconciliation; nothing is compensated or
retried automatically.
"""

import json
import logging
from collections import deque
from enum import Enum
from pathlib import Path
from typing import Deque, Dict, List, Optional

from .errors import PricingError, TransferFailed
from .origin_resolver import TransactionOriginResolver
from .pool_types import (
    BalanceChangeEvent,
    BalanceDirection,
    MonitoredAccount,
    SettlementOutcome,
    SettlementStatus,
)
from .ratio_pricing import RatioPricingEngine
from .swap_executor import SwapExecutor

log = logging.getLogger(__name__)

ATTRIBUTED_SIGNATURES_KEPT = 64
RECENT_OUTCOMES_KEPT = 100


class SettlementPhase(Enum):
    IDLE = "idle"
    AWAITING_RESOLUTION = "awaiting_resolution"
    PRICING = "pricing"
    SETTLING = "settling"


class SettlementJournal:
    """Append-only JSON lines of settlement outcomes. Never replayed."""

    def __init__(self, path: str):
        self.path = Path(path)

    def record(self, outcome: SettlementOutcome):
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a") as f:
                f.write(json.dumps(outcome.to_dict()) + "\n")
        except OSError as e:
            log.error(f"Failed to write settlement journal {self.path}: {e}")


class SettlementOrchestrator:
    """
    Usage:
        orchestrator = SettlementOrchestrator(native, token, resolver, pricing, executor)
        watcher = BalanceWatcher(rpc, store, orchestrator.handle_event)
    """

    def __init__(self, native_account: MonitoredAccount, token_account: Optional[MonitoredAccount],
                 resolver: TransactionOriginResolver, pricing: RatioPricingEngine,
                 executor: SwapExecutor, journal: Optional[SettlementJournal] = None):
        self.native_account = native_account
        self.token_account = token_account
        self.resolver = resolver
        self.pricing = pricing
        self.executor = executor
        self.journal = journal
        self._phases: Dict[MonitoredAccount, SettlementPhase] = {}
        self._attributed: Dict[MonitoredAccount, Deque[str]] = {}
        self._recent: Deque[SettlementOutcome] = deque(maxlen=RECENT_OUTCOMES_KEPT)

    def phase(self, account: MonitoredAccount) -> SettlementPhase:
        return self._phases.get(account, SettlementPhase.IDLE)

    def counter_account(self, account: MonitoredAccount) -> MonitoredAccount:
        return self.token_account if account.asset.is_native else self.native_account

    @property
    def recent_outcomes(self) -> List[SettlementOutcome]:
        return list(self._recent)

    async def handle_event(self, event: BalanceChangeEvent) -> SettlementOutcome:
        account = event.account

        if event.direction is not BalanceDirection.INCOMING:
            log.debug(f"{event.direction.value} change on {account.label}, no settlement")
            return SettlementOutcome(status=SettlementStatus.IGNORED, event=event)

        if self.phase(account) is not SettlementPhase.IDLE:
            raise RuntimeError(
                f"Settlement already in flight for {account.label} ({self.phase(account).value})"
            )

        log.info(f"Processing automatic swap for incoming {event.amount} "
                 f"{account.asset.symbol} to {account.address}")
        try:
            outcome = await self._settle(event)
        finally:
            self._phases[account] = SettlementPhase.IDLE

        self._report(outcome)
        return outcome

    async def _settle(self, event: BalanceChangeEvent) -> SettlementOutcome:
        account = event.account
        attributed = self._attributed.setdefault(account, deque(maxlen=ATTRIBUTED_SIGNATURES_KEPT))

        self._phases[account] = SettlementPhase.AWAITING_RESOLUTION
        origin = await self.resolver.resolve(account, exclude=attributed)
        if origin is None:
            return SettlementOutcome(
                status=SettlementStatus.UNRESOLVED,
                event=event,
                error="No incoming transfer found in the lookback window",
            )
        attributed.append(origin.signature)
        log.info(f"Detected sender: {origin.address}")

        self._phases[account] = SettlementPhase.PRICING
        try:
            live = await self.pricing.snapshot()
            snapshot = live.without_deposit(account.asset, event.amount)
            request = self.executor.build_request(
                origin, event, snapshot, self.counter_account(account).asset
            )
        except PricingError as e:
            return SettlementOutcome(
                status=SettlementStatus.PRICING_FAILED,
                event=event,
                counterparty=origin.address,
                error=str(e),
            )

        self._phases[account] = SettlementPhase.SETTLING
        try:
            reference = await self.executor.execute(request, snapshot)
        except TransferFailed as e:
            return SettlementOutcome(
                status=SettlementStatus.TRANSFER_FAILED,
                event=event,
                counterparty=origin.address,
                request=request,
                error=f"{e.kind}: {e.message}" + (f" (tx {e.signature})" if e.signature else ""),
            )

        return SettlementOutcome(
            status=SettlementStatus.SETTLED,
            event=event,
            counterparty=origin.address,
            request=request,
            reference=reference,
        )

    def _report(self, outcome: SettlementOutcome):
        self._recent.append(outcome)
        if self.journal:
            self.journal.record(outcome)

        event = outcome.event
        deposit = f"{event.amount} {event.account.asset.symbol}"
        if outcome.status is SettlementStatus.SETTLED:
            req = outcome.request
            log.info(f"Swap settled: {deposit} from {outcome.counterparty} -> "
                     f"{req.counter_amount} {req.counter_asset.symbol} "
                     f"at ratio {req.computed_at_ratio:.6f} (tx {outcome.reference.signature})")
        elif outcome.status is SettlementStatus.UNRESOLVED:
            log.warning(f"Could not determine sender for {deposit} on "
                        f"{event.account.address}, skipping auto-swap")
        elif outcome.status is SettlementStatus.PRICING_FAILED:
            log.warning(f"Pricing failed for {deposit} from {outcome.counterparty}, "
                        f"skipping auto-swap: {outcome.error}")
        else:
            req = outcome.request
            log.error(f"UNSETTLED: {deposit} from {outcome.counterparty}, owed "
                      f"{req.counter_amount} {req.counter_asset.symbol} at ratio "
                      f"{req.computed_at_ratio:.6f} (origin tx {req.origin_signature}): "
                      f"{outcome.error}")
