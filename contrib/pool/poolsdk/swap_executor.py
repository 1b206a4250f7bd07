# Copyright (c) 2025 The Pool Swap Watcher developers
# Distributed under the MIT software license

"""
Pool Swap SDK - Swap Executor

Quotes and submits the counter-transfer for a resolved deposit:

    native deposit a  ->  a / ratio  token
    token deposit a   ->  a * ratio  native

Amounts are floored to the counter asset's smallest unit. One attempt per
request; failures are raised as TransferFailed and never retried.
"""

import logging
from decimal import Decimal
from typing import Optional

from .errors import PricingError, TransferFailed
from .pool_types import (
    AssetKind,
    BalanceChangeEvent,
    PoolSnapshot,
    ResolvedOrigin,
    SwapRequest,
    TransferReference,
)

log = logging.getLogger(__name__)


def quote_counter_amount(deposited_asset: AssetKind, amount: Decimal,
                         ratio: Decimal, counter_asset: AssetKind) -> Decimal:
    """Counter amount for a deposit at ratio (native per token), floored."""
    if ratio <= 0:
        raise PricingError(f"Pool ratio must be positive, got {ratio}")
    if deposited_asset.is_native:
        counter = amount / ratio
    else:
        counter = amount * ratio
    return counter_asset.floor(counter)


class SwapExecutor:

    def __init__(self, ledger):
        self.ledger = ledger

    def build_request(self, origin: ResolvedOrigin, event: BalanceChangeEvent,
                      snapshot: PoolSnapshot, counter_asset: AssetKind) -> SwapRequest:
        deposited_asset = event.account.asset
        return SwapRequest(
            counterparty=origin.address,
            deposited_asset=deposited_asset,
            deposited_amount=event.amount,
            counter_asset=counter_asset,
            counter_amount=quote_counter_amount(
                deposited_asset, event.amount, snapshot.ratio, counter_asset
            ),
            computed_at_ratio=snapshot.ratio,
            origin_signature=origin.signature,
            event=event,
        )

    async def execute(self, request: SwapRequest,
                      snapshot: Optional[PoolSnapshot] = None) -> TransferReference:
        """
        Submit and confirm the counter-transfer.

        Args:
            request: priced swap request
            snapshot: pool balances the request was priced from, used to
                refuse transfers the pool cannot cover

        Raises:
            TransferFailed: dust, insufficient_funds, rejected, timeout, failed,
                unconfirmed
        """
        asset = request.counter_asset
        raw_amount = asset.to_raw(request.counter_amount)

        if raw_amount <= 0:
            raise TransferFailed(
                "dust",
                f"{request.deposited_amount} {request.deposited_asset.symbol} is worth less than "
                f"1 unit of {asset.symbol} at ratio {request.computed_at_ratio}",
            )
        if snapshot is not None and request.counter_amount > snapshot.balance_of(asset):
            raise TransferFailed(
                "insufficient_funds",
                f"Pool holds {snapshot.balance_of(asset)} {asset.symbol}, "
                f"needs {request.counter_amount}",
            )

        log.info(f"Auto-swap: received {request.deposited_amount:.6f} "
                 f"{request.deposited_asset.symbol} from {request.counterparty}, "
                 f"sending {request.counter_amount:.{asset.decimals}f} {asset.symbol} back")

        try:
            signature = await self.ledger.submit_transfer(request.counterparty, asset, raw_amount)
        except TransferFailed:
            raise
        except Exception as e:
            raise TransferFailed("rejected", str(e)) from e

        log.info(f"Sent {request.counter_amount:.{asset.decimals}f} {asset.symbol} "
                 f"to {request.counterparty}")
        log.info(f"Transaction: {signature}")

        return TransferReference(
            signature=signature,
            destination=request.counterparty,
            asset=asset,
            amount=request.counter_amount,
            raw_amount=raw_amount,
        )
