# Copyright (c) 2025 The Pool Swap Watcher developers
# Distributed under the MIT software license

"""
Pool Swap SDK - Data Types

Monitored accounts, balance change events, pool snapshots and the swap
records that flow through the settlement pipeline.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, ROUND_FLOOR
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import ZeroBalanceError

NATIVE_SYMBOL = "SOL"
NATIVE_DECIMALS = 9  # lamports per SOL = 10**9


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AssetKind:
    """
    One side of the pool.

    Native assets have no mint. Token assets carry the SPL mint address and
    the number of decimal places of the mint.
    """
    symbol: str
    decimals: int
    mint: Optional[str] = None

    @classmethod
    def native(cls) -> "AssetKind":
        return cls(symbol=NATIVE_SYMBOL, decimals=NATIVE_DECIMALS)

    @classmethod
    def token(cls, mint: str, decimals: int, symbol: str = "LLC") -> "AssetKind":
        return cls(symbol=symbol, decimals=decimals, mint=mint)

    @property
    def is_native(self) -> bool:
        return self.mint is None

    @property
    def unit(self) -> Decimal:
        """Smallest indivisible amount of this asset."""
        return Decimal(1).scaleb(-self.decimals)

    def floor(self, amount: Decimal) -> Decimal:
        """Floor amount to the smallest unit (never rounds up)."""
        return Decimal(amount).quantize(self.unit, rounding=ROUND_FLOOR)

    def to_raw(self, amount: Decimal) -> int:
        """Convert a UI amount to base units, flooring any fraction."""
        scaled = Decimal(amount) * (Decimal(10) ** self.decimals)
        return int(scaled.to_integral_value(rounding=ROUND_FLOOR))

    def from_raw(self, raw: int) -> Decimal:
        return Decimal(int(raw)).scaleb(-self.decimals)

    def to_dict(self) -> dict:
        return {"symbol": self.symbol, "decimals": self.decimals, "mint": self.mint}


@dataclass(frozen=True)
class MonitoredAccount:
    """
    One tracked balance stream.

    For the native stream address == owner == pool wallet. For the token
    stream address is the pool's associated token account.
    """
    address: str
    asset: AssetKind
    owner: str = ""

    @property
    def label(self) -> str:
        return f"{self.asset.symbol}:{self.address[:8]}..."

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "owner": self.owner or self.address,
            "asset": self.asset.to_dict(),
        }


@dataclass
class AccountState:
    """Current and previous balance of one monitored account."""
    account: MonitoredAccount
    current_balance: Decimal
    previous_balance: Decimal
    last_update: datetime
    subscription_handle: Any = None

    def to_dict(self) -> dict:
        return {
            "account": self.account.to_dict(),
            "current_balance": str(self.current_balance),
            "previous_balance": str(self.previous_balance),
            "last_update": self.last_update.isoformat(),
            "subscription": self.subscription_handle,
        }


class BalanceDirection(Enum):
    INCOMING = "incoming"
    OUTGOING = "outgoing"
    NEGLIGIBLE = "negligible"


@dataclass(frozen=True)
class BalanceChangeEvent:
    """Derived from one applied notification; never stored."""
    account: MonitoredAccount
    previous: Decimal
    current: Decimal
    timestamp: datetime

    @property
    def delta(self) -> Decimal:
        return self.current - self.previous

    @property
    def amount(self) -> Decimal:
        return abs(self.delta)

    @property
    def direction(self) -> BalanceDirection:
        if self.delta > 0:
            return BalanceDirection.INCOMING
        if self.delta < 0:
            return BalanceDirection.OUTGOING
        return BalanceDirection.NEGLIGIBLE

    def to_dict(self) -> dict:
        return {
            "account": self.account.address,
            "asset": self.account.asset.symbol,
            "previous": str(self.previous),
            "current": str(self.current),
            "delta": str(self.delta),
            "direction": self.direction.value,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class PoolSnapshot:
    """Both pool balances read at one settlement attempt."""
    native_balance: Decimal
    token_balance: Decimal
    ratio: Decimal
    taken_at: datetime

    @classmethod
    def from_balances(cls, native_balance: Decimal, token_balance: Decimal,
                      taken_at: Optional[datetime] = None) -> "PoolSnapshot":
        if token_balance == 0:
            raise ZeroBalanceError("Token balance is zero, pool ratio undefined")
        return cls(
            native_balance=native_balance,
            token_balance=token_balance,
            ratio=native_balance / token_balance,
            taken_at=taken_at or utcnow(),
        )

    def without_deposit(self, asset: AssetKind, amount: Decimal) -> "PoolSnapshot":
        """
        Pool as it stood before amount of asset was deposited.

        Balances are read after the deposit has confirmed, so the deposit
        itself must not move the price it is paid at.
        """
        if asset.is_native:
            return PoolSnapshot.from_balances(self.native_balance - amount, self.token_balance, self.taken_at)
        return PoolSnapshot.from_balances(self.native_balance, self.token_balance - amount, self.taken_at)

    def balance_of(self, asset: AssetKind) -> Decimal:
        return self.native_balance if asset.is_native else self.token_balance

    def to_dict(self) -> dict:
        return {
            "native_balance": str(self.native_balance),
            "token_balance": str(self.token_balance),
            "ratio": str(self.ratio),
            "taken_at": self.taken_at.isoformat(),
        }


# =============================================================================
# PARSED LEDGER HISTORY
# =============================================================================

TRANSFER_TYPES = ("transfer", "transferChecked")


@dataclass(frozen=True)
class TransferInstruction:
    """A parsed system or spl-token transfer."""
    program: str
    kind: str
    source: str
    destination: str
    authority: str = ""
    raw_amount: int = 0

    @classmethod
    def from_parsed(cls, instruction: Dict[str, Any]) -> Optional["TransferInstruction"]:
        parsed = instruction.get("parsed")
        if not isinstance(parsed, dict) or parsed.get("type") not in TRANSFER_TYPES:
            return None
        info = parsed.get("info") or {}
        if "lamports" in info:
            raw_amount = int(info["lamports"])
        elif "tokenAmount" in info:
            raw_amount = int(info["tokenAmount"].get("amount", 0))
        else:
            raw_amount = int(info.get("amount", 0))
        return cls(
            program=instruction.get("program", ""),
            kind=parsed["type"],
            source=info.get("source", ""),
            destination=info.get("destination", ""),
            authority=info.get("authority") or info.get("multisigAuthority") or "",
            raw_amount=raw_amount,
        )


@dataclass(frozen=True)
class ParsedTransaction:
    """Normalized getTransaction(jsonParsed) result."""
    signature: str
    slot: int
    block_time: Optional[int]
    err: Any
    transfers: List[TransferInstruction] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.err is None

    @classmethod
    def from_rpc(cls, signature: str, result: Dict[str, Any]) -> "ParsedTransaction":
        meta = result.get("meta") or {}
        message = (result.get("transaction") or {}).get("message") or {}

        instructions = list(message.get("instructions") or [])
        for inner in meta.get("innerInstructions") or []:
            instructions.extend(inner.get("instructions") or [])

        transfers = []
        for ix in instructions:
            transfer = TransferInstruction.from_parsed(ix)
            if transfer:
                transfers.append(transfer)

        return cls(
            signature=signature,
            slot=int(result.get("slot", 0)),
            block_time=result.get("blockTime"),
            err=meta.get("err"),
            transfers=transfers,
        )


# =============================================================================
# SWAP RECORDS
# =============================================================================

@dataclass(frozen=True)
class ResolvedOrigin:
    """Counterparty of a deposit and the transaction it came from."""
    address: str
    signature: str
    slot: int = 0


@dataclass(frozen=True)
class SwapRequest:
    counterparty: str
    deposited_asset: AssetKind
    deposited_amount: Decimal
    counter_asset: AssetKind
    counter_amount: Decimal
    computed_at_ratio: Decimal
    origin_signature: str = ""
    event: Optional[BalanceChangeEvent] = None

    def to_dict(self) -> dict:
        return {
            "counterparty": self.counterparty,
            "deposited_asset": self.deposited_asset.symbol,
            "deposited_amount": str(self.deposited_amount),
            "counter_asset": self.counter_asset.symbol,
            "counter_amount": str(self.counter_amount),
            "ratio": str(self.computed_at_ratio),
            "origin_signature": self.origin_signature,
            "event": self.event.to_dict() if self.event else None,
        }


@dataclass(frozen=True)
class TransferReference:
    signature: str
    destination: str
    asset: AssetKind
    amount: Decimal
    raw_amount: int
    confirmed_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "signature": self.signature,
            "destination": self.destination,
            "asset": self.asset.symbol,
            "amount": str(self.amount),
            "raw_amount": self.raw_amount,
            "confirmed_at": self.confirmed_at.isoformat(),
        }


class SettlementStatus(Enum):
    IGNORED = "ignored"
    SETTLED = "settled"
    UNRESOLVED = "unresolved"
    PRICING_FAILED = "pricing_failed"
    TRANSFER_FAILED = "transfer_failed"


@dataclass
class SettlementOutcome:
    """Terminal result of one pass through the settlement pipeline."""
    status: SettlementStatus
    event: BalanceChangeEvent
    counterparty: Optional[str] = None
    request: Optional[SwapRequest] = None
    reference: Optional[TransferReference] = None
    error: str = ""
    finished_at: datetime = field(default_factory=utcnow)

    @property
    def account(self) -> MonitoredAccount:
        return self.event.account

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "event": self.event.to_dict(),
            "counterparty": self.counterparty,
            "request": self.request.to_dict() if self.request else None,
            "reference": self.reference.to_dict() if self.reference else None,
            "error": self.error,
            "finished_at": self.finished_at.isoformat(),
        }
