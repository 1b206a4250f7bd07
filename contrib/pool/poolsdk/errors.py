# Copyright (c) 2025 The Pool Swap Watcher developers
# Distributed under the MIT software license

"""
Pool Swap SDK - Errors

Typed failures returned to the settlement orchestrator. Only ConfigError
is allowed to stop the process, and only at startup.
"""


class PoolError(Exception):
    """Base class for pool watcher errors."""


class ConfigError(PoolError):
    """Missing or invalid configuration."""


class UnknownAccountError(PoolError, KeyError):
    """Store was asked about an account it never seeded."""

    def __init__(self, address: str):
        self.address = address
        super().__init__(f"Account not monitored: {address}")

    def __str__(self) -> str:
        return self.args[0]


class PricingError(PoolError):
    """Pool ratio could not be computed."""


class ZeroBalanceError(PricingError, ZeroDivisionError):
    """Token side of the pool is empty, ratio undefined."""


class TransferFailed(PoolError):
    """
    Counter-transfer was not confirmed.

    kind is one of: dust, insufficient_funds, rejected, timeout, failed,
    unconfirmed. timeout, failed and unconfirmed carry the signature of the
    broadcast transaction.
    """

    def __init__(self, kind: str, message: str, signature: str = ""):
        self.kind = kind
        self.message = message
        self.signature = signature
        super().__init__(f"Transfer {kind}: {message}")


class PriceFeedError(PoolError):
    """External fiat price lookup failed."""
