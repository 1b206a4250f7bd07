# Copyright (c) 2025 The Pool Swap Watcher developers
# Distributed under the MIT software license

"""
Pool Swap SDK - Account State Store

In-memory current/previous balance per monitored account. The balance
watcher's per-account consumer task is the only caller of
apply_notification, so each record sees one mutation at a time.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from .errors import UnknownAccountError
from .pool_types import AccountState, BalanceChangeEvent, MonitoredAccount


class AccountStateStore:

    def __init__(self):
        self._states: Dict[MonitoredAccount, AccountState] = {}

    def seed(self, account: MonitoredAccount, balance: Decimal, timestamp: datetime) -> AccountState:
        """Start tracking account with current == previous == balance."""
        state = AccountState(
            account=account,
            current_balance=balance,
            previous_balance=balance,
            last_update=timestamp,
        )
        self._states[account] = state
        return state

    def get(self, account: MonitoredAccount) -> Optional[AccountState]:
        return self._states.get(account)

    def attach_subscription(self, account: MonitoredAccount, handle: Any):
        self._require(account).subscription_handle = handle

    def apply_notification(self, account: MonitoredAccount, new_balance: Decimal,
                           timestamp: datetime) -> BalanceChangeEvent:
        """
        Record a new balance and return the change against the last one.

        Raises:
            UnknownAccountError: account was never seeded
        """
        state = self._require(account)
        previous = state.current_balance

        state.previous_balance = previous
        state.current_balance = new_balance
        state.last_update = timestamp

        return BalanceChangeEvent(
            account=account,
            previous=previous,
            current=new_balance,
            timestamp=timestamp,
        )

    def accounts(self) -> List[MonitoredAccount]:
        return list(self._states)

    def to_dict(self) -> Dict[str, dict]:
        return {account.address: state.to_dict() for account, state in self._states.items()}

    def _require(self, account: MonitoredAccount) -> AccountState:
        state = self._states.get(account)
        if state is None:
            raise UnknownAccountError(account.address)
        return state
