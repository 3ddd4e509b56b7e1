"""
battle_core/custody.py — Movable value: balances and per-identity holdings.

A Balance is an amount that can only be moved, never copied. Splitting takes
value out of one Balance into a new one; joining drains another Balance into
this one. The only way to create value is mint_for_testing().

The engine treats these as opaque and never edits a Balance's amount directly.
"""

from __future__ import annotations

import threading
from typing import Dict

from battle_core.errors import InsufficientBalanceError


class Balance:
    """An amount of value held in one place."""

    __slots__ = ("_value",)

    def __init__(self, value: int = 0):
        if value < 0:
            raise ValueError("Balance cannot be negative")
        self._value = value

    @classmethod
    def zero(cls) -> "Balance":
        return cls(0)

    @classmethod
    def mint_for_testing(cls, amount: int) -> "Balance":
        """Create new value out of nothing. Tests and demos only."""
        return cls(amount)

    @property
    def value(self) -> int:
        return self._value

    def split(self, amount: int) -> "Balance":
        """Move `amount` out of this balance into a new one."""
        if amount < 0 or amount > self._value:
            raise InsufficientBalanceError(amount, self._value)
        self._value -= amount
        return Balance(amount)

    def join(self, other: "Balance") -> int:
        """Drain `other` into this balance. Returns the new value."""
        self._value += other._value
        other._value = 0
        return self._value

    def withdraw_all(self) -> "Balance":
        return self.split(self._value)

    def __repr__(self) -> str:
        return f"Balance({self._value})"


class Vault:
    """
    Holdings keyed by identity. Stands in for "send this value to that
    address": payouts and fee withdrawals land here.
    """

    def __init__(self):
        self._holdings: Dict[str, Balance] = {}
        self._lock = threading.Lock()

    def transfer_to(self, identity: str, balance: Balance) -> None:
        with self._lock:
            held = self._holdings.setdefault(identity, Balance.zero())
            held.join(balance)

    def balance_of(self, identity: str) -> int:
        with self._lock:
            held = self._holdings.get(identity)
            return held.value if held is not None else 0

    def take(self, identity: str) -> Balance:
        """Remove and return everything held for `identity`."""
        with self._lock:
            held = self._holdings.get(identity)
            if held is None:
                return Balance.zero()
            return held.withdraw_all()

    def total(self) -> int:
        with self._lock:
            return sum(b.value for b in self._holdings.values())
