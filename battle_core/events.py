"""
battle_core/events.py — Notifications emitted by the engine.

The engine records an event while it still holds the lock it committed
under, so the log order matches commit order. Subscribers are notified
afterwards, outside every engine lock. Nothing is recorded for an
operation that was rejected.
"""

import threading
from dataclasses import asdict, dataclass
from typing import Callable, Iterator, List, Optional, Type


@dataclass(frozen=True)
class BattleCreated:
    battle_id: int
    open_time: int
    close_time: int
    open_price: object   # int for plain readings, {"price", "expo"} for scaled


@dataclass(frozen=True)
class Joined:
    battle_id: int
    player: str
    direction: int
    stake: int


@dataclass(frozen=True)
class BattleClosed:
    battle_id: int
    close_price: object
    outcome: int


@dataclass(frozen=True)
class Claimed:
    battle_id: int
    player: str
    payout: int


@dataclass(frozen=True)
class FeesWithdrawn:
    recipient: str
    amount: int


class EventLog:
    """Append-only event list with optional subscriber callbacks."""

    def __init__(self):
        self._events: List[object] = []
        self._subscribers: List[Callable[[object], None]] = []
        self._lock = threading.Lock()

    def record(self, event) -> None:
        """Append without notifying. Safe to call while holding engine locks."""
        with self._lock:
            self._events.append(event)

    def notify(self, event) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            callback(event)

    def emit(self, event) -> None:
        self.record(event)
        self.notify(event)

    def subscribe(self, callback: Callable[[object], None]) -> None:
        with self._lock:
            self._subscribers.append(callback)

    def of_type(self, event_type: Type) -> List[object]:
        with self._lock:
            return [e for e in self._events if isinstance(e, event_type)]

    def last(self) -> Optional[object]:
        with self._lock:
            return self._events[-1] if self._events else None

    def to_dicts(self, limit: Optional[int] = None) -> List[dict]:
        with self._lock:
            events = self._events[-limit:] if limit else list(self._events)
        return [{"type": type(e).__name__, **asdict(e)} for e in events]

    def __iter__(self) -> Iterator[object]:
        with self._lock:
            return iter(list(self._events))

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
