"""
battle_core/models.py — Data definitions for price battles.

A battle is one up/down round on a single reference asset. Players stake on
a direction, the battle closes with a second price reading, and the pool is
paid out pro-rata to the winning side.

These dataclasses are shared by the engine, the reports, the dashboard and
the agent runner.
"""

import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

from battle_core.custody import Balance


# ---------------------------------------------------------------------------
# Direction / Outcome
# ---------------------------------------------------------------------------
# Directions arrive from callers as plain integers, so they are kept as ints
# rather than an Enum; anything outside {DOWN, UP} is rejected at join time.

class Direction:
    DOWN = 0
    UP   = 1

    ALL = (DOWN, UP)


class Outcome:
    DOWN = 0
    UP   = 1
    TIE  = 2


_DIRECTION_NAMES = {Direction.DOWN: "DOWN", Direction.UP: "UP"}
_OUTCOME_NAMES   = {Outcome.DOWN: "DOWN", Outcome.UP: "UP", Outcome.TIE: "TIE"}


def direction_name(direction: int) -> str:
    return _DIRECTION_NAMES.get(direction, f"INVALID({direction})")


def outcome_name(outcome: int) -> str:
    return _OUTCOME_NAMES.get(outcome, f"INVALID({outcome})")


def outcome_for(open_magnitude: int, close_magnitude: int) -> int:
    """Compare two price magnitudes. Integers only, no rounding involved."""
    if close_magnitude > open_magnitude:
        return Outcome.UP
    if close_magnitude < open_magnitude:
        return Outcome.DOWN
    return Outcome.TIE


# ---------------------------------------------------------------------------
# Readings
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PlainReading:
    """
    An unsigned price, as set on the mock oracle or passed in directly.
    """
    magnitude: int


@dataclass(frozen=True)
class ScaledReading:
    """
    A pull-oracle price: sign + magnitude, scaled by 10**exponent.

    Two readings are only comparable when their exponents are equal; the
    engine enforces that before comparing magnitudes.
    """
    magnitude: int   # Absolute value of the price mantissa
    negative: bool   # True if the oracle reported a negative price
    exponent: int    # Usually negative, e.g. -8 for BTC/USD

    @property
    def signed(self) -> int:
        return -self.magnitude if self.negative else self.magnitude


Reading = Union[PlainReading, ScaledReading]


def reading_value(reading: Optional[Reading]):
    """JSON-friendly form of a reading (None stays None)."""
    if reading is None:
        return None
    if isinstance(reading, ScaledReading):
        return {"price": reading.signed, "expo": reading.exponent}
    return reading.magnitude


# ---------------------------------------------------------------------------
# Position
# ---------------------------------------------------------------------------

@dataclass
class Position:
    """
    One player's stake in one battle. Direction and stake never change;
    only `claimed` flips, once.
    """
    direction: int          # Direction.UP or Direction.DOWN
    stake: int              # Net amount after the flat fee
    claimed: bool = False   # True after a successful claim


# ---------------------------------------------------------------------------
# Battle
# ---------------------------------------------------------------------------

@dataclass
class Battle:
    """
    One wagering round.

    `asset_ids` is a list so several assets could be compared one day; today
    exactly one entry is stored and index 0 is the only one read.
    """
    battle_id: int
    asset_ids: List[bytes]          # Reference feed id(s); only [0] is used
    open_reading: Reading           # Fixed at creation
    open_time: int                  # ms since epoch, stakes accepted from here
    close_time: int                 # ms since epoch, stakes refused from here
    close_reading: Optional[Reading] = None
    is_closed: bool = False
    outcome: int = Outcome.TIE      # Placeholder until is_closed
    pool: Balance = field(default_factory=Balance.zero)
    pool_at_close: int = 0          # Pool value frozen at close, used for payouts
    total_up: int = 0
    total_down: int = 0
    positions: Dict[str, Position] = field(default_factory=dict)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def asset_id(self) -> bytes:
        return self.asset_ids[0]

    @property
    def has_external_reading(self) -> bool:
        """True when the battle was opened from a pull-oracle price feed."""
        return isinstance(self.open_reading, ScaledReading)

    def total_for(self, direction: int) -> int:
        return self.total_up if direction == Direction.UP else self.total_down

    def summary(self) -> dict:
        return {
            "battle_id":     self.battle_id,
            "asset_id":      self.asset_id.hex(),
            "open_time":     self.open_time,
            "close_time":    self.close_time,
            "open_price":    reading_value(self.open_reading),
            "close_price":   reading_value(self.close_reading),
            "external":      self.has_external_reading,
            "is_closed":     self.is_closed,
            "outcome":       outcome_name(self.outcome) if self.is_closed else None,
            "total_up":      self.total_up,
            "total_down":    self.total_down,
            "pool":          self.pool.value,
            "pool_at_close": self.pool_at_close,
            "players":       len(self.positions),
        }
