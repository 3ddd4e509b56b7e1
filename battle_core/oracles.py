"""
battle_core/oracles.py — Price reference adapters.

Two sources of prices feed the engine:

  MockOracle  — an admin-controlled table of plain prices. Used for demos,
                tests, and any deployment where an operator posts prices.
  PullOracle  — reads a PriceFeed object that the caller refreshed earlier
                (see pyth_agent/data_fetcher.py) and rejects it if stale.

Neither adapter rejects negative prices; that check belongs to the engine,
which knows whether it is opening or closing a battle.
"""

import threading
from dataclasses import dataclass
from typing import Dict

from battle_core.errors import NotAdminError, PriceNotFoundError, StalePriceError
from battle_core.models import ScaledReading


# ---------------------------------------------------------------------------
# Mock oracle
# ---------------------------------------------------------------------------

class MockOracle:
    """
    Plain price table. Only `admin` may post prices; anyone may read.
    """

    def __init__(self, admin: str):
        self.admin = admin
        self._prices: Dict[bytes, int] = {}
        self._lock = threading.Lock()

    def set_price(self, caller: str, asset_id: bytes, price: int) -> None:
        if caller != self.admin:
            raise NotAdminError(caller)
        if price < 0:
            raise ValueError("Mock prices are unsigned")
        with self._lock:
            self._prices[asset_id] = price

    def get_price(self, asset_id: bytes) -> int:
        with self._lock:
            if asset_id not in self._prices:
                raise PriceNotFoundError(asset_id)
            return self._prices[asset_id]


# ---------------------------------------------------------------------------
# Pull oracle
# ---------------------------------------------------------------------------

@dataclass
class PriceFeed:
    """
    The latest update of one pull-oracle feed.

    price is signed; the real value is price * 10**expo.
    publish_time is in seconds since epoch.
    """
    feed_id: bytes
    price: int
    conf: int
    expo: int
    publish_time: int

    def update(self, price: int, conf: int, expo: int, publish_time: int) -> None:
        """Overwrite with a fresher update for the same feed."""
        self.price        = price
        self.conf         = conf
        self.expo         = expo
        self.publish_time = publish_time


class PullOracle:
    """Freshness-checked reads from PriceFeed objects."""

    def get_fresh(self, feed: PriceFeed, now_ms: int, max_age: int) -> ScaledReading:
        """
        Return the feed's price as a ScaledReading if it was published within
        `max_age` seconds of `now_ms`. Timestamps in the future count by
        their distance too.
        """
        now_s = now_ms // 1000
        age = abs(now_s - feed.publish_time)
        if age > max_age:
            raise StalePriceError(feed.feed_id, age, max_age)
        return ScaledReading(
            magnitude = abs(feed.price),
            negative  = feed.price < 0,
            exponent  = feed.expo,
        )
