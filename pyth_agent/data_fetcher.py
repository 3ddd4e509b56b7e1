"""
data_fetcher.py — Pulls fresh price updates from Pyth's Hermes service.

No login or API key is needed.

Hermes returns, per feed id:
  {"id": "<hex>", "price": {"price": "6512345678", "conf": "1234",
                            "expo": -8, "publish_time": 1700000000}, ...}

The price is a string-encoded signed integer; the real value is
price * 10**expo. We turn it into a battle_core PriceFeed so the engine's
pull oracle can check freshness and compare exponents.
"""

import time
from typing import Optional

import requests

from battle_core.oracles import PriceFeed
from pyth_agent.config import (
    HERMES_LATEST_PATH,
    HERMES_URL,
    REQUEST_MAX_RETRIES,
    REQUEST_RETRY_DELAY,
    REQUEST_TIMEOUT_SECONDS,
)


# ---------------------------------------------------------------------------
# Helper: HTTP GET with automatic retry
# ---------------------------------------------------------------------------

def _get_with_retry(url: str, params: dict = None) -> Optional[dict]:
    """
    Make a GET request and retry up to REQUEST_MAX_RETRIES times on failure.

    Returns the parsed JSON response, or None if all attempts fail.
    """
    for attempt in range(1, REQUEST_MAX_RETRIES + 1):
        try:
            response = requests.get(url, params=params, timeout=REQUEST_TIMEOUT_SECONDS)
            response.raise_for_status()
            return response.json()

        except requests.exceptions.RequestException as error:
            print(f"  [Attempt {attempt}/{REQUEST_MAX_RETRIES}] Request failed: {error}")
            if attempt < REQUEST_MAX_RETRIES:
                print(f"  Retrying in {REQUEST_RETRY_DELAY}s...")
                time.sleep(REQUEST_RETRY_DELAY)

    print(f"  ERROR: All {REQUEST_MAX_RETRIES} attempts failed for {url}")
    return None


def _normalize_feed_id(feed_id_hex: str) -> str:
    feed_id_hex = feed_id_hex.lower().strip()
    return feed_id_hex[2:] if feed_id_hex.startswith("0x") else feed_id_hex


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def parse_price_update(item: dict) -> PriceFeed:
    """
    Turn one entry of Hermes' "parsed" list into a PriceFeed.

    Raises KeyError / ValueError / TypeError on a malformed entry.
    """
    price = item["price"]
    return PriceFeed(
        feed_id      = bytes.fromhex(_normalize_feed_id(item["id"])),
        price        = int(price["price"]),
        conf         = int(price["conf"]),
        expo         = int(price["expo"]),
        publish_time = int(price["publish_time"]),
    )


# ---------------------------------------------------------------------------
# Hermes: latest price
# ---------------------------------------------------------------------------

def fetch_latest_price_feed(feed_id_hex: str, base_url: str = HERMES_URL) -> Optional[PriceFeed]:
    """
    Fetch the latest price update for one feed.

    Args:
        feed_id_hex: Pyth feed id, hex, with or without 0x.
        base_url:    Hermes root URL.

    Returns:
        A PriceFeed, or None if the request failed or the reply was unusable.
    """
    feed_id_hex = _normalize_feed_id(feed_id_hex)
    params = {"ids[]": feed_id_hex, "parsed": "true"}

    data = _get_with_retry(base_url + HERMES_LATEST_PATH, params=params)
    if data is None:
        return None

    for item in data.get("parsed", []):
        try:
            if _normalize_feed_id(item.get("id", "")) != feed_id_hex:
                continue
            return parse_price_update(item)
        except (KeyError, ValueError, TypeError) as e:
            print(f"  WARNING: Malformed price update for {feed_id_hex[:12]}: {e}")
            return None

    print(f"  WARNING: Hermes returned no update for feed {feed_id_hex[:12]}")
    return None


def refresh_price_feed(feed: PriceFeed, base_url: str = HERMES_URL) -> bool:
    """
    Pull a newer update for `feed` and write it into the same object.

    Returns True if the feed was updated, False if the fetch failed.
    """
    latest = fetch_latest_price_feed(feed.feed_id.hex(), base_url=base_url)
    if latest is None:
        return False
    feed.update(
        price        = latest.price,
        conf         = latest.conf,
        expo         = latest.expo,
        publish_time = latest.publish_time,
    )
    return True
