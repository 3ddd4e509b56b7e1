"""
config.py — All constants and settings for the Pyth battle agent.

Change values here to tweak how the agent behaves.
No code logic lives here — just numbers and strings.
"""

import os

from battle_core.config import DEFAULT_FEE_FLAT, DEFAULT_MAX_PRICE_AGE_SECONDS, LOGS_DIR

# ---------------------------------------------------------------------------
# Hermes price service (public, no login required)
# ---------------------------------------------------------------------------

# Latest price updates for one or more feed ids
HERMES_URL = "https://hermes.pyth.network"
HERMES_LATEST_PATH = "/v2/updates/price/latest"

# How long to wait (seconds) before giving up on an API call
REQUEST_TIMEOUT_SECONDS = 10

# How many times to retry a failed API call before giving up
REQUEST_MAX_RETRIES = 3

# Pause between retries (seconds)
REQUEST_RETRY_DELAY = 2.0


# ---------------------------------------------------------------------------
# Price feeds
# ---------------------------------------------------------------------------

# Pyth feed ids (hex, no 0x prefix) selectable with --asset
FEED_IDS = {
    "btc": "e62df6c8b4a85fe1a67db44dc12de5db330f7ac66b72dc658afedf0f4a415b43",  # BTC/USD
    "eth": "ff61491a931112ddf1bd8147cd1b641375f79f5825126d665480874634fd0ace",  # ETH/USD
    "sol": "ef0d8b6fda2ceba41da15d4095d1da392a0d2f8ed0c6c7bc0f4cfac8c280b56d",  # SOL/USD
}

DEFAULT_ASSET = "btc"

# A pulled price older than this (seconds) is refused when opening/closing
MAX_PRICE_AGE_SECONDS = DEFAULT_MAX_PRICE_AGE_SECONDS


# ---------------------------------------------------------------------------
# Arena defaults
# ---------------------------------------------------------------------------

# DEFAULT_FEE_FLAT (from battle_core.config) is overridable with ARENA_FEE_FLAT in .env

# Who may withdraw fees / post mock prices when .env does not say
DEFAULT_FEE_RECIPIENT = "treasury"
DEFAULT_ADMIN = "admin"


# ---------------------------------------------------------------------------
# Live battle settings
# ---------------------------------------------------------------------------

# Default battle length in seconds (used if --duration not specified)
DEFAULT_BATTLE_SECONDS = 300   # 5 minutes, same cadence as 5-min up/down markets

# How many seconds to sleep between checks while waiting for close_time
POLL_INTERVAL_SECONDS = 5

# Simulated players joining each live battle
DEFAULT_PLAYERS = 6

# Simulated stake range (inclusive), smallest unit
MIN_SIM_STAKE = 50
MAX_SIM_STAKE = 500


# ---------------------------------------------------------------------------
# File paths
# ---------------------------------------------------------------------------

_AGENT_DIR = os.path.dirname(os.path.abspath(__file__))

# Where state snapshots are stored (state_<name>.json)
DATA_DIR = os.path.join(_AGENT_DIR, "data")

# Engine log goes next to the dashboard access log
LOG_DIR = LOGS_DIR
