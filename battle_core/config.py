"""
battle_core/config.py — Defaults for the battle engine and its surfaces.

No code logic lives here — just numbers and strings.
"""

import os

# ---------------------------------------------------------------------------
# Engine defaults
# ---------------------------------------------------------------------------

# Flat fee taken from every stake, in the smallest unit of the staked asset.
# A stake must be strictly larger than this to be accepted.
DEFAULT_FEE_FLAT = 5

# How old (seconds) a pull-oracle price may be when a battle opens or closes
DEFAULT_MAX_PRICE_AGE_SECONDS = 60


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

# Root directory of the repository (parent of battle_core/)
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

# Where the engine log and the dashboard access log are written
LOGS_DIR = os.path.join(PROJECT_ROOT, "logs")

# Werkzeug HTTP access log for the dashboard
ACCESS_LOG = os.path.join(LOGS_DIR, "dashboard_access.log")


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------

DASHBOARD_HOST = "127.0.0.1"
DASHBOARD_PORT = 5000

# How many recent events /api/events returns by default
DASHBOARD_EVENT_LIMIT = 100
