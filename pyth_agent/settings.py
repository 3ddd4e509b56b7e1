"""
settings.py — Arena identities and overrides read from the environment.

Usage:
    from pyth_agent.settings import settings_from_env
    settings = settings_from_env()        # reads .env if present

Environment variables (all optional):
    ARENA_FEE_RECIPIENT = treasury   (identity allowed to withdraw fees)
    ARENA_ADMIN         = admin      (identity allowed to post mock prices)
    ARENA_FEE_FLAT      = 5          (flat fee per stake, smallest unit)
    HERMES_URL          = https://hermes.pyth.network
"""

import os
from dataclasses import dataclass

from pyth_agent.config import DEFAULT_ADMIN, DEFAULT_FEE_FLAT, DEFAULT_FEE_RECIPIENT, HERMES_URL


@dataclass
class AgentSettings:
    fee_recipient: str
    admin: str
    fee_flat: int
    hermes_url: str


def settings_from_env() -> AgentSettings:
    """
    Read settings from environment variables (via .env) and fall back to
    config.py defaults for anything unset.

    Raises ValueError if ARENA_FEE_FLAT is not a non-negative integer.
    """
    from dotenv import load_dotenv
    load_dotenv()

    raw_fee = os.environ.get("ARENA_FEE_FLAT", "").strip()
    if raw_fee:
        if not raw_fee.isdigit():
            raise ValueError(
                f"ARENA_FEE_FLAT must be a non-negative integer, got '{raw_fee}'"
            )
        fee_flat = int(raw_fee)
    else:
        fee_flat = DEFAULT_FEE_FLAT

    return AgentSettings(
        fee_recipient = os.environ.get("ARENA_FEE_RECIPIENT", DEFAULT_FEE_RECIPIENT).strip(),
        admin         = os.environ.get("ARENA_ADMIN", DEFAULT_ADMIN).strip(),
        fee_flat      = fee_flat,
        hermes_url    = os.environ.get("HERMES_URL", HERMES_URL).strip().rstrip("/"),
    )
