"""Shared fixtures for the PriceBattle test suite."""

import pytest

from battle_core import engine
from battle_core.custody import Balance

# A fixed simulated clock (ms since epoch) so no test depends on wall time
T0 = 1_700_000_000_000
T1 = T0 + 60_000

FEE = 5
RECIPIENT = "treasury"


def coins(amount: int) -> Balance:
    return Balance.mint_for_testing(amount)


@pytest.fixture
def arena():
    return engine.create_arena(fee_flat=FEE, fee_recipient=RECIPIENT)


@pytest.fixture
def battle_id(arena):
    """A plain battle opened at price 100, window [T0, T1)."""
    return engine.create_battle(arena, b"BTC", 100, T0, T1, now_ms=T0)
