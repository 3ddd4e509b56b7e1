"""
battle_core/metrics.py — Settlement reports for battles and arenas.

Read-only: nothing here changes a battle. Payout columns are projections
computed with the same function the engine pays with.
"""

from typing import Optional

import pandas as pd

from battle_core.engine import compute_payout
from battle_core.errors import FairnessError
from battle_core.models import Battle, direction_name, outcome_name


def projected_payout(battle: Battle, player: str) -> Optional[int]:
    """
    What `player` would receive from a claim right now, ignoring whether
    they already claimed. None if the battle is open or has no winners.
    """
    if not battle.is_closed:
        return None
    position = battle.positions[player]
    try:
        return compute_payout(battle, position)
    except FairnessError:
        return None


def positions_frame(battle: Battle) -> pd.DataFrame:
    """One row per player, sorted by stake (largest first)."""
    with battle.lock:
        rows = [
            {
                "player":    player,
                "direction": direction_name(pos.direction),
                "stake":     pos.stake,
                "claimed":   pos.claimed,
                "payout":    projected_payout(battle, player),
            }
            for player, pos in battle.positions.items()
        ]
    df = pd.DataFrame(rows, columns=["player", "direction", "stake", "claimed", "payout"])
    return df.sort_values("stake", ascending=False, kind="stable").reset_index(drop=True)


def battles_frame(arena) -> pd.DataFrame:
    """One row per battle, indexed by battle id."""
    columns = [
        "battle_id", "asset_id", "open_time", "close_time", "open_price",
        "close_price", "external", "is_closed", "outcome", "total_up",
        "total_down", "pool", "pool_at_close", "players",
    ]
    with arena._lock:
        battles = list(arena.battles.values())
    rows = []
    for battle in battles:
        with battle.lock:
            rows.append(battle.summary())
    return pd.DataFrame(rows, columns=columns).set_index("battle_id")


def check_conservation(battle: Battle) -> dict:
    """
    Check the accounting of one battle:

      stakes_match    sum of position stakes == total_up + total_down
      pool_match      before close: pool == total stakes;
                      after close:  pool_at_close == total stakes
      payout_bounded  projected payouts sum to at most pool_at_close
    """
    with battle.lock:
        stakes = sum(pos.stake for pos in battle.positions.values())
        totals = battle.total_up + battle.total_down
        pool_reference = battle.pool_at_close if battle.is_closed else battle.pool.value

        payouts = [projected_payout(battle, p) for p in battle.positions]
        known = [p for p in payouts if p is not None]
        payout_total = sum(known)

    return {
        "stakes":         stakes,
        "totals":         totals,
        "pool":           pool_reference,
        "payout_total":   payout_total,
        "stakes_match":   stakes == totals,
        "pool_match":     pool_reference == totals,
        "payout_bounded": payout_total <= battle.pool_at_close if battle.is_closed else True,
        "dust":           battle.pool_at_close - payout_total if battle.is_closed else 0,
    }


def print_settlement(battle: Battle) -> None:
    status  = outcome_name(battle.outcome) if battle.is_closed else "OPEN"
    checks  = check_conservation(battle)
    df      = positions_frame(battle)

    print()
    print("=" * 55)
    print(f"  SETTLEMENT — battle {battle.battle_id}  [{status}]")
    print("=" * 55)
    print(f"  Asset:               {battle.asset_id.hex()[:24]}")
    print(f"  Total UP:            {battle.total_up:>12}")
    print(f"  Total DOWN:          {battle.total_down:>12}")
    print(f"  Pool at close:       {battle.pool_at_close:>12}")
    print(f"  Pool remaining:      {battle.pool.value:>12}")
    print(f"  Projected payouts:   {checks['payout_total']:>12}")
    print(f"  Rounding dust:       {checks['dust']:>12}")
    print("-" * 55)
    if df.empty:
        print("  No players.")
    else:
        print(df.to_string(index=False))
    print("=" * 55)
    print()
