"""
status.py — Snapshot of a running (or finished) battle session.

Usage:
  python -m pyth_agent.status               # most recent run
  python -m pyth_agent.status --name demo   # one named run
"""

import argparse
import glob
import os
import sys
from datetime import datetime, timezone

from pyth_agent import data_storage

# ── ANSI colours ────────────────────────────────────────────────────────────
GREEN  = "\033[92m"
RED    = "\033[91m"
YELLOW = "\033[93m"
CYAN   = "\033[96m"
BOLD   = "\033[1m"
DIM    = "\033[2m"
RESET  = "\033[0m"

# A snapshot older than this is reported as an ended session
STALE_AFTER_SECONDS = 360


def col(text, *codes):
    return "".join(codes) + str(text) + RESET


def _latest_name():
    pattern = os.path.join(data_storage.DATA_DIR, "state_*.json")
    paths = sorted(glob.glob(pattern), key=os.path.getmtime, reverse=True)
    if not paths:
        return None
    return os.path.basename(paths[0])[len("state_"):-len(".json")]


def _age_seconds(updated_at: str) -> float:
    try:
        updated = datetime.fromisoformat(updated_at)
    except (TypeError, ValueError):
        return float("inf")
    if updated.tzinfo is None:
        updated = updated.replace(tzinfo=timezone.utc)
    return (datetime.now(timezone.utc) - updated).total_seconds()


def print_status(d: dict) -> None:
    arena   = d.get("arena", {})
    battles = d.get("battles", [])
    age     = _age_seconds(d.get("updated_at", ""))
    state   = col("LIVE", GREEN, BOLD) if age <= STALE_AFTER_SECONDS else col("ENDED", DIM)

    W = 56
    print()
    print(col("─" * W, CYAN))
    print(col(f"  PriceBattle — {d.get('instance_name', '?')}", BOLD, CYAN) + f"   {state}")
    print(col("─" * W, CYAN))
    print(f"  Updated   : {col(d.get('updated_at', '?')[:19], DIM)}")
    print(f"  Fee       : {arena.get('fee_flat', '?')} per stake   "
          f"Collected: {col(arena.get('fees', 0), BOLD)}   "
          f"Recipient: {arena.get('fee_recipient', '?')}")
    print(col("─" * W, DIM))

    if not battles:
        print(f"  {col('Battles:', BOLD)} none yet")
    for b in battles:
        outcome = b.get("outcome") or "OPEN"
        colour  = {"UP": GREEN, "DOWN": RED, "TIE": YELLOW}.get(outcome, CYAN)
        print(f"  #{b['battle_id']:<3} {col(outcome, colour, BOLD):<6s}  "
              f"up {b['total_up']:>8}  down {b['total_down']:>8}  "
              f"pool {b['pool']:>8}  players {b['players']}")
        for player, pos in sorted(b.get("positions", {}).items()):
            mark = col("claimed", DIM) if pos["claimed"] else ""
            print(f"      {player:<20s} {pos['direction']:<5s} {pos['stake']:>8}  {mark}")

    print(col("─" * W, CYAN))
    print()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Show the latest PriceBattle state snapshot")
    parser.add_argument("--name", type=str, default=None, help="Run name (default: most recent)")
    args = parser.parse_args(argv)

    name = args.name or _latest_name()
    if name is None:
        print(col("No session found.", RED, BOLD) + " (no state_*.json in data/)")
        return 1

    d = data_storage.load_state(name)
    if d is None:
        print(col(f"No snapshot for '{name}'.", RED, BOLD))
        return 1

    print_status(d)
    return 0


if __name__ == "__main__":
    sys.exit(main())
