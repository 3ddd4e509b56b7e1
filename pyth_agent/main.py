"""
main.py — Command-line entry point for the PriceBattle agent.

Modes:
  demo  — scripted battles on the mock oracle with a simulated clock (instant)
  live  — one real battle on a Pyth price feed: open now, close after
          --duration seconds with a freshly pulled price

Usage examples:
  python -m pyth_agent.main --mode demo
  python -m pyth_agent.main --mode live --asset btc --duration 120
  python -m pyth_agent.main --mode live --asset eth --players 10 --dashboard

Run  python -m pyth_agent.main --help  for all options.
"""

import argparse
import logging
import os
import random
import re
import signal
import sys
import time
from datetime import datetime, timezone
from typing import List, Tuple

from battle_core import engine
from battle_core import metrics as metrics_module
from battle_core.custody import Balance
from battle_core.errors import ArenaError
from battle_core.models import Direction, direction_name, outcome_name
from battle_core.oracles import MockOracle, PullOracle
from pyth_agent import data_storage
from pyth_agent.config import (
    DEFAULT_ASSET,
    DEFAULT_BATTLE_SECONDS,
    DEFAULT_PLAYERS,
    FEED_IDS,
    LOG_DIR,
    MAX_PRICE_AGE_SECONDS,
    MAX_SIM_STAKE,
    MIN_SIM_STAKE,
    POLL_INTERVAL_SECONDS,
)
from pyth_agent.data_fetcher import fetch_latest_price_feed, refresh_price_feed
from pyth_agent.settings import AgentSettings, settings_from_env


# ---------------------------------------------------------------------------
# Graceful Ctrl+C handler
# ---------------------------------------------------------------------------

_stop_requested = False

def _handle_sigint(signum, frame):
    """When user presses Ctrl+C, set the stop flag instead of crashing."""
    global _stop_requested
    print("\n\n[Agent] Ctrl+C received — stopping before close...")
    _stop_requested = True


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------

def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description=(
            "PriceBattle Agent\n"
            "  demo mode: scripted battles on the mock oracle (no network)\n"
            "  live mode: one battle on a live Pyth price feed"
        ),
        formatter_class=argparse.RawTextHelpFormatter,
    )

    parser.add_argument(
        "--mode",
        type=str,
        default="demo",
        choices=["demo", "live"],
        help=(
            "Execution mode (default: demo):\n"
            "  demo — tie, pro-rata, shared-win and one-sided battles, instantly\n"
            "  live — open on a fresh Pyth price, close after --duration seconds"
        ),
    )

    parser.add_argument(
        "--asset",
        type=str,
        default=DEFAULT_ASSET,
        choices=sorted(FEED_IDS.keys()),
        help=f"[live only] Price feed to battle on (default: {DEFAULT_ASSET})",
    )

    parser.add_argument(
        "--duration",
        type=int,
        default=DEFAULT_BATTLE_SECONDS,
        help=f"Battle length in seconds (default: {DEFAULT_BATTLE_SECONDS})",
    )

    parser.add_argument(
        "--players",
        type=int,
        default=DEFAULT_PLAYERS,
        help=f"[live only] Simulated players to join (default: {DEFAULT_PLAYERS})",
    )

    parser.add_argument(
        "--fee",
        type=int,
        default=None,
        help="Flat fee per stake (default: ARENA_FEE_FLAT from .env, else config)",
    )

    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="[live only] Random seed for simulated players",
    )

    parser.add_argument(
        "--dashboard",
        action="store_true",
        help="Start a live web dashboard at http://localhost:5000",
    )

    parser.add_argument(
        "--name",
        type=str,
        default=None,
        help=(
            "Run name for the state snapshot (letters, digits, underscores, hyphens).\n"
            "Defaults to <mode>_<HHMM> if not provided."
        ),
    )

    return parser


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _sanitize_name(name: str) -> str:
    """Keep only letters, digits, underscores, hyphens. Truncate to 40 chars."""
    clean = re.sub(r"[^a-zA-Z0-9_-]", "", name)
    return clean[:40] or "default"


def _setup_logging() -> str:
    """Send battle_core engine logs to logs/engine.log. Returns the path."""
    os.makedirs(LOG_DIR, exist_ok=True)
    path = os.path.join(LOG_DIR, "engine.log")
    handler = logging.FileHandler(path)
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
    logger = logging.getLogger("battle_core")
    logger.setLevel(logging.INFO)
    logger.handlers = [handler]
    return path


def _claim_all(arena: engine.Arena, battle_id: int) -> None:
    battle = engine.get_battle(arena, battle_id)
    for player in sorted(battle.positions):
        try:
            payout = engine.claim(arena, battle_id, player)
            print(f"    {player:<12s} claimed {payout:>8}")
        except ArenaError as e:
            print(f"    {player:<12s} claim refused: {e}")
    sys.stdout.flush()


def _join_all(arena: engine.Arena, battle_id: int, stakes: List[Tuple[str, int, int]], now: int) -> None:
    for player, amount, direction in stakes:
        net = engine.join(
            arena, battle_id, Balance.mint_for_testing(amount), direction, player, now_ms=now,
        )
        print(f"    {player:<12s} stakes {amount:>6} on {direction_name(direction):<4s} (net {net})")
    sys.stdout.flush()


# ---------------------------------------------------------------------------
# Demo mode
# ---------------------------------------------------------------------------

DEMO_ASSET = b"DEMO/USD"

# (title, open price, close price, [(player, amount, direction), ...])
DEMO_SCENARIOS = [
    ("Tie refund", 100, 100, [
        ("alice", 100, Direction.UP),
        ("bob",   100, Direction.DOWN),
    ]),
    ("Pro-rata, single winner", 100, 110, [
        ("alice", 100, Direction.UP),
        ("bob",   200, Direction.DOWN),
    ]),
    ("Shared win with rounding dust", 100, 120, [
        ("carol", 100, Direction.UP),
        ("dave",   60, Direction.UP),
        ("erin",  250, Direction.DOWN),
    ]),
    ("Everyone on the losing side", 100, 90, [
        ("frank", 100, Direction.UP),
        ("grace",  80, Direction.UP),
    ]),
]


def run_demo(arena: engine.Arena, settings: AgentSettings, name: str, duration_seconds: int) -> None:
    oracle = MockOracle(admin=settings.admin)
    clock = engine.current_time_ms()

    for title, open_price, close_price, stakes in DEMO_SCENARIOS:
        print(f"\n── {title} " + "─" * max(0, 50 - len(title)))
        oracle.set_price(settings.admin, DEMO_ASSET, open_price)

        open_time  = clock
        close_time = clock + duration_seconds * 1000
        battle_id = engine.create_battle_with_oracle(
            arena, oracle, DEMO_ASSET, open_time, close_time, now_ms=clock,
        )
        print(f"  Battle {battle_id} opened at {open_price}")
        _join_all(arena, battle_id, stakes, now=open_time)

        oracle.set_price(settings.admin, DEMO_ASSET, close_price)
        outcome = engine.close_battle_with_oracle(arena, oracle, battle_id, now_ms=close_time)
        print(f"  Closed at {close_price} → {outcome_name(outcome)}")
        _claim_all(arena, battle_id)

        metrics_module.print_settlement(engine.get_battle(arena, battle_id))
        data_storage.save_state(arena, name)
        clock = close_time

    withdrawn = engine.withdraw_fees(arena, settings.fee_recipient)
    print(f"[Fees] {withdrawn} withdrawn to {settings.fee_recipient}")
    data_storage.save_state(arena, name)


# ---------------------------------------------------------------------------
# Live mode
# ---------------------------------------------------------------------------

def run_live(
    arena: engine.Arena,
    settings: AgentSettings,
    name: str,
    asset: str,
    duration_seconds: int,
    num_players: int,
    seed=None,
) -> int:
    global _stop_requested
    _stop_requested = False
    signal.signal(signal.SIGINT, _handle_sigint)

    pull_oracle = PullOracle()
    rng = random.Random(seed)

    print(f"\nFetching {asset.upper()} price from Hermes...")
    feed = fetch_latest_price_feed(FEED_IDS[asset], base_url=settings.hermes_url)
    if feed is None:
        print("ERROR: Could not fetch a price. Check your internet connection.")
        return 1

    now = engine.current_time_ms()
    close_time = now + duration_seconds * 1000
    battle_id = engine.create_battle_with_price_feed(
        arena, pull_oracle, feed, MAX_PRICE_AGE_SECONDS, now, close_time, now_ms=now,
    )
    print(f"Battle {battle_id} opened at {feed.price} × 10^{feed.expo} "
          f"(closes {datetime.fromtimestamp(close_time / 1000, timezone.utc).strftime('%H:%M:%S UTC')})")

    stakes = [
        (f"player_{i + 1}", rng.randint(MIN_SIM_STAKE, MAX_SIM_STAKE), rng.choice(Direction.ALL))
        for i in range(num_players)
    ]
    _join_all(arena, battle_id, stakes, now=engine.current_time_ms())
    data_storage.save_state(arena, name)

    print("\nWaiting for close time. Press Ctrl+C to stop early.")
    while engine.current_time_ms() < close_time and not _stop_requested:
        time.sleep(POLL_INTERVAL_SECONDS)
        data_storage.save_state(arena, name)

    if _stop_requested:
        print(f"Stopped before close. Battle {battle_id} stays open.")
        data_storage.save_state(arena, name)
        return 0

    print("\nRefreshing price feed for close...")
    if not refresh_price_feed(feed, base_url=settings.hermes_url):
        print("ERROR: Could not refresh the price feed. Battle left open.")
        return 1

    outcome = engine.close_battle_with_price_feed(
        arena, pull_oracle, feed, MAX_PRICE_AGE_SECONDS, battle_id,
        now_ms=engine.current_time_ms(),
    )
    print(f"Closed at {feed.price} × 10^{feed.expo} → {outcome_name(outcome)}")
    _claim_all(arena, battle_id)

    metrics_module.print_settlement(engine.get_battle(arena, battle_id))
    withdrawn = engine.withdraw_fees(arena, settings.fee_recipient)
    print(f"[Fees] {withdrawn} withdrawn to {settings.fee_recipient}")
    data_storage.save_state(arena, name)
    return 0


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main(argv=None) -> int:
    args = build_arg_parser().parse_args(argv)

    try:
        settings = settings_from_env()
    except ValueError as e:
        print(f"ERROR: {e}")
        return 1
    fee_flat = args.fee if args.fee is not None else settings.fee_flat
    if fee_flat < 0:
        print("ERROR: --fee cannot be negative")
        return 1
    if args.duration <= 0:
        print("ERROR: --duration must be positive")
        return 1

    name = _sanitize_name(args.name or f"{args.mode}_{datetime.now().strftime('%H%M')}")
    log_path = _setup_logging()

    arena = engine.create_arena(fee_flat=fee_flat, fee_recipient=settings.fee_recipient)

    print(f"\nPriceBattle — {args.mode} mode")
    print(f"Instance:  {name}")
    print(f"Fee: {fee_flat} per stake | Recipient: {settings.fee_recipient}")
    print(f"State file: {data_storage.state_path(name)}")
    print(f"Engine log: {log_path}")
    print("-" * 55)
    sys.stdout.flush()

    if args.dashboard:
        from battle_core.dashboard import start_in_thread
        try:
            start_in_thread(arena)
        except OSError as e:
            print(f"WARNING: Dashboard not started: {e}")

    try:
        if args.mode == "demo":
            run_demo(arena, settings, name, args.duration)
            return 0
        return run_live(
            arena, settings, name, args.asset, args.duration, args.players, seed=args.seed,
        )
    except ArenaError as e:
        print(f"ERROR: {e}")
        data_storage.save_state(arena, name)
        return 1


if __name__ == "__main__":
    sys.exit(main())
