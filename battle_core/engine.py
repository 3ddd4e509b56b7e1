"""
battle_core/engine.py — The arena registry and the settlement engine.

The Arena holds configuration (flat fee, fee recipient), the fees collected
so far, the battle-id counter and every battle ever created. The functions
below are the only way to change it:

  create_battle*         open a new round from a price reading
  join                   stake on UP or DOWN while the round is open
  close_battle*          take the closing reading and fix the outcome
  claim                  pay out one player's share, exactly once
  withdraw_fees          drain collected fees to the fee recipient

Every operation validates everything first and only then mutates, so a
raised ArenaError always leaves the arena exactly as it was. Work on one
battle happens under that battle's lock; the arena lock only covers id
allocation, the battle table and the fee balance. Lock order is battle,
then arena, then vault. Events are recorded under the lock the change
committed under; subscribers are notified after it is released.

Usage:
    arena = create_arena(fee_flat=5, fee_recipient="treasury")
    bid = create_battle(arena, b"BTC", open_price=100, open_time=t0, close_time=t1, now_ms=t0)
    join(arena, bid, Balance.mint_for_testing(100), Direction.UP, "alice", now_ms=t0)
    close_battle(arena, bid, close_price=110, now_ms=t1)
    claim(arena, bid, "alice")
"""

import logging
import threading
import time
from typing import Dict, List, Optional

from battle_core.custody import Balance, Vault
from battle_core.errors import (
    AlreadyClaimedError,
    AlreadyJoinedError,
    ArenaError,
    BattleClosedError,
    BattleNotClosedError,
    BattleNotFoundError,
    BattleTypeMismatchError,
    CloseTooEarlyError,
    ExponentMismatchError,
    FeedMismatchError,
    InvalidDirectionError,
    InvalidPriceError,
    InvalidWindowError,
    NegativePriceError,
    NoWinnersError,
    NotFeeRecipientError,
    PositionNotFoundError,
    StakeTooSmallError,
    StakingWindowError,
)
from battle_core.events import BattleClosed, BattleCreated, Claimed, EventLog, FeesWithdrawn, Joined
from battle_core.models import (
    Battle,
    Direction,
    Outcome,
    PlainReading,
    Position,
    Reading,
    direction_name,
    outcome_for,
    outcome_name,
    reading_value,
)
from battle_core.oracles import MockOracle, PriceFeed, PullOracle

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class Arena:
    """
    Process-wide battle registry.

    fee_flat and fee_recipient are fixed at construction. `fees` only grows
    (one fee per join) until the recipient drains it. Battles are added,
    never removed, and ids are never reused.
    """

    def __init__(self, fee_flat: int, fee_recipient: str, vault: Optional[Vault] = None):
        if fee_flat < 0:
            raise ValueError(f"fee_flat cannot be negative, got {fee_flat}")
        self.fee_flat: int       = fee_flat
        self.fee_recipient: str  = fee_recipient
        self.fees: Balance       = Balance.zero()
        self.next_battle_id: int = 0
        self.battles: Dict[int, Battle] = {}
        self.events: EventLog    = EventLog()
        self.vault: Vault        = vault if vault is not None else Vault()
        self._lock = threading.Lock()

    def summary(self) -> dict:
        with self._lock:
            return {
                "fee_flat":       self.fee_flat,
                "fee_recipient":  self.fee_recipient,
                "fees":           self.fees.value,
                "next_battle_id": self.next_battle_id,
                "battles":        len(self.battles),
            }


def create_arena(fee_flat: int, fee_recipient: str, vault: Optional[Vault] = None) -> Arena:
    """
    A zero fee is allowed, a negative one raises ValueError. Every call
    returns an independent arena.
    """
    return Arena(fee_flat=fee_flat, fee_recipient=fee_recipient, vault=vault)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def current_time_ms() -> int:
    """Wall clock in milliseconds since epoch."""
    return int(time.time() * 1000)


def _reject(error: ArenaError) -> ArenaError:
    logger.warning("Rejected: %s", error)
    return error


def _plain_reading(price: int) -> PlainReading:
    if price < 0:
        raise _reject(InvalidPriceError(price))
    return PlainReading(price)


def get_battle(arena: Arena, battle_id: int) -> Battle:
    with arena._lock:
        battle = arena.battles.get(battle_id)
    if battle is None:
        raise _reject(BattleNotFoundError(battle_id))
    return battle


def get_position(arena: Arena, battle_id: int, player: str) -> Position:
    battle = get_battle(arena, battle_id)
    with battle.lock:
        position = battle.positions.get(player)
    if position is None:
        raise _reject(PositionNotFoundError(battle_id, player))
    return position


def battle_ids(arena: Arena) -> List[int]:
    with arena._lock:
        return sorted(arena.battles)


# ---------------------------------------------------------------------------
# 1. Creation
# ---------------------------------------------------------------------------

def _create(
    arena: Arena,
    asset_id: bytes,
    open_reading: Reading,
    open_time: int,
    close_time: int,
    now: Optional[int],
) -> int:
    now = current_time_ms() if now is None else now
    if now > open_time:
        raise _reject(InvalidWindowError(f"open_time {open_time} is before now {now}"))
    if open_time > close_time:
        raise _reject(InvalidWindowError(f"open_time {open_time} is after close_time {close_time}"))

    with arena._lock:
        battle_id = arena.next_battle_id
        arena.next_battle_id += 1
        arena.battles[battle_id] = Battle(
            battle_id    = battle_id,
            asset_ids    = [asset_id],
            open_reading = open_reading,
            open_time    = open_time,
            close_time   = close_time,
        )
        event = BattleCreated(
            battle_id  = battle_id,
            open_time  = open_time,
            close_time = close_time,
            open_price = reading_value(open_reading),
        )
        arena.events.record(event)

    logger.info(
        "Battle %d created: asset=%s open=%s window=[%d, %d)",
        battle_id, asset_id.hex(), reading_value(open_reading), open_time, close_time,
    )
    arena.events.notify(event)
    return battle_id


def create_battle(
    arena: Arena,
    asset_id: bytes,
    open_price: int,
    open_time: int,
    close_time: int,
    now_ms: Optional[int] = None,
) -> int:
    """
    Open a battle from an unsigned price the caller already has. Returns its
    id. A negative price raises InvalidPriceError.
    """
    return _create(arena, asset_id, _plain_reading(open_price), open_time, close_time, now_ms)


def create_battle_with_oracle(
    arena: Arena,
    oracle: MockOracle,
    asset_id: bytes,
    open_time: int,
    close_time: int,
    now_ms: Optional[int] = None,
) -> int:
    """Open a battle at the mock oracle's current price for `asset_id`."""
    open_price = oracle.get_price(asset_id)
    return _create(arena, asset_id, PlainReading(open_price), open_time, close_time, now_ms)


def create_battle_with_price_feed(
    arena: Arena,
    pull_oracle: PullOracle,
    feed: PriceFeed,
    max_age: int,
    open_time: int,
    close_time: int,
    now_ms: Optional[int] = None,
) -> int:
    """
    Open a battle from a freshly pulled price feed. The battle remembers the
    feed id and the exponent; closing must use the same feed and exponent.
    """
    now = current_time_ms() if now_ms is None else now_ms
    reading = pull_oracle.get_fresh(feed, now, max_age)
    if reading.negative:
        raise _reject(NegativePriceError(feed.feed_id))
    return _create(arena, feed.feed_id, reading, open_time, close_time, now)


# ---------------------------------------------------------------------------
# 2. Staking
# ---------------------------------------------------------------------------

def join(
    arena: Arena,
    battle_id: int,
    stake: Balance,
    direction: int,
    player: str,
    now_ms: Optional[int] = None,
) -> int:
    """
    Stake `stake` on `direction`. The flat fee goes to the arena, the rest
    to the battle pool. `stake` is drained. Returns the net stake.
    """
    now = current_time_ms() if now_ms is None else now_ms

    if direction not in Direction.ALL:
        raise _reject(InvalidDirectionError(direction))

    battle = get_battle(arena, battle_id)

    with battle.lock:
        if battle.is_closed:
            raise _reject(BattleClosedError(battle_id))
        if not (battle.open_time <= now < battle.close_time):
            raise _reject(StakingWindowError(battle_id, now, battle.open_time, battle.close_time))
        if player in battle.positions:
            raise _reject(AlreadyJoinedError(battle_id, player))
        if stake.value <= arena.fee_flat:
            raise _reject(StakeTooSmallError(stake.value, arena.fee_flat))

        # Commit: nothing below can fail.
        fee = stake.split(arena.fee_flat)
        with arena._lock:
            arena.fees.join(fee)
        net_stake = stake.value
        battle.pool.join(stake)

        if direction == Direction.UP:
            battle.total_up += net_stake
        else:
            battle.total_down += net_stake
        battle.positions[player] = Position(direction=direction, stake=net_stake)
        event = Joined(battle_id=battle_id, player=player, direction=direction, stake=net_stake)
        arena.events.record(event)

    logger.info(
        "Battle %d: %s joined %s with %d (fee %d)",
        battle_id, player, direction_name(direction), net_stake, arena.fee_flat,
    )
    arena.events.notify(event)
    return net_stake


# ---------------------------------------------------------------------------
# 3. Resolution
# ---------------------------------------------------------------------------

def _check_closable(battle: Battle, now: int) -> None:
    if battle.is_closed:
        raise _reject(BattleClosedError(battle.battle_id))
    if now < battle.close_time:
        raise _reject(CloseTooEarlyError(battle.battle_id, now, battle.close_time))


def _check_plain_closable(battle: Battle, now: int) -> None:
    _check_closable(battle, now)
    if battle.has_external_reading:
        raise _reject(BattleTypeMismatchError(
            battle.battle_id, "opened from a price feed, close it with close_battle_with_price_feed"
        ))


def _resolve(arena: Arena, battle: Battle, close_reading: Reading) -> BattleClosed:
    """Commit the close. Caller holds battle.lock and has validated everything."""
    battle.close_reading = close_reading
    battle.pool_at_close = battle.pool.value
    battle.outcome       = outcome_for(battle.open_reading.magnitude, close_reading.magnitude)
    battle.is_closed     = True

    event = BattleClosed(
        battle_id   = battle.battle_id,
        close_price = reading_value(close_reading),
        outcome     = battle.outcome,
    )
    arena.events.record(event)
    return event


def _announce_close(arena: Arena, battle: Battle, event: BattleClosed) -> None:
    logger.info(
        "Battle %d closed: %s -> %s = %s, pool %d (up %d / down %d)",
        battle.battle_id,
        reading_value(battle.open_reading),
        reading_value(battle.close_reading),
        outcome_name(battle.outcome),
        battle.pool_at_close, battle.total_up, battle.total_down,
    )
    arena.events.notify(event)


def _close_plain(arena: Arena, battle_id: int, close_reading: PlainReading, now: int) -> int:
    battle = get_battle(arena, battle_id)
    with battle.lock:
        _check_plain_closable(battle, now)
        event = _resolve(arena, battle, close_reading)
    _announce_close(arena, battle, event)
    return event.outcome


def close_battle(
    arena: Arena,
    battle_id: int,
    close_price: int,
    now_ms: Optional[int] = None,
) -> int:
    """
    Close a plain battle with an unsigned price the caller supplies.
    Returns the outcome.
    """
    now = current_time_ms() if now_ms is None else now_ms
    return _close_plain(arena, battle_id, _plain_reading(close_price), now)


def close_battle_with_oracle(
    arena: Arena,
    oracle: MockOracle,
    battle_id: int,
    now_ms: Optional[int] = None,
) -> int:
    """
    Close a plain battle at the mock oracle's current price. The battle's
    state and kind are checked before the oracle is read.
    """
    now = current_time_ms() if now_ms is None else now_ms
    battle = get_battle(arena, battle_id)
    with battle.lock:
        _check_plain_closable(battle, now)
    close_price = oracle.get_price(battle.asset_id)
    return _close_plain(arena, battle_id, PlainReading(close_price), now)


def close_battle_with_price_feed(
    arena: Arena,
    pull_oracle: PullOracle,
    feed: PriceFeed,
    max_age: int,
    battle_id: int,
    now_ms: Optional[int] = None,
) -> int:
    """
    Close a price-feed battle. The feed must be the one the battle opened
    on, carry the same exponent, be fresh and be non-negative.
    """
    now = current_time_ms() if now_ms is None else now_ms
    reading = pull_oracle.get_fresh(feed, now, max_age)

    battle = get_battle(arena, battle_id)
    with battle.lock:
        _check_closable(battle, now)
        if not battle.has_external_reading:
            raise _reject(BattleTypeMismatchError(
                battle_id, "opened from a plain price, close it with close_battle"
            ))
        if feed.feed_id != battle.asset_id:
            raise _reject(FeedMismatchError(battle.asset_id, feed.feed_id))
        if reading.exponent != battle.open_reading.exponent:
            raise _reject(ExponentMismatchError(battle.open_reading.exponent, reading.exponent))
        if reading.negative:
            raise _reject(NegativePriceError(feed.feed_id))
        event = _resolve(arena, battle, reading)
    _announce_close(arena, battle, event)
    return event.outcome


# ---------------------------------------------------------------------------
# 4. Claiming
# ---------------------------------------------------------------------------

def compute_payout(battle: Battle, position: Position) -> int:
    """
    What `position` is owed from a closed battle.

      TIE    → the net stake back (the fee is not refunded)
      winner → pool_at_close * stake // winners_total
      loser  → 0

    The winning side's total is checked before anything else, so on a
    battle where nobody backed the winning side every claim fails with
    NoWinnersError, losers included.
    """
    if battle.outcome == Outcome.TIE:
        return position.stake

    winners_total = battle.total_for(battle.outcome)
    if winners_total == 0:
        raise NoWinnersError(battle.battle_id)

    if position.direction != battle.outcome:
        return 0
    return battle.pool_at_close * position.stake // winners_total


def claim(arena: Arena, battle_id: int, player: str) -> int:
    """
    Pay `player` their share of a closed battle into the arena vault.
    Succeeds once per player; a zero payout still counts as the claim.
    Returns the amount paid.
    """
    battle = get_battle(arena, battle_id)

    with battle.lock:
        if not battle.is_closed:
            raise _reject(BattleNotClosedError(battle_id))
        position = battle.positions.get(player)
        if position is None:
            raise _reject(PositionNotFoundError(battle_id, player))
        if position.claimed:
            raise _reject(AlreadyClaimedError(battle_id, player))

        try:
            payout = compute_payout(battle, position)
        except NoWinnersError as error:
            raise _reject(error)

        position.claimed = True
        if payout > 0:
            arena.vault.transfer_to(player, battle.pool.split(payout))
        event = Claimed(battle_id=battle_id, player=player, payout=payout)
        arena.events.record(event)

    logger.info("Battle %d: %s claimed %d", battle_id, player, payout)
    arena.events.notify(event)
    return payout


# ---------------------------------------------------------------------------
# 5. Fees
# ---------------------------------------------------------------------------

def withdraw_fees(arena: Arena, caller: str) -> int:
    """Drain every collected fee to the recipient. Returns the amount moved."""
    if caller != arena.fee_recipient:
        raise _reject(NotFeeRecipientError(caller))

    with arena._lock:
        drained = arena.fees.withdraw_all()
        amount = drained.value
        arena.vault.transfer_to(caller, drained)
        event = FeesWithdrawn(recipient=caller, amount=amount)
        arena.events.record(event)

    logger.info("Fees withdrawn: %d to %s", amount, caller)
    arena.events.notify(event)
    return amount
