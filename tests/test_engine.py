"""Tests for the battle lifecycle: create → join → close → claim → withdraw.

Covers:
  - creation window validation and id allocation
  - join preconditions, fee split and atomicity
  - close timing, idempotence guard and outcome determinism
  - claim payouts (tie refund, pro-rata, rounding dust, zero-winners guard)
  - fee isolation and withdrawal authorization
  - events emitted per operation
"""

import threading

import pytest

from battle_core import engine
from battle_core.errors import (
    AlreadyClaimedError,
    AlreadyJoinedError,
    BattleClosedError,
    BattleNotClosedError,
    BattleNotFoundError,
    CloseTooEarlyError,
    DuplicateError,
    InvalidDirectionError,
    InvalidStateError,
    InvalidPriceError,
    InvalidWindowError,
    NoWinnersError,
    NotAdminError,
    NotFeeRecipientError,
    PositionNotFoundError,
    PriceNotFoundError,
    StakeTooSmallError,
    StakingWindowError,
)
from battle_core.events import BattleClosed, BattleCreated, Claimed, FeesWithdrawn, Joined
from battle_core.models import Direction, Outcome, PlainReading, outcome_for
from battle_core.oracles import MockOracle

from conftest import FEE, RECIPIENT, T0, T1, coins


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _join(arena, battle_id, player, amount, direction, now=T0):
    return engine.join(arena, battle_id, coins(amount), direction, player, now_ms=now)


def _battle(arena, battle_id):
    return engine.get_battle(arena, battle_id)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

def test_new_arena_is_empty():
    arena = engine.create_arena(fee_flat=0, fee_recipient="ops")
    assert arena.fee_flat == 0
    assert arena.fee_recipient == "ops"
    assert arena.fees.value == 0
    assert arena.next_battle_id == 0
    assert arena.battles == {}


def test_arenas_are_independent():
    a = engine.create_arena(fee_flat=1, fee_recipient="x")
    b = engine.create_arena(fee_flat=1, fee_recipient="x")
    engine.create_battle(a, b"BTC", 100, T0, T1, now_ms=T0)
    assert len(a.battles) == 1
    assert len(b.battles) == 0


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------

def test_create_allocates_increasing_ids(arena):
    ids = [engine.create_battle(arena, b"BTC", 100, T0, T1, now_ms=T0) for _ in range(3)]
    assert ids == [0, 1, 2]
    assert arena.next_battle_id == 3
    assert engine.battle_ids(arena) == [0, 1, 2]


def test_create_initial_state(arena, battle_id):
    battle = _battle(arena, battle_id)
    assert battle.asset_ids == [b"BTC"]
    assert battle.open_reading == PlainReading(100)
    assert battle.close_reading is None
    assert not battle.is_closed
    assert not battle.has_external_reading
    assert battle.pool.value == 0
    assert battle.total_up == battle.total_down == 0
    assert battle.positions == {}


def test_create_rejects_backdated_open(arena):
    with pytest.raises(InvalidWindowError):
        engine.create_battle(arena, b"BTC", 100, T0 - 1, T1, now_ms=T0)
    assert arena.next_battle_id == 0
    assert arena.battles == {}


def test_create_rejects_inverted_window(arena):
    with pytest.raises(InvalidWindowError):
        engine.create_battle(arena, b"BTC", 100, T1, T0, now_ms=T0)
    assert arena.next_battle_id == 0


def test_create_allows_zero_length_window(arena):
    battle_id = engine.create_battle(arena, b"BTC", 100, T0, T0, now_ms=T0)
    assert _battle(arena, battle_id).close_time == T0


def test_create_emits_event(arena, battle_id):
    assert arena.events.of_type(BattleCreated) == [
        BattleCreated(battle_id=battle_id, open_time=T0, close_time=T1, open_price=100)
    ]


# ---------------------------------------------------------------------------
# Mock oracle
# ---------------------------------------------------------------------------

def test_mock_oracle_admin_only():
    oracle = MockOracle(admin="admin")
    with pytest.raises(NotAdminError):
        oracle.set_price("mallory", b"BTC", 100)
    with pytest.raises(PriceNotFoundError):
        oracle.get_price(b"BTC")


def test_battle_from_mock_oracle(arena):
    oracle = MockOracle(admin="admin")
    with pytest.raises(PriceNotFoundError):
        engine.create_battle_with_oracle(arena, oracle, b"ETH", T0, T1, now_ms=T0)
    assert arena.battles == {}

    oracle.set_price("admin", b"ETH", 2000)
    battle_id = engine.create_battle_with_oracle(arena, oracle, b"ETH", T0, T1, now_ms=T0)
    _join(arena, battle_id, "alice", 100, Direction.DOWN)

    oracle.set_price("admin", b"ETH", 1900)
    assert engine.close_battle_with_oracle(arena, oracle, battle_id, now_ms=T1) == Outcome.DOWN
    assert _battle(arena, battle_id).close_reading == PlainReading(1900)


# ---------------------------------------------------------------------------
# Joining
# ---------------------------------------------------------------------------

def test_join_splits_fee_and_stake(arena, battle_id):
    stake = coins(100)
    net = engine.join(arena, battle_id, stake, Direction.UP, "alice", now_ms=T0)

    battle = _battle(arena, battle_id)
    assert net == 95
    assert stake.value == 0
    assert arena.fees.value == FEE
    assert battle.pool.value == 95
    assert battle.total_up == 95
    assert battle.total_down == 0
    assert battle.positions["alice"].direction == Direction.UP
    assert battle.positions["alice"].stake == 95
    assert not battle.positions["alice"].claimed
    assert arena.events.last() == Joined(battle_id=battle_id, player="alice", direction=Direction.UP, stake=95)


@pytest.mark.parametrize("direction", [2, -1, 7, None, "UP"])
def test_join_rejects_invalid_direction(arena, battle_id, direction):
    with pytest.raises(InvalidDirectionError):
        engine.join(arena, battle_id, coins(100), direction, "alice", now_ms=T0)


def test_invalid_direction_checked_before_battle_lookup(arena):
    with pytest.raises(InvalidDirectionError):
        engine.join(arena, 42, coins(100), 3, "alice", now_ms=T0)


def test_join_unknown_battle(arena):
    with pytest.raises(BattleNotFoundError):
        _join(arena, 42, "alice", 100, Direction.UP)


@pytest.mark.parametrize("now", [T0 - 1, T1, T1 + 1])
def test_join_outside_window_rejected(arena, battle_id, now):
    with pytest.raises(StakingWindowError):
        _join(arena, battle_id, "alice", 100, Direction.UP, now=now)
    assert _battle(arena, battle_id).positions == {}


@pytest.mark.parametrize("now", [T0, T1 - 1])
def test_join_window_edges_accepted(arena, battle_id, now):
    assert _join(arena, battle_id, "alice", 100, Direction.UP, now=now) == 95


def test_join_window_error_is_invalid_state(arena, battle_id):
    with pytest.raises(InvalidStateError):
        _join(arena, battle_id, "alice", 1, Direction.UP, now=T0 - 1)


@pytest.mark.parametrize("second_direction", [Direction.UP, Direction.DOWN])
def test_second_join_same_player_rejected(arena, battle_id, second_direction):
    _join(arena, battle_id, "alice", 100, Direction.UP)
    second = coins(300)
    with pytest.raises(AlreadyJoinedError):
        engine.join(arena, battle_id, second, second_direction, "alice", now_ms=T0)

    battle = _battle(arena, battle_id)
    assert second.value == 300
    assert battle.total_up == 95
    assert battle.total_down == 0
    assert arena.fees.value == FEE


@pytest.mark.parametrize("amount", [0, 1, FEE])
def test_stake_must_exceed_fee(arena, battle_id, amount):
    stake = coins(amount)
    with pytest.raises(StakeTooSmallError):
        engine.join(arena, battle_id, stake, Direction.UP, "alice", now_ms=T0)

    battle = _battle(arena, battle_id)
    assert stake.value == amount
    assert arena.fees.value == 0
    assert battle.pool.value == 0
    assert battle.positions == {}


def test_smallest_valid_stake(arena, battle_id):
    assert _join(arena, battle_id, "alice", FEE + 1, Direction.DOWN) == 1


def test_join_closed_battle_rejected(arena, battle_id):
    engine.close_battle(arena, battle_id, 100, now_ms=T1)
    with pytest.raises(BattleClosedError):
        _join(arena, battle_id, "alice", 100, Direction.UP, now=T1 - 1)


def test_conservation_after_many_joins(arena, battle_id):
    amounts = {"a": 10, "b": 250, "c": 77, "d": 1000, "e": 6}
    for i, (player, amount) in enumerate(amounts.items()):
        _join(arena, battle_id, player, amount, Direction.ALL[i % 2])

    battle = _battle(arena, battle_id)
    stakes = sum(p.stake for p in battle.positions.values())
    assert stakes == battle.total_up + battle.total_down == battle.pool.value
    assert stakes == sum(amounts.values()) - FEE * len(amounts)


def test_concurrent_joins_conserve_value(arena, battle_id):
    players = [f"p{i}" for i in range(40)]
    errors = []

    def worker(player, direction):
        try:
            _join(arena, battle_id, player, 50, direction)
        except Exception as e:  # collected and asserted below
            errors.append(e)

    threads = [
        threading.Thread(target=worker, args=(p, Direction.ALL[i % 2]))
        for i, p in enumerate(players)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    battle = _battle(arena, battle_id)
    assert errors == []
    assert len(battle.positions) == 40
    assert battle.total_up == battle.total_down == 20 * 45
    assert battle.pool.value == 40 * 45
    assert arena.fees.value == 40 * FEE


# ---------------------------------------------------------------------------
# Closing
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("open_price,close_price,expected", [
    (100, 101, Outcome.UP),
    (100, 99,  Outcome.DOWN),
    (100, 100, Outcome.TIE),
    (0,   0,   Outcome.TIE),
    (0,   1,   Outcome.UP),
    (2**63, 2**63 - 1, Outcome.DOWN),
])
def test_outcome_is_pure_comparison(open_price, close_price, expected):
    assert outcome_for(open_price, close_price) == expected


def test_close_before_close_time_rejected(arena, battle_id):
    with pytest.raises(CloseTooEarlyError):
        engine.close_battle(arena, battle_id, 110, now_ms=T1 - 1)
    assert not _battle(arena, battle_id).is_closed


def test_close_unknown_battle(arena):
    with pytest.raises(BattleNotFoundError):
        engine.close_battle(arena, 9, 110, now_ms=T1)


def test_close_snapshots_pool(arena, battle_id):
    _join(arena, battle_id, "alice", 100, Direction.UP)
    _join(arena, battle_id, "bob", 200, Direction.DOWN)

    outcome = engine.close_battle(arena, battle_id, 110, now_ms=T1)

    battle = _battle(arena, battle_id)
    assert outcome == Outcome.UP
    assert battle.is_closed
    assert battle.outcome == Outcome.UP
    assert battle.close_reading == PlainReading(110)
    assert battle.pool_at_close == 290
    assert arena.events.last() == BattleClosed(battle_id=battle_id, close_price=110, outcome=Outcome.UP)


def test_second_close_rejected_and_outcome_kept(arena, battle_id):
    engine.close_battle(arena, battle_id, 110, now_ms=T1)
    with pytest.raises(BattleClosedError):
        engine.close_battle(arena, battle_id, 90, now_ms=T1 + 10)

    battle = _battle(arena, battle_id)
    assert battle.outcome == Outcome.UP
    assert battle.close_reading == PlainReading(110)
    assert len(arena.events.of_type(BattleClosed)) == 1


# ---------------------------------------------------------------------------
# Claiming
# ---------------------------------------------------------------------------

def test_tie_refunds_net_stakes(arena, battle_id):
    _join(arena, battle_id, "alice", 100, Direction.UP)
    _join(arena, battle_id, "bob", 100, Direction.DOWN)
    assert engine.close_battle(arena, battle_id, 100, now_ms=T1) == Outcome.TIE

    assert engine.claim(arena, battle_id, "alice") == 95
    assert engine.claim(arena, battle_id, "bob") == 95

    battle = _battle(arena, battle_id)
    assert battle.pool.value == 0
    assert arena.vault.balance_of("alice") == 95
    assert arena.vault.balance_of("bob") == 95
    assert arena.fees.value == 2 * FEE


def test_sole_winner_takes_whole_pool(arena, battle_id):
    _join(arena, battle_id, "alice", 100, Direction.UP)
    _join(arena, battle_id, "bob", 200, Direction.DOWN)
    engine.close_battle(arena, battle_id, 110, now_ms=T1)

    assert engine.claim(arena, battle_id, "alice") == 290
    assert engine.claim(arena, battle_id, "bob") == 0

    battle = _battle(arena, battle_id)
    assert battle.pool.value == 0
    assert battle.positions["bob"].claimed
    assert arena.vault.balance_of("alice") == 290
    assert arena.vault.balance_of("bob") == 0
    assert arena.events.of_type(Claimed) == [
        Claimed(battle_id=battle_id, player="alice", payout=290),
        Claimed(battle_id=battle_id, player="bob", payout=0),
    ]


def test_pro_rata_with_rounding_dust(arena, battle_id):
    _join(arena, battle_id, "carol", 100, Direction.UP)    # net 95
    _join(arena, battle_id, "dave", 60, Direction.UP)      # net 55
    _join(arena, battle_id, "erin", 250, Direction.DOWN)   # net 245
    engine.close_battle(arena, battle_id, 120, now_ms=T1)  # pool 395, winners 150

    assert engine.claim(arena, battle_id, "carol") == 395 * 95 // 150   # 250
    assert engine.claim(arena, battle_id, "dave") == 395 * 55 // 150    # 144
    assert engine.claim(arena, battle_id, "erin") == 0
    assert _battle(arena, battle_id).pool.value == 1


def test_claim_order_does_not_change_payouts(arena):
    def run(order):
        a = engine.create_arena(fee_flat=FEE, fee_recipient=RECIPIENT)
        bid = engine.create_battle(a, b"BTC", 100, T0, T1, now_ms=T0)
        _join(a, bid, "carol", 100, Direction.UP)
        _join(a, bid, "dave", 60, Direction.UP)
        _join(a, bid, "zed", 33, Direction.UP)
        _join(a, bid, "erin", 250, Direction.DOWN)
        engine.close_battle(a, bid, 120, now_ms=T1)
        return {p: engine.claim(a, bid, p) for p in order}

    forward = run(["carol", "dave", "zed", "erin"])
    backward = run(["erin", "zed", "dave", "carol"])
    assert forward == backward
    assert sum(forward.values()) <= 95 + 55 + 28 + 245


def test_claim_twice_rejected_without_side_effects(arena, battle_id):
    _join(arena, battle_id, "alice", 100, Direction.UP)
    _join(arena, battle_id, "bob", 100, Direction.UP)
    _join(arena, battle_id, "carl", 100, Direction.DOWN)
    engine.close_battle(arena, battle_id, 110, now_ms=T1)

    engine.claim(arena, battle_id, "alice")
    pool_after_first = _battle(arena, battle_id).pool.value
    events_after_first = len(arena.events)

    with pytest.raises(AlreadyClaimedError):
        engine.claim(arena, battle_id, "alice")
    with pytest.raises(DuplicateError):
        engine.claim(arena, battle_id, "alice")

    assert _battle(arena, battle_id).pool.value == pool_after_first
    assert len(arena.events) == events_after_first
    assert arena.vault.balance_of("alice") == 142


def test_claim_before_close_rejected(arena, battle_id):
    _join(arena, battle_id, "alice", 100, Direction.UP)
    with pytest.raises(BattleNotClosedError):
        engine.claim(arena, battle_id, "alice")
    assert not _battle(arena, battle_id).positions["alice"].claimed


def test_claim_without_position_rejected(arena, battle_id):
    _join(arena, battle_id, "alice", 100, Direction.UP)
    engine.close_battle(arena, battle_id, 110, now_ms=T1)
    with pytest.raises(PositionNotFoundError):
        engine.claim(arena, battle_id, "mallory")


def test_claim_unknown_battle(arena):
    with pytest.raises(BattleNotFoundError):
        engine.claim(arena, 3, "alice")


def test_everyone_on_losing_side_blocks_all_claims(arena, battle_id):
    # Nobody backed DOWN, price fell: the winning side is empty, so even the
    # losers' claims fail instead of resolving to zero.
    _join(arena, battle_id, "frank", 100, Direction.UP)
    _join(arena, battle_id, "grace", 80, Direction.UP)
    assert engine.close_battle(arena, battle_id, 90, now_ms=T1) == Outcome.DOWN

    for player in ("frank", "grace"):
        with pytest.raises(NoWinnersError):
            engine.claim(arena, battle_id, player)

    battle = _battle(arena, battle_id)
    assert battle.pool.value == 170
    assert not battle.positions["frank"].claimed
    assert not battle.positions["grace"].claimed
    assert arena.events.of_type(Claimed) == []


def test_everyone_on_one_side_tie_still_refunds(arena, battle_id):
    _join(arena, battle_id, "frank", 100, Direction.UP)
    engine.close_battle(arena, battle_id, 100, now_ms=T1)
    assert engine.claim(arena, battle_id, "frank") == 95


def test_battle_with_no_players_closes_cleanly(arena, battle_id):
    assert engine.close_battle(arena, battle_id, 150, now_ms=T1) == Outcome.UP
    assert _battle(arena, battle_id).pool_at_close == 0


# ---------------------------------------------------------------------------
# Fees
# ---------------------------------------------------------------------------

def test_fees_accumulate_across_battles_and_survive_settlement(arena):
    b1 = engine.create_battle(arena, b"BTC", 100, T0, T1, now_ms=T0)
    b2 = engine.create_battle(arena, b"ETH", 50, T0, T1, now_ms=T0)
    _join(arena, b1, "alice", 100, Direction.UP)
    _join(arena, b1, "bob", 100, Direction.DOWN)
    _join(arena, b2, "alice", 40, Direction.DOWN)
    assert arena.fees.value == 3 * FEE

    engine.close_battle(arena, b1, 120, now_ms=T1)
    engine.close_battle(arena, b2, 40, now_ms=T1)
    engine.claim(arena, b1, "alice")
    engine.claim(arena, b1, "bob")
    engine.claim(arena, b2, "alice")
    assert arena.fees.value == 3 * FEE


def test_only_recipient_can_withdraw(arena, battle_id):
    _join(arena, battle_id, "alice", 100, Direction.UP)
    with pytest.raises(NotFeeRecipientError):
        engine.withdraw_fees(arena, "alice")
    assert arena.fees.value == FEE


def test_withdraw_drains_everything(arena, battle_id):
    _join(arena, battle_id, "alice", 100, Direction.UP)
    _join(arena, battle_id, "bob", 100, Direction.UP)

    assert engine.withdraw_fees(arena, RECIPIENT) == 2 * FEE
    assert arena.fees.value == 0
    assert arena.vault.balance_of(RECIPIENT) == 2 * FEE
    assert engine.withdraw_fees(arena, RECIPIENT) == 0
    assert arena.events.of_type(FeesWithdrawn)[0] == FeesWithdrawn(recipient=RECIPIENT, amount=10)


def test_zero_fee_arena():
    arena = engine.create_arena(fee_flat=0, fee_recipient=RECIPIENT)
    bid = engine.create_battle(arena, b"BTC", 100, T0, T1, now_ms=T0)
    assert _join(arena, bid, "alice", 1, Direction.UP) == 1
    with pytest.raises(StakeTooSmallError):
        _join(arena, bid, "bob", 0, Direction.UP)
    assert arena.fees.value == 0


# ---------------------------------------------------------------------------
# Full round: value is conserved end to end
# ---------------------------------------------------------------------------

def test_total_value_conserved(arena, battle_id):
    minted = 0
    for player, amount, direction in [
        ("a", 130, Direction.UP), ("b", 70, Direction.UP),
        ("c", 400, Direction.DOWN), ("d", 9, Direction.DOWN),
    ]:
        minted += amount
        _join(arena, battle_id, player, amount, direction)

    engine.close_battle(arena, battle_id, 99, now_ms=T1)
    for player in ("a", "b", "c", "d"):
        engine.claim(arena, battle_id, player)
    engine.withdraw_fees(arena, RECIPIENT)

    battle = _battle(arena, battle_id)
    assert arena.vault.total() + battle.pool.value + arena.fees.value == minted


# ---------------------------------------------------------------------------
# Read helpers and event subscribers
# ---------------------------------------------------------------------------

def test_get_position(arena, battle_id):
    _join(arena, battle_id, "alice", 100, Direction.DOWN)
    position = engine.get_position(arena, battle_id, "alice")
    assert position.direction == Direction.DOWN
    assert position.stake == 95
    with pytest.raises(PositionNotFoundError):
        engine.get_position(arena, battle_id, "bob")


def test_subscribers_see_committed_events_only(arena, battle_id):
    seen = []
    arena.events.subscribe(seen.append)

    _join(arena, battle_id, "alice", 100, Direction.UP)
    with pytest.raises(AlreadyJoinedError):
        _join(arena, battle_id, "alice", 100, Direction.UP)
    engine.close_battle(arena, battle_id, 101, now_ms=T1)

    assert [type(e).__name__ for e in seen] == ["Joined", "BattleClosed"]
    assert [type(e).__name__ for e in arena.events] == ["BattleCreated", "Joined", "BattleClosed"]


# ---------------------------------------------------------------------------
# Input validation on the direct and mock paths
# ---------------------------------------------------------------------------

def test_negative_fee_refused():
    with pytest.raises(ValueError):
        engine.create_arena(fee_flat=-5, fee_recipient=RECIPIENT)


def test_negative_open_price_refused(arena):
    with pytest.raises(InvalidPriceError):
        engine.create_battle(arena, b"BTC", -100, T0, T1, now_ms=T0)
    assert arena.battles == {}
    assert arena.next_battle_id == 0
    assert len(arena.events) == 0


def test_negative_close_price_refused(arena, battle_id):
    _join(arena, battle_id, "alice", 100, Direction.DOWN)
    with pytest.raises(InvalidPriceError):
        engine.close_battle(arena, battle_id, -200, now_ms=T1)

    battle = _battle(arena, battle_id)
    assert not battle.is_closed
    assert battle.close_reading is None
    assert arena.events.of_type(BattleClosed) == []


def test_oracle_close_of_closed_battle_checks_state_first(arena, battle_id):
    engine.close_battle(arena, battle_id, 110, now_ms=T1)
    empty_oracle = MockOracle(admin="admin")
    with pytest.raises(BattleClosedError):
        engine.close_battle_with_oracle(arena, empty_oracle, battle_id, now_ms=T1)


def test_oracle_close_too_early_checks_time_first(arena, battle_id):
    with pytest.raises(CloseTooEarlyError):
        engine.close_battle_with_oracle(arena, MockOracle(admin="admin"), battle_id, now_ms=T0)


# ---------------------------------------------------------------------------
# Event log order under concurrency
# ---------------------------------------------------------------------------

def test_event_log_matches_commit_order(arena, battle_id):
    # Joins race a close; every Joined in the log must precede BattleClosed
    # exactly when that join committed before the close.
    barrier = threading.Barrier(21)

    def joiner(player):
        barrier.wait()
        try:
            _join(arena, battle_id, player, 50, Direction.UP, now=T1 - 1)
        except BattleClosedError:
            pass

    def closer():
        barrier.wait()
        engine.close_battle(arena, battle_id, 120, now_ms=T1)

    threads = [threading.Thread(target=joiner, args=(f"p{i}",)) for i in range(20)]
    threads.append(threading.Thread(target=closer))
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    battle = _battle(arena, battle_id)
    events = list(arena.events)
    closed_at = next(i for i, e in enumerate(events) if isinstance(e, BattleClosed))
    joined_before = [e.player for e in events[:closed_at] if isinstance(e, Joined)]
    joined_after = [e for e in events[closed_at:] if isinstance(e, Joined)]

    assert joined_after == []
    assert sorted(joined_before) == sorted(battle.positions)
    assert battle.pool_at_close == 45 * len(joined_before)
