"""
battle_core/errors.py — Every way an arena operation can be refused.

Each concrete class is one distinct condition. They are grouped under a
category base class so callers can catch broadly ("any duplicate") or
precisely ("already claimed"). A raised error always means the operation
changed nothing.
"""

from __future__ import annotations


class ArenaError(Exception):
    """Base for all arena errors."""


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------

class NotFoundError(ArenaError):
    pass

class InvalidStateError(ArenaError):
    pass

class InvalidInputError(ArenaError):
    pass

class DuplicateError(ArenaError):
    pass

class AuthorizationError(ArenaError):
    pass

class OracleIntegrityError(ArenaError):
    pass

class FairnessError(ArenaError):
    pass

class CustodyError(ArenaError):
    pass


# ---------------------------------------------------------------------------
# Not found
# ---------------------------------------------------------------------------

class BattleNotFoundError(NotFoundError):
    def __init__(self, battle_id: int):
        super().__init__(f"Battle {battle_id} does not exist")
        self.battle_id = battle_id


class PositionNotFoundError(NotFoundError):
    def __init__(self, battle_id: int, player: str):
        super().__init__(f"Player '{player}' has no position in battle {battle_id}")
        self.battle_id = battle_id
        self.player = player


class PriceNotFoundError(NotFoundError):
    def __init__(self, asset_id: bytes):
        super().__init__(f"No price set for asset {asset_id!r}")
        self.asset_id = asset_id


# ---------------------------------------------------------------------------
# Invalid state
# ---------------------------------------------------------------------------

class InvalidWindowError(InvalidStateError):
    def __init__(self, detail: str):
        super().__init__(f"Invalid battle window: {detail}")
        self.detail = detail


class BattleClosedError(InvalidStateError):
    def __init__(self, battle_id: int):
        super().__init__(f"Battle {battle_id} is already closed")
        self.battle_id = battle_id


class BattleNotClosedError(InvalidStateError):
    def __init__(self, battle_id: int):
        super().__init__(f"Battle {battle_id} is not closed yet")
        self.battle_id = battle_id


class StakingWindowError(InvalidStateError):
    def __init__(self, battle_id: int, now_ms: int, open_time: int, close_time: int):
        super().__init__(
            f"Battle {battle_id} accepts stakes in [{open_time}, {close_time}), now={now_ms}"
        )
        self.battle_id = battle_id
        self.now_ms = now_ms


class CloseTooEarlyError(InvalidStateError):
    def __init__(self, battle_id: int, now_ms: int, close_time: int):
        super().__init__(
            f"Battle {battle_id} cannot close before {close_time}, now={now_ms}"
        )
        self.battle_id = battle_id
        self.now_ms = now_ms


# ---------------------------------------------------------------------------
# Invalid input
# ---------------------------------------------------------------------------

class InvalidDirectionError(InvalidInputError):
    def __init__(self, direction):
        super().__init__(f"Direction must be 0 (down) or 1 (up), got {direction!r}")
        self.direction = direction


class StakeTooSmallError(InvalidInputError):
    def __init__(self, amount: int, fee_flat: int):
        super().__init__(f"Stake {amount} does not exceed the flat fee {fee_flat}")
        self.amount = amount
        self.fee_flat = fee_flat


class InvalidPriceError(InvalidInputError):
    def __init__(self, price):
        super().__init__(f"Prices are unsigned, got {price!r}")
        self.price = price


# ---------------------------------------------------------------------------
# Duplicate
# ---------------------------------------------------------------------------

class AlreadyJoinedError(DuplicateError):
    def __init__(self, battle_id: int, player: str):
        super().__init__(f"Player '{player}' already joined battle {battle_id}")
        self.battle_id = battle_id
        self.player = player


class AlreadyClaimedError(DuplicateError):
    def __init__(self, battle_id: int, player: str):
        super().__init__(f"Player '{player}' already claimed battle {battle_id}")
        self.battle_id = battle_id
        self.player = player


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------

class NotFeeRecipientError(AuthorizationError):
    def __init__(self, caller: str):
        super().__init__(f"'{caller}' is not the fee recipient")
        self.caller = caller


class NotAdminError(AuthorizationError):
    def __init__(self, caller: str):
        super().__init__(f"'{caller}' is not the oracle admin")
        self.caller = caller


# ---------------------------------------------------------------------------
# Oracle integrity
# ---------------------------------------------------------------------------

class NegativePriceError(OracleIntegrityError):
    def __init__(self, feed_id: bytes):
        super().__init__(f"Negative price from feed {feed_id.hex()}")
        self.feed_id = feed_id


class ExponentMismatchError(OracleIntegrityError):
    def __init__(self, expected: int, got: int):
        super().__init__(f"Price exponent {got} does not match opening exponent {expected}")
        self.expected = expected
        self.got = got


class FeedMismatchError(OracleIntegrityError):
    def __init__(self, expected: bytes, got: bytes):
        super().__init__(f"Feed {got.hex()} does not match battle asset {expected.hex()}")
        self.expected = expected
        self.got = got


class BattleTypeMismatchError(OracleIntegrityError):
    def __init__(self, battle_id: int, detail: str):
        super().__init__(f"Battle {battle_id}: {detail}")
        self.battle_id = battle_id
        self.detail = detail


class StalePriceError(OracleIntegrityError):
    def __init__(self, feed_id: bytes, age: int, max_age: int):
        super().__init__(f"Price from feed {feed_id.hex()} is {age}s old (max {max_age}s)")
        self.feed_id = feed_id
        self.age = age
        self.max_age = max_age


# ---------------------------------------------------------------------------
# Fairness
# ---------------------------------------------------------------------------

class NoWinnersError(FairnessError):
    def __init__(self, battle_id: int):
        super().__init__(f"Battle {battle_id} has no stake on the winning side")
        self.battle_id = battle_id


# ---------------------------------------------------------------------------
# Custody
# ---------------------------------------------------------------------------

class InsufficientBalanceError(CustodyError):
    def __init__(self, requested: int, available: int):
        super().__init__(f"Cannot split {requested} from a balance of {available}")
        self.requested = requested
        self.available = available
