"""Stake position ledger - principal, time locks and lock multipliers.

Key Concepts:
- Each stake opens a position locked for lock_periods[i] with multipliers[i]
- Account multiplier: m = Σ(amount_i * multiplier_i) / Σ(amount_i), 1.0x with no positions
- Weighted principal: principal * m / SCALE, summed into total_weighted_principal
- Positions are removed by swap-and-pop: the last position takes the removed
  slot, so any index held by a caller is invalid after a removal on that
  account and must be re-read from positions()
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

from .errors import (
    InsufficientPrincipal,
    InvalidAmount,
    InvalidLockIndex,
    InvalidPositionIndex,
    StakeStillLocked,
)
from .fixed_point import ONE, SCALE, check_bounds, checked_add, checked_sub, mul_div
from .interfaces import Clock

logger = logging.getLogger("accrual.engine.positions")


@dataclass
class StakePosition:
    """A time-locked slice of an account's principal."""
    amount: int  # Principal in base units
    lock_duration: int  # Seconds
    start_time: int
    unlock_time: int  # start_time + lock_duration
    multiplier: int  # Fixed-point, ONE == 1.0x


@dataclass
class GlobalState:
    """Pool-wide principal totals."""
    total_principal: int = 0
    total_weighted_principal: int = 0


@dataclass(frozen=True)
class SettledAccount:
    """Proof that every stream was settled for an account at its current weighting.

    Mutators take this instead of a bare account name. It goes stale as soon
    as the account's positions change, so each mutation needs a fresh settle.
    """
    account: str
    version: int


class StakePositionLedger:
    """Per-account positions and the pool's weighted principal totals."""

    def __init__(self, clock: Clock, lock_periods: Sequence[int], multipliers: Sequence[int]):
        """
        Initialize ledger.

        Args:
            clock: Source of the current time
            lock_periods: Lock duration in seconds per lock index
            multipliers: Fixed-point reward multiplier per lock index
        """
        if len(lock_periods) != len(multipliers):
            raise ValueError("lock_periods and multipliers must have the same length")
        self.clock = clock
        self.lock_periods = list(lock_periods)
        self.multipliers = list(multipliers)
        self.state = GlobalState()
        self.accounts: Dict[str, List[StakePosition]] = {}
        self._principal: Dict[str, int] = {}
        self._weighted: Dict[str, int] = {}
        self._versions: Dict[str, int] = {}

    # Views -----------------------------------------------------------------

    def positions(self, account: str) -> Tuple[StakePosition, ...]:
        return tuple(self.accounts.get(account, ()))

    def principal_of(self, account: str) -> int:
        return self._principal.get(account, 0)

    def weighted_principal(self, account: str) -> int:
        """Weighted principal currently counted in the pool total."""
        return self._weighted.get(account, 0)

    def weighted_multiplier(self, account: str) -> int:
        """Amount-weighted average multiplier of the account's positions."""
        positions = self.accounts.get(account)
        if not positions:
            return ONE
        total_amount = sum(p.amount for p in positions)
        if total_amount == 0:
            return ONE
        weighted_sum = sum(p.amount * p.multiplier for p in positions)
        return weighted_sum // total_amount

    def unlocked_indices(self, account: str) -> List[int]:
        """Indices of positions that can be withdrawn now."""
        now = self.clock.now()
        return [
            i for i, p in enumerate(self.accounts.get(account, ()))
            if now >= p.unlock_time
        ]

    def version(self, account: str) -> int:
        return self._versions.get(account, 0)

    def export_state(self) -> dict:
        """Mutable state, for capture before an operation."""
        return {
            "state": self.state,
            "accounts": self.accounts,
            "principal": self._principal,
            "weighted": self._weighted,
            "versions": self._versions,
        }

    def restore_state(self, saved: dict) -> None:
        self.state = saved["state"]
        self.accounts = saved["accounts"]
        self._principal = saved["principal"]
        self._weighted = saved["weighted"]
        self._versions = saved["versions"]

    # Validation ------------------------------------------------------------

    def validate_open(self, amount: int, lock_index: int) -> None:
        if not isinstance(amount, int) or amount <= 0:
            raise InvalidAmount(f"Stake amount must be a positive integer, got {amount!r}")
        check_bounds(amount, "amount")
        if not isinstance(lock_index, int) or not 0 <= lock_index < len(self.lock_periods):
            raise InvalidLockIndex(
                f"Lock index {lock_index} outside 0..{len(self.lock_periods) - 1}"
            )

    def validate_withdraw(self, account: str, position_index: int, amount: int = None) -> StakePosition:
        """
        Check that a position exists, is unlocked and covers the amount.

        Returns:
            The position that would be withdrawn from
        """
        positions = self.accounts.get(account, [])
        if not 0 <= position_index < len(positions):
            raise InvalidPositionIndex(
                f"{account} has {len(positions)} positions, no index {position_index}"
            )
        position = positions[position_index]
        now = self.clock.now()
        if now < position.unlock_time:
            raise StakeStillLocked(
                f"Position {position_index} of {account} unlocks at {position.unlock_time}, now {now}"
            )
        if amount is not None:
            if not isinstance(amount, int) or amount <= 0:
                raise InvalidAmount(f"Withdraw amount must be a positive integer, got {amount!r}")
            if amount > position.amount:
                raise InsufficientPrincipal(
                    f"Position {position_index} of {account} holds {position.amount}, "
                    f"cannot withdraw {amount}"
                )
        return position

    # Mutations -------------------------------------------------------------

    def open(self, settled: SettledAccount, amount: int, lock_index: int) -> StakePosition:
        """
        Append a new locked position and reweight the account.

        Args:
            settled: Settlement proof for the account at its old weighting
            amount: Principal to lock
            lock_index: Index into the lock tier table

        Returns:
            The new position
        """
        self.validate_open(amount, lock_index)
        account = self._require_fresh(settled)

        now = self.clock.now()
        lock_duration = self.lock_periods[lock_index]
        position = StakePosition(
            amount=amount,
            lock_duration=lock_duration,
            start_time=now,
            unlock_time=now + lock_duration,
            multiplier=self.multipliers[lock_index],
        )
        self.accounts.setdefault(account, []).append(position)
        self._principal[account] = checked_add(self.principal_of(account), amount)
        self.state.total_principal = checked_add(self.state.total_principal, amount)
        self._reweight(account)
        return position

    def close(self, settled: SettledAccount, position_index: int) -> StakePosition:
        """Remove an unlocked position entirely (swap-and-pop)."""
        account = settled.account
        position = self.validate_withdraw(account, position_index)
        self._require_fresh(settled)

        positions = self.accounts[account]
        positions[position_index] = positions[-1]
        positions.pop()
        if not positions:
            del self.accounts[account]

        self._debit(account, position.amount)
        return position

    def reduce(self, settled: SettledAccount, position_index: int, amount: int) -> StakePosition:
        """Withdraw part of an unlocked position; withdrawing all of it closes it."""
        account = settled.account
        position = self.validate_withdraw(account, position_index, amount)
        if amount == position.amount:
            return self.close(settled, position_index)
        self._require_fresh(settled)

        position.amount -= amount
        self._debit(account, amount)
        return position

    def _debit(self, account: str, amount: int) -> None:
        remaining = checked_sub(self.principal_of(account), amount)
        if remaining:
            self._principal[account] = remaining
        else:
            self._principal.pop(account, None)
        self.state.total_principal = checked_sub(self.state.total_principal, amount)
        self._reweight(account)

    def _reweight(self, account: str) -> None:
        old_weighted = self.weighted_principal(account)
        new_weighted = mul_div(self.principal_of(account), self.weighted_multiplier(account), SCALE)
        if new_weighted:
            self._weighted[account] = new_weighted
        else:
            self._weighted.pop(account, None)
        self.state.total_weighted_principal = checked_add(
            checked_sub(self.state.total_weighted_principal, old_weighted),
            new_weighted,
        )
        self._versions[account] = self.version(account) + 1
        logger.debug(
            f"Reweighted {account}: principal={self.principal_of(account)}, "
            f"weighted={new_weighted}, total_weighted={self.state.total_weighted_principal}"
        )

    def _require_fresh(self, settled: SettledAccount) -> str:
        if settled.version != self.version(settled.account):
            raise RuntimeError(
                f"Stale settlement for {settled.account}; settle all streams before mutating"
            )
        return settled.account
