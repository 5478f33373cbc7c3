"""Accrual accounting - per-stream reward-per-unit accumulator and rate management.

Key Concepts:
- accumulated_per_unit(t) = acc + (min(now, period_end) - last_update) * rate * SCALE / W
  where W is the total weighted principal
- An account earns weighted_principal * (acc - paid_per_unit) / SCALE since its checkpoint
- Settlement freezes that amount into pending_reward and moves the checkpoint forward
- With W == 0 nothing accrues: the reward simply waits in custody
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

from .errors import InvalidAmount, RewardPeriodActive, RewardRateExceedsBalance
from .fixed_point import SCALE, check_bounds, checked_add, mul_div
from .interfaces import Clock

logger = logging.getLogger("accrual.engine.accounting")


class StreamStatus(str, Enum):
    """Lifecycle of a reward stream."""
    EMPTY = "empty"  # No rate ever set
    ACTIVE = "active"  # rate > 0 and now < period_end
    EXPIRED = "expired"  # Period over; rate retained but accrues nothing
    REMOVED = "removed"  # Deactivated; accumulator frozen


@dataclass
class RewardStream:
    """State of one reward token.

    Never deleted: a removed stream keeps its frozen accumulator so
    outstanding rewards can still be computed and claimed.
    """
    token: str
    rewards_duration: int  # Default period length in seconds for notify
    rate: int = 0  # Reward base units per second
    accumulated_per_unit: int = 0  # Fixed-point, scale SCALE
    last_update_time: int = 0
    period_end: int = 0
    total_distributed: int = 0  # Cumulative reward committed for payout
    total_paid: int = 0  # Cumulative reward transferred out to accounts
    active: bool = True

    def status(self, now: int) -> StreamStatus:
        if not self.active:
            return StreamStatus.REMOVED
        if self.period_end == 0:
            return StreamStatus.EMPTY
        if now < self.period_end:
            return StreamStatus.ACTIVE
        return StreamStatus.EXPIRED


@dataclass
class AccountStreamCheckpoint:
    """Per (account, stream) bookkeeping."""
    paid_per_unit: int = 0  # Accumulator value last observed for the account
    pending_reward: int = 0  # Frozen earnings not yet claimed


class AccrualAccountant:
    """Reward-per-unit accumulator, account checkpoints and rate setting.

    Checkpoints live in a single mapping keyed by (account, token) and are
    only materialized once an account is settled against a stream.
    """

    def __init__(self, clock: Clock):
        """
        Initialize the accountant.

        Args:
            clock: Source of the current time in seconds
        """
        self.clock = clock
        self.checkpoints: Dict[Tuple[str, str], AccountStreamCheckpoint] = {}

    # Views -----------------------------------------------------------------

    def current_accrual_time(self, stream: RewardStream) -> int:
        """Latest time up to which the current rate applies."""
        return min(self.clock.now(), stream.period_end)

    def current_accumulated_per_unit(
        self,
        stream: RewardStream,
        total_weighted_principal: int
    ) -> int:
        """
        Accumulator value as of now, without storing it.

        Args:
            stream: Reward stream
            total_weighted_principal: Sum of weighted principal across accounts

        Returns:
            Fixed-point reward per unit of weighted principal
        """
        if not stream.active or total_weighted_principal == 0:
            return stream.accumulated_per_unit

        elapsed = self.current_accrual_time(stream) - stream.last_update_time
        if elapsed <= 0:
            return stream.accumulated_per_unit

        increment = mul_div(elapsed * stream.rate, SCALE, total_weighted_principal)
        return checked_add(stream.accumulated_per_unit, increment)

    def checkpoint(self, account: str, token: str) -> AccountStreamCheckpoint:
        """Stored checkpoint, or an empty one if the account never touched the stream."""
        return self.checkpoints.get((account, token)) or AccountStreamCheckpoint()

    def earned(
        self,
        stream: RewardStream,
        account: str,
        weighted_principal: int,
        total_weighted_principal: int
    ) -> int:
        """Total claimable reward for an account as of now."""
        checkpoint = self.checkpoint(account, stream.token)
        acc = self.current_accumulated_per_unit(stream, total_weighted_principal)
        return self._accrued(checkpoint, acc, weighted_principal)

    def reward_for_duration(self, stream: RewardStream) -> int:
        """Reward emitted over one full period at the current rate."""
        return stream.rate * stream.rewards_duration

    def committed_unpaid(self, stream: RewardStream) -> int:
        """
        Reward already released to accrual and not yet paid out.

        This is total_distributed less what was paid and less what the
        running period has still to emit. Custody must keep it back from any
        new period.
        """
        now = self.clock.now()
        remaining = (stream.period_end - now) * stream.rate if now < stream.period_end else 0
        return max(0, stream.total_distributed - stream.total_paid - remaining)

    # Mutations -------------------------------------------------------------

    def settle(
        self,
        stream: RewardStream,
        total_weighted_principal: int,
        account: Optional[str] = None,
        weighted_principal: int = 0
    ) -> int:
        """
        Bring a stream (and optionally one account) up to date.

        Removed streams keep their frozen accumulator; the account part still
        runs so earnings up to removal are folded into pending_reward.

        Args:
            stream: Reward stream to settle
            total_weighted_principal: Weighted total before the pending mutation
            account: Account whose checkpoint to move forward
            weighted_principal: That account's weighted principal before the mutation

        Returns:
            The account's pending reward after settlement (0 without account)
        """
        acc = self.current_accumulated_per_unit(stream, total_weighted_principal)
        if stream.active:
            stream.accumulated_per_unit = acc
            stream.last_update_time = self.current_accrual_time(stream)

        if account is None:
            return 0

        key = (account, stream.token)
        checkpoint = self.checkpoints.get(key)
        if checkpoint is None:
            checkpoint = AccountStreamCheckpoint()
            self.checkpoints[key] = checkpoint
        checkpoint.pending_reward = self._accrued(checkpoint, acc, weighted_principal)
        checkpoint.paid_per_unit = acc
        logger.debug(
            f"Settled {account} on {stream.token}: acc={acc}, pending={checkpoint.pending_reward}"
        )
        return checkpoint.pending_reward

    def set_rate(
        self,
        stream: RewardStream,
        reward_amount: int,
        duration: int,
        available_balance: int,
        total_weighted_principal: int
    ) -> int:
        """
        Start a new reward period, blending in what is left of the current one.

        Formula:
            now >= period_end: rate = reward / duration
            otherwise:         rate = (reward + (period_end - now) * rate) / duration

        Repeated extensions floor-divide each time, so a few base units per
        extension can be left undistributed in custody.

        Args:
            stream: Reward stream (must be registered and active)
            reward_amount: New reward added for distribution
            duration: Length of the new period in seconds
            available_balance: Reward tokens held by custody for this stream
            total_weighted_principal: Current weighted total (for the pre-settle)

        Returns:
            The new rate

        Raises:
            InvalidAmount: If reward_amount or duration is not positive
            RewardRateExceedsBalance: If rate * duration exceeds custody balance
        """
        if reward_amount <= 0:
            raise InvalidAmount(f"Reward amount must be positive, got {reward_amount}")
        if duration <= 0:
            raise InvalidAmount(f"Duration must be positive, got {duration}")
        check_bounds(reward_amount, "reward_amount")

        now = self.clock.now()
        if now >= stream.period_end:
            new_rate = reward_amount // duration
        else:
            leftover = (stream.period_end - now) * stream.rate
            new_rate = checked_add(reward_amount, leftover) // duration

        if new_rate > available_balance // duration:
            raise RewardRateExceedsBalance(
                f"Rate {new_rate}/s over {duration}s needs {new_rate * duration} "
                f"{stream.token}, custody holds {available_balance}"
            )

        # Lock in accrual at the old rate before switching
        self.settle(stream, total_weighted_principal)

        stream.rate = new_rate
        stream.last_update_time = now
        stream.period_end = now + duration
        stream.total_distributed = checked_add(stream.total_distributed, reward_amount)
        logger.info(
            f"Reward rate for {stream.token} set to {new_rate}/s until {stream.period_end}"
        )
        return new_rate

    def set_rewards_duration(self, stream: RewardStream, duration: int) -> None:
        """Change the default period length once the current period is over."""
        if duration <= 0:
            raise InvalidAmount(f"Duration must be positive, got {duration}")
        if self.clock.now() < stream.period_end:
            raise RewardPeriodActive(
                f"Reward period for {stream.token} runs until {stream.period_end}"
            )
        stream.rewards_duration = duration

    def _accrued(
        self,
        checkpoint: AccountStreamCheckpoint,
        acc: int,
        weighted_principal: int
    ) -> int:
        delta = acc - checkpoint.paid_per_unit
        if delta <= 0:
            return checkpoint.pending_reward
        return checked_add(
            checkpoint.pending_reward,
            mul_div(weighted_principal, delta, SCALE)
        )
