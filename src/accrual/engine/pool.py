"""Staking pool - the serialized entry point tying the engine together.

Every state-changing operation runs in the same order:
1. validate inputs (no state touched)
2. settle every registered stream for the account at its current weighting
3. mutate positions / pending rewards (mutators require the settlement proof)
4. request external transfers
5. emit events

The whole operation holds a reentrancy guard and reads the clock once. Any
exception restores the state captured before step 2. Reward transfers that
custody already completed in the failed operation are booked again on top of
the restored state, so they cannot be claimed a second time.
"""

import copy
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence, Tuple

from .accounting import AccrualAccountant, RewardStream, StreamStatus
from .errors import ReentrantCall, TransferFailed
from .interfaces import (
    POOL_ADDRESS,
    AccessControl,
    AllowAll,
    AssetLedger,
    Clock,
    EventLog,
    EventSink,
    InMemoryAssetLedger,
    PinnedClock,
    RewardPaid,
    RewardRateUpdated,
    RewardsDurationUpdated,
    RewardStreamAdded,
    RewardStreamRemoved,
    Staked,
    SystemClock,
    Withdrawn,
)
from .positions import SettledAccount, StakePosition, StakePositionLedger
from .registry import RewardStreamRegistry
from .settlement import RewardSettlement

if TYPE_CHECKING:
    from ..config.schema import Config

logger = logging.getLogger("accrual.engine.pool")


@dataclass
class StreamSnapshot:
    """Point-in-time view of one reward stream."""
    token: str
    status: StreamStatus
    rate: int
    accumulated_per_unit: int
    period_end: int
    total_distributed: int


@dataclass
class PoolSnapshot:
    """Point-in-time view of the pool, used by validation and reporting."""
    t: int
    total_principal: int
    total_weighted_principal: int
    streams: Dict[str, StreamSnapshot] = field(default_factory=dict)
    principal: Dict[str, int] = field(default_factory=dict)
    earned: Dict[Tuple[str, str], int] = field(default_factory=dict)


class StakingPool:
    """Multi-reward staking pool with time-locked, multiplier-weighted positions."""

    def __init__(
        self,
        principal_token: str,
        lock_periods: Sequence[int],
        multipliers: Sequence[int],
        clock: Clock = None,
        assets: AssetLedger = None,
        access: AccessControl = None,
        events: EventSink = None,
        default_rewards_duration: int = 7 * 86_400,
        address: str = POOL_ADDRESS
    ):
        """
        Initialize staking pool.

        Args:
            principal_token: Token accepted as stake
            lock_periods: Lock duration in seconds per lock index
            multipliers: Fixed-point multiplier per lock index
            clock: Time source (defaults to wall clock)
            assets: Custody collaborator (defaults to an in-memory ledger)
            access: Gate for administrative operations (defaults to allow-all)
            events: Event sink (defaults to an in-memory log)
            default_rewards_duration: Period length for streams added without one
            address: Holder name of the pool inside the asset ledger
        """
        self.principal_token = principal_token
        self.address = address
        self.clock = clock or SystemClock()
        self._time = PinnedClock(self.clock)
        self.assets = assets or InMemoryAssetLedger(address)
        self.access = access or AllowAll()
        self.events = events if events is not None else EventLog()

        self.registry = RewardStreamRegistry(principal_token, default_rewards_duration)
        self.accountant = AccrualAccountant(self._time)
        self.ledger = StakePositionLedger(self._time, lock_periods, multipliers)
        self.settlement = RewardSettlement(self.accountant, self.registry, self.assets, address)

        self._entered = False
        self._pending_events: List[object] = []
        self._paid: List[Tuple[str, str, int]] = []

    @classmethod
    def from_config(
        cls,
        config: "Config",
        clock: Clock = None,
        assets: AssetLedger = None,
        access: AccessControl = None,
        events: EventSink = None
    ) -> "StakingPool":
        """Build a pool and register the configured reward streams."""
        engine = config.engine
        pool = cls(
            principal_token=engine.principal_token,
            lock_periods=engine.lock_periods,
            multipliers=engine.multipliers,
            clock=clock,
            assets=assets,
            access=access,
            events=events,
            default_rewards_duration=engine.default_rewards_duration_seconds,
        )
        for reward in engine.reward_tokens:
            pool.registry.add(reward.token, reward.rewards_duration_seconds)
        return pool

    # Guard -----------------------------------------------------------------

    @contextmanager
    def _operation(self, name: str):
        """Reentrancy guard plus all-or-nothing rollback for one public call."""
        if self._entered:
            raise ReentrantCall(f"{name} called while another operation is in progress")
        self._entered = True
        saved = self._capture()
        self._pending_events = []
        self._paid = []
        try:
            with self._time.pinned():
                try:
                    yield
                except Exception:
                    self._restore(saved)
                    if self._paid:
                        self._keep_completed_payouts(name)
                    logger.debug(f"{name} rolled back")
                    raise
            for event in self._pending_events:
                self.events.emit(event)
        finally:
            self._pending_events = []
            self._paid = []
            self._entered = False

    def _capture(self):
        return copy.deepcopy((
            self.registry.streams,
            self.accountant.checkpoints,
            self.ledger.export_state(),
        ))

    def _restore(self, saved) -> None:
        streams, checkpoints, ledger_state = saved
        self.registry.streams = streams
        self.accountant.checkpoints = checkpoints
        self.ledger.restore_state(ledger_state)

    def _keep_completed_payouts(self, name: str) -> None:
        """
        Re-apply reward transfers that went through before the operation failed.

        The rollback restored the pre-operation state, so each paid amount is
        settled again and taken off pending, and its event is emitted.
        """
        for account, token, amount in self._paid:
            self._settle(account)
            self.settlement.record_payout(account, token, amount)
            self.events.emit(RewardPaid(account, token, amount))
            logger.warning(f"{name} failed after paying {amount} {token} to {account}; payout kept")

    def _settle(self, account: str) -> SettledAccount:
        """Settle every registered stream for the account at its current weighting."""
        total = self.ledger.state.total_weighted_principal
        weighted = self.ledger.weighted_principal(account)
        for stream in self.registry:
            self.accountant.settle(stream, total, account, weighted)
        return SettledAccount(
            account=account,
            version=self.ledger.version(account),
        )

    def _emit(self, event: object) -> None:
        self._pending_events.append(event)

    # Staker operations -----------------------------------------------------

    def stake(self, account: str, amount: int, lock_index: int = 0) -> StakePosition:
        """
        Lock principal into a new position.

        Returns:
            The new position
        """
        with self._operation("stake"):
            self.ledger.validate_open(amount, lock_index)
            settled = self._settle(account)
            position = self.ledger.open(settled, amount, lock_index)
            self.assets.transfer_in(self.principal_token, account, amount)
            self._emit(Staked(account, amount, lock_index, position.unlock_time))
            logger.info(
                f"{account} staked {amount} (lock {lock_index}, unlocks {position.unlock_time})"
            )
            return position

    def withdraw(self, account: str, position_index: int, amount: int = None) -> int:
        """
        Withdraw principal from an unlocked position.

        Withdrawing the whole position removes it; the last position then
        takes its index, so callers must re-read positions() afterwards.

        Args:
            account: Staker
            position_index: Index into positions(account)
            amount: Partial amount, or None for the whole position

        Returns:
            Amount withdrawn
        """
        with self._operation("withdraw"):
            position = self.ledger.validate_withdraw(account, position_index, amount)
            withdrawn = position.amount if amount is None else amount
            settled = self._settle(account)
            if withdrawn == position.amount:
                self.ledger.close(settled, position_index)
            else:
                self.ledger.reduce(settled, position_index, withdrawn)
            self.assets.transfer_out(self.principal_token, account, withdrawn)
            self._emit(Withdrawn(account, withdrawn))
            logger.info(f"{account} withdrew {withdrawn} from position {position_index}")
            return withdrawn

    def claim(self, account: str, token: str) -> int:
        """Pay out the account's reward for one stream; returns the amount."""
        with self._operation("claim"):
            self.registry.get(token)
            settled = self._settle(account)
            amount = self.settlement.claim(settled, token, self._paid)
            if amount:
                self._emit(RewardPaid(account, token, amount))
            return amount

    def claim_all(self, account: str) -> Dict[str, int]:
        """Pay out every claimable stream; returns token -> amount."""
        with self._operation("claim_all"):
            settled = self._settle(account)
            paid = self.settlement.claim_all(settled, self._paid)
            for token, amount in paid.items():
                self._emit(RewardPaid(account, token, amount))
            return paid

    def exit(self, account: str) -> Tuple[int, Dict[str, int]]:
        """
        Withdraw every unlocked position and claim every reward.

        Returns:
            (principal withdrawn, token -> reward paid)
        """
        with self._operation("exit"):
            unlocked = self.ledger.unlocked_indices(account)
            withdrawn = 0
            # Highest index first: swap-and-pop only moves the (higher) last
            # position into the freed slot, leaving lower indices in place.
            for index in reversed(unlocked):
                settled = self._settle(account)
                withdrawn += self.ledger.close(settled, index).amount
            settled = self._settle(account)
            payouts = self.settlement.collect_all(settled)

            if withdrawn:
                held = self.assets.balance_of(self.principal_token, self.address)
                if held < withdrawn:
                    raise TransferFailed(
                        f"Custody holds {held} {self.principal_token}, owes {account} {withdrawn}"
                    )
            self.settlement.pay(account, payouts, self._paid)
            if withdrawn:
                self.assets.transfer_out(self.principal_token, account, withdrawn)
                self._emit(Withdrawn(account, withdrawn))
            for token, amount in payouts.items():
                self._emit(RewardPaid(account, token, amount))
            logger.info(f"{account} exited: principal {withdrawn}, rewards {payouts}")
            return withdrawn, payouts

    # Administrative operations ---------------------------------------------

    def add_reward_stream(self, caller: Optional[str], token: str, rewards_duration: int = None) -> RewardStream:
        with self._operation("add_reward_stream"):
            self.access.check(caller, "add_reward_stream")
            stream = self.registry.add(token, rewards_duration)
            self._emit(RewardStreamAdded(token, stream.rewards_duration))
            return stream

    def remove_reward_stream(self, caller: Optional[str], token: str) -> RewardStream:
        """
        Deactivate a reward stream.

        Accrual up to now is locked in first. Outstanding rewards stay
        claimable only while custody still holds the reward tokens.
        """
        with self._operation("remove_reward_stream"):
            self.access.check(caller, "remove_reward_stream")
            stream = self.registry.require_active(token)
            self.accountant.settle(stream, self.ledger.state.total_weighted_principal)
            outstanding = self._outstanding(stream)
            self.registry.remove(token)
            if outstanding:
                logger.warning(
                    f"Removed reward stream {token} with {outstanding} unclaimed; "
                    f"custody must retain it for claims to succeed"
                )
            else:
                logger.info(f"Removed reward stream {token}")
            self._emit(RewardStreamRemoved(token))
            return stream

    def notify_reward_amount(
        self,
        caller: Optional[str],
        token: str,
        reward: int,
        duration: int = None,
        funder: str = None
    ) -> int:
        """
        Add reward to a stream and start a new period.

        Args:
            caller: Identity checked against access control
            token: Reward token
            reward: Reward base units added for distribution
            duration: Period length (defaults to the stream's rewards_duration;
                an explicit value becomes the stream's new default)
            funder: If given, the reward is pulled from this holder after the
                rate is set; otherwise custody must already hold it on top of
                the reward already accrued to stakers and not yet paid

        Returns:
            The new rate
        """
        with self._operation("notify_reward_amount"):
            self.access.check(caller, "notify_reward_amount")
            stream = self.registry.require_active(token)
            if duration is None:
                duration = stream.rewards_duration
            held = self.assets.balance_of(token, self.address)
            available = held - self.accountant.committed_unpaid(stream)
            if funder is not None:
                available += reward
            rate = self.accountant.set_rate(
                stream, reward, duration, available, self.ledger.state.total_weighted_principal
            )
            stream.rewards_duration = duration
            if funder is not None:
                self.assets.transfer_in(token, funder, reward)
            self._emit(RewardRateUpdated(token, reward, rate, stream.period_end))
            return rate

    def set_rewards_duration(self, caller: Optional[str], token: str, duration: int) -> None:
        """Change a stream's period length; only allowed once its period has ended."""
        with self._operation("set_rewards_duration"):
            self.access.check(caller, "set_rewards_duration")
            stream = self.registry.require_active(token)
            self.accountant.set_rewards_duration(stream, duration)
            self._emit(RewardsDurationUpdated(token, duration))
            logger.info(f"Rewards duration for {token} set to {duration}s")

    # Views -----------------------------------------------------------------

    def earned(self, account: str, token: str) -> int:
        stream = self.registry.get(token)
        return self.accountant.earned(
            stream,
            account,
            self.ledger.weighted_principal(account),
            self.ledger.state.total_weighted_principal,
        )

    def reward_per_unit(self, token: str) -> int:
        stream = self.registry.get(token)
        return self.accountant.current_accumulated_per_unit(
            stream, self.ledger.state.total_weighted_principal
        )

    def last_time_reward_applicable(self, token: str) -> int:
        return self.accountant.current_accrual_time(self.registry.get(token))

    def reward_for_duration(self, token: str) -> int:
        return self.accountant.reward_for_duration(self.registry.get(token))

    def stream_state(self, token: str) -> StreamStatus:
        return self.registry.get(token).status(self.clock.now())

    def balance_of(self, account: str) -> int:
        return self.ledger.principal_of(account)

    def weighted_balance_of(self, account: str) -> int:
        return self.ledger.weighted_principal(account)

    def weighted_multiplier(self, account: str) -> int:
        return self.ledger.weighted_multiplier(account)

    def positions(self, account: str) -> Tuple[StakePosition, ...]:
        return self.ledger.positions(account)

    @property
    def total_principal(self) -> int:
        return self.ledger.state.total_principal

    @property
    def total_weighted_principal(self) -> int:
        return self.ledger.state.total_weighted_principal

    def known_accounts(self) -> List[str]:
        """Accounts holding principal or a checkpoint on any stream."""
        accounts = dict.fromkeys(self.ledger.accounts)
        for account, _ in self.accountant.checkpoints:
            accounts.setdefault(account)
        return list(accounts)

    def snapshot(self) -> PoolSnapshot:
        with self._time.pinned() as now:
            snap = PoolSnapshot(
                t=now,
                total_principal=self.total_principal,
                total_weighted_principal=self.total_weighted_principal,
            )
            for stream in self.registry:
                snap.streams[stream.token] = StreamSnapshot(
                    token=stream.token,
                    status=stream.status(now),
                    rate=stream.rate,
                    accumulated_per_unit=self.reward_per_unit(stream.token),
                    period_end=stream.period_end,
                    total_distributed=stream.total_distributed,
                )
            for account in self.known_accounts():
                snap.principal[account] = self.balance_of(account)
                for stream in self.registry:
                    snap.earned[(account, stream.token)] = self.earned(account, stream.token)
            return snap

    def _outstanding(self, stream: RewardStream) -> int:
        return sum(self.earned(account, stream.token) for account in self.known_accounts())

    def __repr__(self) -> str:
        return (
            f"StakingPool(principal={self.principal_token!r}, "
            f"total_principal={self.total_principal}, streams={self.registry.tokens()})"
        )
