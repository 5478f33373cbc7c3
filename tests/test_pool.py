"""Tests for the staking pool facade.

These tests verify:
- Rewards split in proportion to weighted principal
- Staking, withdrawing and exiting move principal through custody
- Failed operations leave no trace
- Failed operations keep reward transfers that already went through
- Reentrant calls are refused
- Each operation reads the clock once
- Stream administration and access control
"""

import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from accrual.engine import (
    DuplicateRewardToken,
    InvalidAmount,
    InvalidRewardToken,
    ReentrantCall,
    RewardPeriodActive,
    RewardRateExceedsBalance,
    StakeStillLocked,
    StakingPool,
    TransferFailed,
    Unauthorized,
)
from accrual.engine.accounting import StreamStatus
from accrual.engine.fixed_point import ONE, to_fixed
from accrual.engine.interfaces import (
    EventLog,
    InMemoryAssetLedger,
    LoggingEventSink,
    ManualClock,
    OwnerAccessControl,
    RewardPaid,
    RewardRateUpdated,
    RewardStreamRemoved,
    Staked,
    Withdrawn,
)
from accrual.validation import InvariantChecker

DAY = 86_400
WEEK = 7 * DAY
E18 = 10 ** 18
START = 1_700_000_000


@pytest.fixture
def pool():
    clock = ManualClock(START)
    assets = InMemoryAssetLedger()
    for holder in ("alice", "bob", "carol"):
        assets.mint("STAKE", holder, 10_000 * E18)
    assets.mint("RWD", "treasury", 100 * WEEK * E18)
    assets.mint("BONUS", "treasury", 100 * WEEK * E18)

    pool = StakingPool(
        principal_token="STAKE",
        lock_periods=[0, 30 * DAY],
        multipliers=[ONE, to_fixed(1.5)],
        clock=clock,
        assets=assets,
        access=OwnerAccessControl("admin"),
        events=EventLog(),
    )
    pool.add_reward_stream("admin", "RWD")
    return pool


def fund(pool, token="RWD", reward=WEEK * E18):
    return pool.notify_reward_amount("admin", token, reward, funder="treasury")


def assert_invariants(pool):
    errors = [w for w in InvariantChecker().check_pool(pool) if w.severity == "error"]
    assert errors == []


class TickingClock:
    """Advances one second every time it is read."""

    def __init__(self, start: int):
        self.time = start

    def now(self) -> int:
        current = self.time
        self.time += 1
        return current


class TestProportionalSplit:
    """Rewards follow weighted principal."""

    def test_two_stakers_split_by_weight(self, pool):
        """alice 100 x 1.0, bob 300 x 1.5: weights 100 and 450 of 550."""
        pool.stake("alice", 100 * E18, 0)
        pool.stake("bob", 300 * E18, 1)
        rate = fund(pool, reward=WEEK * 11 * E18)
        assert rate == 11 * E18

        pool.clock.advance(100)

        assert pool.earned("alice", "RWD") == 200 * E18
        assert pool.earned("bob", "RWD") == 900 * E18
        assert pool.weighted_balance_of("bob") == 450 * E18
        assert_invariants(pool)

    def test_late_joiner_earns_only_from_join(self, pool):
        """A staker joining later earns only from its join time."""
        pool.stake("alice", 100 * E18, 0)
        fund(pool)
        pool.clock.advance(1_000)
        pool.stake("bob", 100 * E18, 0)
        pool.clock.advance(1_000)

        assert pool.earned("alice", "RWD") == 1_500 * E18
        assert pool.earned("bob", "RWD") == 500 * E18

    def test_nothing_accrues_without_stakers(self, pool):
        """Reward emitted while nothing is staked is not credited to later stakers."""
        fund(pool)
        pool.clock.advance(DAY)
        pool.stake("alice", 100 * E18, 0)
        pool.clock.advance(10)
        assert pool.earned("alice", "RWD") == 10 * E18

    def test_accrual_stops_at_period_end(self, pool):
        """Earnings stop growing once the period ends."""
        pool.stake("alice", 100 * E18, 0)
        fund(pool)
        pool.clock.advance(2 * WEEK)

        assert pool.stream_state("RWD") == StreamStatus.EXPIRED
        assert pool.last_time_reward_applicable("RWD") == START + WEEK
        assert pool.earned("alice", "RWD") == WEEK * E18


class TestStakeAndWithdraw:
    """Principal moves through custody."""

    def test_stake_then_withdraw_round_trip(self, pool):
        """Staking and withdrawing returns principal and totals to where they were."""
        pool.stake("alice", 250 * E18, 0)
        assert pool.balance_of("alice") == 250 * E18
        assert pool.assets.balance_of("STAKE", "pool") == 250 * E18

        withdrawn = pool.withdraw("alice", 0)

        assert withdrawn == 250 * E18
        assert pool.balance_of("alice") == 0
        assert pool.total_principal == 0
        assert pool.assets.balance_of("STAKE", "alice") == 10_000 * E18

    def test_partial_withdraw(self, pool):
        """A partial withdraw lowers principal and weight by the amount."""
        pool.stake("alice", 100 * E18, 0)
        pool.withdraw("alice", 0, 40 * E18)
        assert pool.positions("alice")[0].amount == 60 * E18
        assert pool.total_weighted_principal == 60 * E18

    def test_locked_position_cannot_be_withdrawn(self, pool):
        """A locked position is refused until its unlock time."""
        pool.stake("alice", 100 * E18, 1)
        with pytest.raises(StakeStillLocked):
            pool.withdraw("alice", 0)
        pool.clock.advance(30 * DAY)
        assert pool.withdraw("alice", 0) == 100 * E18

    def test_withdraw_keeps_earned_reward(self, pool):
        """Reward earned before a withdraw stays claimable."""
        pool.stake("alice", 100 * E18, 0)
        fund(pool)
        pool.clock.advance(100)
        pool.withdraw("alice", 0)
        pool.clock.advance(100)

        assert pool.earned("alice", "RWD") == 100 * E18
        assert pool.claim("alice", "RWD") == 100 * E18

    def test_exit_leaves_locked_positions(self, pool):
        """Exit withdraws unlocked positions, claims rewards and keeps locked ones."""
        pool.stake("alice", 10 * E18, 0)
        pool.stake("alice", 20 * E18, 1)
        pool.stake("alice", 10 * E18, 0)
        fund(pool)
        pool.clock.advance(100)

        withdrawn, paid = pool.exit("alice")

        assert withdrawn == 20 * E18
        assert paid == {"RWD": 100 * E18}
        assert [p.amount for p in pool.positions("alice")] == [20 * E18]
        assert pool.earned("alice", "RWD") == 0
        assert_invariants(pool)


class TestClaim:
    """Reward payouts."""

    def test_claim_pays_and_zeroes(self, pool):
        """A claim transfers the pending reward and leaves nothing to claim."""
        pool.stake("alice", 100 * E18, 0)
        fund(pool)
        pool.clock.advance(50)

        assert pool.claim("alice", "RWD") == 50 * E18
        assert pool.assets.balance_of("RWD", "alice") == 50 * E18
        assert pool.earned("alice", "RWD") == 0
        assert pool.claim("alice", "RWD") == 0

    def test_claim_unknown_token(self, pool):
        """Claiming an unregistered token is refused."""
        with pytest.raises(InvalidRewardToken):
            pool.claim("alice", "NOPE")

    def test_claim_all_multiple_streams(self, pool):
        """Claim-all pays every stream in one call."""
        pool.add_reward_stream("admin", "BONUS", 2 * WEEK)
        pool.stake("alice", 100 * E18, 0)
        fund(pool)
        fund(pool, "BONUS", 2 * WEEK * E18)
        pool.clock.advance(10)

        paid = pool.claim_all("alice")

        assert paid == {"RWD": 10 * E18, "BONUS": 10 * E18}
        assert len(pool.events.of_type(RewardPaid)) == 2

    def test_removed_stream_remains_claimable(self, pool):
        """Reward accrued before removal can still be claimed once."""
        pool.stake("alice", 100 * E18, 0)
        fund(pool)
        pool.clock.advance(100)
        pool.remove_reward_stream("admin", "RWD")
        pool.clock.advance(100)

        assert pool.stream_state("RWD") == StreamStatus.REMOVED
        assert pool.earned("alice", "RWD") == 100 * E18
        assert pool.claim_all("alice") == {"RWD": 100 * E18}
        assert pool.claim_all("alice") == {}
        assert_invariants(pool)


class TestRollback:
    """Failed operations leave no trace."""

    def test_failed_stake_transfer_rolls_back(self, pool):
        """A rejected principal transfer leaves no position, total or event."""
        with pytest.raises(TransferFailed):
            pool.stake("alice", 20_000 * E18, 0)

        assert pool.positions("alice") == ()
        assert pool.total_principal == 0
        assert pool.events.of_type(Staked) == []
        # Guard is released
        pool.stake("alice", E18, 0)

    def test_claim_with_drained_custody_keeps_pending(self, pool):
        """A claim custody cannot cover keeps the reward pending."""
        pool.stake("alice", 100 * E18, 0)
        fund(pool)
        pool.clock.advance(100)
        # Custody loses its reward balance outside the pool
        pool.assets.balances[("RWD", "pool")] = 0

        with pytest.raises(TransferFailed):
            pool.claim("alice", "RWD")

        assert pool.earned("alice", "RWD") == 100 * E18
        assert pool.registry.get("RWD").total_paid == 0


    def test_exit_keeps_reward_paid_before_principal_failure(self, pool, monkeypatch):
        """A reward sent before exit's principal transfer failed is not paid twice."""
        pool.stake("alice", 100 * E18, 0)
        fund(pool)
        pool.clock.advance(100)
        transfer_out = pool.assets.transfer_out

        def reject_principal(token, recipient, amount):
            if token == "STAKE":
                raise TransferFailed("principal transfer rejected")
            transfer_out(token, recipient, amount)

        monkeypatch.setattr(pool.assets, "transfer_out", reject_principal)
        with pytest.raises(TransferFailed):
            pool.exit("alice")

        assert pool.assets.balance_of("RWD", "alice") == 100 * E18
        assert pool.earned("alice", "RWD") == 0
        assert pool.balance_of("alice") == 100 * E18
        assert pool.registry.get("RWD").total_paid == 100 * E18
        assert pool.events.of_type(RewardPaid) == [RewardPaid("alice", "RWD", 100 * E18)]
        assert pool.events.of_type(Withdrawn) == []

        monkeypatch.undo()
        assert pool.claim("alice", "RWD") == 0
        assert pool.assets.balance_of("RWD", "alice") == 100 * E18
        assert_invariants(pool)

    def test_claim_all_keeps_streams_paid_before_failure(self, pool, monkeypatch):
        """Streams paid before a rejected transfer stay paid; the rest stay pending."""
        pool.add_reward_stream("admin", "BONUS", 2 * WEEK)
        pool.stake("alice", 100 * E18, 0)
        fund(pool)
        fund(pool, "BONUS", 2 * WEEK * E18)
        pool.clock.advance(10)
        transfer_out = pool.assets.transfer_out

        def reject_bonus(token, recipient, amount):
            if token == "BONUS":
                raise TransferFailed("bonus transfer rejected")
            transfer_out(token, recipient, amount)

        monkeypatch.setattr(pool.assets, "transfer_out", reject_bonus)
        with pytest.raises(TransferFailed):
            pool.claim_all("alice")

        assert pool.assets.balance_of("RWD", "alice") == 10 * E18
        assert pool.earned("alice", "RWD") == 0
        assert pool.earned("alice", "BONUS") == 10 * E18
        assert len(pool.events.of_type(RewardPaid)) == 1

        monkeypatch.undo()
        assert pool.claim_all("alice") == {"BONUS": 10 * E18}
        assert pool.assets.balance_of("RWD", "alice") == 10 * E18
        assert_invariants(pool)



class TestReentrancy:
    """Custody callbacks cannot re-enter the pool."""

    def test_callback_during_transfer_is_refused(self, pool):
        """A custody callback into the pool gets ReentrantCall."""
        pool.stake("alice", 100 * E18, 0)
        fund(pool)
        pool.clock.advance(100)
        refused = []

        def call_back(token, source, destination, amount):
            try:
                pool.claim("alice", "RWD")
            except ReentrantCall as exc:
                refused.append(exc)

        pool.assets.on_transfer = call_back
        paid = pool.claim("alice", "RWD")
        pool.assets.on_transfer = None

        assert paid == 100 * E18
        assert len(refused) == 1
        assert pool.assets.balance_of("RWD", "alice") == 100 * E18


class TestAdministration:
    """Reward stream management and funding."""

    def test_duplicate_and_principal_tokens_rejected(self, pool):
        """Registered and principal tokens cannot be added as streams."""
        with pytest.raises(DuplicateRewardToken):
            pool.add_reward_stream("admin", "RWD")
        with pytest.raises(InvalidRewardToken):
            pool.add_reward_stream("admin", "STAKE")

    def test_removed_token_cannot_be_readded(self, pool):
        """A removed token can be neither re-added nor funded."""
        pool.remove_reward_stream("admin", "RWD")
        with pytest.raises(DuplicateRewardToken):
            pool.add_reward_stream("admin", "RWD")
        with pytest.raises(InvalidRewardToken):
            fund(pool)
        assert pool.events.of_type(RewardStreamRemoved) == [RewardStreamRemoved("RWD")]

    def test_non_owner_refused(self, pool):
        """Administrative calls from anyone but the owner are refused."""
        with pytest.raises(Unauthorized):
            pool.notify_reward_amount("mallory", "RWD", WEEK, funder="treasury")
        with pytest.raises(Unauthorized):
            pool.add_reward_stream("mallory", "BONUS")
        assert pool.registry.get("RWD").status(pool.clock.now()) == StreamStatus.EMPTY

    def test_unfunded_notify_rejected(self, pool):
        """Notify without reward in custody is refused."""
        with pytest.raises(RewardRateExceedsBalance):
            pool.notify_reward_amount("admin", "RWD", WEEK * E18)

    def test_prefunded_notify_accepted(self, pool):
        """Notify succeeds when custody already holds the reward."""
        pool.assets.transfer_in("RWD", "treasury", WEEK * E18)
        rate = pool.notify_reward_amount("admin", "RWD", WEEK * E18)
        assert rate == E18
        assert pool.events.of_type(RewardRateUpdated)[0].period_end == START + WEEK

    def test_notify_cannot_reuse_reward_owed_to_stakers(self, pool):
        """Reward accrued to stakers and not yet claimed cannot fund a new period."""
        pool.stake("alice", 100 * E18, 0)
        fund(pool)
        pool.clock.advance(WEEK)

        # Custody holds exactly what alice is owed
        assert pool.assets.balance_of("RWD", "pool") == pool.earned("alice", "RWD")
        with pytest.raises(RewardRateExceedsBalance):
            pool.notify_reward_amount("admin", "RWD", WEEK * E18)

        pool.assets.transfer_in("RWD", "treasury", WEEK * E18)
        assert pool.notify_reward_amount("admin", "RWD", WEEK * E18) == E18
        assert_invariants(pool)

    def test_zero_reward_rejected(self, pool):
        """A zero reward notify is refused."""
        with pytest.raises(InvalidAmount):
            fund(pool, reward=0)

    def test_duration_change_waits_for_period_end(self, pool):
        """The period length changes only once the period is over."""
        fund(pool)
        with pytest.raises(RewardPeriodActive):
            pool.set_rewards_duration("admin", "RWD", 2 * WEEK)

        pool.clock.advance(WEEK)
        pool.set_rewards_duration("admin", "RWD", 2 * WEEK)
        assert fund(pool, reward=2 * WEEK * E18) == E18
        assert pool.reward_for_duration("RWD") == 2 * WEEK * E18


class TestClockReads:
    """Operations see one time however often the clock is read."""

    @pytest.fixture
    def ticking_pool(self):
        assets = InMemoryAssetLedger()
        assets.mint("STAKE", "alice", 100 * E18)
        assets.mint("RWD", "treasury", WEEK * E18)
        pool = StakingPool(
            principal_token="STAKE",
            lock_periods=[0],
            multipliers=[ONE],
            clock=TickingClock(START),
            assets=assets,
            access=OwnerAccessControl("admin"),
        )
        pool.add_reward_stream("admin", "RWD")
        return pool

    def test_clock_that_ticks_on_every_read(self, ticking_pool):
        """A clock advancing on each read does not break stake, claim or withdraw."""
        pool = ticking_pool
        pool.stake("alice", 100 * E18, 0)
        fund(pool)
        assert pool.claim("alice", "RWD") > 0
        assert pool.withdraw("alice", 0) == 100 * E18
        assert pool.total_principal == 0
        assert pool.total_weighted_principal == 0

    def test_snapshot_reads_one_time(self, ticking_pool):
        """Every figure in a snapshot is taken at the same time."""
        before = ticking_pool.clock.time
        snap = ticking_pool.snapshot()
        assert snap.t == before
        assert ticking_pool.clock.time == before + 1


class TestEvents:
    """Events are emitted only for successful operations."""

    def test_event_sequence(self, pool):
        """Each successful operation emits its events in order."""
        pool.stake("alice", 100 * E18, 0)
        fund(pool)
        pool.clock.advance(10)
        pool.exit("alice")

        kinds = [type(e).__name__ for e in pool.events.events]
        assert kinds == [
            "RewardStreamAdded",
            "Staked",
            "RewardRateUpdated",
            "Withdrawn",
            "RewardPaid",
        ]
        assert pool.events.of_type(Withdrawn) == [Withdrawn("alice", 100 * E18)]

    def test_logging_sink(self, pool, caplog):
        """The logging sink writes each event to the log."""
        pool.events = LoggingEventSink()
        with caplog.at_level("INFO", logger="accrual.events"):
            pool.stake("alice", E18, 0)
        assert any(r.getMessage().startswith("Staked:") for r in caplog.records)


class TestInvariants:
    """Invariant checker over a mixed sequence."""

    def test_mixed_sequence_keeps_invariants(self, pool):
        """Interleaved stakes, claims, notifies and exits keep every invariant."""
        pool.add_reward_stream("admin", "BONUS")
        pool.stake("alice", 100 * E18, 0)
        pool.stake("bob", 300 * E18, 1)
        fund(pool)
        fund(pool, "BONUS", 3 * WEEK * E18)
        before = pool.snapshot()

        pool.clock.advance(DAY)
        pool.stake("carol", 77 * E18, 1)
        pool.claim("bob", "RWD")
        pool.clock.advance(2 * DAY)
        fund(pool, reward=WEEK * E18)
        pool.withdraw("alice", 0, 33 * E18)
        pool.clock.advance(40 * DAY)
        pool.exit("bob")
        pool.remove_reward_stream("admin", "BONUS")
        pool.claim_all("carol")
        after = pool.snapshot()

        checker = InvariantChecker()
        assert_invariants(pool)
        assert [w for w in checker.check_transition(before, after) if w.severity == "error"] == []
