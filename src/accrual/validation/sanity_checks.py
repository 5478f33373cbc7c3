"""Invariant checks for pool state and pool histories."""

from dataclasses import dataclass
from typing import List, Optional

from ..config.schema import Config
from ..engine.fixed_point import SCALE
from ..engine.pool import PoolSnapshot, StakingPool


@dataclass
class ValidationWarning:
    """A validation warning with severity and message."""
    severity: str  # "warning" or "error"
    category: str  # e.g., "conservation", "solvency", "monotonicity"
    message: str
    details: Optional[str] = None


class InvariantChecker:
    """Run invariant checks on configuration, live pools and snapshots."""

    def __init__(self, config: Config = None):
        """Initialize with (optional) configuration."""
        self.config = config

    def check_config_inputs(self) -> List[ValidationWarning]:
        """
        Check configuration inputs for implausible values.

        Returns:
            List of validation warnings
        """
        warnings = []
        if self.config is None:
            return warnings

        engine = self.config.engine
        multipliers = [tier.multiplier for tier in engine.lock_tiers]
        if min(multipliers) < 1.0:
            warnings.append(ValidationWarning(
                severity="warning",
                category="input",
                message="A lock tier multiplier is below 1.0x",
                details=f"Multipliers: {multipliers}"
            ))

        if max(multipliers) > 10.0:
            warnings.append(ValidationWarning(
                severity="warning",
                category="bounds",
                message="Lock multiplier above 10x concentrates rewards in few positions",
                details=f"Max multiplier: {max(multipliers):.2f}x"
            ))

        if not engine.reward_tokens:
            warnings.append(ValidationWarning(
                severity="warning",
                category="input",
                message="No reward tokens configured",
                details="Streams must be added at runtime before rewards accrue"
            ))

        return warnings

    def check_pool(self, pool: StakingPool) -> List[ValidationWarning]:
        """
        Check a live pool against its accounting invariants.

        Args:
            pool: Pool to inspect

        Returns:
            List of validation warnings
        """
        warnings = []
        now = pool.clock.now()
        ledger = pool.ledger

        # Principal conservation
        position_sum = 0
        for account, positions in ledger.accounts.items():
            account_sum = sum(p.amount for p in positions)
            position_sum += account_sum
            if account_sum != ledger.principal_of(account):
                warnings.append(ValidationWarning(
                    severity="error",
                    category="conservation",
                    message=f"Positions of {account} do not sum to its principal at t={now}",
                    details=f"Positions: {account_sum}, principal: {ledger.principal_of(account)}"
                ))
            if any(p.amount <= 0 for p in positions):
                warnings.append(ValidationWarning(
                    severity="error",
                    category="bounds",
                    message=f"Empty or negative position held by {account} at t={now}",
                ))

        if position_sum != ledger.state.total_principal:
            warnings.append(ValidationWarning(
                severity="error",
                category="conservation",
                message=f"Total principal does not match positions at t={now}",
                details=f"Positions: {position_sum}, total: {ledger.state.total_principal}"
            ))

        # Weighted principal consistency
        weighted_sum = 0
        for account in ledger.accounts:
            expected = ledger.principal_of(account) * ledger.weighted_multiplier(account) // SCALE
            weighted_sum += ledger.weighted_principal(account)
            if expected != ledger.weighted_principal(account):
                warnings.append(ValidationWarning(
                    severity="error",
                    category="weighting",
                    message=f"Stale weighted principal for {account} at t={now}",
                    details=f"Stored: {ledger.weighted_principal(account)}, expected: {expected}"
                ))

        if weighted_sum != ledger.state.total_weighted_principal:
            warnings.append(ValidationWarning(
                severity="error",
                category="weighting",
                message=f"Total weighted principal does not match accounts at t={now}",
                details=f"Accounts: {weighted_sum}, total: {ledger.state.total_weighted_principal}"
            ))

        # Custody must cover principal
        held = pool.assets.balance_of(pool.principal_token, pool.address)
        if held < ledger.state.total_principal:
            warnings.append(ValidationWarning(
                severity="error",
                category="solvency",
                message=f"Custody holds less {pool.principal_token} than staked at t={now}",
                details=f"Held: {held}, staked: {ledger.state.total_principal}"
            ))

        # Reward solvency per stream
        accounts = pool.known_accounts()
        for stream in pool.registry:
            owed = sum(pool.earned(account, stream.token) for account in accounts)
            if owed + stream.total_paid > stream.total_distributed:
                warnings.append(ValidationWarning(
                    severity="error",
                    category="solvency",
                    message=f"{stream.token} owes more than was ever distributed at t={now}",
                    details=(
                        f"Owed: {owed}, paid: {stream.total_paid}, "
                        f"distributed: {stream.total_distributed}"
                    )
                ))

            held = pool.assets.balance_of(stream.token, pool.address)
            if owed > held:
                warnings.append(ValidationWarning(
                    severity="error" if stream.active else "warning",
                    category="solvency",
                    message=f"Custody holds less {stream.token} than is owed at t={now}",
                    details=f"Held: {held}, owed: {owed}"
                ))

        for (account, token), checkpoint in pool.accountant.checkpoints.items():
            if checkpoint.pending_reward < 0 or checkpoint.paid_per_unit < 0:
                warnings.append(ValidationWarning(
                    severity="error",
                    category="bounds",
                    message=f"Negative checkpoint for {account} on {token} at t={now}",
                ))

        return warnings

    def check_transition(self, before: PoolSnapshot, after: PoolSnapshot) -> List[ValidationWarning]:
        """
        Check that nothing moved backwards between two snapshots.

        Args:
            before: Earlier snapshot
            after: Later snapshot

        Returns:
            List of validation warnings
        """
        warnings = []

        if after.t < before.t:
            warnings.append(ValidationWarning(
                severity="error",
                category="monotonicity",
                message=f"Clock moved backwards: {before.t} -> {after.t}",
            ))

        for token, prev in before.streams.items():
            cur = after.streams.get(token)
            if cur is None:
                warnings.append(ValidationWarning(
                    severity="error",
                    category="registry",
                    message=f"Stream {token} disappeared between t={before.t} and t={after.t}",
                ))
                continue
            if cur.accumulated_per_unit < prev.accumulated_per_unit:
                warnings.append(ValidationWarning(
                    severity="error",
                    category="monotonicity",
                    message=f"Accumulator for {token} decreased at t={after.t}",
                    details=f"{prev.accumulated_per_unit} -> {cur.accumulated_per_unit}"
                ))
            if cur.total_distributed < prev.total_distributed:
                warnings.append(ValidationWarning(
                    severity="error",
                    category="monotonicity",
                    message=f"total_distributed for {token} decreased at t={after.t}",
                ))

        return warnings


def validate_pool_history(
    snapshots: List[PoolSnapshot],
    pool: StakingPool = None,
    config: Config = None
) -> List[ValidationWarning]:
    """
    Validate a recorded sequence of snapshots and, optionally, the final pool.

    Args:
        snapshots: Snapshots in time order
        pool: Live pool the snapshots came from
        config: Configuration the pool was built from

    Returns:
        List of all validation warnings
    """
    checker = InvariantChecker(config)
    warnings = []

    warnings.extend(checker.check_config_inputs())

    for before, after in zip(snapshots, snapshots[1:]):
        warnings.extend(checker.check_transition(before, after))

    if pool is not None:
        warnings.extend(checker.check_pool(pool))

    return warnings
