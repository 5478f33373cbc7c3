"""Scenario runner - replay scripted operations against a fresh pool.

Key Features:
- Deterministic: a ManualClock is advanced only by the steps themselves
- Engine errors are recorded per step rather than aborting the run
- A snapshot is taken after every step for invariant checks and reporting
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..config.schema import Config, Scenario, ScenarioStep
from ..engine.errors import AccrualError
from ..engine.interfaces import AllowAll, EventLog, InMemoryAssetLedger, ManualClock, OwnerAccessControl
from ..engine.pool import PoolSnapshot, StakingPool
from ..validation.sanity_checks import InvariantChecker, ValidationWarning, validate_pool_history

logger = logging.getLogger("accrual.simulation.runner")


@dataclass
class StepResult:
    """Outcome of one scripted step."""
    index: int
    t: int
    action: str
    account: Optional[str] = None
    token: Optional[str] = None
    value: Any = None
    error: Optional[str] = None
    expected_error: Optional[str] = None

    @property
    def ok(self) -> bool:
        """True when the step raised exactly what it was expected to raise."""
        return self.error == self.expected_error


@dataclass
class SimulationResult:
    """Complete scenario result."""
    config: Config
    scenario: Scenario
    snapshots: List[PoolSnapshot]
    steps: List[StepResult]
    final_metrics: Dict[str, Any]
    warnings: List[ValidationWarning] = field(default_factory=list)
    events: List[object] = field(default_factory=list)

    @property
    def unexpected(self) -> List[StepResult]:
        return [step for step in self.steps if not step.ok]

    @property
    def invariant_errors(self) -> List[ValidationWarning]:
        return [w for w in self.warnings if w.severity == "error"]


class ScenarioRunner:
    """Runs a Scenario against a pool built from a Config."""

    def __init__(self, config: Config, check_every_step: bool = False, log_unexpected: bool = True):
        """
        Initialize scenario runner.

        Args:
            config: Engine configuration
            check_every_step: Run the full pool invariant check after each step
                (slower; the final pool is always checked)
            log_unexpected: Log a warning when a step outcome differs from its expectation
        """
        self.config = config
        self.check_every_step = check_every_step
        self.log_unexpected = log_unexpected

    def build_pool(self, scenario: Scenario) -> StakingPool:
        """Fresh pool with in-memory collaborators and the scenario's balances."""
        clock = ManualClock(scenario.start_time)
        assets = InMemoryAssetLedger()
        access = OwnerAccessControl(scenario.owner) if scenario.owner else AllowAll()
        pool = StakingPool.from_config(
            self.config, clock=clock, assets=assets, access=access, events=EventLog()
        )
        for token, holders in scenario.balances.items():
            for holder, amount in holders.items():
                assets.mint(token, holder, amount)
        return pool

    def run(self, scenario: Scenario, pool: StakingPool = None) -> SimulationResult:
        """
        Replay every step of a scenario.

        Args:
            scenario: Steps to run
            pool: Existing pool to run against (must use a ManualClock)

        Returns:
            Simulation result
        """
        if pool is None:
            pool = self.build_pool(scenario)

        snapshots = [pool.snapshot()]
        results = []
        step_warnings: List[ValidationWarning] = []

        for index, step in enumerate(scenario.steps):
            if step.advance:
                pool.clock.advance(step.advance)
            result = StepResult(
                index=index,
                t=pool.clock.now(),
                action=step.action,
                account=step.account,
                token=step.token,
                expected_error=step.expect_error,
            )
            try:
                result.value = self._apply(pool, step)
            except AccrualError as e:
                result.error = type(e).__name__
                logger.debug(f"Step {index} ({step.action}) raised {result.error}: {e}")
            if not result.ok and self.log_unexpected:
                logger.warning(
                    f"Step {index} ({step.action}) in {scenario.name!r}: expected "
                    f"{result.expected_error or 'success'}, got {result.error or 'success'}"
                )
            results.append(result)
            snapshots.append(pool.snapshot())

            if self.check_every_step:
                step_warnings.extend(InvariantChecker().check_pool(pool))

        warnings = step_warnings + validate_pool_history(snapshots, pool, self.config)

        return SimulationResult(
            config=self.config,
            scenario=scenario,
            snapshots=snapshots,
            steps=results,
            final_metrics=self._compute_final_metrics(pool, results),
            warnings=warnings,
            events=list(getattr(pool.events, "events", [])),
        )

    def _apply(self, pool: StakingPool, step: ScenarioStep) -> Any:
        action = step.action
        if action == "advance":
            return pool.clock.now()
        if action == "stake":
            position = pool.stake(step.account, step.amount, step.lock_index)
            return position.amount
        if action == "withdraw":
            return pool.withdraw(step.account, step.position_index, step.amount)
        if action == "claim":
            return pool.claim(step.account, step.token)
        if action == "claim_all":
            return pool.claim_all(step.account)
        if action == "exit":
            return pool.exit(step.account)
        if action == "notify":
            return pool.notify_reward_amount(
                step.caller, step.token, step.amount, step.duration, funder=step.account
            )
        if action == "set_duration":
            return pool.set_rewards_duration(step.caller, step.token, step.duration)
        if action == "add_stream":
            return pool.add_reward_stream(step.caller, step.token, step.duration).token
        if action == "remove_stream":
            return pool.remove_reward_stream(step.caller, step.token).token
        raise ValueError(f"Unknown action {action!r}")

    def _compute_final_metrics(self, pool: StakingPool, results: List[StepResult]) -> Dict[str, Any]:
        """Totals at the end of the run."""
        metrics: Dict[str, Any] = {
            'final_time': pool.clock.now(),
            'total_principal': pool.total_principal,
            'total_weighted_principal': pool.total_weighted_principal,
            'num_steps': len(results),
            'num_failed_steps': sum(1 for r in results if r.error),
            'num_unexpected': sum(1 for r in results if not r.ok),
        }
        for stream in pool.registry:
            metrics[f'{stream.token}_distributed'] = stream.total_distributed
            metrics[f'{stream.token}_paid'] = stream.total_paid
            metrics[f'{stream.token}_accumulated_per_unit'] = pool.reward_per_unit(stream.token)
        return metrics
