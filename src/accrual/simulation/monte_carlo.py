"""Randomized runs for invariant checking under interleaved operations."""

from collections import Counter
from typing import Any, Dict, List

import numpy as np

from ..config.schema import Config, Scenario, ScenarioStep
from .runner import ScenarioRunner, SimulationResult

TREASURY = "treasury"

# Relative frequency of each staker/admin action
ACTION_WEIGHTS = {
    "stake": 0.35,
    "withdraw": 0.15,
    "claim": 0.15,
    "claim_all": 0.10,
    "exit": 0.05,
    "notify": 0.15,
    "advance": 0.05,
}


class MonteCarloRunner:
    """Generate random operation sequences and replay them through ScenarioRunner."""

    def __init__(self, config: Config):
        """
        Initialize Monte Carlo runner.

        Args:
            config: Engine and simulation configuration
        """
        self.config = config

    def run(self, num_runs: int = None, random_seed: int = None) -> List[SimulationResult]:
        """
        Run randomized scenarios.

        Args:
            num_runs: Number of runs (defaults to config value)
            random_seed: Random seed (defaults to config value)

        Returns:
            List of simulation results
        """
        if num_runs is None:
            num_runs = self.config.simulation.monte_carlo_runs

        if random_seed is None:
            random_seed = self.config.simulation.random_seed

        runner = ScenarioRunner(self.config, log_unexpected=False)
        results = []
        for run_idx in range(num_runs):
            scenario = self.generate_scenario(random_seed + run_idx)
            results.append(runner.run(scenario))
        return results

    def generate_scenario(self, seed: int) -> Scenario:
        """
        Build one random scenario.

        Withdraw indices are drawn from the positions the generator believes
        exist, so some steps legitimately fail (still locked, stale index);
        those failures are recorded, not treated as invariant violations.
        """
        sim = self.config.simulation
        engine = self.config.engine
        rng = np.random.default_rng(seed)

        accounts = [f"account{i}" for i in range(sim.num_accounts)]
        reward_tokens = [reward.token for reward in engine.reward_tokens]
        stake_unit = max(1, sim.max_stake // 1_000_000)

        actions = list(ACTION_WEIGHTS)
        weights = np.array([ACTION_WEIGHTS[a] for a in actions])
        weights = weights / weights.sum()

        open_positions = {account: 0 for account in accounts}
        steps = []
        for _ in range(sim.steps_per_run):
            action = str(rng.choice(actions, p=weights))
            if action == "notify" and not reward_tokens:
                action = "stake"
            advance = int(rng.integers(0, sim.max_time_step_seconds + 1))
            account = str(rng.choice(accounts))

            if action == "stake":
                open_positions[account] += 1
                steps.append(ScenarioStep(
                    action="stake",
                    advance=advance,
                    account=account,
                    amount=int(rng.integers(1, 1_000_001)) * stake_unit,
                    lock_index=int(rng.integers(0, len(engine.lock_tiers))),
                ))
            elif action == "withdraw":
                count = max(open_positions[account], 1)
                steps.append(ScenarioStep(
                    action="withdraw",
                    advance=advance,
                    account=account,
                    position_index=int(rng.integers(0, count)),
                ))
            elif action == "claim" and reward_tokens:
                steps.append(ScenarioStep(
                    action="claim",
                    advance=advance,
                    account=account,
                    token=str(rng.choice(reward_tokens)),
                ))
            elif action in ("claim", "claim_all", "exit"):
                steps.append(ScenarioStep(
                    action="exit" if action == "exit" else "claim_all",
                    advance=advance,
                    account=account,
                ))
            elif action == "notify":
                steps.append(ScenarioStep(
                    action="notify",
                    advance=advance,
                    account=TREASURY,
                    token=str(rng.choice(reward_tokens)),
                    amount=sim.reward_per_period,
                ))
            else:
                steps.append(ScenarioStep(action="advance", advance=advance))

        principal_budget = sim.max_stake * sim.steps_per_run
        reward_budget = sim.reward_per_period * sim.steps_per_run
        balances = {engine.principal_token: {account: principal_budget for account in accounts}}
        for token in reward_tokens:
            balances[token] = {TREASURY: reward_budget}

        return Scenario(
            name=f"random-{seed}",
            description=f"Randomized run with seed {seed}",
            balances=balances,
            steps=steps,
        )


def summarize_results(results: List[SimulationResult]) -> Dict[str, Any]:
    """
    Aggregate randomized runs.

    Returns:
        Dict with run counts, invariant error count and step errors by kind
    """
    error_kinds: Counter = Counter()
    invariant_errors = []
    for result in results:
        error_kinds.update(step.error for step in result.steps if step.error)
        invariant_errors.extend(result.invariant_errors)

    return {
        'runs': len(results),
        'steps': sum(len(r.steps) for r in results),
        'invariant_errors': len(invariant_errors),
        'invariant_messages': [w.message for w in invariant_errors[:20]],
        'step_errors': dict(error_kinds),
    }
