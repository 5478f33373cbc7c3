"""Pydantic schema for configuration validation."""

import hashlib
import json
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ..engine.fixed_point import to_fixed

DAY = 86_400


class LockTier(BaseModel):
    """One entry of the lock period table."""
    duration_seconds: int = Field(ge=0, description="Lock duration in seconds")
    multiplier: float = Field(gt=0, le=100, description="Reward weight multiplier (1.0 = neutral)")


class RewardTokenConfig(BaseModel):
    """Reward stream registered at start-up."""
    token: str = Field(min_length=1, description="Reward token symbol")
    rewards_duration_seconds: Optional[int] = Field(
        default=None, gt=0,
        description="Default period length; falls back to engine default"
    )


class Engine(BaseModel):
    """Accrual engine parameters."""
    principal_token: str = Field(min_length=1, description="Token staked as principal")
    default_rewards_duration_seconds: int = Field(
        gt=0, default=7 * DAY,
        description="Period length for streams added without an explicit duration"
    )
    lock_tiers: List[LockTier] = Field(min_length=1, description="Lock period table")
    reward_tokens: List[RewardTokenConfig] = Field(default_factory=list)

    @field_validator("lock_tiers")
    @classmethod
    def validate_lock_tiers(cls, v):
        """Longer locks must not carry a smaller multiplier."""
        for prev, cur in zip(v, v[1:]):
            if cur.duration_seconds < prev.duration_seconds:
                raise ValueError("lock_tiers must be ordered by duration_seconds")
            if cur.multiplier < prev.multiplier:
                raise ValueError(
                    f"Multiplier {cur.multiplier} for {cur.duration_seconds}s is below "
                    f"{prev.multiplier} for {prev.duration_seconds}s"
                )
        return v

    @model_validator(mode="after")
    def validate_reward_tokens(self):
        """Reward tokens are unique and distinct from the principal token."""
        seen = set()
        for reward in self.reward_tokens:
            if reward.token == self.principal_token:
                raise ValueError(f"Principal token {self.principal_token!r} cannot be a reward token")
            if reward.token in seen:
                raise ValueError(f"Duplicate reward token {reward.token!r}")
            seen.add(reward.token)
        return self

    @property
    def lock_periods(self) -> List[int]:
        return [tier.duration_seconds for tier in self.lock_tiers]

    @property
    def multipliers(self) -> List[int]:
        """Fixed-point multipliers, exact for decimal inputs like 1.25."""
        return [to_fixed(tier.multiplier) for tier in self.lock_tiers]


class Simulation(BaseModel):
    """Randomized run parameters."""
    random_seed: int = Field(default=42, description="Random seed for reproducibility")
    monte_carlo_runs: int = Field(gt=0, default=20, description="Number of randomized runs")
    steps_per_run: int = Field(gt=0, default=200, description="Operations per run")
    num_accounts: int = Field(gt=0, default=5, description="Distinct stakers per run")
    max_stake: int = Field(gt=0, default=1_000 * 10 ** 18, description="Largest single stake")
    max_time_step_seconds: int = Field(gt=0, default=DAY, description="Largest clock advance per step")
    reward_per_period: int = Field(
        gt=0, default=100_000 * 10 ** 18,
        description="Reward notified per stream per period"
    )


class ScenarioStep(BaseModel):
    """One scripted operation."""
    action: Literal[
        "advance", "stake", "withdraw", "claim", "claim_all", "exit",
        "notify", "set_duration", "add_stream", "remove_stream",
    ]
    advance: int = Field(default=0, ge=0, description="Seconds to advance before the action")
    account: Optional[str] = None
    amount: Optional[int] = Field(default=None, description="Principal or reward amount")
    lock_index: int = 0
    position_index: int = 0
    token: Optional[str] = None
    duration: Optional[int] = None
    caller: Optional[str] = None
    expect_error: Optional[str] = Field(
        default=None, description="Error class name the step is expected to raise"
    )

    @model_validator(mode="after")
    def validate_required_fields(self):
        needs_account = {"stake", "withdraw", "claim", "claim_all", "exit"}
        needs_token = {"claim", "notify", "set_duration", "add_stream", "remove_stream"}
        if self.action in needs_account and not self.account:
            raise ValueError(f"{self.action} step requires an account")
        if self.action in needs_token and not self.token:
            raise ValueError(f"{self.action} step requires a token")
        if self.action in {"stake", "notify"} and self.amount is None:
            raise ValueError(f"{self.action} step requires an amount")
        return self


class Scenario(BaseModel):
    """A scripted sequence of operations."""
    name: str = Field(min_length=1)
    description: str = ""
    start_time: int = Field(default=0, ge=0)
    owner: Optional[str] = Field(
        default=None,
        description="If set, only this caller may run administrative steps"
    )
    balances: Dict[str, Dict[str, int]] = Field(
        default_factory=dict,
        description="token -> holder -> initial balance minted before the first step"
    )
    steps: List[ScenarioStep] = Field(default_factory=list)


class Config(BaseModel):
    """Complete configuration for the accrual engine."""
    engine: Engine
    simulation: Simulation = Field(default_factory=Simulation)

    def compute_hash(self) -> str:
        """Compute config hash for reproducibility."""
        config_dict = self.model_dump()
        config_str = json.dumps(config_dict, sort_keys=True)
        return hashlib.sha256(config_str.encode()).hexdigest()[:16]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Config':
        """Create config from dictionary."""
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return self.model_dump()
