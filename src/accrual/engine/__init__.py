"""Accrual engine: accumulator accounting, positions, streams and settlement."""

from .accounting import AccountStreamCheckpoint, AccrualAccountant, RewardStream, StreamStatus
from .errors import (
    AccrualError,
    ArithmeticOverflow,
    DuplicateRewardToken,
    InsufficientPrincipal,
    InvalidAmount,
    InvalidLockIndex,
    InvalidPositionIndex,
    InvalidRewardToken,
    ReentrantCall,
    RewardPeriodActive,
    RewardRateExceedsBalance,
    StakeStillLocked,
    TransferFailed,
    Unauthorized,
)
from .fixed_point import ONE, SCALE
from .pool import PoolSnapshot, StakingPool, StreamSnapshot
from .positions import GlobalState, SettledAccount, StakePosition, StakePositionLedger
from .registry import RewardStreamRegistry
from .settlement import RewardSettlement

__all__ = [
    "AccountStreamCheckpoint",
    "AccrualAccountant",
    "RewardStream",
    "StreamStatus",
    "AccrualError",
    "ArithmeticOverflow",
    "DuplicateRewardToken",
    "InsufficientPrincipal",
    "InvalidAmount",
    "InvalidLockIndex",
    "InvalidPositionIndex",
    "InvalidRewardToken",
    "ReentrantCall",
    "RewardPeriodActive",
    "RewardRateExceedsBalance",
    "StakeStillLocked",
    "TransferFailed",
    "Unauthorized",
    "ONE",
    "SCALE",
    "PoolSnapshot",
    "StakingPool",
    "StreamSnapshot",
    "GlobalState",
    "SettledAccount",
    "StakePosition",
    "StakePositionLedger",
    "RewardStreamRegistry",
    "RewardSettlement",
]
