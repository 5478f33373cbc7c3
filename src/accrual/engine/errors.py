"""Error kinds raised by the accrual engine.

All errors derive from AccrualError, itself a ValueError, so callers that
only care about "bad input" can catch ValueError as they would for any
invalid configuration or state transition.
"""


class AccrualError(ValueError):
    """Base class for engine errors."""


class InvalidAmount(AccrualError):
    """Amount is zero or negative."""


class InvalidLockIndex(AccrualError):
    """Lock index is outside the configured lock tier table."""


class InvalidRewardToken(AccrualError):
    """Reward stream is not registered, inactive, or is the principal token."""


class DuplicateRewardToken(AccrualError):
    """Reward stream is already registered."""


class StakeStillLocked(AccrualError):
    """Position cannot be withdrawn before its unlock time."""


class InvalidPositionIndex(AccrualError):
    """Position index does not refer to an existing position."""


class InsufficientPrincipal(AccrualError):
    """Withdrawal exceeds the principal held in the position."""


class RewardRateExceedsBalance(AccrualError):
    """New reward rate would commit more than custody holds."""


class RewardPeriodActive(AccrualError):
    """Rewards duration cannot change while a period is running."""


class TransferFailed(AccrualError):
    """Asset ledger rejected a transfer."""


class ReentrantCall(AccrualError):
    """Operation was invoked while another operation was in progress."""


class Unauthorized(AccrualError):
    """Caller may not perform a privileged operation."""


class ArithmeticOverflow(AccrualError):
    """Fixed-point intermediate left the 256-bit range or went negative."""
