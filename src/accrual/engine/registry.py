"""Reward stream registry - which reward tokens the pool distributes."""

import logging
from typing import Dict, List

from .accounting import RewardStream
from .errors import DuplicateRewardToken, InvalidAmount, InvalidRewardToken

logger = logging.getLogger("accrual.engine.registry")


class RewardStreamRegistry:
    """Owns every RewardStream ever registered, in registration order."""

    def __init__(self, principal_token: str, default_rewards_duration: int):
        """
        Initialize registry.

        Args:
            principal_token: Token staked as principal (never a reward token)
            default_rewards_duration: Period length for streams added without one
        """
        self.principal_token = principal_token
        self.default_rewards_duration = default_rewards_duration
        self.streams: Dict[str, RewardStream] = {}

    def add(self, token: str, rewards_duration: int = None) -> RewardStream:
        """
        Register a new reward token in the EMPTY state.

        Raises:
            DuplicateRewardToken: If the token was ever registered (removed included)
            InvalidRewardToken: If the token is the principal token
            InvalidAmount: If rewards_duration is not positive
        """
        if token in self.streams:
            raise DuplicateRewardToken(f"Reward token {token!r} already registered")
        if token == self.principal_token:
            raise InvalidRewardToken(f"Principal token {token!r} cannot be a reward token")
        if rewards_duration is None:
            rewards_duration = self.default_rewards_duration
        if rewards_duration <= 0:
            raise InvalidAmount(f"Rewards duration must be positive, got {rewards_duration}")

        stream = RewardStream(token=token, rewards_duration=rewards_duration)
        self.streams[token] = stream
        logger.info(f"Registered reward stream {token} (duration {rewards_duration}s)")
        return stream

    def remove(self, token: str) -> RewardStream:
        """Deactivate a stream. Checkpoints and pending rewards are kept."""
        stream = self.require_active(token)
        stream.active = False
        return stream

    def get(self, token: str) -> RewardStream:
        """Any registered stream, active or removed."""
        try:
            return self.streams[token]
        except KeyError:
            raise InvalidRewardToken(f"Reward token {token!r} is not registered") from None

    def require_active(self, token: str) -> RewardStream:
        stream = self.get(token)
        if not stream.active:
            raise InvalidRewardToken(f"Reward token {token!r} has been removed")
        return stream

    def tokens(self) -> List[str]:
        return list(self.streams)

    def active_tokens(self) -> List[str]:
        return [token for token, stream in self.streams.items() if stream.active]

    def __iter__(self):
        return iter(self.streams.values())

    def __len__(self) -> int:
        return len(self.streams)
