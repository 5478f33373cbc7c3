"""Reward-accrual engine: lock-weighted, multi-token staking rewards."""

__version__ = "1.0.0"
