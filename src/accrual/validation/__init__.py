"""Validation and invariant checks for accrual pools."""

from .sanity_checks import InvariantChecker, ValidationWarning, validate_pool_history

__all__ = [
    "InvariantChecker",
    "ValidationWarning",
    "validate_pool_history"
]
