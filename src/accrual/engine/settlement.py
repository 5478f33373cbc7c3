"""Reward settlement - pay out frozen pending rewards.

Payout is split in two steps so the caller can finish every state change
before any asset leaves custody:
- collect: read pending_reward and zero it
- pay: request the transfer of a collected amount
"""

import logging
from typing import Dict, List, Optional, Tuple

from .accounting import AccrualAccountant
from .errors import TransferFailed
from .fixed_point import checked_add, checked_sub
from .interfaces import AssetLedger
from .positions import SettledAccount
from .registry import RewardStreamRegistry

logger = logging.getLogger("accrual.engine.settlement")


class RewardSettlement:
    """Zeroes an account's pending rewards, then asks custody to pay them."""

    def __init__(
        self,
        accountant: AccrualAccountant,
        registry: RewardStreamRegistry,
        assets: AssetLedger,
        pool_address: str
    ):
        self.accountant = accountant
        self.registry = registry
        self.assets = assets
        self.pool_address = pool_address

    def pending(self, account: str, token: str) -> int:
        checkpoint = self.accountant.checkpoints.get((account, token))
        return checkpoint.pending_reward if checkpoint else 0

    def collect(self, settled: SettledAccount, token: str) -> int:
        """Zero and return the account's pending reward for one stream."""
        amount = self.pending(settled.account, token)
        if amount:
            self.record_payout(settled.account, token, amount)
        return amount

    def record_payout(self, account: str, token: str, amount: int) -> None:
        """Take a paid amount off the account's pending reward and count it as paid."""
        stream = self.registry.get(token)
        checkpoint = self.accountant.checkpoints[(account, stream.token)]
        checkpoint.pending_reward = checked_sub(checkpoint.pending_reward, amount)
        stream.total_paid = checked_add(stream.total_paid, amount)

    def collect_all(self, settled: SettledAccount) -> Dict[str, int]:
        """
        Collect every stream the account can be paid from.

        Active and expired streams are always visited; removed streams only
        while the account still has a pending balance there.

        Returns:
            Mapping of token to collected amount, for non-zero amounts
        """
        collected = {}
        for stream in self.registry:
            if not stream.active and self.pending(settled.account, stream.token) == 0:
                continue
            amount = self.collect(settled, stream.token)
            if amount:
                collected[stream.token] = amount
        return collected

    def pay(
        self,
        account: str,
        payouts: Dict[str, int],
        completed: Optional[List[Tuple[str, str, int]]] = None
    ) -> None:
        """
        Transfer collected rewards to the account.

        Custody balances for every token are checked before the first
        transfer. Custody can still reject a later transfer, so each one that
        went through is appended to completed as (account, token, amount).
        """
        for token, amount in payouts.items():
            held = self.assets.balance_of(token, self.pool_address)
            if held < amount:
                raise TransferFailed(f"Custody holds {held} {token}, owes {account} {amount}")
        for token, amount in payouts.items():
            self.assets.transfer_out(token, account, amount)
            if completed is not None:
                completed.append((account, token, amount))
            logger.info(f"Paid {amount} {token} to {account}")

    def claim(
        self,
        settled: SettledAccount,
        token: str,
        completed: Optional[List[Tuple[str, str, int]]] = None
    ) -> int:
        """
        Pay out an account's pending reward for one stream.

        The pending balance is zeroed before the transfer is requested, so a
        transfer that calls back into the pool sees nothing left to claim.

        Returns:
            Amount paid (0 if nothing was pending)
        """
        amount = self.collect(settled, token)
        if amount:
            self.pay(settled.account, {token: amount}, completed)
        return amount

    def claim_all(
        self,
        settled: SettledAccount,
        completed: Optional[List[Tuple[str, str, int]]] = None
    ) -> Dict[str, int]:
        """Claim every payable stream; returns token -> amount paid."""
        payouts = self.collect_all(settled)
        self.pay(settled.account, payouts, completed)
        return payouts
