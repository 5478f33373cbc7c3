"""External collaborators: clock, asset custody, access control, events.

The engine only talks to these through the small interfaces below. The
in-memory implementations back the tests and the scenario runner.
"""

import logging
import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Protocol, Tuple

from .errors import InvalidAmount, TransferFailed, Unauthorized

logger = logging.getLogger("accrual.engine.interfaces")

POOL_ADDRESS = "pool"


class Clock(Protocol):
    def now(self) -> int:
        ...


class SystemClock:
    """Wall clock in whole seconds."""

    def now(self) -> int:
        return int(time.time())


class ManualClock:
    """Clock advanced explicitly by the caller."""

    def __init__(self, start: int = 0):
        self._now = start

    def now(self) -> int:
        return self._now

    def advance(self, seconds: int) -> int:
        if seconds < 0:
            raise ValueError("Clock cannot move backwards")
        self._now += seconds
        return self._now

    def set(self, timestamp: int) -> int:
        if timestamp < self._now:
            raise ValueError(f"Clock cannot move backwards ({timestamp} < {self._now})")
        self._now = timestamp
        return self._now


class PinnedClock:
    """
    Reads a source clock, or one held reading while pinned.

    The pool pins it for the length of each operation so every step of
    that operation sees the same time.
    """

    def __init__(self, source: Clock):
        self.source = source
        self._pinned: Optional[int] = None

    def now(self) -> int:
        if self._pinned is not None:
            return self._pinned
        return self.source.now()

    @contextmanager
    def pinned(self):
        # Nested pins keep the outer reading
        if self._pinned is not None:
            yield self._pinned
            return
        self._pinned = self.source.now()
        try:
            yield self._pinned
        finally:
            self._pinned = None


class AssetLedger(Protocol):
    def transfer_in(self, token: str, sender: str, amount: int) -> None:
        ...

    def transfer_out(self, token: str, recipient: str, amount: int) -> None:
        ...

    def balance_of(self, token: str, holder: str) -> int:
        ...


class InMemoryAssetLedger:
    """
    Token balances held in a dict, with the pool as one holder.

    An optional on_transfer hook runs after each successful transfer, which
    lets tests model a custody collaborator that calls back into the pool.
    """

    def __init__(self, pool_address: str = POOL_ADDRESS):
        self.pool_address = pool_address
        self.balances: Dict[Tuple[str, str], int] = defaultdict(int)
        self.on_transfer: Optional[Callable[[str, str, str, int], None]] = None

    def mint(self, token: str, holder: str, amount: int) -> None:
        if amount <= 0:
            raise InvalidAmount(f"Mint amount must be positive, got {amount}")
        self.balances[(token, holder)] += amount

    def balance_of(self, token: str, holder: str) -> int:
        return self.balances.get((token, holder), 0)

    def transfer_in(self, token: str, sender: str, amount: int) -> None:
        self._move(token, sender, self.pool_address, amount)

    def transfer_out(self, token: str, recipient: str, amount: int) -> None:
        self._move(token, self.pool_address, recipient, amount)

    def _move(self, token: str, source: str, destination: str, amount: int) -> None:
        available = self.balance_of(token, source)
        if amount > available:
            raise TransferFailed(
                f"{source} holds {available} {token}, cannot transfer {amount}"
            )
        self.balances[(token, source)] = available - amount
        self.balances[(token, destination)] += amount
        logger.debug(f"Transferred {amount} {token} from {source} to {destination}")
        if self.on_transfer is not None:
            self.on_transfer(token, source, destination, amount)


class AccessControl(Protocol):
    def check(self, caller: Optional[str], action: str) -> None:
        ...


class AllowAll:
    """Access control that permits every caller."""

    def check(self, caller: Optional[str], action: str) -> None:
        return None


class OwnerAccessControl:
    """Only the owner (and optional per-action delegates) may administer."""

    def __init__(self, owner: str, delegates: Optional[Dict[str, List[str]]] = None):
        self.owner = owner
        self.delegates = delegates or {}

    def check(self, caller: Optional[str], action: str) -> None:
        if caller == self.owner or caller in self.delegates.get(action, []):
            return
        raise Unauthorized(f"{caller!r} may not perform {action}")


# Events ---------------------------------------------------------------------

@dataclass(frozen=True)
class Staked:
    account: str
    amount: int
    lock_index: int
    unlock_time: int


@dataclass(frozen=True)
class Withdrawn:
    account: str
    amount: int


@dataclass(frozen=True)
class RewardPaid:
    account: str
    token: str
    amount: int


@dataclass(frozen=True)
class RewardStreamAdded:
    token: str
    rewards_duration: int


@dataclass(frozen=True)
class RewardStreamRemoved:
    token: str


@dataclass(frozen=True)
class RewardRateUpdated:
    token: str
    reward: int
    rate: int
    period_end: int


@dataclass(frozen=True)
class RewardsDurationUpdated:
    token: str
    duration: int


class EventSink(Protocol):
    def emit(self, event: object) -> None:
        ...


@dataclass
class EventLog:
    """EventSink that keeps every event in order."""
    events: List[object] = field(default_factory=list)

    def emit(self, event: object) -> None:
        self.events.append(event)

    def of_type(self, event_type: type) -> List[object]:
        return [e for e in self.events if isinstance(e, event_type)]


class LoggingEventSink:
    """EventSink that writes each event to a logger."""

    def __init__(self, name: str = "accrual.events"):
        self._logger = logging.getLogger(name)

    def emit(self, event: object) -> None:
        self._logger.info(f"{type(event).__name__}: {event}")
