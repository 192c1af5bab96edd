"""
Execution host.

`Host` is the explicit process-wide state object shared by the four engines.
It carries the external capabilities (clock, value ledger, access control)
and provides the execution model every public operation runs under:

  - `transaction()`: the outermost call snapshots every journaled
    participant; if an exception escapes, all participants are restored so
    no partial state survives. Nested calls (one engine calling another)
    join the outer transaction.
  - `guard(key)`: per-operation busy flag, acquired on entry and released in
    `finally`. Re-entering an operation that is still running raises
    ReentrancyError.

Engines derive from `Engine` and decorate their public mutating methods with
`@atomic`.
"""

import copy
import functools
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Protocol, Set, Tuple, runtime_checkable

from .access import AccessControl
from .clock import Clock
from .exceptions import (
    InvalidInputError,
    ReentrancyError,
    TransferFailedError,
    UnauthorizedError,
)
from .ledger import ValueLedger
from .logger import get_logger

logger = get_logger(__name__)


@runtime_checkable
class Journaled(Protocol):
    """State owner that can be rolled back by the host."""

    def snapshot(self) -> Any:
        ...

    def restore(self, snapshot: Any) -> None:
        ...


class Host:
    """
    Shared execution context.

    Args:
        clock: Clock capability
        ledger: ValueLedger capability (journaled automatically if it supports it)
        access: AccessControl capability
    """

    def __init__(self, clock: Clock, ledger: ValueLedger, access: AccessControl):
        self.clock = clock
        self.ledger = ledger
        self.access = access
        self._participants: List[Journaled] = []
        self._busy: Set[str] = set()
        self._depth = 0
        self._committed = 0
        self._reverted = 0
        if isinstance(ledger, Journaled):
            self.register(ledger)

    def now(self) -> int:
        return self.clock.now()

    def register(self, participant: Journaled):
        if participant not in self._participants:
            self._participants.append(participant)

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """All-or-nothing scope across every registered participant."""
        if self._depth:
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
            return

        snapshots = [(p, p.snapshot()) for p in self._participants]
        self._depth = 1
        try:
            yield
        except BaseException as e:
            for participant, snap in reversed(snapshots):
                participant.restore(snap)
            self._reverted += 1
            logger.debug(f"Transaction reverted: {type(e).__name__}: {e}")
            raise
        else:
            self._committed += 1
        finally:
            self._depth = 0

    @contextmanager
    def guard(self, key: str) -> Iterator[None]:
        """Scoped in-progress flag for one operation."""
        if key in self._busy:
            raise ReentrancyError(f"Reentrant call to {key} rejected")
        self._busy.add(key)
        try:
            yield
        finally:
            self._busy.discard(key)

    def require_role(self, role: str, caller: str):
        if not self.access.has_role(role, caller):
            raise UnauthorizedError(f"{caller} lacks {role}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "now": self.now(),
            "participants": len(self._participants),
            "committed": self._committed,
            "reverted": self._reverted,
        }

    def __repr__(self) -> str:
        return (
            f"<Host participants={len(self._participants)} "
            f"committed={self._committed} reverted={self._reverted}>"
        )


def atomic(method):
    """Run an engine method under its reentrancy guard inside a host transaction."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        key = f"{type(self).__name__}.{method.__name__}"
        with self.host.guard(key), self.host.transaction():
            return method(self, *args, **kwargs)

    return wrapper


class Engine:
    """
    Base class for the staking, governance, treasury and election engines.

    Subclasses list the attributes holding their state in `_journaled`;
    those are deep-copied on snapshot and reassigned on restore.
    """

    _journaled: Tuple[str, ...] = ()

    def __init__(self, host: Host, account: str):
        if not account:
            raise InvalidInputError(f"{type(self).__name__} requires a ledger account")
        self.host = host
        self.account = account
        host.register(self)

    @property
    def ledger(self) -> ValueLedger:
        return self.host.ledger

    def now(self) -> int:
        return self.host.now()

    # ── Journal participation ─────────────────────────────────────────

    def snapshot(self) -> Dict[str, Any]:
        return {name: copy.deepcopy(getattr(self, name)) for name in self._journaled}

    def restore(self, snapshot: Dict[str, Any]):
        for name, value in snapshot.items():
            setattr(self, name, value)

    # ── Value movement ────────────────────────────────────────────────

    def _pay(self, recipient: str, amount: int, ledger: ValueLedger = None):
        """Send *amount* from this engine's account."""
        if amount <= 0:
            return
        ledger = ledger or self.ledger
        if not ledger.transfer(self.account, recipient, amount):
            raise TransferFailedError(
                f"{type(self).__name__}: transfer of {amount} to {recipient} failed"
            )

    def _collect(self, owner: str, amount: int, ledger: ValueLedger = None):
        """Pull *amount* from *owner* into this engine's account."""
        if amount <= 0:
            return
        ledger = ledger or self.ledger
        if not ledger.transfer_from(self.account, owner, self.account, amount):
            raise TransferFailedError(
                f"{type(self).__name__}: transferFrom of {amount} from {owner} failed"
            )
