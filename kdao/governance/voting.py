"""
Vote Delegation

One-hop delegation of stake-derived voting weight:

    effective(X) = own(X) if X has not delegated, else 0
                 + Σ own(D) for every D delegating to X

Only *own* weight moves, so weight delegated to X never travels further if X
delegates in turn. Weights are read live from the staking engine, which keeps
delegated totals consistent with every stake change without bookkeeping here.

On a single proposal each identity's own weight is counted at most once:
whoever votes first with it consumes it, directly or as a delegate.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..exceptions import AlreadyDoneError, InvalidInputError, InvalidStateError
from ..logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Delegation:
    """Delegation of voting weight from delegator → delegate."""
    delegator: str
    delegate: str
    created_at: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "delegator": self.delegator,
            "delegate": self.delegate,
            "createdAt": self.created_at,
        }


class VotingPowerMap:
    """delegator → Delegation, plus delegate → delegators index."""

    def __init__(self):
        self._delegations: Dict[str, Delegation] = {}
        self._delegators: Dict[str, List[str]] = {}

    def delegate(self, delegator: str, delegate: str, now: int) -> Optional[str]:
        """
        Point *delegator* at *delegate*. Returns the previous delegate, if any.
        """
        if not delegate:
            raise InvalidInputError("Delegate identity is required")
        if delegator == delegate:
            raise InvalidInputError("Cannot delegate to self")
        previous = self._delegations.get(delegator)
        if previous is not None and previous.delegate == delegate:
            raise AlreadyDoneError(f"{delegator} already delegates to {delegate}")
        if previous is not None:
            self._unlink(delegator, previous.delegate)
        self._delegations[delegator] = Delegation(delegator, delegate, now)
        self._delegators.setdefault(delegate, []).append(delegator)
        logger.info(f"Delegation: {delegator} → {delegate}")
        return previous.delegate if previous else None

    def revoke(self, delegator: str) -> str:
        previous = self._delegations.pop(delegator, None)
        if previous is None:
            raise InvalidStateError(f"{delegator} has no active delegation")
        self._unlink(delegator, previous.delegate)
        logger.info(f"Delegation revoked: {delegator} ↛ {previous.delegate}")
        return previous.delegate

    def _unlink(self, delegator: str, delegate: str):
        bucket = self._delegators.get(delegate, [])
        if delegator in bucket:
            bucket.remove(delegator)
        if not bucket:
            self._delegators.pop(delegate, None)

    # ── Queries ───────────────────────────────────────────────────────

    def delegate_of(self, delegator: str) -> Optional[str]:
        d = self._delegations.get(delegator)
        return d.delegate if d else None

    def delegators_of(self, delegate: str) -> List[str]:
        return list(self._delegators.get(delegate, []))

    def sources_of(self, account: str) -> List[str]:
        """Identities whose own weight *account* votes with."""
        own = [] if account in self._delegations else [account]
        return own + self._delegators.get(account, [])

    def power_of(
        self,
        account: str,
        own_weight: Callable[[str], int],
        exclude: Iterable[str] = (),
    ) -> int:
        excluded = set(exclude)
        return sum(own_weight(s) for s in self.sources_of(account) if s not in excluded)

    def __len__(self) -> int:
        return len(self._delegations)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "delegations": [d.to_dict() for d in self._delegations.values()],
            "delegates": len(self._delegators),
        }
