"""
Governance Proposals

Defines proposal categories, lifecycle states, vote receipts and the Proposal
dataclass. A proposal's state is never stored; it is resolved from its
timestamps, flags and tallies at query time, so it is the same no matter how
often (or how late) it is asked for.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, Iterable, List, Optional, Set

from ..constants import (
    GOVERNANCE_VOTE_ABSTAIN,
    GOVERNANCE_VOTE_AGAINST,
    GOVERNANCE_VOTE_FOR,
)
from ..exceptions import InvalidInputError


# ══════════════════════════════════════════════════════════════════════
#  ENUMS
# ══════════════════════════════════════════════════════════════════════

class ProposalCategory(IntEnum):
    """What an executed proposal does."""
    TREASURY_APPROVAL = 1   # treasury.approve_project(project_id)
    TREASURY_FUNDING = 2    # treasury.fund_project(project_id)
    ALLOCATION = 3          # treasury.set_quarterly_allocation(...)
    GENERIC = 4             # registered target(**payload)


class ProposalState(IntEnum):
    """Lifecycle stage."""
    PENDING = 0      # Created, voting not yet open
    ACTIVE = 1       # Voting open
    DEFEATED = 2     # Closed: quorum missed or for ≤ against
    SUCCEEDED = 3    # Closed: quorum met and for > against
    QUEUED = 4       # Waiting out the timelock
    EXECUTED = 5
    CANCELLED = 6


TERMINAL_STATES = frozenset({
    ProposalState.DEFEATED,
    ProposalState.EXECUTED,
    ProposalState.CANCELLED,
})


class Vote:
    """Vote support constants matching constants.py."""
    FOR = GOVERNANCE_VOTE_FOR
    AGAINST = GOVERNANCE_VOTE_AGAINST
    ABSTAIN = GOVERNANCE_VOTE_ABSTAIN

    _NAMES = {
        GOVERNANCE_VOTE_FOR: "FOR",
        GOVERNANCE_VOTE_AGAINST: "AGAINST",
        GOVERNANCE_VOTE_ABSTAIN: "ABSTAIN",
    }

    @classmethod
    def name(cls, support: int) -> str:
        return cls._NAMES.get(support, "UNKNOWN")

    @classmethod
    def is_valid(cls, support: int) -> bool:
        return support in cls._NAMES


# ══════════════════════════════════════════════════════════════════════
#  RECEIPT
# ══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Receipt:
    """A voter's single, immutable vote on a proposal."""
    proposal_id: int
    voter: str
    support: int
    weight: int
    timestamp: int

    @property
    def has_voted(self) -> bool:
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "proposalId": self.proposal_id,
            "voter": self.voter,
            "hasVoted": self.has_voted,
            "support": Vote.name(self.support),
            "weight": str(self.weight),
            "timestamp": self.timestamp,
        }


# ══════════════════════════════════════════════════════════════════════
#  PROPOSAL
# ══════════════════════════════════════════════════════════════════════

@dataclass
class Proposal:
    """
    Governance proposal.

    Fields:
        id:             Monotonic identifier
        proposer:       Creator identity
        category:       ProposalCategory
        description:    Rationale
        target:         Registered target name (GENERIC only)
        payload:        Keyword arguments for the dispatched call
        created_at:     Creation time
        start_time:     Voting opens (inclusive)
        end_time:       Voting closes (inclusive)
        quorum_votes:   For + against needed, fixed from supply at creation
        for_votes / against_votes / abstain_votes: tallies
        receipts:       voter → Receipt
        counted:        identities whose own weight is already in the tallies
        eta:            Earliest execution once queued
        executed_at / cancelled_at: terminal markers
    """
    id: int
    proposer: str
    category: ProposalCategory
    description: str
    created_at: int
    start_time: int
    end_time: int
    quorum_votes: int
    target: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    for_votes: int = 0
    against_votes: int = 0
    abstain_votes: int = 0
    receipts: Dict[str, Receipt] = field(default_factory=dict)
    counted: Set[str] = field(default_factory=set)
    eta: Optional[int] = None
    executed_at: Optional[int] = None
    cancelled_at: Optional[int] = None
    _history: List[Dict[str, Any]] = field(default_factory=list, repr=False)

    def __post_init__(self):
        if not self.description:
            raise InvalidInputError("Proposal description cannot be empty")
        if not self.proposer:
            raise InvalidInputError("Proposer identity is required")
        self._record("CREATED", self.created_at)

    # ── State ─────────────────────────────────────────────────────────

    def state(self, now: int) -> ProposalState:
        if self.cancelled_at is not None:
            return ProposalState.CANCELLED
        if self.executed_at is not None:
            return ProposalState.EXECUTED
        if self.eta is not None:
            return ProposalState.QUEUED
        if now < self.start_time:
            return ProposalState.PENDING
        if now <= self.end_time:
            return ProposalState.ACTIVE
        if not self.quorum_reached:
            return ProposalState.DEFEATED
        if self.for_votes > self.against_votes:
            return ProposalState.SUCCEEDED
        return ProposalState.DEFEATED

    @property
    def quorum_reached(self) -> bool:
        """Abstentions are tallied but do not count toward quorum."""
        return self.for_votes + self.against_votes >= self.quorum_votes

    @property
    def total_votes(self) -> int:
        return self.for_votes + self.against_votes + self.abstain_votes

    @property
    def history(self) -> List[Dict[str, Any]]:
        return list(self._history)

    def _record(self, event: str, timestamp: int):
        self._history.append({"event": event, "timestamp": timestamp})

    # ── Mutation ──────────────────────────────────────────────────────

    def add_receipt(self, receipt: Receipt, sources: Iterable[str] = ()):
        """
        Tally *receipt*. *sources* are the identities whose own weight makes
        up the receipt; none of them can be counted again on this proposal.
        """
        self.counted.add(receipt.voter)
        self.counted.update(sources)
        if receipt.support == Vote.FOR:
            self.for_votes += receipt.weight
        elif receipt.support == Vote.AGAINST:
            self.against_votes += receipt.weight
        else:
            self.abstain_votes += receipt.weight
        self.receipts[receipt.voter] = receipt

    def mark_queued(self, eta: int, now: int):
        self.eta = eta
        self._record("QUEUED", now)

    def mark_executed(self, now: int):
        self.executed_at = now
        self._record("EXECUTED", now)

    def mark_cancelled(self, now: int):
        self.cancelled_at = now
        self._record("CANCELLED", now)

    # ── Serialization ─────────────────────────────────────────────────

    def to_dict(self, now: Optional[int] = None) -> Dict[str, Any]:
        d = {
            "id": self.id,
            "proposer": self.proposer,
            "category": self.category.name,
            "description": self.description,
            "target": self.target,
            "payload": self.payload,
            "createdAt": self.created_at,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "quorumVotes": str(self.quorum_votes),
            "forVotes": str(self.for_votes),
            "againstVotes": str(self.against_votes),
            "abstainVotes": str(self.abstain_votes),
            "voters": len(self.receipts),
            "eta": self.eta,
            "executedAt": self.executed_at,
            "cancelledAt": self.cancelled_at,
            "historyLength": len(self._history),
        }
        if now is not None:
            d["state"] = self.state(now).name
        return d

    def __repr__(self) -> str:
        return f"<Proposal #{self.id} {self.category.name} by {self.proposer}>"
