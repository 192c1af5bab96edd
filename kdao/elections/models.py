"""
Election Records

Positions, phases and the Election / Candidate / Leadership rows.
An election's phase is derived from its boundaries and flags at query time.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, List, Optional, Set


class Position(IntEnum):
    """Leadership seats filled by election."""
    PROJECT_LEAD = 0
    TECH_LEAD = 1
    COMMUNITY_LEAD = 2
    TREASURY_MANAGER = 3


class ElectionPhase(IntEnum):
    NOT_STARTED = 0
    NOMINATION = 1
    CAMPAIGN = 2
    VOTING = 3
    ENDED = 4
    FINALIZED = 5
    CANCELLED = 6


@dataclass
class Election:
    """
    Fields:
        nomination_end / campaign_end / voting_end: exclusive phase boundaries
        total_votes:    Weight cast across all candidates
        counted:        Voters plus delegators whose weight has been cast
        winner:         Candidate identity once finalized with quorum
        quorum_reached: Outcome of finalization
    """
    id: int
    position: Position
    created_by: str
    start_time: int
    nomination_end: int
    campaign_end: int
    voting_end: int
    quorum_percentage: int
    total_votes: int = 0
    winner: Optional[str] = None
    quorum_reached: Optional[bool] = None
    finalized: bool = False
    cancelled: bool = False
    closed_at: Optional[int] = None
    voters: Dict[str, str] = field(default_factory=dict)  # voter → candidate
    counted: Set[str] = field(default_factory=set)  # identities whose weight is cast

    def phase(self, now: int) -> ElectionPhase:
        if self.cancelled:
            return ElectionPhase.CANCELLED
        if self.finalized:
            return ElectionPhase.FINALIZED
        if now < self.start_time:
            return ElectionPhase.NOT_STARTED
        if now < self.nomination_end:
            return ElectionPhase.NOMINATION
        if now < self.campaign_end:
            return ElectionPhase.CAMPAIGN
        if now < self.voting_end:
            return ElectionPhase.VOTING
        return ElectionPhase.ENDED

    @property
    def is_open(self) -> bool:
        return not (self.finalized or self.cancelled)

    def to_dict(self, now: Optional[int] = None) -> Dict[str, Any]:
        d = {
            "id": self.id,
            "position": self.position.name,
            "createdBy": self.created_by,
            "startTime": self.start_time,
            "nominationEnd": self.nomination_end,
            "campaignEnd": self.campaign_end,
            "votingEnd": self.voting_end,
            "quorumPercentage": self.quorum_percentage,
            "totalVotes": str(self.total_votes),
            "voters": len(self.voters),
            "winner": self.winner,
            "quorumReached": self.quorum_reached,
            "finalized": self.finalized,
            "cancelled": self.cancelled,
            "closedAt": self.closed_at,
        }
        if now is not None:
            d["phase"] = self.phase(now).name
        return d


@dataclass
class Candidate:
    id: int
    election_id: int
    identity: str
    name: str
    platform: str
    stake: int
    nominated_at: int
    votes: int = 0
    supporters: List[str] = field(default_factory=list)
    active: bool = True
    elected: bool = False
    refunded: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "electionId": self.election_id,
            "identity": self.identity,
            "name": self.name,
            "platform": self.platform,
            "stake": str(self.stake),
            "nominatedAt": self.nominated_at,
            "votes": str(self.votes),
            "supporters": len(self.supporters),
            "active": self.active,
            "elected": self.elected,
            "refunded": self.refunded,
        }


@dataclass
class Leadership:
    """A term in office. At most one active row per position."""
    id: int
    position: Position
    holder: str
    election_id: Optional[int]
    term_start: int
    term_end: int
    performance_score: int
    active: bool = True
    ended_at: Optional[int] = None
    end_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "position": self.position.name,
            "holder": self.holder,
            "electionId": self.election_id,
            "termStart": self.term_start,
            "termEnd": self.term_end,
            "performanceScore": self.performance_score,
            "active": self.active,
            "endedAt": self.ended_at,
            "endReason": self.end_reason,
        }
