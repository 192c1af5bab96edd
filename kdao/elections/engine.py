"""
Election Engine

Rotating leadership elections:

    NOT_STARTED → NOMINATION → CAMPAIGN → VOTING → ENDED → FINALIZED
    CANCELLED from any phase before ENDED (GOVERNANCE_ROLE)

Candidates post a nomination stake. On a successful election the winner's
stake is retained by the DAO and every other candidate is refunded; without
quorum everyone is refunded and leadership stays as it was. A refund is
recorded on the candidate row before the transfer is made, so no stake can be
returned twice.

When a delegation source is attached, a vote carries the voter's delegated
weight as well, and each identity's weight counts once per election.
"""

import copy
from typing import Any, Dict, List, Optional

from ..config import ElectionConfig
from ..constants import (
    ELECTION_MAX_PERFORMANCE_SCORE,
    ELECTION_NEUTRAL_PERFORMANCE_SCORE,
    GOVERNANCE_ROLE,
    PERCENT_DENOMINATOR,
)
from ..exceptions import (
    AlreadyDoneError,
    AlreadyVotedError,
    CapacityExceededError,
    InsufficientFundsError,
    InsufficientWeightError,
    InvalidInputError,
    InvalidStateError,
    UnauthorizedError,
)
from ..host import Engine, Host, atomic
from ..logger import get_logger
from ..store import Table
from .models import Candidate, Election, ElectionPhase, Leadership, Position

logger = get_logger(__name__)


class ElectionEngine(Engine):
    """
    Args:
        host: Shared execution host
        account: Ledger account holding nomination stakes
        staking: Source of voting weight; ledger balances are used when absent
        config: Election parameters
        delegation: Optional source of delegated weight (anything with
            `sources_of(account)`, such as the governance engine)
    """

    _journaled = ("_elections", "_candidates", "_leaderships", "_retained")

    def __init__(
        self,
        host: Host,
        account: str,
        staking=None,
        config: Optional[ElectionConfig] = None,
        delegation=None,
    ):
        super().__init__(host, account)
        self.config = config or ElectionConfig()
        self.config.validate()
        self.staking = staking
        self.delegation = delegation

        self._elections: Table[Election] = Table("election")
        self._candidates: Table[Candidate] = Table("candidate")
        self._leaderships: Table[Leadership] = Table("leadership")
        self._retained = 0

    # ── Helpers ───────────────────────────────────────────────────────

    def _own_weight(self, account: str) -> int:
        if self.staking is not None:
            return self.staking.effective_voting_weight(account)
        return self.ledger.balance_of(account)

    def _vote_sources(self, voter: str) -> List[str]:
        """Identities whose own weight *voter* casts, following delegation."""
        if self.delegation is None:
            return [voter]
        return self.delegation.sources_of(voter)

    def _active_term(self, position: Position) -> Optional[Leadership]:
        for row in self._leaderships.lookup("position", position):
            if row.active:
                return row
        return None

    def _open_elections(self) -> List[Election]:
        return [e for e in self._elections if e.is_open]

    def _candidate(self, election_id: int, identity: str) -> Optional[Candidate]:
        return self._candidates.lookup_one("identity", (election_id, identity))

    def _refund(self, candidate: Candidate):
        if candidate.refunded or candidate.elected:
            return
        candidate.refunded = True
        self._pay(candidate.identity, candidate.stake)

    def _end_term(self, term: Leadership, reason: str, now: int):
        term.active = False
        term.ended_at = now
        term.end_reason = reason

    # ── Elections ─────────────────────────────────────────────────────

    @atomic
    def create_election(
        self, caller: str, position: Position, start_time: Optional[int] = None
    ) -> int:
        self.host.require_role(GOVERNANCE_ROLE, caller)
        position = Position(position)
        now = self.now()
        start = now if start_time is None else start_time
        if start < now:
            raise InvalidInputError(f"Election cannot start in the past ({start} < {now})")
        if not self.is_vacant(position):
            raise InvalidStateError(f"{position.name} is held by {self._active_term(position).holder}")
        if any(e.position == position for e in self._open_elections()):
            raise InvalidStateError(f"An election for {position.name} is already open")
        if len(self._open_elections()) >= self.config.max_concurrent:
            raise CapacityExceededError(
                f"{self.config.max_concurrent} elections already running"
            )

        cfg = self.config
        nomination_end = start + cfg.nomination_seconds
        campaign_end = nomination_end + cfg.campaign_seconds
        election = self._elections.insert(lambda eid: Election(
            id=eid,
            position=position,
            created_by=caller,
            start_time=start,
            nomination_end=nomination_end,
            campaign_end=campaign_end,
            voting_end=campaign_end + cfg.voting_seconds,
            quorum_percentage=cfg.quorum_percentage,
        ))
        self._elections.index("position", position, election.id)
        logger.info(f"Election #{election.id} for {position.name} opens at {start}")
        return election.id

    @atomic
    def nominate_candidate(self, caller: str, election_id: int, name: str, platform: str) -> int:
        election = self._elections.get_or_raise(election_id)
        phase = election.phase(self.now())
        if phase != ElectionPhase.NOMINATION:
            raise InvalidStateError(f"Election #{election_id} is not in NOMINATION ({phase.name})")
        if not name:
            raise InvalidInputError("Candidate name is required")
        if self._candidate(election_id, caller) is not None:
            raise AlreadyDoneError(f"{caller} was already nominated in Election #{election_id}")
        balance = self.ledger.balance_of(caller)
        if balance < self.config.min_candidate_balance:
            raise InsufficientFundsError(
                f"{caller} holds {balance}, candidates need {self.config.min_candidate_balance}"
            )

        stake = self.config.nomination_stake
        candidate = self._candidates.insert(lambda cid: Candidate(
            id=cid,
            election_id=election_id,
            identity=caller,
            name=name,
            platform=platform,
            stake=stake,
            nominated_at=self.now(),
        ))
        self._candidates.index("election", election_id, candidate.id)
        self._candidates.index("identity", (election_id, caller), candidate.id)
        self._collect(caller, stake)
        logger.info(f"Election #{election_id}: {caller} nominated as '{name}' (stake {stake})")
        return candidate.id

    @atomic
    def withdraw_candidacy(self, caller: str, election_id: int):
        election = self._elections.get_or_raise(election_id)
        phase = election.phase(self.now())
        if phase not in (ElectionPhase.NOMINATION, ElectionPhase.CAMPAIGN):
            raise InvalidStateError(f"Election #{election_id} no longer accepts withdrawals ({phase.name})")
        candidate = self._candidate(election_id, caller)
        if candidate is None or not candidate.active:
            raise InvalidStateError(f"{caller} is not a candidate in Election #{election_id}")
        candidate.active = False
        self._refund(candidate)
        logger.info(f"Election #{election_id}: {caller} withdrew")

    @atomic
    def vote(self, caller: str, election_id: int, candidate: str) -> int:
        """Vote for *candidate* (an identity). Returns the weight counted."""
        election = self._elections.get_or_raise(election_id)
        phase = election.phase(self.now())
        if phase != ElectionPhase.VOTING:
            raise InvalidStateError(f"Election #{election_id} is not in VOTING ({phase.name})")
        if caller in election.voters:
            raise AlreadyVotedError(f"{caller} has already voted in Election #{election_id}")
        row = self._candidate(election_id, candidate)
        if row is None or not row.active:
            raise InvalidInputError(f"{candidate} is not a candidate in Election #{election_id}")
        sources = [s for s in self._vote_sources(caller) if s not in election.counted]
        weight = sum(self._own_weight(s) for s in sources)
        if weight <= 0:
            raise InsufficientWeightError(f"{caller} has no uncounted voting weight")

        row.votes += weight
        row.supporters.append(caller)
        election.voters[caller] = candidate
        election.counted.add(caller)
        election.counted.update(sources)
        election.total_votes += weight
        logger.debug(f"Election #{election_id}: {caller} → {candidate} (weight={weight})")
        return weight

    @atomic
    def finalize_election(self, caller: str, election_id: int) -> Optional[str]:
        """
        Close an election after voting ends. Anyone may call this.

        Returns:
            The winner's identity, or None when quorum was not reached
        """
        election = self._elections.get_or_raise(election_id)
        now = self.now()
        phase = election.phase(now)
        if phase == ElectionPhase.FINALIZED:
            raise AlreadyDoneError(f"Election #{election_id} already finalized")
        if phase != ElectionPhase.ENDED:
            raise InvalidStateError(f"Election #{election_id} has not ended ({phase.name})")

        quorum = election.quorum_percentage * self.ledger.total_supply() // PERCENT_DENOMINATOR
        candidates = [c for c in self._candidates.lookup("election", election_id) if c.active]
        winner = None
        for c in candidates:
            if c.votes > 0 and (winner is None or c.votes > winner.votes):
                winner = c
        reached = election.total_votes >= quorum and winner is not None

        election.finalized = True
        election.closed_at = now
        election.quorum_reached = reached
        if reached:
            election.winner = winner.identity
            winner.elected = True
            self._retained += winner.stake
            self._rotate(election.position, winner.identity, election_id, now)

        for c in candidates:
            self._refund(c)

        if reached:
            logger.info(
                f"Election #{election_id}: {winner.identity} elected {election.position.name} "
                f"with {winner.votes}/{election.total_votes}"
            )
        else:
            logger.warning(
                f"Election #{election_id}: quorum not reached ({election.total_votes} < {quorum})"
            )
        return election.winner

    def _rotate(self, position: Position, holder: str, election_id: int, now: int):
        current = self._active_term(position)
        if current is not None:
            self._end_term(current, "term_rotated", now)
        term = self._leaderships.insert(lambda lid: Leadership(
            id=lid,
            position=position,
            holder=holder,
            election_id=election_id,
            term_start=now,
            term_end=now + self.config.term_seconds,
            performance_score=ELECTION_NEUTRAL_PERFORMANCE_SCORE,
        ))
        self._leaderships.index("position", position, term.id)
        self._leaderships.index("holder", holder, term.id)

    @atomic
    def cancel_election(self, caller: str, election_id: int):
        self.host.require_role(GOVERNANCE_ROLE, caller)
        election = self._elections.get_or_raise(election_id)
        now = self.now()
        phase = election.phase(now)
        if phase in (ElectionPhase.ENDED, ElectionPhase.FINALIZED, ElectionPhase.CANCELLED):
            raise InvalidStateError(f"Election #{election_id} cannot be cancelled ({phase.name})")
        election.cancelled = True
        election.closed_at = now
        for c in self._candidates.lookup("election", election_id):
            if c.active:
                c.active = False
                self._refund(c)
        logger.warning(f"Election #{election_id} CANCELLED by {caller} during {phase.name}")

    # ── Leadership ────────────────────────────────────────────────────

    @atomic
    def resign_position(self, caller: str, position: Position):
        position = Position(position)
        term = self._active_term(position)
        if term is None or term.holder != caller:
            raise UnauthorizedError(f"{caller} does not hold {position.name}")
        self._end_term(term, "resigned", self.now())
        logger.info(f"{caller} resigned from {position.name}")

    @atomic
    def update_performance_score(self, caller: str, position: Position, score: int):
        self.host.require_role(GOVERNANCE_ROLE, caller)
        position = Position(position)
        if not 0 <= score <= ELECTION_MAX_PERFORMANCE_SCORE:
            raise InvalidInputError(f"Score must be 0-{ELECTION_MAX_PERFORMANCE_SCORE}, got {score}")
        term = self._active_term(position)
        if term is None:
            raise InvalidStateError(f"{position.name} is vacant")
        term.performance_score = score

    def _current_term(self, position: Position) -> Optional[Leadership]:
        """Active term that has not yet run out."""
        term = self._active_term(Position(position))
        if term is None or term.term_end <= self.now():
            return None
        return term

    def is_vacant(self, position: Position) -> bool:
        """No active holder, or the holder's term has run out."""
        return self._current_term(position) is None

    def current_leadership(self, position: Position) -> Optional[Leadership]:
        """Current holder's term; None when vacant, including after expiry."""
        term = self._current_term(position)
        return copy.deepcopy(term) if term else None

    def leadership_history(self, position: Position) -> List[Leadership]:
        return copy.deepcopy(self._leaderships.lookup("position", Position(position)))

    # ── Queries ───────────────────────────────────────────────────────

    def election_phase(self, election_id: int) -> ElectionPhase:
        return self._elections.get_or_raise(election_id).phase(self.now())

    def get_election(self, election_id: int) -> Election:
        return copy.deepcopy(self._elections.get_or_raise(election_id))

    def candidates(self, election_id: int) -> List[Candidate]:
        self._elections.get_or_raise(election_id)
        return copy.deepcopy(self._candidates.lookup("election", election_id))

    @property
    def retained_stakes(self) -> int:
        return self._retained

    def to_dict(self) -> Dict[str, Any]:
        now = self.now()
        return {
            "account": self.account,
            "elections": [e.to_dict(now) for e in self._elections],
            "leadership": [t.to_dict() for t in self._leaderships if t.active],
            "retainedStakes": str(self._retained),
        }

    def __repr__(self) -> str:
        return (
            f"<ElectionEngine elections={len(self._elections)} "
            f"open={len(self._open_elections())}>"
        )
