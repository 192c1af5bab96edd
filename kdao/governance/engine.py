"""
Governance Engine

Proposal lifecycle, stake-weighted voting with one-hop delegation, optional
timelock and dispatch of passed proposals to the treasury or to a registered
target.

    PENDING → ACTIVE → {DEFEATED, SUCCEEDED} → [QUEUED →] EXECUTED
    CANCELLED from any non-terminal state (guardian only)

Execution is permissionless once a proposal has passed. The proposal is marked
executed before its action is dispatched; if the action fails the whole
operation is rolled back and ExecutionRevertedError is raised.
"""

import copy
from typing import Any, Callable, Dict, List, Optional

from ..config import GovernanceConfig
from ..constants import DEFAULT_ADMIN_ROLE, GOVERNANCE_ROLE, GUARDIAN_ROLE, PERCENT_DENOMINATOR
from ..exceptions import (
    AlreadyVotedError,
    ExecutionRevertedError,
    InsufficientWeightError,
    InvalidInputError,
    InvalidStateError,
    UnauthorizedError,
)
from ..host import Engine, Host, atomic
from ..logger import get_logger
from ..store import Table
from .proposals import (
    TERMINAL_STATES,
    Proposal,
    ProposalCategory,
    ProposalState,
    Receipt,
    Vote,
)
from .voting import VotingPowerMap

logger = get_logger(__name__)

ALLOCATION_FIELDS = ("year", "quarter", "utility", "token", "education", "marketing", "infrastructure")


class GovernanceEngine(Engine):
    """
    Args:
        host: Shared execution host
        account: Identity this engine acts as (holds GOVERNANCE_ROLE in the treasury)
        staking: Source of stake-derived voting weight
        treasury: Dispatch target for treasury categories (optional)
        config: Governance parameters
    """

    _journaled = ("_proposals", "_power")

    def __init__(
        self,
        host: Host,
        account: str,
        staking,
        treasury=None,
        config: Optional[GovernanceConfig] = None,
    ):
        super().__init__(host, account)
        self.config = config or GovernanceConfig()
        self.config.validate()
        self.staking = staking
        self.treasury = treasury

        self._proposals: Table[Proposal] = Table("proposal")
        self._power = VotingPowerMap()
        self._targets: Dict[str, Callable[..., Any]] = {}

    # ── Targets ───────────────────────────────────────────────────────

    def register_target(self, caller: str, name: str, fn: Callable[..., Any]):
        """
        Register a callable that GENERIC proposals may invoke by *name*.
        Admin or governance only.
        """
        if not (
            self.host.access.has_role(DEFAULT_ADMIN_ROLE, caller)
            or self.host.access.has_role(GOVERNANCE_ROLE, caller)
        ):
            raise UnauthorizedError(f"{caller} may not register governance targets")
        if not name or not callable(fn):
            raise InvalidInputError("Target needs a name and a callable")
        self._targets[name] = fn
        logger.info(f"Registered governance target '{name}'")

    def targets(self) -> List[str]:
        return sorted(self._targets)

    # ── Weights ───────────────────────────────────────────────────────

    def _own_weight(self, account: str) -> int:
        return self.staking.effective_voting_weight(account)

    def voting_power(self, account: str) -> int:
        return self._power.power_of(account, self._own_weight)

    def quorum_votes(self) -> int:
        return self.config.quorum_percentage * self.ledger.total_supply() // PERCENT_DENOMINATOR

    # ── Proposals ─────────────────────────────────────────────────────

    def _validate_action(
        self, category: ProposalCategory, target: Optional[str], payload: Dict[str, Any]
    ):
        if category == ProposalCategory.GENERIC:
            if target not in self._targets:
                raise InvalidInputError(f"Unknown governance target '{target}'")
            return
        if target is not None:
            raise InvalidInputError(f"{category.name} proposals take no target")
        if self.treasury is None:
            raise InvalidStateError("No treasury attached to governance")
        if category in (ProposalCategory.TREASURY_APPROVAL, ProposalCategory.TREASURY_FUNDING):
            if not isinstance(payload.get("project_id"), int):
                raise InvalidInputError(f"{category.name} requires an integer project_id")
        elif category == ProposalCategory.ALLOCATION:
            unknown = set(payload) - set(ALLOCATION_FIELDS)
            if unknown or "year" not in payload or "quarter" not in payload:
                raise InvalidInputError(
                    f"ALLOCATION payload needs year and quarter, got {sorted(payload)}"
                )

    @atomic
    def create_proposal(
        self,
        caller: str,
        category: ProposalCategory,
        description: str,
        target: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> int:
        """
        Create a proposal. Requires voting power ≥ the proposal threshold.

        Returns:
            The new proposal id
        """
        power = self.voting_power(caller)
        if power < self.config.proposal_threshold:
            raise InsufficientWeightError(
                f"{caller} has {power} voting power, {self.config.proposal_threshold} required"
            )
        category = ProposalCategory(category)
        payload = dict(payload or {})
        self._validate_action(category, target, payload)

        now = self.now()
        start = now + self.config.voting_delay_seconds
        proposal = self._proposals.insert(lambda pid: Proposal(
            id=pid,
            proposer=caller,
            category=category,
            description=description,
            created_at=now,
            start_time=start,
            end_time=start + self.config.voting_period_seconds,
            quorum_votes=self.quorum_votes(),
            target=target,
            payload=payload,
        ))
        self._proposals.index("proposer", caller, proposal.id)
        logger.info(
            f"Proposal #{proposal.id} created by {caller}: {category.name} "
            f"(voting {proposal.start_time}..{proposal.end_time})"
        )
        return proposal.id

    @atomic
    def cast_vote(self, caller: str, proposal_id: int, support: int) -> Receipt:
        proposal = self._proposals.get_or_raise(proposal_id)
        if not Vote.is_valid(support):
            raise InvalidInputError(f"Invalid vote support: {support}")
        now = self.now()
        state = proposal.state(now)
        if state != ProposalState.ACTIVE:
            raise InvalidStateError(f"Proposal #{proposal_id} is not ACTIVE ({state.name})")
        if caller in proposal.receipts:
            raise AlreadyVotedError(f"{caller} has already voted on Proposal #{proposal_id}")
        # Own weight already counted on this proposal is skipped
        sources = [s for s in self._power.sources_of(caller) if s not in proposal.counted]
        weight = self._power.power_of(caller, self._own_weight, exclude=proposal.counted)
        if weight <= 0:
            raise InsufficientWeightError(
                f"{caller} has no uncounted voting power on Proposal #{proposal_id}"
            )

        receipt = Receipt(proposal_id, caller, support, weight, now)
        proposal.add_receipt(receipt, sources)
        logger.debug(
            f"Vote: {caller} → {Vote.name(support)} on Proposal #{proposal_id} (weight={weight})"
        )
        return receipt

    def proposal_state(self, proposal_id: int) -> ProposalState:
        return self._proposals.get_or_raise(proposal_id).state(self.now())

    @atomic
    def queue_proposal(self, caller: str, proposal_id: int) -> int:
        """SUCCEEDED → QUEUED. Returns the ETA."""
        proposal = self._proposals.get_or_raise(proposal_id)
        now = self.now()
        state = proposal.state(now)
        if state != ProposalState.SUCCEEDED:
            raise InvalidStateError(f"Proposal #{proposal_id} is not SUCCEEDED ({state.name})")
        eta = now + self.config.timelock_seconds
        proposal.mark_queued(eta, now)
        logger.info(f"Proposal #{proposal_id} QUEUED by {caller}, eta={eta}")
        return eta

    @atomic
    def execute_proposal(self, caller: str, proposal_id: int) -> Any:
        """
        Execute a passed proposal. Anyone may call this.

        Returns:
            Whatever the dispatched action returns
        """
        proposal = self._proposals.get_or_raise(proposal_id)
        now = self.now()
        state = proposal.state(now)
        if state == ProposalState.QUEUED:
            if now < proposal.eta:
                raise InvalidStateError(
                    f"Proposal #{proposal_id} timelock not elapsed ({proposal.eta - now}s remaining)"
                )
        elif state == ProposalState.SUCCEEDED:
            if self.config.timelock_seconds > 0:
                raise InvalidStateError(f"Proposal #{proposal_id} must be queued first")
        else:
            raise InvalidStateError(f"Proposal #{proposal_id} cannot be executed ({state.name})")

        proposal.mark_executed(now)
        try:
            result = self._dispatch(proposal)
        except Exception as e:
            logger.warning(f"Proposal #{proposal_id} execution reverted: {e}")
            raise ExecutionRevertedError(
                f"Proposal #{proposal_id} {proposal.category.name} failed: {e}"
            ) from e
        logger.info(f"Proposal #{proposal_id} EXECUTED by {caller}: {proposal.category.name}")
        return result

    def _dispatch(self, proposal: Proposal) -> Any:
        payload = proposal.payload
        if proposal.category == ProposalCategory.TREASURY_APPROVAL:
            return self.treasury.approve_project(self.account, payload["project_id"])
        if proposal.category == ProposalCategory.TREASURY_FUNDING:
            return self.treasury.fund_project(self.account, payload["project_id"])
        if proposal.category == ProposalCategory.ALLOCATION:
            return self.treasury.set_quarterly_allocation(self.account, **payload)
        fn = self._targets.get(proposal.target)
        if fn is None:
            raise InvalidStateError(f"Target '{proposal.target}' is no longer registered")
        return fn(**payload)

    @atomic
    def cancel_proposal(self, caller: str, proposal_id: int):
        self.host.require_role(GUARDIAN_ROLE, caller)
        proposal = self._proposals.get_or_raise(proposal_id)
        now = self.now()
        state = proposal.state(now)
        if state in TERMINAL_STATES:
            raise InvalidStateError(f"Proposal #{proposal_id} is already {state.name}")
        proposal.mark_cancelled(now)
        logger.warning(f"Proposal #{proposal_id} CANCELLED by {caller} (was {state.name})")

    # ── Delegation ────────────────────────────────────────────────────

    @atomic
    def delegate_votes(self, caller: str, delegatee: str):
        previous = self._power.delegate(caller, delegatee, self.now())
        if previous:
            logger.debug(f"{caller} moved delegation {previous} → {delegatee}")

    @atomic
    def revoke_delegation(self, caller: str) -> str:
        return self._power.revoke(caller)

    def delegate_of(self, account: str) -> Optional[str]:
        return self._power.delegate_of(account)

    def sources_of(self, account: str) -> List[str]:
        return self._power.sources_of(account)

    def delegators_of(self, account: str) -> List[str]:
        return self._power.delegators_of(account)

    # ── Queries ───────────────────────────────────────────────────────

    def get_proposal(self, proposal_id: int) -> Proposal:
        return copy.deepcopy(self._proposals.get_or_raise(proposal_id))

    def get_receipt(self, proposal_id: int, voter: str) -> Optional[Receipt]:
        return self._proposals.get_or_raise(proposal_id).receipts.get(voter)

    def has_voted(self, proposal_id: int, voter: str) -> bool:
        return self.get_receipt(proposal_id, voter) is not None

    def proposals_by(self, proposer: str) -> List[int]:
        return [p.id for p in self._proposals.lookup("proposer", proposer)]

    def proposal_count(self) -> int:
        return len(self._proposals)

    def to_dict(self) -> Dict[str, Any]:
        now = self.now()
        return {
            "account": self.account,
            "proposals": [p.to_dict(now) for p in self._proposals],
            "delegation": self._power.to_dict(),
            "targets": self.targets(),
            "config": self.config.to_dict(),
        }

    def __repr__(self) -> str:
        return f"<GovernanceEngine proposals={len(self._proposals)} delegations={len(self._power)}>"
