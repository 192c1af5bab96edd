"""
Treasury Engine

Holds the DAO's free balance, funds projects against milestones, keeps an
insurance pool and splits project profit between stakers, the treasury and
restaking.

Value held in the engine account is always accounted as

    treasury_balance + insurance_pool + escrow

where escrow is the funded-but-unreleased amount of every ACTIVE project.
Milestone payouts leave escrow; profit shares for stakers leave the account
entirely into the staking reward pool.
"""

import copy
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..config import TreasuryConfig
from ..constants import AUDITOR_ROLE, BPS_DENOMINATOR, GOVERNANCE_ROLE, PERCENT_DENOMINATOR
from ..exceptions import (
    AlreadyDoneError,
    BelowMinimumError,
    CapacityExceededError,
    InsufficientFundsError,
    InvalidInputError,
    InvalidStateError,
    InvariantViolationError,
    UnauthorizedError,
)
from ..host import Engine, Host, atomic
from ..logger import get_logger
from ..store import Table
from .projects import FundingAllocation, FundingCategory, Milestone, Project, ProjectStatus

logger = get_logger(__name__)


@dataclass
class TreasuryBooks:
    """Running balances of the treasury account."""
    treasury_balance: int = 0
    insurance_pool: int = 0
    escrow: int = 0
    total_deposited: int = 0
    total_released: int = 0
    total_returned: int = 0
    total_insurance_paid: int = 0
    profit_to_stakers: int = 0
    profit_to_treasury: int = 0
    profit_to_restaking: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "treasuryBalance": str(self.treasury_balance),
            "insurancePool": str(self.insurance_pool),
            "escrow": str(self.escrow),
            "totalDeposited": str(self.total_deposited),
            "totalReleased": str(self.total_released),
            "totalReturned": str(self.total_returned),
            "totalInsurancePaid": str(self.total_insurance_paid),
            "profitToStakers": str(self.profit_to_stakers),
            "profitToTreasury": str(self.profit_to_treasury),
            "profitToRestaking": str(self.profit_to_restaking),
        }


class TreasuryEngine(Engine):
    """
    Args:
        host: Shared execution host
        account: Ledger account holding treasury funds
        staking: Receives profit shares through its reward pool (optional)
        config: Treasury parameters
    """

    _journaled = ("_projects", "_allocations", "_books", "_active")

    def __init__(
        self,
        host: Host,
        account: str,
        staking=None,
        config: Optional[TreasuryConfig] = None,
    ):
        super().__init__(host, account)
        self.config = config or TreasuryConfig()
        self.config.validate()
        self.staking = staking

        self._projects: Table[Project] = Table("project")
        self._allocations: Dict[tuple, FundingAllocation] = {}
        self._books = TreasuryBooks()
        self._active: List[int] = []

    # ── Helpers ───────────────────────────────────────────────────────

    def _require_status(self, project: Project, *allowed: ProjectStatus):
        if project.status not in allowed:
            raise InvalidStateError(
                f"Project #{project.id} is {project.status.name}, "
                f"expected {'/'.join(s.name for s in allowed)}"
            )

    def _require_recipient(self, project: Project, caller: str):
        if caller != project.recipient:
            raise UnauthorizedError(f"{caller} is not the recipient of Project #{project.id}")

    def _close(self, project: Project, status: ProjectStatus, now: int):
        """Leave the active set and hand unreleased escrow back to free balance."""
        leftover = project.escrow_remaining
        self._books.escrow -= leftover
        self._books.treasury_balance += leftover
        project.reclaimed_amount += leftover
        project.status = status
        project.closed_at = now
        if project.id in self._active:
            self._active.remove(project.id)
        return leftover

    # ── Deposits ──────────────────────────────────────────────────────

    @atomic
    def deposit(self, caller: str, amount: int):
        if amount <= 0:
            raise InvalidInputError("Deposit must be positive")
        self._books.treasury_balance += amount
        self._books.total_deposited += amount
        self._collect(caller, amount)
        logger.info(f"Treasury deposit: {caller} +{amount}")

    # ── Project lifecycle ─────────────────────────────────────────────

    @atomic
    def propose_project(
        self,
        caller: str,
        recipient: str,
        category: FundingCategory,
        requested_amount: int,
        expected_yield_bps: int,
        description: str,
    ) -> int:
        cfg = self.config
        if not recipient:
            raise InvalidInputError("Project recipient is required")
        if not description:
            raise InvalidInputError("Project description cannot be empty")
        if requested_amount < cfg.min_project_amount:
            raise BelowMinimumError(
                f"Requested {requested_amount} below minimum {cfg.min_project_amount}"
            )
        if requested_amount > cfg.max_project_amount:
            raise InvalidInputError(
                f"Requested {requested_amount} above maximum {cfg.max_project_amount}"
            )
        if expected_yield_bps < 0:
            raise InvalidInputError("Expected yield cannot be negative")
        if len(self._active) >= cfg.max_active_projects:
            raise CapacityExceededError(f"{len(self._active)} projects already active")

        category = FundingCategory(category)
        now = self.now()
        project = self._projects.insert(lambda pid: Project(
            id=pid,
            proposer=caller,
            recipient=recipient,
            category=category,
            description=description,
            requested_amount=requested_amount,
            expected_yield_bps=expected_yield_bps,
            created_at=now,
        ))
        self._projects.index("recipient", recipient, project.id)
        self._projects.index("proposer", caller, project.id)
        logger.info(
            f"Project #{project.id} proposed by {caller}: {category.name} "
            f"{requested_amount} → {recipient}"
        )
        return project.id

    @atomic
    def approve_project(self, caller: str, project_id: int):
        self.host.require_role(GOVERNANCE_ROLE, caller)
        project = self._projects.get_or_raise(project_id)
        self._require_status(project, ProjectStatus.PROPOSED)
        project.status = ProjectStatus.APPROVED
        logger.info(f"Project #{project_id}: PROPOSED → APPROVED")

    @atomic
    def add_milestone(
        self, caller: str, project_id: int, description: str, amount: int, deadline: int
    ) -> int:
        """Append a milestone. Returns its index."""
        project = self._projects.get_or_raise(project_id)
        if caller != project.recipient and not self.host.access.has_role(GOVERNANCE_ROLE, caller):
            raise UnauthorizedError(f"{caller} cannot add milestones to Project #{project_id}")
        self._require_status(project, ProjectStatus.APPROVED)
        if amount <= 0:
            raise InvalidInputError("Milestone amount must be positive")
        if deadline <= self.now():
            raise InvalidInputError("Milestone deadline must be in the future")
        if project.milestone_total + amount > project.requested_amount:
            raise InvariantViolationError(
                f"Milestones would total {project.milestone_total + amount}, "
                f"above requested {project.requested_amount}"
            )
        project.milestones.append(Milestone(description, amount, deadline))
        return len(project.milestones) - 1

    @atomic
    def fund_project(self, caller: str, project_id: int) -> int:
        """
        Move the requested amount out of free balance: the insurance share
        goes to the pool, the rest is escrowed. Returns the escrowed amount.
        """
        self.host.require_role(GOVERNANCE_ROLE, caller)
        project = self._projects.get_or_raise(project_id)
        self._require_status(project, ProjectStatus.APPROVED)
        if not project.milestones:
            raise InvalidStateError(f"Project #{project_id} has no milestones")
        if len(self._active) >= self.config.max_active_projects:
            raise CapacityExceededError(f"{len(self._active)} projects already active")
        requested = project.requested_amount
        if self._books.treasury_balance < requested:
            raise InsufficientFundsError(
                f"Treasury holds {self._books.treasury_balance}, Project #{project_id} needs {requested}"
            )

        now = self.now()
        insurance = requested * self.config.insurance_bps // BPS_DENOMINATOR
        funded = requested - insurance
        self._books.treasury_balance -= requested
        self._books.insurance_pool += insurance
        self._books.escrow += funded

        project.insurance_withheld = insurance
        project.funded_amount = funded
        project.start_time = now
        project.repayment_deadline = now + self.config.repayment_period_seconds
        project.status = ProjectStatus.ACTIVE
        self._active.append(project_id)
        logger.info(
            f"Project #{project_id}: APPROVED → ACTIVE, escrow {funded}, insurance {insurance}"
        )
        return funded

    @atomic
    def complete_milestone(self, caller: str, project_id: int, index: int):
        project = self._projects.get_or_raise(project_id)
        self._require_recipient(project, caller)
        self._require_status(project, ProjectStatus.ACTIVE)
        milestone = project.milestone(index)
        if milestone.completed:
            raise AlreadyDoneError(f"Milestone {index} of Project #{project_id} already completed")
        now = self.now()
        if now > milestone.deadline:
            raise InvalidStateError(f"Milestone {index} of Project #{project_id} is past its deadline")
        milestone.completed = True
        milestone.completed_at = now
        logger.info(f"Project #{project_id}: milestone {index} completed")

    @atomic
    def release_milestone_funds(self, caller: str, project_id: int, index: int) -> int:
        """
        Pay a completed milestone to the recipient, net of the insurance skim
        and capped at the remaining escrow. Returns the amount paid.
        """
        self.host.require_role(AUDITOR_ROLE, caller)
        project = self._projects.get_or_raise(project_id)
        self._require_status(project, ProjectStatus.ACTIVE)
        milestone = project.milestone(index)
        if not milestone.completed:
            raise InvalidStateError(f"Milestone {index} of Project #{project_id} is not completed")
        if milestone.released:
            raise AlreadyDoneError(f"Milestone {index} of Project #{project_id} already released")

        net = milestone.amount * (BPS_DENOMINATOR - self.config.insurance_bps) // BPS_DENOMINATOR
        payout = min(net, project.escrow_remaining)
        milestone.released = True
        milestone.released_at = self.now()
        milestone.released_amount = payout
        project.released_amount += payout
        self._books.escrow -= payout
        self._books.total_released += payout

        self._pay(project.recipient, payout)
        logger.info(f"Project #{project_id}: milestone {index} released {payout} → {project.recipient}")
        return payout

    @atomic
    def return_funds(self, caller: str, project_id: int, amount: int) -> Dict[str, int]:
        """
        Recipient pays back principal and profit. Once the returned total
        reaches the funded amount the project completes and the profit is
        split. Returns the split (all zero until completion).
        """
        project = self._projects.get_or_raise(project_id)
        self._require_recipient(project, caller)
        self._require_status(project, ProjectStatus.ACTIVE)
        if amount <= 0:
            raise InvalidInputError("Returned amount must be positive")

        outstanding = max(0, project.funded_amount - project.returned_amount)
        principal_part = min(amount, outstanding)
        project.returned_amount += amount
        self._books.treasury_balance += principal_part
        self._books.total_returned += amount
        self._collect(caller, amount)

        split = {"profit": 0, "stakers": 0, "treasury": 0, "restaking": 0}
        if project.returned_amount < project.funded_amount:
            logger.info(
                f"Project #{project_id}: returned {project.returned_amount}/{project.funded_amount}"
            )
            return split

        funded = project.funded_amount
        now = self.now()
        profit = project.returned_amount - funded
        project.actual_yield_bps = profit * BPS_DENOMINATOR // funded
        self._close(project, ProjectStatus.COMPLETED, now)
        split = self._distribute_profit(profit)
        logger.info(
            f"Project #{project_id}: ACTIVE → COMPLETED, profit {profit} "
            f"({project.actual_yield_bps} bps, expected {project.expected_yield_bps})"
        )
        return split

    def _distribute_profit(self, profit: int) -> Dict[str, int]:
        """70/10/20 by default; integer dust stays with the treasury share."""
        cfg = self.config
        to_stakers = profit * cfg.profit_to_stakers_pct // PERCENT_DENOMINATOR
        to_restaking = profit * cfg.profit_to_restaking_pct // PERCENT_DENOMINATOR
        to_treasury = profit - to_stakers - to_restaking

        routed = to_stakers + to_restaking
        if routed and self.staking is None:
            logger.warning(f"No staking engine attached; {routed} profit kept by the treasury")
            to_treasury += routed
            routed = 0
        self._books.treasury_balance += to_treasury
        self._books.profit_to_treasury += to_treasury
        if routed:
            self._books.profit_to_stakers += to_stakers
            self._books.profit_to_restaking += to_restaking
            self._pay(self.staking.account, routed)
            self.staking.notify_reward(self.account, routed)
        return {
            "profit": profit,
            "stakers": to_stakers if routed else 0,
            "treasury": to_treasury,
            "restaking": to_restaking if routed else 0,
        }

    @atomic
    def mark_project_failed(self, caller: str, project_id: int) -> int:
        """
        Fail an ACTIVE project that is past its deadline or has returned less
        than half of its funding. Insurance covers the shortfall as far as the
        pool allows. Returns the insurance payout.
        """
        self.host.require_role(GOVERNANCE_ROLE, caller)
        project = self._projects.get_or_raise(project_id)
        self._require_status(project, ProjectStatus.ACTIVE)
        now = self.now()
        overdue = now > project.repayment_deadline
        underpaid = project.returned_amount * 2 < project.funded_amount
        if not (overdue or underpaid):
            raise InvalidStateError(
                f"Project #{project_id} is within its deadline and has returned "
                f"{project.returned_amount} of {project.funded_amount}"
            )

        # Only value that actually left escrow can be lost
        shortfall = max(0, project.released_amount - project.returned_amount)
        payout = min(shortfall, self._books.insurance_pool)
        self._books.insurance_pool -= payout
        self._books.treasury_balance += payout
        self._books.total_insurance_paid += payout
        reclaimed = self._close(project, ProjectStatus.FAILED, now)
        logger.warning(
            f"Project #{project_id}: ACTIVE → FAILED, shortfall {shortfall}, "
            f"insurance paid {payout}, escrow reclaimed {reclaimed}"
        )
        return payout

    @atomic
    def cancel_project(self, caller: str, project_id: int):
        self.host.require_role(GOVERNANCE_ROLE, caller)
        project = self._projects.get_or_raise(project_id)
        self._require_status(project, ProjectStatus.PROPOSED, ProjectStatus.APPROVED)
        old = project.status
        project.status = ProjectStatus.CANCELLED
        project.closed_at = self.now()
        logger.info(f"Project #{project_id}: {old.name} → CANCELLED")

    # ── Allocations ───────────────────────────────────────────────────

    @atomic
    def set_quarterly_allocation(
        self,
        caller: str,
        year: int,
        quarter: int,
        utility: int = 0,
        token: int = 0,
        education: int = 0,
        marketing: int = 0,
        infrastructure: int = 0,
    ) -> FundingAllocation:
        self.host.require_role(GOVERNANCE_ROLE, caller)
        if not 1 <= quarter <= 4:
            raise InvalidInputError(f"Quarter must be 1-4, got {quarter}")
        if year <= 0:
            raise InvalidInputError(f"Invalid year {year}")
        amounts = {
            FundingCategory.UTILITY: utility,
            FundingCategory.TOKEN: token,
            FundingCategory.EDUCATION: education,
            FundingCategory.MARKETING: marketing,
            FundingCategory.INFRASTRUCTURE: infrastructure,
        }
        if any(a < 0 for a in amounts.values()):
            raise InvalidInputError("Allocation amounts cannot be negative")
        allocation = FundingAllocation(year, quarter, amounts, caller, self.now())
        self._allocations[(year, quarter)] = allocation
        logger.info(f"Allocation {year} Q{quarter} set by {caller}: total {allocation.total}")
        return allocation

    def get_allocation(self, year: int, quarter: int) -> Optional[FundingAllocation]:
        allocation = self._allocations.get((year, quarter))
        return copy.deepcopy(allocation) if allocation else None

    # ── Queries ───────────────────────────────────────────────────────

    def treasury_balance(self) -> int:
        return self._books.treasury_balance

    def insurance_pool(self) -> int:
        return self._books.insurance_pool

    def escrow(self) -> int:
        return self._books.escrow

    def active_project_ids(self) -> List[int]:
        return list(self._active)

    def get_project(self, project_id: int) -> Project:
        return copy.deepcopy(self._projects.get_or_raise(project_id))

    def projects_for(self, recipient: str) -> List[int]:
        return [p.id for p in self._projects.lookup("recipient", recipient)]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account": self.account,
            "books": self._books.to_dict(),
            "activeProjects": list(self._active),
            "projects": len(self._projects),
            "allocations": [a.to_dict() for a in self._allocations.values()],
        }

    def __repr__(self) -> str:
        return (
            f"<TreasuryEngine balance={self._books.treasury_balance} "
            f"active={len(self._active)} insurance={self._books.insurance_pool}>"
        )
