"""
Treasury Projects

Project, Milestone and FundingAllocation records plus their enums.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, List, Optional

from ..exceptions import InvalidInputError


class ProjectStatus(IntEnum):
    """Project lifecycle."""
    PROPOSED = 0
    APPROVED = 1
    ACTIVE = 2
    COMPLETED = 3
    FAILED = 4
    CANCELLED = 5


class FundingCategory(IntEnum):
    """Spending categories shared by projects and quarterly allocations."""
    UTILITY = 0
    TOKEN = 1
    EDUCATION = 2
    MARKETING = 3
    INFRASTRUCTURE = 4


@dataclass
class Milestone:
    """A payout tranche. Released at most once, only after completion."""
    description: str
    amount: int
    deadline: int
    completed: bool = False
    released: bool = False
    completed_at: Optional[int] = None
    released_at: Optional[int] = None
    released_amount: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "description": self.description,
            "amount": str(self.amount),
            "deadline": self.deadline,
            "completed": self.completed,
            "released": self.released,
            "completedAt": self.completed_at,
            "releasedAt": self.released_at,
            "releasedAmount": str(self.released_amount),
        }


@dataclass
class Project:
    """
    Treasury-funded project.

    Fields:
        requested_amount:   Amount asked for (and moved out of free balance on funding)
        funded_amount:      Escrowed for release (requested − insurance)
        insurance_withheld: Skimmed into the insurance pool on funding
        released_amount:    Paid out through milestones
        returned_amount:    Paid back by the recipient
        reclaimed_amount:   Unreleased escrow handed back to free balance on close
        expected_yield_bps: Promised return
        actual_yield_bps:   Realised return, set once returned ≥ funded
    """
    id: int
    proposer: str
    recipient: str
    category: FundingCategory
    description: str
    requested_amount: int
    expected_yield_bps: int
    created_at: int
    status: ProjectStatus = ProjectStatus.PROPOSED
    funded_amount: int = 0
    insurance_withheld: int = 0
    released_amount: int = 0
    returned_amount: int = 0
    reclaimed_amount: int = 0
    actual_yield_bps: Optional[int] = None
    start_time: Optional[int] = None
    repayment_deadline: Optional[int] = None
    closed_at: Optional[int] = None
    milestones: List[Milestone] = field(default_factory=list)

    @property
    def milestone_total(self) -> int:
        return sum(m.amount for m in self.milestones)

    @property
    def escrow_remaining(self) -> int:
        return self.funded_amount - self.released_amount - self.reclaimed_amount

    @property
    def is_open(self) -> bool:
        return self.status in (ProjectStatus.PROPOSED, ProjectStatus.APPROVED, ProjectStatus.ACTIVE)

    def milestone(self, index: int) -> Milestone:
        if not 0 <= index < len(self.milestones):
            raise InvalidInputError(f"Project #{self.id} has no milestone {index}")
        return self.milestones[index]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "proposer": self.proposer,
            "recipient": self.recipient,
            "category": self.category.name,
            "description": self.description,
            "status": self.status.name,
            "requestedAmount": str(self.requested_amount),
            "fundedAmount": str(self.funded_amount),
            "insuranceWithheld": str(self.insurance_withheld),
            "releasedAmount": str(self.released_amount),
            "returnedAmount": str(self.returned_amount),
            "reclaimedAmount": str(self.reclaimed_amount),
            "expectedYieldBps": self.expected_yield_bps,
            "actualYieldBps": self.actual_yield_bps,
            "createdAt": self.created_at,
            "startTime": self.start_time,
            "repaymentDeadline": self.repayment_deadline,
            "closedAt": self.closed_at,
            "milestones": [m.to_dict() for m in self.milestones],
        }

    def __repr__(self) -> str:
        return f"<Project #{self.id} {self.status.name} requested={self.requested_amount}>"


@dataclass
class FundingAllocation:
    """Planned spend for one quarter. A planning record; moves no value."""
    year: int
    quarter: int
    amounts: Dict[FundingCategory, int]
    set_by: str
    set_at: int

    @property
    def total(self) -> int:
        return sum(self.amounts.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "year": self.year,
            "quarter": self.quarter,
            "amounts": {c.name: str(a) for c, a in self.amounts.items()},
            "total": str(self.total),
            "setBy": self.set_by,
            "setAt": self.set_at,
        }
