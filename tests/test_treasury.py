"""
Treasury Engine Test Suite

Coverage:
  - Deposits and project proposal bounds
  - Approval, milestones, funding with insurance skim
  - Milestone completion and single release
  - Repayment, profit split to stakers / treasury / restaking
  - Failure with insurance payout, cancellation
  - Quarterly allocations
"""

import os
import sys

import pytest

# ── Path setup ────────────────────────────────────────────────────────
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from kdao.access import RoleRegistry
from kdao.clock import ManualClock
from kdao.config import TreasuryConfig
from kdao.constants import (
    AUDITOR_ROLE,
    DAY,
    GOVERNANCE_ROLE,
    REWARDS_MANAGER_ROLE,
    UNIT,
)
from kdao.exceptions import (
    AlreadyDoneError,
    BelowMinimumError,
    CapacityExceededError,
    InsufficientFundsError,
    InvalidInputError,
    InvalidStateError,
    InvariantViolationError,
    UnauthorizedError,
)
from kdao.host import Host
from kdao.ledger import InMemoryLedger
from kdao.staking import StakingEngine
from kdao.treasury import FundingCategory, ProjectStatus, TreasuryEngine


# ══════════════════════════════════════════════════════════════════════
#  HELPERS
# ══════════════════════════════════════════════════════════════════════

GOV = "0xKD" + "60" * 20
AUDITOR = "0xKD" + "A0" * 20
FUNDER = "0xKD" + "F0" * 20
BUILDER = "0xKD" + "B1" * 20
OTHER = "0xKD" + "0E" * 20
TREASURY = "kdao:treasury"
STAKING = "kdao:staking"

REQUESTED = 10_000 * UNIT
INSURANCE = 500 * UNIT        # 5%
FUNDED = REQUESTED - INSURANCE


def make_treasury(config=None, with_staking=True):
    clock = ManualClock()
    ledger = InMemoryLedger(initial_balances={
        FUNDER: 1_000_000 * UNIT,
        BUILDER: 50_000 * UNIT,
    })
    access = RoleRegistry(admin=GOV)
    host = Host(clock, ledger, access)
    staking = StakingEngine(host, STAKING) if with_staking else None
    treasury = TreasuryEngine(host, TREASURY, staking, config)
    access.grant_role(GOV, GOVERNANCE_ROLE, GOV)
    access.grant_role(GOV, AUDITOR_ROLE, AUDITOR)
    access.grant_role(GOV, REWARDS_MANAGER_ROLE, TREASURY)
    ledger.approve(FUNDER, TREASURY, 1_000_000 * UNIT)
    treasury.deposit(FUNDER, 100_000 * UNIT)
    return treasury, staking, clock, ledger


def approved_project(treasury, clock, amount=REQUESTED, milestones=(REQUESTED,)):
    pid = treasury.propose_project(
        BUILDER, BUILDER, FundingCategory.INFRASTRUCTURE, amount, 1_500, "Indexer node"
    )
    treasury.approve_project(GOV, pid)
    for i, m in enumerate(milestones):
        treasury.add_milestone(BUILDER, pid, f"Phase {i + 1}", m, clock.now() + 90 * DAY)
    return pid


def active_project(treasury, clock, **kwargs):
    pid = approved_project(treasury, clock, **kwargs)
    treasury.fund_project(GOV, pid)
    return pid


# ══════════════════════════════════════════════════════════════════════
#  PROPOSAL & APPROVAL
# ══════════════════════════════════════════════════════════════════════


class TestProposal:

    def test_deposit_increases_balance(self):
        treasury, _, _, ledger = make_treasury()
        assert treasury.treasury_balance() == 100_000 * UNIT
        assert ledger.balance_of(TREASURY) == 100_000 * UNIT

    def test_amount_bounds(self):
        treasury, _, _, _ = make_treasury()
        with pytest.raises(BelowMinimumError):
            treasury.propose_project(BUILDER, BUILDER, FundingCategory.UTILITY, 999 * UNIT, 0, "x")
        with pytest.raises(InvalidInputError):
            treasury.propose_project(
                BUILDER, BUILDER, FundingCategory.UTILITY, 1_000_001 * UNIT, 0, "x"
            )

    def test_recipient_required(self):
        treasury, _, _, _ = make_treasury()
        with pytest.raises(InvalidInputError):
            treasury.propose_project(BUILDER, "", FundingCategory.UTILITY, REQUESTED, 0, "x")

    def test_approve_requires_governance(self):
        treasury, _, _, _ = make_treasury()
        pid = treasury.propose_project(BUILDER, BUILDER, FundingCategory.TOKEN, REQUESTED, 0, "x")
        with pytest.raises(UnauthorizedError):
            treasury.approve_project(OTHER, pid)
        treasury.approve_project(GOV, pid)
        assert treasury.get_project(pid).status == ProjectStatus.APPROVED
        with pytest.raises(InvalidStateError):
            treasury.approve_project(GOV, pid)

    def test_projects_for_recipient(self):
        treasury, _, clock, _ = make_treasury()
        pid = approved_project(treasury, clock)
        assert treasury.projects_for(BUILDER) == [pid]
        assert treasury.projects_for(OTHER) == []


class TestMilestones:

    def test_total_cannot_exceed_requested(self):
        treasury, _, clock, _ = make_treasury()
        pid = approved_project(treasury, clock, milestones=(6_000 * UNIT,))
        with pytest.raises(InvariantViolationError):
            treasury.add_milestone(BUILDER, pid, "Too much", 4_001 * UNIT, clock.now() + DAY)
        assert treasury.add_milestone(BUILDER, pid, "Rest", 4_000 * UNIT, clock.now() + DAY) == 1

    def test_only_recipient_or_governance(self):
        treasury, _, clock, _ = make_treasury()
        pid = approved_project(treasury, clock, milestones=())
        with pytest.raises(UnauthorizedError):
            treasury.add_milestone(OTHER, pid, "m", UNIT, clock.now() + DAY)
        treasury.add_milestone(GOV, pid, "m", UNIT, clock.now() + DAY)
        assert len(treasury.get_project(pid).milestones) == 1

    def test_only_while_approved(self):
        treasury, _, clock, _ = make_treasury()
        pid = active_project(treasury, clock, milestones=(5_000 * UNIT,))
        with pytest.raises(InvalidStateError):
            treasury.add_milestone(BUILDER, pid, "late", UNIT, clock.now() + DAY)


# ══════════════════════════════════════════════════════════════════════
#  FUNDING & RELEASE
# ══════════════════════════════════════════════════════════════════════


class TestFunding:

    def test_fund_moves_balance_to_escrow_and_insurance(self):
        treasury, _, clock, _ = make_treasury()
        pid = active_project(treasury, clock)
        project = treasury.get_project(pid)
        assert project.status == ProjectStatus.ACTIVE
        assert project.funded_amount == FUNDED
        assert project.insurance_withheld == INSURANCE
        assert project.repayment_deadline == clock.now() + 365 * DAY
        assert treasury.treasury_balance() == 90_000 * UNIT
        assert treasury.insurance_pool() == INSURANCE
        assert treasury.escrow() == FUNDED
        assert treasury.active_project_ids() == [pid]

    def test_fund_requires_milestones(self):
        treasury, _, clock, _ = make_treasury()
        pid = approved_project(treasury, clock, milestones=())
        with pytest.raises(InvalidStateError, match="milestones"):
            treasury.fund_project(GOV, pid)

    def test_fund_requires_balance(self):
        treasury, _, clock, _ = make_treasury()
        pid = approved_project(
            treasury, clock, amount=200_000 * UNIT, milestones=(200_000 * UNIT,)
        )
        with pytest.raises(InsufficientFundsError):
            treasury.fund_project(GOV, pid)
        assert treasury.get_project(pid).status == ProjectStatus.APPROVED

    def test_active_cap(self):
        treasury, _, clock, _ = make_treasury(TreasuryConfig(max_active_projects=1))
        active_project(treasury, clock)
        with pytest.raises(CapacityExceededError):
            treasury.propose_project(BUILDER, BUILDER, FundingCategory.UTILITY, REQUESTED, 0, "x")


class TestRelease:

    def test_complete_then_release_once(self):
        treasury, _, clock, ledger = make_treasury()
        pid = active_project(treasury, clock)
        with pytest.raises(InvalidStateError, match="not completed"):
            treasury.release_milestone_funds(AUDITOR, pid, 0)
        treasury.complete_milestone(BUILDER, pid, 0)
        paid = treasury.release_milestone_funds(AUDITOR, pid, 0)
        assert paid == FUNDED  # net of the 5% skim
        assert ledger.balance_of(BUILDER) == 50_000 * UNIT + FUNDED
        assert treasury.escrow() == 0
        with pytest.raises(AlreadyDoneError):
            treasury.release_milestone_funds(AUDITOR, pid, 0)

    def test_release_requires_auditor(self):
        treasury, _, clock, _ = make_treasury()
        pid = active_project(treasury, clock)
        treasury.complete_milestone(BUILDER, pid, 0)
        with pytest.raises(UnauthorizedError):
            treasury.release_milestone_funds(BUILDER, pid, 0)

    def test_complete_rules(self):
        treasury, _, clock, _ = make_treasury()
        pid = active_project(treasury, clock, milestones=(4_000 * UNIT, 6_000 * UNIT))
        with pytest.raises(UnauthorizedError):
            treasury.complete_milestone(OTHER, pid, 0)
        with pytest.raises(InvalidInputError):
            treasury.complete_milestone(BUILDER, pid, 5)
        treasury.complete_milestone(BUILDER, pid, 0)
        with pytest.raises(AlreadyDoneError):
            treasury.complete_milestone(BUILDER, pid, 0)
        clock.advance(91 * DAY)
        with pytest.raises(InvalidStateError, match="deadline"):
            treasury.complete_milestone(BUILDER, pid, 1)

    def test_partial_milestones_net_of_insurance(self):
        treasury, _, clock, _ = make_treasury()
        pid = active_project(treasury, clock, milestones=(4_000 * UNIT, 6_000 * UNIT))
        treasury.complete_milestone(BUILDER, pid, 0)
        treasury.complete_milestone(BUILDER, pid, 1)
        assert treasury.release_milestone_funds(AUDITOR, pid, 0) == 3_800 * UNIT
        assert treasury.release_milestone_funds(AUDITOR, pid, 1) == 5_700 * UNIT
        assert treasury.get_project(pid).escrow_remaining == 0


# ══════════════════════════════════════════════════════════════════════
#  REPAYMENT & PROFIT
# ══════════════════════════════════════════════════════════════════════


class TestRepayment:

    def _released(self):
        treasury, staking, clock, ledger = make_treasury()
        pid = active_project(treasury, clock)
        treasury.complete_milestone(BUILDER, pid, 0)
        treasury.release_milestone_funds(AUDITOR, pid, 0)
        ledger.approve(BUILDER, TREASURY, 100_000 * UNIT)
        return treasury, staking, clock, ledger, pid

    def test_profit_split_exact(self):
        treasury, staking, _, _, pid = self._released()
        split = treasury.return_funds(BUILDER, pid, FUNDED + 1_000)
        assert split == {"profit": 1_000, "stakers": 700, "treasury": 100, "restaking": 200}
        project = treasury.get_project(pid)
        assert project.status == ProjectStatus.COMPLETED
        assert project.actual_yield_bps == 0
        assert treasury.active_project_ids() == []
        assert treasury.treasury_balance() == 90_000 * UNIT + FUNDED + 100
        assert staking.reward_pool == 900

    def test_actual_yield_recorded(self):
        treasury, staking, _, _, pid = self._released()
        treasury.return_funds(BUILDER, pid, FUNDED + FUNDED // 10)
        assert treasury.get_project(pid).actual_yield_bps == 1_000

    def test_partial_returns_accumulate(self):
        treasury, _, _, _, pid = self._released()
        split = treasury.return_funds(BUILDER, pid, 5_000 * UNIT)
        assert split["profit"] == 0
        assert treasury.get_project(pid).status == ProjectStatus.ACTIVE
        assert treasury.treasury_balance() == 95_000 * UNIT
        treasury.return_funds(BUILDER, pid, 4_500 * UNIT)
        assert treasury.get_project(pid).status == ProjectStatus.COMPLETED

    def test_only_recipient_returns(self):
        treasury, _, _, ledger, pid = self._released()
        ledger.approve(FUNDER, TREASURY, UNIT)
        with pytest.raises(UnauthorizedError):
            treasury.return_funds(FUNDER, pid, UNIT)

    def test_without_staking_treasury_keeps_profit(self):
        treasury, _, clock, ledger = make_treasury(with_staking=False)
        pid = active_project(treasury, clock)
        ledger.approve(BUILDER, TREASURY, 100_000 * UNIT)
        split = treasury.return_funds(BUILDER, pid, FUNDED + 1_000)
        assert split["treasury"] == 1_000
        # Unreleased escrow is handed back on completion
        assert treasury.treasury_balance() == 90_000 * UNIT + FUNDED + FUNDED + 1_000


# ══════════════════════════════════════════════════════════════════════
#  FAILURE & CANCELLATION
# ══════════════════════════════════════════════════════════════════════


class TestFailure:

    def test_insurance_covers_shortfall_capped(self):
        treasury, _, clock, _ = make_treasury()
        pid = active_project(treasury, clock)
        treasury.complete_milestone(BUILDER, pid, 0)
        treasury.release_milestone_funds(AUDITOR, pid, 0)
        payout = treasury.mark_project_failed(GOV, pid)
        assert payout == INSURANCE
        assert treasury.insurance_pool() == 0
        assert treasury.treasury_balance() == 90_000 * UNIT + INSURANCE
        assert treasury.get_project(pid).status == ProjectStatus.FAILED
        assert treasury.active_project_ids() == []

    def test_unreleased_escrow_reclaimed(self):
        treasury, _, clock, _ = make_treasury()
        pid = active_project(treasury, clock)
        assert treasury.mark_project_failed(GOV, pid) == 0
        assert treasury.treasury_balance() == 90_000 * UNIT + FUNDED
        assert treasury.escrow() == 0

    def test_healthy_project_cannot_fail(self):
        treasury, _, clock, ledger = make_treasury()
        pid = active_project(treasury, clock)
        ledger.approve(BUILDER, TREASURY, FUNDED)
        treasury.return_funds(BUILDER, pid, FUNDED // 2)
        with pytest.raises(InvalidStateError):
            treasury.mark_project_failed(GOV, pid)
        clock.advance(366 * DAY)
        treasury.mark_project_failed(GOV, pid)
        assert treasury.get_project(pid).status == ProjectStatus.FAILED

    def test_fail_requires_governance(self):
        treasury, _, clock, _ = make_treasury()
        pid = active_project(treasury, clock)
        with pytest.raises(UnauthorizedError):
            treasury.mark_project_failed(OTHER, pid)

    def test_cancel_before_funding(self):
        treasury, _, clock, _ = make_treasury()
        pid = approved_project(treasury, clock)
        treasury.cancel_project(GOV, pid)
        assert treasury.get_project(pid).status == ProjectStatus.CANCELLED
        with pytest.raises(InvalidStateError):
            treasury.fund_project(GOV, pid)

    def test_cannot_cancel_active(self):
        treasury, _, clock, _ = make_treasury()
        pid = active_project(treasury, clock)
        with pytest.raises(InvalidStateError):
            treasury.cancel_project(GOV, pid)


# ══════════════════════════════════════════════════════════════════════
#  ALLOCATIONS
# ══════════════════════════════════════════════════════════════════════


class TestAllocations:

    def test_set_and_get(self):
        treasury, _, _, _ = make_treasury()
        treasury.set_quarterly_allocation(
            GOV, 2025, 4, utility=80_000 * UNIT, token=20_000 * UNIT,
            education=40_000 * UNIT, marketing=60_000 * UNIT,
        )
        allocation = treasury.get_allocation(2025, 4)
        assert allocation.total == 200_000 * UNIT
        assert allocation.amounts[FundingCategory.INFRASTRUCTURE] == 0
        assert allocation.to_dict()["amounts"]["UTILITY"] == str(80_000 * UNIT)
        # Planning only: no value moves
        assert treasury.treasury_balance() == 100_000 * UNIT
        assert treasury.get_allocation(2026, 1) is None

    def test_invalid_quarter(self):
        treasury, _, _, _ = make_treasury()
        with pytest.raises(InvalidInputError):
            treasury.set_quarterly_allocation(GOV, 2025, 5)

    def test_requires_governance(self):
        treasury, _, _, _ = make_treasury()
        with pytest.raises(UnauthorizedError):
            treasury.set_quarterly_allocation(OTHER, 2025, 1)

    def test_to_dict(self):
        treasury, _, clock, _ = make_treasury()
        active_project(treasury, clock)
        d = treasury.to_dict()
        assert d["books"]["insurancePool"] == str(INSURANCE)
        assert d["activeProjects"] == [1]
