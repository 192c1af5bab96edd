"""
Stake Positions

Defines the per-participant Stake record, its lock states, and the tier
ladder used for the stake-size yield bonus.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Sequence, Tuple

from ..constants import BPS_DENOMINATOR
from ..exceptions import InvalidInputError


class LockState(Enum):
    """Lock state of a stake."""
    LOCKED = "locked"         # Earning and voting
    UNLOCKING = "unlocking"   # Unlock requested, waiting out the delay
    UNLOCKED = "unlocked"     # Fully withdrawn


@dataclass(frozen=True)
class Tier:
    """One rung of the stake-size ladder."""
    threshold: int
    level: int
    name: str
    bonus_bps: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "threshold": str(self.threshold),
            "level": self.level,
            "name": self.name,
            "bonusBps": self.bonus_bps,
        }


def build_ladder(entries: Iterable[Sequence]) -> Tuple[Tier, ...]:
    """
    Build a descending ladder from (threshold, level, name, bonus_bps) rows.

    Rows are ordered by threshold, then level, both descending, so the first
    match during lookup is the highest tier the amount qualifies for.
    """
    tiers = [Tier(int(t[0]), int(t[1]), str(t[2]), int(t[3])) for t in entries]
    if not tiers:
        raise InvalidInputError("Tier ladder cannot be empty")
    if any(t.threshold < 0 or t.bonus_bps < 0 for t in tiers):
        raise InvalidInputError("Tier thresholds and bonuses cannot be negative")
    return tuple(sorted(tiers, key=lambda t: (t.threshold, t.level), reverse=True))


def resolve_tier(ladder: Sequence[Tier], amount: int) -> Tier:
    """Highest tier whose threshold *amount* meets."""
    for tier in ladder:
        if amount >= tier.threshold:
            return tier
    # Below every threshold; the bottom rung applies
    return ladder[-1]


@dataclass
class Stake:
    """
    A participant's staking position.

    Fields:
        owner:              Ledger identity of the staker
        principal:          Staked governance tokens
        auxiliary:          Staked secondary-asset (LP) tokens
        start_time:         First stake of the current position
        last_accrual_time:  Last checkpoint
        reward_checkpoint:  Accumulator value at the last checkpoint
        accrued:            Earned but unclaimed yield (carry)
        accrued_total:      Cumulative yield ever credited
        claimed_total:      Cumulative yield paid out by claim
        compounded_total:   Cumulative yield moved into principal
        lock_state:         LockState
        unlock_time:        Earliest unstake time while UNLOCKING
        auto_compound:      Fold yield into principal at each checkpoint
        multiplier_bps:     Yield multiplier at the last checkpoint
        effective_balance:  (principal + auxiliary) × multiplier, as counted in pool totals
    """
    owner: str
    principal: int = 0
    auxiliary: int = 0
    start_time: int = 0
    last_accrual_time: int = 0
    reward_checkpoint: int = 0
    accrued: int = 0
    accrued_total: int = 0
    claimed_total: int = 0
    compounded_total: int = 0
    lock_state: LockState = LockState.LOCKED
    unlock_time: int = 0
    auto_compound: bool = False
    multiplier_bps: int = 0
    effective_balance: int = 0

    @property
    def total_staked(self) -> int:
        return self.principal + self.auxiliary

    @property
    def is_empty(self) -> bool:
        return self.principal == 0 and self.auxiliary == 0

    def age(self, now: int) -> int:
        return max(0, now - self.start_time)

    def voting_weight(self, aux_weight_bps: int) -> int:
        """Stake-derived voting weight; zero unless LOCKED."""
        if self.lock_state != LockState.LOCKED:
            return 0
        return self.principal + self.auxiliary * aux_weight_bps // BPS_DENOMINATOR

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner": self.owner,
            "principal": str(self.principal),
            "auxiliary": str(self.auxiliary),
            "startTime": self.start_time,
            "lastAccrualTime": self.last_accrual_time,
            "accrued": str(self.accrued),
            "accruedTotal": str(self.accrued_total),
            "claimedTotal": str(self.claimed_total),
            "compoundedTotal": str(self.compounded_total),
            "lockState": self.lock_state.value,
            "unlockTime": self.unlock_time,
            "autoCompound": self.auto_compound,
            "multiplierBps": self.multiplier_bps,
            "effectiveBalance": str(self.effective_balance),
        }


def tiers_to_list(ladder: Sequence[Tier]) -> List[Dict[str, Any]]:
    return [t.to_dict() for t in ladder]
