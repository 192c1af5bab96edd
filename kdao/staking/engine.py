"""
Staking Engine

Owns every stake, the reward pool and the reward-per-unit accumulator.

Accrual law:
    acc += elapsed × reward_rate × PRECISION / total_effective
    pending(stake) = effective × (acc − checkpoint) / PRECISION + carry

where ``effective = (principal + auxiliary) × multiplier / 10000`` and the
multiplier is base + auxiliary bonus + long-duration bonus + auto-compound
bonus + tier bonus, re-evaluated at every checkpoint of the owner. The pool is
updated on every state-changing call, so no operation iterates over stakers.

Rewards are streamed at a flat rate over a fixed window. Adding rewards while
a window is running re-spreads the undistributed remainder plus the new
amount over a fresh window; that acceleration is intended.
"""

import dataclasses
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..config import StakingConfig
from ..constants import (
    BPS_DENOMINATOR,
    REWARDS_MANAGER_ROLE,
    STAKING_ACCUMULATOR_PRECISION,
)
from ..exceptions import (
    BelowMinimumError,
    CapacityExceededError,
    InsufficientFundsError,
    InvalidInputError,
    InvalidStateError,
)
from ..host import Engine, Host, Journaled, atomic
from ..ledger import ValueLedger
from ..logger import get_logger
from .positions import LockState, Stake, Tier, build_ladder, resolve_tier, tiers_to_list

logger = get_logger(__name__)

PRECISION = STAKING_ACCUMULATOR_PRECISION


@dataclass
class RewardPool:
    """Pool-wide accounting."""
    reward_rate: int = 0            # base units per second
    period_finish: int = 0
    last_update: int = 0
    reward_per_unit: int = 0        # accumulator, scaled by PRECISION
    undistributed: int = 0          # not yet streamed to stakers
    reward_balance: int = 0         # reward tokens held (undistributed + owed)
    total_principal: int = 0
    total_auxiliary: int = 0
    total_effective: int = 0
    total_added: int = 0
    total_paid: int = 0
    withheld_auxiliary: int = 0     # auxiliary penalty fees

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rewardRate": str(self.reward_rate),
            "periodFinish": self.period_finish,
            "lastUpdate": self.last_update,
            "rewardPerUnit": str(self.reward_per_unit),
            "undistributed": str(self.undistributed),
            "rewardBalance": str(self.reward_balance),
            "totalPrincipal": str(self.total_principal),
            "totalAuxiliary": str(self.total_auxiliary),
            "totalEffective": str(self.total_effective),
            "totalAdded": str(self.total_added),
            "totalPaid": str(self.total_paid),
            "withheldAuxiliary": str(self.withheld_auxiliary),
        }


class StakingEngine(Engine):
    """
    Stake / yield / voting-weight engine.

    Args:
        host: Shared execution host
        account: Ledger account holding staked and reward tokens
        config: Staking parameters
        aux_ledger: Ledger of the auxiliary (LP) asset; defaults to the host ledger
    """

    _journaled = ("_stakes", "_pool")

    def __init__(
        self,
        host: Host,
        account: str,
        config: Optional[StakingConfig] = None,
        aux_ledger: Optional[ValueLedger] = None,
    ):
        super().__init__(host, account)
        self.config = config or StakingConfig()
        self.config.validate()
        self.ladder = build_ladder(self.config.tier_ladder)
        self.aux_ledger = aux_ledger or host.ledger
        if self.aux_ledger is not host.ledger and isinstance(self.aux_ledger, Journaled):
            host.register(self.aux_ledger)

        self._stakes: Dict[str, Stake] = {}
        self._pool = RewardPool(last_update=self.now())

    # =========================================================================
    # ACCUMULATOR
    # =========================================================================

    def _last_time_applicable(self, now: int) -> int:
        return min(now, self._pool.period_finish)

    def _reward_per_unit(self, now: int) -> int:
        pool = self._pool
        if pool.total_effective == 0:
            return pool.reward_per_unit
        elapsed = max(0, self._last_time_applicable(now) - pool.last_update)
        return pool.reward_per_unit + elapsed * pool.reward_rate * PRECISION // pool.total_effective

    def _update_pool(self, now: int):
        pool = self._pool
        applicable = self._last_time_applicable(now)
        if pool.total_effective > 0:
            elapsed = max(0, applicable - pool.last_update)
            streamed = min(elapsed * pool.reward_rate, pool.undistributed)
            pool.reward_per_unit = self._reward_per_unit(now)
            pool.undistributed -= streamed
        pool.last_update = max(pool.last_update, applicable)

    def _earned(self, stake: Stake, reward_per_unit: int) -> int:
        return (
            stake.effective_balance * (reward_per_unit - stake.reward_checkpoint) // PRECISION
            + stake.accrued
        )

    def _checkpoint(self, stake: Stake, now: int, allow_compound: bool = True):
        """Bring the pool and *stake* up to *now*."""
        self._update_pool(now)
        earned = self._earned(stake, self._pool.reward_per_unit)
        stake.accrued_total += earned - stake.accrued
        stake.accrued = earned
        stake.reward_checkpoint = self._pool.reward_per_unit
        stake.last_accrual_time = now

        if (
            allow_compound
            and stake.auto_compound
            and stake.lock_state == LockState.LOCKED
            and stake.accrued > 0
            and self._pool.total_principal + stake.accrued <= self.config.pool_capacity
        ):
            self._fold_into_principal(stake, stake.accrued)

    def _fold_into_principal(self, stake: Stake, amount: int):
        self._draw_rewards(amount)
        stake.accrued -= amount
        stake.principal += amount
        stake.compounded_total += amount
        self._pool.total_principal += amount

    def _draw_rewards(self, amount: int):
        if amount > self._pool.reward_balance:
            raise InsufficientFundsError(
                f"Reward pool {self._pool.reward_balance} cannot cover {amount}"
            )
        self._pool.reward_balance -= amount
        self._pool.total_paid += amount

    def _reweight(self, stake: Stake, now: int):
        """Recompute the multiplier and effective balance counted in pool totals."""
        multiplier = self._multiplier(stake, now)
        effective = stake.total_staked * multiplier // BPS_DENOMINATOR
        self._pool.total_effective += effective - stake.effective_balance
        stake.multiplier_bps = multiplier
        stake.effective_balance = effective

    def _multiplier(self, stake: Stake, now: int) -> int:
        cfg = self.config
        multiplier = cfg.base_multiplier_bps
        if stake.auxiliary > 0:
            multiplier += cfg.auxiliary_bonus_bps
        if stake.total_staked > 0 and stake.age(now) >= cfg.long_term_seconds:
            multiplier += cfg.long_term_bonus_bps
        if stake.auto_compound:
            multiplier += cfg.auto_compound_bonus_bps
        multiplier += resolve_tier(self.ladder, stake.total_staked).bonus_bps
        return multiplier

    def _schedule(self, amount: int, now: int, recycled: int = 0):
        """
        Start a new distribution window carrying *amount* fresh reward tokens
        plus *recycled* tokens already held (forfeited yield).
        """
        self._update_pool(now)
        pool = self._pool
        pool.reward_balance += amount
        pool.undistributed += amount + recycled
        pool.total_added += amount
        pool.reward_rate = pool.undistributed // self.config.reward_window_seconds
        pool.last_update = now
        pool.period_finish = now + self.config.reward_window_seconds
        logger.info(
            f"Reward window reset: +{amount} (recycled {recycled}), "
            f"rate={pool.reward_rate}/s until {pool.period_finish}"
        )

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _require_stake(self, owner: str) -> Stake:
        stake = self._stakes.get(owner)
        if stake is None:
            raise InvalidStateError(f"{owner} has no stake")
        return stake

    def _open_stake(self, owner: str, now: int) -> Stake:
        stake = self._stakes.get(owner)
        if stake is None:
            stake = Stake(
                owner=owner,
                start_time=now,
                last_accrual_time=now,
                reward_checkpoint=self._pool.reward_per_unit,
            )
            self._stakes[owner] = stake
        return stake

    def _relock(self, stake: Stake, now: int):
        if stake.is_empty:
            # A fully withdrawn position starts a new holding period
            stake.start_time = now
        stake.lock_state = LockState.LOCKED
        stake.unlock_time = 0

    def _accounted_holdings(self) -> int:
        held = self._pool.total_principal + self._pool.reward_balance
        if self.aux_ledger is self.ledger:
            held += self._pool.total_auxiliary + self._pool.withheld_auxiliary
        return held

    # =========================================================================
    # STAKE OPERATIONS
    # =========================================================================

    @atomic
    def stake_principal(self, caller: str, amount: int, auto_compound: bool = False) -> Stake:
        """
        Stake governance tokens.

        Raises:
            BelowMinimumError: amount below `min_stake`
            CapacityExceededError: pool capacity would be exceeded
        """
        if amount < self.config.min_stake:
            raise BelowMinimumError(f"Stake {amount} below minimum {self.config.min_stake}")
        if self._pool.total_principal + amount > self.config.pool_capacity:
            raise CapacityExceededError(
                f"Pool capacity {self.config.pool_capacity} exceeded "
                f"({self._pool.total_principal} + {amount})"
            )
        now = self.now()
        stake = self._open_stake(caller, now)
        self._checkpoint(stake, now)
        if stake.lock_state != LockState.LOCKED or stake.is_empty:
            self._relock(stake, now)
        stake.principal += amount
        stake.auto_compound = auto_compound
        self._pool.total_principal += amount
        self._reweight(stake, now)

        self._collect(caller, amount)
        logger.info(f"Stake: {caller} +{amount} principal (autoCompound={auto_compound})")
        return dataclasses.replace(stake)

    @atomic
    def stake_auxiliary(self, caller: str, amount: int) -> Stake:
        """
        Stake auxiliary (LP) tokens, which earn the auxiliary bonus.

        Raises:
            BelowMinimumError: amount below `min_auxiliary_stake`
            CapacityExceededError: `auxiliary_capacity` would be exceeded
        """
        if amount < self.config.min_auxiliary_stake:
            raise BelowMinimumError(
                f"Auxiliary stake {amount} below minimum {self.config.min_auxiliary_stake}"
            )
        if self._pool.total_auxiliary + amount > self.config.auxiliary_capacity:
            raise CapacityExceededError(
                f"Auxiliary capacity {self.config.auxiliary_capacity} exceeded "
                f"({self._pool.total_auxiliary} + {amount})"
            )
        now = self.now()
        stake = self._open_stake(caller, now)
        self._checkpoint(stake, now)
        if stake.lock_state != LockState.LOCKED or stake.is_empty:
            self._relock(stake, now)
        stake.auxiliary += amount
        self._pool.total_auxiliary += amount
        self._reweight(stake, now)

        self._collect(caller, amount, ledger=self.aux_ledger)
        logger.info(f"Stake: {caller} +{amount} auxiliary")
        return dataclasses.replace(stake)

    @atomic
    def request_unlock(self, caller: str) -> int:
        """Start the unlock delay. Returns the earliest unstake time."""
        stake = self._require_stake(caller)
        if stake.lock_state != LockState.LOCKED or stake.is_empty:
            raise InvalidStateError(f"Stake of {caller} is not locked")
        now = self.now()
        held = stake.age(now)
        if held < self.config.min_hold_seconds:
            raise InvalidStateError(
                f"Minimum holding period not reached ({held}s < {self.config.min_hold_seconds}s)"
            )
        self._checkpoint(stake, now)
        stake.lock_state = LockState.UNLOCKING
        stake.unlock_time = now + self.config.unlock_delay_seconds
        self._reweight(stake, now)
        logger.info(f"Unlock requested by {caller}, eligible at {stake.unlock_time}")
        return stake.unlock_time

    @atomic
    def unstake(self, caller: str, amount: int, auxiliary: int = 0) -> Stake:
        """
        Withdraw principal (and optionally auxiliary) after the unlock delay.

        Any remainder is re-locked.
        """
        stake = self._require_stake(caller)
        if stake.lock_state != LockState.UNLOCKING:
            raise InvalidStateError(f"No unlock pending for {caller}")
        now = self.now()
        if now < stake.unlock_time:
            raise InvalidStateError(
                f"Unlock delay not elapsed ({stake.unlock_time - now}s remaining)"
            )
        if amount < 0 or auxiliary < 0 or amount + auxiliary == 0:
            raise InvalidInputError("Unstake amount must be positive")
        if amount > stake.principal:
            raise InsufficientFundsError(f"Unstake {amount} exceeds principal {stake.principal}")
        if auxiliary > stake.auxiliary:
            raise InsufficientFundsError(
                f"Unstake {auxiliary} exceeds auxiliary stake {stake.auxiliary}"
            )

        self._checkpoint(stake, now, allow_compound=False)
        stake.principal -= amount
        stake.auxiliary -= auxiliary
        self._pool.total_principal -= amount
        self._pool.total_auxiliary -= auxiliary
        stake.unlock_time = 0
        stake.lock_state = LockState.UNLOCKED if stake.is_empty else LockState.LOCKED
        self._reweight(stake, now)

        self._pay(caller, amount)
        self._pay(caller, auxiliary, ledger=self.aux_ledger)
        logger.info(
            f"Unstake: {caller} -{amount} principal -{auxiliary} auxiliary "
            f"→ {stake.lock_state.name}"
        )
        return dataclasses.replace(stake)

    @atomic
    def claim_yield(self, caller: str) -> int:
        stake = self._require_stake(caller)
        now = self.now()
        self._checkpoint(stake, now, allow_compound=False)
        reward = stake.accrued
        if reward == 0:
            raise InvalidStateError(f"Nothing to claim for {caller}")
        self._draw_rewards(reward)
        stake.accrued = 0
        stake.claimed_total += reward
        self._reweight(stake, now)

        self._pay(caller, reward)
        logger.info(f"Claim: {caller} received {reward}")
        return reward

    @atomic
    def compound(self, caller: str) -> int:
        stake = self._require_stake(caller)
        now = self.now()
        self._checkpoint(stake, now, allow_compound=False)
        reward = stake.accrued
        if reward == 0:
            raise InvalidStateError(f"Nothing to compound for {caller}")
        if self._pool.total_principal + reward > self.config.pool_capacity:
            raise CapacityExceededError("Compounding would exceed pool capacity")
        self._fold_into_principal(stake, reward)
        self._reweight(stake, now)
        logger.info(f"Compound: {caller} +{reward} principal")
        return reward

    @atomic
    def penalty_exit(self, caller: str) -> Dict[str, int]:
        """
        Leave immediately, skipping the unlock path.

        The principal fee and any unclaimed yield return to the reward pool;
        the auxiliary fee is withheld. The stake record is removed.
        """
        stake = self._require_stake(caller)
        if stake.is_empty:
            raise InvalidStateError(f"Stake of {caller} is empty")
        now = self.now()
        self._checkpoint(stake, now, allow_compound=False)

        fee_bps = self.config.penalty_fee_bps
        principal_fee = stake.principal * fee_bps // BPS_DENOMINATOR
        auxiliary_fee = stake.auxiliary * fee_bps // BPS_DENOMINATOR
        principal_out = stake.principal - principal_fee
        auxiliary_out = stake.auxiliary - auxiliary_fee
        forfeited = stake.accrued

        pool = self._pool
        pool.total_principal -= stake.principal
        pool.total_auxiliary -= stake.auxiliary
        pool.total_effective -= stake.effective_balance
        pool.withheld_auxiliary += auxiliary_fee
        del self._stakes[caller]

        # The fee leaves principal and joins the reward pool
        if principal_fee or forfeited:
            self._schedule(principal_fee, now, recycled=forfeited)

        self._pay(caller, principal_out)
        self._pay(caller, auxiliary_out, ledger=self.aux_ledger)
        logger.warning(
            f"Penalty exit: {caller} paid {principal_fee}+{auxiliary_fee} fees, "
            f"forfeited {forfeited} yield"
        )
        return {
            "principal": principal_out,
            "auxiliary": auxiliary_out,
            "principalFee": principal_fee,
            "auxiliaryFee": auxiliary_fee,
            "forfeitedYield": forfeited,
        }

    # =========================================================================
    # REWARD FUNDING
    # =========================================================================

    @atomic
    def add_rewards(self, caller: str, amount: int):
        """Pull *amount* from *caller* into the reward pool (REWARDS_MANAGER_ROLE)."""
        self.host.require_role(REWARDS_MANAGER_ROLE, caller)
        if amount <= 0:
            raise InvalidInputError("Reward amount must be positive")
        self._schedule(amount, self.now())
        self._collect(caller, amount)

    @atomic
    def notify_reward(self, caller: str, amount: int):
        """
        Account for *amount* already transferred to this engine's account
        (REWARDS_MANAGER_ROLE).
        """
        self.host.require_role(REWARDS_MANAGER_ROLE, caller)
        if amount <= 0:
            raise InvalidInputError("Reward amount must be positive")
        held = self.ledger.balance_of(self.account)
        if held < self._accounted_holdings() + amount:
            raise InsufficientFundsError(
                f"Staking account holds {held}, expected at least "
                f"{self._accounted_holdings() + amount}"
            )
        self._schedule(amount, self.now())

    # =========================================================================
    # QUERIES
    # =========================================================================

    def effective_voting_weight(self, owner: str) -> int:
        stake = self._stakes.get(owner)
        if stake is None:
            return 0
        return stake.voting_weight(self.config.aux_voting_weight_bps)

    def pending_yield(self, owner: str) -> int:
        stake = self._stakes.get(owner)
        if stake is None:
            return 0
        return self._earned(stake, self._reward_per_unit(self.now()))

    def rate_multiplier_bps(self, owner: str) -> int:
        stake = self._stakes.get(owner)
        if stake is None:
            return 0
        return self._multiplier(stake, self.now())

    def tier_of(self, owner: str) -> Tier:
        stake = self._stakes.get(owner)
        return resolve_tier(self.ladder, stake.total_staked if stake else 0)

    def tier_for_amount(self, amount: int) -> Tier:
        return resolve_tier(self.ladder, amount)

    def get_stake(self, owner: str) -> Optional[Stake]:
        stake = self._stakes.get(owner)
        return dataclasses.replace(stake) if stake else None

    def stakers(self):
        return list(self._stakes)

    @property
    def total_principal(self) -> int:
        return self._pool.total_principal

    @property
    def total_auxiliary(self) -> int:
        return self._pool.total_auxiliary

    @property
    def total_effective(self) -> int:
        return self._pool.total_effective

    @property
    def reward_pool(self) -> int:
        return self._pool.reward_balance

    @property
    def reward_rate(self) -> int:
        return self._pool.reward_rate

    @property
    def period_finish(self) -> int:
        return self._pool.period_finish

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account": self.account,
            "stakers": len(self._stakes),
            "pool": self._pool.to_dict(),
            "tiers": tiers_to_list(self.ladder),
        }

    def __repr__(self) -> str:
        return (
            f"<StakingEngine stakers={len(self._stakes)} "
            f"principal={self._pool.total_principal} pool={self._pool.reward_balance}>"
        )
