"""
KDAO TOML Configuration Loader

Loads the [dao.*] tables of a TOML file into per-engine dataclasses with
environment variable overrides (dataclass + from_dict + from_file, as in the
rest of the codebase).

Environment variable mapping:
    [dao.staking] min_stake             → KDAO_STAKING_MIN_STAKE
    [dao.governance] quorum_percentage  → KDAO_GOVERNANCE_QUORUM_PERCENTAGE
    [dao.treasury] insurance_bps        → KDAO_TREASURY_INSURANCE_BPS
    [dao.elections] term_seconds        → KDAO_ELECTIONS_TERM_SECONDS
    ...

Every integer field of every section can be overridden that way.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Tuple

try:
    import tomllib as tomli  # Python 3.11+
except ImportError:
    import tomli  # type: ignore[no-redef]

from .. import constants as C
from ..exceptions import ConfigurationError
from ..logger import get_logger

logger = get_logger(__name__)


def _apply_int_env(section, prefix: str) -> None:
    """Override every int field of *section* from ``{prefix}_{FIELD}``."""
    for f in fields(section):
        if f.type not in ("int", int):
            continue
        raw = os.environ.get(f"{prefix}_{f.name.upper()}")
        if raw is None:
            continue
        try:
            setattr(section, f.name, int(raw.replace("_", "")))
        except ValueError as e:
            raise ConfigurationError(f"{prefix}_{f.name.upper()}={raw!r} is not an integer") from e


def _pick(cls, data: Dict[str, Any]) -> Dict[str, Any]:
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        logger.warning(f"Ignoring unknown {cls.__name__} keys: {sorted(unknown)}")
    return {k: v for k, v in data.items() if k in known}


# -- Staking -----------------------------------------------------------

@dataclass
class StakingConfig:
    """[dao.staking] section."""
    min_stake: int = C.STAKING_MIN_STAKE
    pool_capacity: int = C.STAKING_POOL_CAPACITY
    min_auxiliary_stake: int = C.STAKING_MIN_AUXILIARY_STAKE
    auxiliary_capacity: int = C.STAKING_AUXILIARY_CAPACITY
    min_hold_seconds: int = C.STAKING_MIN_HOLD_SECONDS
    unlock_delay_seconds: int = C.STAKING_UNLOCK_DELAY_SECONDS
    long_term_seconds: int = C.STAKING_LONG_TERM_SECONDS
    reward_window_seconds: int = C.STAKING_REWARD_WINDOW_SECONDS
    penalty_fee_bps: int = C.STAKING_PENALTY_FEE_BPS
    base_multiplier_bps: int = C.STAKING_BASE_MULTIPLIER_BPS
    auxiliary_bonus_bps: int = C.STAKING_AUXILIARY_BONUS_BPS
    long_term_bonus_bps: int = C.STAKING_LONG_TERM_BONUS_BPS
    auto_compound_bonus_bps: int = C.STAKING_AUTO_COMPOUND_BONUS_BPS
    aux_voting_weight_bps: int = C.STAKING_AUX_VOTING_WEIGHT_BPS
    tier_ladder: List[Tuple[int, int, str, int]] = field(
        default_factory=lambda: [tuple(t) for t in C.STAKING_TIER_LADDER]
    )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StakingConfig":
        data = _pick(cls, data)
        if "tier_ladder" in data:
            data["tier_ladder"] = [
                (int(t[0]), int(t[1]), str(t[2]), int(t[3])) for t in data["tier_ladder"]
            ]
        return cls(**data)

    def apply_env(self) -> None:
        _apply_int_env(self, "KDAO_STAKING")

    def validate(self) -> bool:
        if self.min_stake <= 0:
            raise ConfigurationError("min_stake must be positive")
        if self.pool_capacity < self.min_stake:
            raise ConfigurationError("pool_capacity must be at least min_stake")
        if self.min_auxiliary_stake <= 0:
            raise ConfigurationError("min_auxiliary_stake must be positive")
        if self.auxiliary_capacity < self.min_auxiliary_stake:
            raise ConfigurationError("auxiliary_capacity must be at least min_auxiliary_stake")
        if self.reward_window_seconds <= 0:
            raise ConfigurationError("reward_window_seconds must be positive")
        if not 0 <= self.penalty_fee_bps <= C.BPS_DENOMINATOR:
            raise ConfigurationError("penalty_fee_bps must be within 0-10000")
        if self.base_multiplier_bps <= 0:
            raise ConfigurationError("base_multiplier_bps must be positive")
        if not 0 <= self.aux_voting_weight_bps <= C.BPS_DENOMINATOR:
            raise ConfigurationError("aux_voting_weight_bps must be within 0-10000")
        if not self.tier_ladder:
            raise ConfigurationError("tier_ladder cannot be empty")
        if min(t[0] for t in self.tier_ladder) != 0:
            raise ConfigurationError("tier_ladder needs a zero threshold entry")
        return True

    def to_dict(self) -> Dict[str, Any]:
        d = {f.name: getattr(self, f.name) for f in fields(self) if f.name != "tier_ladder"}
        d["tier_ladder"] = [list(t) for t in self.tier_ladder]
        return d


# -- Governance --------------------------------------------------------

@dataclass
class GovernanceConfig:
    """[dao.governance] section."""
    proposal_threshold: int = C.GOVERNANCE_PROPOSAL_THRESHOLD
    quorum_percentage: int = C.GOVERNANCE_QUORUM_PERCENTAGE
    voting_delay_seconds: int = C.GOVERNANCE_VOTING_DELAY_SECONDS
    voting_period_seconds: int = C.GOVERNANCE_VOTING_PERIOD_SECONDS
    timelock_seconds: int = C.GOVERNANCE_TIMELOCK_SECONDS

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GovernanceConfig":
        return cls(**_pick(cls, data))

    def apply_env(self) -> None:
        _apply_int_env(self, "KDAO_GOVERNANCE")

    def validate(self) -> bool:
        if self.proposal_threshold < 0:
            raise ConfigurationError("proposal_threshold cannot be negative")
        if not 0 < self.quorum_percentage <= 100:
            raise ConfigurationError("quorum_percentage must be within 1-100")
        if self.voting_delay_seconds < 1:
            raise ConfigurationError("voting_delay_seconds must be at least 1")
        if self.voting_period_seconds <= 0:
            raise ConfigurationError("voting_period_seconds must be positive")
        if self.timelock_seconds < 0:
            raise ConfigurationError("timelock_seconds cannot be negative")
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


# -- Treasury ----------------------------------------------------------

@dataclass
class TreasuryConfig:
    """[dao.treasury] section."""
    min_project_amount: int = C.TREASURY_MIN_PROJECT_AMOUNT
    max_project_amount: int = C.TREASURY_MAX_PROJECT_AMOUNT
    max_active_projects: int = C.TREASURY_MAX_ACTIVE_PROJECTS
    insurance_bps: int = C.TREASURY_INSURANCE_BPS
    repayment_period_seconds: int = C.TREASURY_REPAYMENT_PERIOD_SECONDS
    profit_to_stakers_pct: int = C.TREASURY_PROFIT_TO_STAKERS_PCT
    profit_to_treasury_pct: int = C.TREASURY_PROFIT_TO_TREASURY_PCT
    profit_to_restaking_pct: int = C.TREASURY_PROFIT_TO_RESTAKING_PCT

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TreasuryConfig":
        return cls(**_pick(cls, data))

    def apply_env(self) -> None:
        _apply_int_env(self, "KDAO_TREASURY")

    def validate(self) -> bool:
        if not 0 < self.min_project_amount <= self.max_project_amount:
            raise ConfigurationError("project amount bounds are inconsistent")
        if self.max_active_projects < 1:
            raise ConfigurationError("max_active_projects must be at least 1")
        if not 0 <= self.insurance_bps < C.BPS_DENOMINATOR:
            raise ConfigurationError("insurance_bps must be within 0-9999")
        split = (
            self.profit_to_stakers_pct
            + self.profit_to_treasury_pct
            + self.profit_to_restaking_pct
        )
        if split != 100:
            raise ConfigurationError(f"profit split must total 100%, got {split}%")
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


# -- Elections ---------------------------------------------------------

@dataclass
class ElectionConfig:
    """[dao.elections] section."""
    nomination_seconds: int = C.ELECTION_NOMINATION_SECONDS
    campaign_seconds: int = C.ELECTION_CAMPAIGN_SECONDS
    voting_seconds: int = C.ELECTION_VOTING_SECONDS
    term_seconds: int = C.ELECTION_TERM_SECONDS
    max_concurrent: int = C.ELECTION_MAX_CONCURRENT
    min_candidate_balance: int = C.ELECTION_MIN_CANDIDATE_BALANCE
    nomination_stake: int = C.ELECTION_NOMINATION_STAKE
    quorum_percentage: int = C.ELECTION_QUORUM_PERCENTAGE

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ElectionConfig":
        return cls(**_pick(cls, data))

    def apply_env(self) -> None:
        _apply_int_env(self, "KDAO_ELECTIONS")

    def validate(self) -> bool:
        for name in ("nomination_seconds", "campaign_seconds", "voting_seconds", "term_seconds"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive")
        if self.max_concurrent < 1:
            raise ConfigurationError("max_concurrent must be at least 1")
        if self.nomination_stake < 0 or self.min_candidate_balance < 0:
            raise ConfigurationError("candidate amounts cannot be negative")
        if not 0 < self.quorum_percentage <= 100:
            raise ConfigurationError("quorum_percentage must be within 1-100")
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


# -- Aggregate ---------------------------------------------------------

@dataclass
class DAOConfig:
    """
    Top-level configuration, loaded from the [dao] table.

    ``initial_rewards`` is the best-effort reward pool top-up made by
    `kdao.deployment.deploy_dao`.
    """
    staking: StakingConfig = field(default_factory=StakingConfig)
    governance: GovernanceConfig = field(default_factory=GovernanceConfig)
    treasury: TreasuryConfig = field(default_factory=TreasuryConfig)
    elections: ElectionConfig = field(default_factory=ElectionConfig)
    initial_rewards: int = C.DEPLOY_INITIAL_REWARDS

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DAOConfig":
        return cls(
            staking=StakingConfig.from_dict(data.get("staking", {})),
            governance=GovernanceConfig.from_dict(data.get("governance", {})),
            treasury=TreasuryConfig.from_dict(data.get("treasury", {})),
            elections=ElectionConfig.from_dict(data.get("elections", {})),
            initial_rewards=int(data.get("initial_rewards", C.DEPLOY_INITIAL_REWARDS)),
        )

    @classmethod
    def from_file(cls, config_path: str) -> "DAOConfig":
        """
        Load configuration from a TOML file and apply environment overrides.

        A missing file yields the defaults.
        """
        path = Path(config_path)
        if not path.exists():
            logger.warning(f"Config file {path} not found, using defaults")
            config = cls()
        else:
            with open(path, "rb") as f:
                config = cls.from_dict(tomli.load(f).get("dao", {}))
        config.apply_env()
        return config

    def apply_env(self) -> None:
        self.staking.apply_env()
        self.governance.apply_env()
        self.treasury.apply_env()
        self.elections.apply_env()
        if v := os.environ.get("KDAO_INITIAL_REWARDS"):
            self.initial_rewards = int(v.replace("_", ""))

    def validate(self) -> bool:
        self.staking.validate()
        self.governance.validate()
        self.treasury.validate()
        self.elections.validate()
        if self.initial_rewards < 0:
            raise ConfigurationError("initial_rewards cannot be negative")
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "staking": self.staking.to_dict(),
            "governance": self.governance.to_dict(),
            "treasury": self.treasury.to_dict(),
            "elections": self.elections.to_dict(),
            "initial_rewards": self.initial_rewards,
        }


def load_config(config_path: str = "config.toml") -> DAOConfig:
    """Load, override from the environment and validate."""
    config = DAOConfig.from_file(config_path)
    config.validate()
    return config
