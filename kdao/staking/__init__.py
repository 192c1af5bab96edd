"""
KDAO Staking

Provides:
  - LockState / Stake / Tier                     (positions.py)
  - RewardPool / StakingEngine                   (engine.py)
"""

from .positions import (
    LockState,
    Stake,
    Tier,
    build_ladder,
    resolve_tier,
)
from .engine import (
    RewardPool,
    StakingEngine,
)

__all__ = [
    # Positions
    "LockState",
    "Stake",
    "Tier",
    "build_ladder",
    "resolve_tier",
    # Engine
    "RewardPool",
    "StakingEngine",
]
