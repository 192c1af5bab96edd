"""
KDAO Unified Configuration

Loads the [dao] tables of config.toml.
Environment variables override TOML values.
"""

from .loader import (
    DAOConfig,
    ElectionConfig,
    GovernanceConfig,
    StakingConfig,
    TreasuryConfig,
    load_config,
)

__all__ = [
    "DAOConfig",
    "ElectionConfig",
    "GovernanceConfig",
    "StakingConfig",
    "TreasuryConfig",
    "load_config",
]
