"""
In-process wiring of the four engines.

`deploy_dao` builds staking, treasury, governance and elections on one host,
grants the roles they need from each other, tops up the staking reward pool
and records the opening quarterly allocation.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from .config import DAOConfig
from .constants import (
    AUDITOR_ROLE,
    EXECUTOR_ROLE,
    GOVERNANCE_ROLE,
    GUARDIAN_ROLE,
    REWARDS_MANAGER_ROLE,
    UNIT,
)
from .elections import ElectionEngine
from .exceptions import ConfigurationError, KDAOError
from .governance import GovernanceEngine
from .host import Host
from .ledger import ValueLedger
from .logger import get_logger
from .staking import StakingEngine
from .treasury import TreasuryEngine

logger = get_logger(__name__)

DEFAULT_ACCOUNTS = {
    "staking": "kdao:staking",
    "treasury": "kdao:treasury",
    "governance": "kdao:governance",
    "elections": "kdao:elections",
}

# Opening plan for 2025 Q4 (200,000 KDAO)
INITIAL_ALLOCATION = {
    "year": 2025,
    "quarter": 4,
    "utility": 80_000 * UNIT,
    "token": 20_000 * UNIT,
    "education": 40_000 * UNIT,
    "marketing": 60_000 * UNIT,
    "infrastructure": 0,
}


@dataclass
class DAOSystem:
    """The wired engines plus the host they share."""
    host: Host
    admin: str
    staking: StakingEngine
    treasury: TreasuryEngine
    governance: GovernanceEngine
    elections: ElectionEngine
    config: DAOConfig

    def to_dict(self) -> Dict[str, Any]:
        return {
            "admin": self.admin,
            "host": self.host.to_dict(),
            "staking": self.staking.to_dict(),
            "treasury": self.treasury.to_dict(),
            "governance": self.governance.to_dict(),
            "elections": self.elections.to_dict(),
            "config": self.config.to_dict(),
        }


def deploy_dao(
    host: Host,
    admin: str,
    config: Optional[DAOConfig] = None,
    accounts: Optional[Dict[str, str]] = None,
    aux_ledger: Optional[ValueLedger] = None,
    initial_allocation: Optional[Dict[str, int]] = None,
) -> DAOSystem:
    """
    Build and wire the DAO.

    Args:
        host: Shared host; its access control must support ``grant_role``
        admin: Holder of DEFAULT_ADMIN_ROLE, receives the operator roles
        config: Engine parameters (defaults when omitted)
        accounts: Ledger accounts per engine (see DEFAULT_ACCOUNTS)
        aux_ledger: Ledger of the auxiliary staking asset
        initial_allocation: Quarterly plan to record; INITIAL_ALLOCATION by default

    The initial reward top-up is best effort: if the admin cannot fund it the
    failure is logged and deployment continues.
    """
    config = config or DAOConfig()
    config.validate()
    accounts = {**DEFAULT_ACCOUNTS, **(accounts or {})}
    grant = getattr(host.access, "grant_role", None)
    if grant is None:
        raise ConfigurationError(f"{type(host.access).__name__} cannot grant roles")

    logger.info("Deploying KDAO engines...")
    staking = StakingEngine(host, accounts["staking"], config.staking, aux_ledger=aux_ledger)
    treasury = TreasuryEngine(host, accounts["treasury"], staking, config.treasury)
    governance = GovernanceEngine(host, accounts["governance"], staking, treasury, config.governance)
    elections = ElectionEngine(
        host, accounts["elections"], staking, config.elections, delegation=governance
    )

    # Cross-engine permissions
    grant(admin, GOVERNANCE_ROLE, governance.account)
    grant(admin, EXECUTOR_ROLE, treasury.account)
    grant(admin, REWARDS_MANAGER_ROLE, treasury.account)
    # Operator roles
    for role in (GOVERNANCE_ROLE, GUARDIAN_ROLE, EXECUTOR_ROLE, AUDITOR_ROLE, REWARDS_MANAGER_ROLE):
        grant(admin, role, admin)
    logger.info(f"Roles granted: governance → treasury/elections, treasury → staking rewards, admin {admin}")

    system = DAOSystem(host, admin, staking, treasury, governance, elections, config)

    if config.initial_rewards > 0:
        _seed_rewards(system, config.initial_rewards)

    allocation = treasury.set_quarterly_allocation(admin, **(initial_allocation or INITIAL_ALLOCATION))
    logger.info(f"Allocation {allocation.year} Q{allocation.quarter} recorded ({allocation.total})")
    return system


def _seed_rewards(system: DAOSystem, amount: int):
    ledger = system.host.ledger
    approve = getattr(ledger, "approve", None)
    try:
        if approve is not None:
            approve(system.admin, system.staking.account, amount)
        system.staking.add_rewards(system.admin, amount)
    except KDAOError as e:
        logger.warning(f"Could not add initial rewards ({amount}): {e}")
    else:
        logger.info(f"Added {amount} to the staking reward pool")
