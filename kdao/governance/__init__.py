"""
KDAO Governance

Provides:
  - ProposalCategory / ProposalState / Proposal / Receipt / Vote  (proposals.py)
  - Delegation / VotingPowerMap                                    (voting.py)
  - GovernanceEngine                                               (engine.py)
"""

from .proposals import (
    Proposal,
    ProposalCategory,
    ProposalState,
    Receipt,
    Vote,
)
from .voting import (
    Delegation,
    VotingPowerMap,
)
from .engine import GovernanceEngine

__all__ = [
    # Proposals
    "Proposal",
    "ProposalCategory",
    "ProposalState",
    "Receipt",
    "Vote",
    # Delegation
    "Delegation",
    "VotingPowerMap",
    # Engine
    "GovernanceEngine",
]
