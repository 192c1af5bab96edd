"""
KDAO Treasury

Provides:
  - ProjectStatus / FundingCategory / Milestone / Project / FundingAllocation  (projects.py)
  - TreasuryBooks / TreasuryEngine                                              (engine.py)
"""

from .projects import (
    FundingAllocation,
    FundingCategory,
    Milestone,
    Project,
    ProjectStatus,
)
from .engine import (
    TreasuryBooks,
    TreasuryEngine,
)

__all__ = [
    "FundingAllocation",
    "FundingCategory",
    "Milestone",
    "Project",
    "ProjectStatus",
    "TreasuryBooks",
    "TreasuryEngine",
]
