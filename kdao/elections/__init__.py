"""
KDAO Elections

Provides:
  - Position / ElectionPhase / Election / Candidate / Leadership  (models.py)
  - ElectionEngine                                               (engine.py)
"""

from .models import (
    Candidate,
    Election,
    ElectionPhase,
    Leadership,
    Position,
)
from .engine import ElectionEngine

__all__ = [
    "Candidate",
    "Election",
    "ElectionPhase",
    "Leadership",
    "Position",
    "ElectionEngine",
]
