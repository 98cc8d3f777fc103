"""
Patching module.

Contains:
- PatchCandidateGenerator: proposes patches for a drift verdict
- PatchValidator: validates candidates on held-out data
- PatchEngine: applies, rolls back and executes patches per model
"""
from .generator import PatchCandidateGenerator
from .validator import DataSplit, PatchValidator, ValidationRun
from .engine import PatchEngine

__all__ = [
    "DataSplit",
    "PatchCandidateGenerator",
    "PatchEngine",
    "PatchValidator",
    "ValidationRun",
]
