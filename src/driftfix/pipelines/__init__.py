"""Pipelines module."""

from .orchestrator import DriftFixOrchestrator, DriftFixResult, ModelJob

__all__ = ["DriftFixOrchestrator", "DriftFixResult", "ModelJob"]
