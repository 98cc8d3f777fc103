"""
Drift detection module.

Contains:
- FeatureDivergenceAnalyzer: per-feature PSI, KS and shift statistics
- DriftClassifier: overall score and drift type
"""
from .divergence import FeatureDivergenceAnalyzer
from .classifier import DriftClassifier, analyze_drift

__all__ = [
    "FeatureDivergenceAnalyzer",
    "DriftClassifier",
    "analyze_drift",
]
