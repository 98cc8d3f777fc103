"""
DriftFix: drift detection, patch synthesis, validation and reversible
application for deployed models.
"""

__version__ = "0.1.0"
__author__ = "DriftFix ML Team"
