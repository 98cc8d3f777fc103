"""
Test configuration and fixtures for DriftFix tests.

This module provides pytest fixtures and configuration for all test modules.
"""

import numpy as np
import pytest

from driftfix.config.settings import (
    ClassificationSettings,
    DetectionSettings,
    GenerationSettings,
    GlobalSettings,
    StorageSettings,
    ValidationSettings,
    reset_settings,
)
from driftfix.detection.classifier import DriftClassifier
from driftfix.detection.divergence import FeatureDivergenceAnalyzer
from driftfix.models.drift import DriftResult, DriftType, FeatureDivergenceMetric
from driftfix.models.patch import (
    AppliedPatch,
    ClippingParameters,
    PatchCandidate,
    PatchPriority,
    PatchType,
    ReweightingParameters,
)


@pytest.fixture(autouse=True)
def clean_settings():
    """Drop cached global settings around each test."""
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def test_settings():
    """Global settings with defaults and in-memory storage."""
    return GlobalSettings(
        environment="test",
        detection=DetectionSettings(),
        classification=ClassificationSettings(),
        generation=GenerationSettings(),
        validation=ValidationSettings(),
        storage=StorageSettings(backend="memory"),
    )


@pytest.fixture
def analyzer():
    return FeatureDivergenceAnalyzer(DetectionSettings())


@pytest.fixture
def classifier():
    return DriftClassifier(ClassificationSettings())


@pytest.fixture
def reference_data():
    """1000 x 5 standard normal reference sample."""
    rng = np.random.default_rng(42)
    return rng.normal(0, 1, size=(1000, 5))


@pytest.fixture
def same_distribution_data():
    """Independent 1000 x 5 sample from the reference distribution."""
    rng = np.random.default_rng(43)
    return rng.normal(0, 1, size=(1000, 5))


@pytest.fixture
def shifted_data(same_distribution_data):
    """Every feature shifted by two standard deviations."""
    return same_distribution_data + 2.0


def _make_metric(index, psi=0.01, ks=0.02, p_value=0.9, mean_shift=0.01, std_shift=0.01, drifted=False):
    return FeatureDivergenceMetric(
        feature_index=index,
        psi_score=psi,
        ks_statistic=ks,
        p_value=p_value,
        mean_shift=mean_shift,
        std_shift=std_shift,
        is_drifted=drifted,
    )


def _make_drift_result(drift_type, psi_values, drifted, overall_score, detected=True):
    metrics = tuple(
        _make_metric(i, psi=psi, drifted=i in drifted) for i, psi in enumerate(psi_values)
    )
    return DriftResult(
        overall_score=overall_score,
        is_drift_detected=detected,
        drift_type=drift_type,
        per_feature=metrics,
        drifted_feature_indices=frozenset(drifted),
        drifted_ratio=len(drifted) / len(psi_values),
    )


def _make_clipping_patch(feature=0, lower=-1.0, upper=1.0):
    return AppliedPatch(
        candidate_id="clip",
        patch_type=PatchType.FEATURE_CLIPPING,
        priority=PatchPriority.PRIMARY,
        parameters=ClippingParameters((feature,), (lower,), (upper,)),
    )


def _make_reweighting_patch(feature=0, weight=0.5):
    return AppliedPatch(
        candidate_id="reweight",
        patch_type=PatchType.FEATURE_REWEIGHTING,
        priority=PatchPriority.PRIMARY,
        parameters=ReweightingParameters((feature,), (weight,)),
    )


def _make_candidate(parameters, expected=0.5, priority=PatchPriority.PRIMARY):
    return PatchCandidate(
        patch_type=parameters.patch_type,
        priority=priority,
        parameters=parameters,
        expected_drift_reduction=expected,
    )


@pytest.fixture
def covariate_result():
    return _make_drift_result(DriftType.COVARIATE_DRIFT, [0.8, 0.7, 0.9, 0.85, 0.75], {0, 1, 2, 3, 4}, 0.8)


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow running tests")
    config.addinivalue_line("markers", "database: Tests requiring database")


@pytest.fixture
def make_metric():
    """Factory for FeatureDivergenceMetric."""
    return _make_metric


@pytest.fixture
def make_drift_result():
    """Factory for DriftResult with given per-feature PSI."""
    return _make_drift_result


@pytest.fixture
def make_clipping_patch():
    return _make_clipping_patch


@pytest.fixture
def make_reweighting_patch():
    return _make_reweighting_patch


@pytest.fixture
def make_candidate():
    return _make_candidate
