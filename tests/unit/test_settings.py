"""
Validation of the centralized configuration used by every DriftFix component.
"""
import pytest
from pydantic import ValidationError

from driftfix.config import constants
from driftfix.config.settings import (
    DetectionSettings,
    GenerationSettings,
    MonitoringSettings,
    StorageSettings,
    ValidationSettings,
    get_settings,
    reset_settings,
)
from driftfix.detection.divergence import FeatureDivergenceAnalyzer
from driftfix.patching.validator import PatchValidator


@pytest.mark.unit
class TestCentralizedConfiguration:
    """Test centralized configuration system across all modules"""

    def test_config_loading(self):
        """Test that centralized config loads correctly"""
        settings = get_settings()

        assert hasattr(settings, "detection")
        assert hasattr(settings, "classification")
        assert hasattr(settings, "generation")
        assert hasattr(settings, "validation")
        assert hasattr(settings, "storage")
        assert hasattr(settings, "monitoring")

    def test_defaults(self):
        settings = get_settings()

        assert settings.detection.n_bins == constants.DEFAULT_N_BINS
        assert settings.detection.psi_threshold == pytest.approx(0.2)
        assert settings.classification.drift_threshold == pytest.approx(0.2)
        assert settings.validation.safety_threshold == pytest.approx(0.4)
        assert settings.validation.reduction_threshold == pytest.approx(0.15)
        assert settings.storage.backend == "memory"

    def test_singleton(self):
        assert get_settings() is get_settings()

    def test_reset_rereads_environment(self, monkeypatch):
        first = get_settings()
        monkeypatch.setenv("DRIFTFIX_DETECTION_PSI_THRESHOLD", "0.35")

        reset_settings()
        second = get_settings()

        assert second is not first
        assert second.detection.psi_threshold == pytest.approx(0.35)

    def test_environment_prefixes(self, monkeypatch):
        """Each settings group reads its own environment prefix."""
        monkeypatch.setenv("DRIFTFIX_VALIDATION_SAFETY_THRESHOLD", "0.5")
        monkeypatch.setenv("DRIFTFIX_GENERATION_CLIP_SOURCE", "REFERENCE")
        monkeypatch.setenv("DRIFTFIX_STORAGE_BACKEND", "sql")
        monkeypatch.setenv("DRIFTFIX_MONITORING_LOG_LEVEL", "debug")

        assert ValidationSettings().safety_threshold == pytest.approx(0.5)
        assert GenerationSettings().clip_source == "reference"
        assert StorageSettings().backend == "sql"
        assert MonitoringSettings().log_level == "DEBUG"

    def test_components_use_global_settings(self, monkeypatch):
        monkeypatch.setenv("DRIFTFIX_DETECTION_MIN_SAMPLES", "50")
        monkeypatch.setenv("DRIFTFIX_VALIDATION_RANDOM_SEED", "7")

        assert FeatureDivergenceAnalyzer().settings.min_samples == 50
        assert PatchValidator().settings.random_seed == 7

    @pytest.mark.parametrize(
        "factory",
        [
            lambda: DetectionSettings(binning_strategy="kmeans"),
            lambda: DetectionSettings(n_bins=1),
            lambda: GenerationSettings(clip_source="median"),
            lambda: StorageSettings(backend="redis"),
            lambda: MonitoringSettings(log_level="LOUD"),
            lambda: ValidationSettings(borderline_safety_floor=0.5, safety_threshold=0.4),
            lambda: ValidationSettings(predict_timeout_seconds=0),
        ],
    )
    def test_invalid_values_rejected(self, factory):
        with pytest.raises(ValidationError):
            factory()
