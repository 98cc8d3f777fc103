"""
Configuration for DriftFix.
================================================================

Settings are grouped per component. Each group reads its own environment
prefix, and ``GlobalSettings`` aggregates them and also reads ``.env``.

Usage:
    from driftfix.config.settings import get_settings

    settings = get_settings()
    threshold = settings.detection.psi_threshold
"""

from typing import Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from . import constants

load_dotenv()


class DetectionSettings(BaseSettings):
    """Per-feature divergence settings"""

    n_bins: int = Field(default=constants.DEFAULT_N_BINS, ge=2, description="Number of PSI bins")
    psi_epsilon: float = Field(default=constants.PSI_EPSILON, gt=0, description="Floor for empty bins")
    psi_threshold: float = Field(default=constants.PSI_DRIFT_THRESHOLD, ge=0, description="PSI drift threshold")
    ks_statistic_threshold: float = Field(
        default=constants.KS_STATISTIC_THRESHOLD, ge=0, le=1, description="KS D threshold"
    )
    ks_alpha: float = Field(default=constants.KS_ALPHA, gt=0, lt=1, description="KS significance level")
    min_samples: int = Field(default=constants.MIN_SAMPLES, ge=1, description="Minimum rows per sample")
    binning_strategy: str = Field(default="quantile", description="PSI bin edges: quantile or uniform")

    @field_validator("binning_strategy")
    @classmethod
    def validate_binning_strategy(cls, v):
        """Validate binning strategy."""
        if v.lower() not in ("quantile", "uniform"):
            raise ValueError("binning_strategy must be 'quantile' or 'uniform'")
        return v.lower()

    class Config:
        env_prefix = "DRIFTFIX_DETECTION_"


class ClassificationSettings(BaseSettings):
    """Drift scoring and classification settings"""

    drift_threshold: float = Field(
        default=constants.DRIFT_SCORE_THRESHOLD, ge=0, le=1, description="Overall score threshold"
    )
    psi_saturation: float = Field(default=constants.PSI_SATURATION, gt=0, description="PSI normalizer")
    prior_max_ratio: float = Field(default=constants.PRIOR_MAX_DRIFTED_RATIO, ge=0, le=1)
    concept_max_ratio: float = Field(default=constants.CONCEPT_MAX_DRIFTED_RATIO, ge=0, le=1)
    psi_cv_threshold: float = Field(default=constants.PSI_CV_THRESHOLD, ge=0)
    shape_location_ratio: float = Field(default=constants.SHAPE_LOCATION_RATIO, gt=0)
    localized_drift_detection: bool = Field(
        default=True, description="Report drift when any single feature drifts"
    )

    @model_validator(mode="after")
    def validate_ratio_order(self):
        """Validate ratio bands."""
        if self.prior_max_ratio > self.concept_max_ratio:
            raise ValueError("prior_max_ratio must not exceed concept_max_ratio")
        return self

    class Config:
        env_prefix = "DRIFTFIX_CLASSIFIER_"


class GenerationSettings(BaseSettings):
    """Patch candidate generation settings"""

    normalization_reduction: float = Field(default=constants.EXPECTED_REDUCTION_NORMALIZATION, ge=0, le=1)
    reweighting_reduction: float = Field(default=constants.EXPECTED_REDUCTION_REWEIGHTING, ge=0, le=1)
    clipping_reduction: float = Field(default=constants.EXPECTED_REDUCTION_CLIPPING, ge=0, le=1)
    threshold_reduction: float = Field(default=constants.EXPECTED_REDUCTION_THRESHOLD, ge=0, le=1)
    model_update_reduction: float = Field(default=constants.EXPECTED_REDUCTION_MODEL_UPDATE, ge=0, le=1)
    clip_lower_percentile: float = Field(default=constants.CLIP_LOWER_PERCENTILE, ge=0, le=100)
    clip_upper_percentile: float = Field(default=constants.CLIP_UPPER_PERCENTILE, ge=0, le=100)
    emergency_lower_percentile: float = Field(default=constants.EMERGENCY_CLIP_LOWER_PERCENTILE, ge=0, le=100)
    emergency_upper_percentile: float = Field(default=constants.EMERGENCY_CLIP_UPPER_PERCENTILE, ge=0, le=100)
    emergency_score: float = Field(default=constants.EMERGENCY_DRIFT_SCORE, ge=0, le=1)
    clip_source: str = Field(default="current", description="Percentile source: current or reference")
    threshold_delta_scale: float = Field(default=constants.THRESHOLD_DELTA_SCALE, ge=0)
    base_decision_threshold: float = Field(default=constants.BASE_DECISION_THRESHOLD)
    epsilon: float = Field(default=constants.PSI_EPSILON, gt=0)

    @field_validator("clip_source")
    @classmethod
    def validate_clip_source(cls, v):
        """Validate clipping percentile source."""
        if v.lower() not in ("current", "reference"):
            raise ValueError("clip_source must be 'current' or 'reference'")
        return v.lower()

    class Config:
        env_prefix = "DRIFTFIX_GENERATION_"


class ValidationSettings(BaseSettings):
    """Patch validation settings"""

    large_dataset_size: int = Field(default=constants.LARGE_DATASET_SIZE, ge=1)
    medium_dataset_size: int = Field(default=constants.MEDIUM_DATASET_SIZE, ge=1)
    large_fraction: float = Field(default=constants.LARGE_VALIDATION_FRACTION, gt=0, lt=1)
    medium_fraction: float = Field(default=constants.MEDIUM_VALIDATION_FRACTION, gt=0, lt=1)
    large_minimum: int = Field(default=constants.LARGE_VALIDATION_MINIMUM, ge=1)
    medium_minimum: int = Field(default=constants.MEDIUM_VALIDATION_MINIMUM, ge=1)
    min_validation_samples: int = Field(default=constants.MIN_VALIDATION_SAMPLES, ge=1)

    safety_threshold: float = Field(default=constants.SAFETY_THRESHOLD, ge=0, le=1)
    reduction_threshold: float = Field(default=constants.DRIFT_REDUCTION_THRESHOLD, ge=0, le=1)
    borderline_safety_floor: float = Field(default=constants.BORDERLINE_SAFETY_FLOOR, ge=0, le=1)
    borderline_reduction_floor: float = Field(default=constants.BORDERLINE_REDUCTION_FLOOR, ge=0, le=1)

    max_accuracy_delta: float = Field(default=constants.MAX_ACCURACY_DELTA, gt=0)
    balance_tolerance: float = Field(default=constants.BALANCE_TOLERANCE, gt=0)
    weight_accuracy: float = Field(default=constants.SAFETY_WEIGHT_ACCURACY, ge=0)
    weight_balance: float = Field(default=constants.SAFETY_WEIGHT_BALANCE, ge=0)
    weight_parameter_change: float = Field(default=constants.SAFETY_WEIGHT_PARAMETER_CHANGE, ge=0)
    threshold_change_scale: float = Field(default=constants.THRESHOLD_CHANGE_SCALE, gt=0)
    decision_threshold: float = Field(default=constants.BASE_DECISION_THRESHOLD)

    predict_timeout_seconds: float = Field(default=constants.PREDICT_TIMEOUT_SECONDS, gt=0)
    random_seed: int = Field(default=constants.RANDOM_SEED)

    @model_validator(mode="after")
    def validate_bands(self):
        """Borderline floors must sit below acceptance thresholds."""
        if self.borderline_safety_floor > self.safety_threshold:
            raise ValueError("borderline_safety_floor must not exceed safety_threshold")
        if self.borderline_reduction_floor > self.reduction_threshold:
            raise ValueError("borderline_reduction_floor must not exceed reduction_threshold")
        return self

    class Config:
        env_prefix = "DRIFTFIX_VALIDATION_"


class StorageSettings(BaseSettings):
    """Rule set persistence settings"""

    backend: str = Field(default="memory", description="memory or sql")
    database_url: str = Field(default="sqlite:///driftfix.db", description="SQLAlchemy URL")

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v):
        """Validate storage backend."""
        if v.lower() not in ("memory", "sql"):
            raise ValueError("backend must be 'memory' or 'sql'")
        return v.lower()

    class Config:
        env_prefix = "DRIFTFIX_STORAGE_"


class MonitoringSettings(BaseSettings):
    """Logging and metrics settings"""

    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="json", description="Log format (json/console)")
    prometheus_enabled: bool = Field(default=False, description="Expose Prometheus metrics")
    prometheus_port: int = Field(default=9095, description="Prometheus metrics port")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v.upper()

    class Config:
        env_prefix = "DRIFTFIX_MONITORING_"


class GlobalSettings(BaseSettings):
    """All DriftFix settings"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="allow"
    )

    environment: str = Field(default="development", description="Environment")

    detection: DetectionSettings = Field(default_factory=DetectionSettings)
    classification: ClassificationSettings = Field(default_factory=ClassificationSettings)
    generation: GenerationSettings = Field(default_factory=GenerationSettings)
    validation: ValidationSettings = Field(default_factory=ValidationSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)


# Global settings instance
_settings: Optional[GlobalSettings] = None


def get_settings() -> GlobalSettings:
    """Get global settings instance (singleton pattern)"""
    global _settings
    if _settings is None:
        _settings = GlobalSettings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None
