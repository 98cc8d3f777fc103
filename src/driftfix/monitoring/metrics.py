"""
Prometheus metrics for drift analysis and patching.
"""

from typing import Optional

import structlog
from prometheus_client import Counter, Gauge, Histogram, start_http_server

from ..config.settings import MonitoringSettings, get_settings

logger = structlog.get_logger(__name__)

NAMESPACE = "driftfix"

# -----------------------------------------------------------------------------
# Drift Analysis Metrics
# -----------------------------------------------------------------------------

ANALYSES_TOTAL = Counter(
    f"{NAMESPACE}_analyses_total",
    "Total number of drift analyses",
    ["model_id", "status"],  # status: 'drift', 'no_drift', 'failed'
)

DRIFT_SCORE = Gauge(
    f"{NAMESPACE}_drift_score",
    "Overall drift score of the last analysis",
    ["model_id", "stage"],  # stage: 'original' or 'final'
)

ANALYSIS_DURATION_SECONDS = Histogram(
    f"{NAMESPACE}_analysis_duration_seconds",
    "Duration of a full analyze-patch-reanalyze run",
    ["model_id"],
)

# -----------------------------------------------------------------------------
# Patch Metrics
# -----------------------------------------------------------------------------

CANDIDATES_VALIDATED_TOTAL = Counter(
    f"{NAMESPACE}_candidates_validated_total",
    "Total number of validated patch candidates",
    ["patch_type", "outcome"],  # outcome: 'accepted', 'borderline', 'rejected'
)

PATCHES_APPLIED_TOTAL = Counter(
    f"{NAMESPACE}_patches_applied_total",
    "Total number of applied patches",
    ["model_id", "patch_type"],
)

ROLLBACKS_TOTAL = Counter(
    f"{NAMESPACE}_rollbacks_total",
    "Total number of rule set rollbacks",
    ["model_id", "status"],  # status: 'success' or 'failed'
)

RULESET_VERSION = Gauge(
    f"{NAMESPACE}_ruleset_version",
    "Active rule set version",
    ["model_id"],
)

PREDICT_FAILURES_TOTAL = Counter(
    f"{NAMESPACE}_predict_failures_total",
    "Predict calls that timed out, raised or returned invalid outputs",
)


def record_validation(result) -> None:
    """
    Count a validated candidate by outcome.

    Args:
        result: PatchValidationResult
    """
    if not result.accepted:
        outcome = "rejected"
    elif result.warnings:
        outcome = "borderline"
    else:
        outcome = "accepted"
    CANDIDATES_VALIDATED_TOTAL.labels(patch_type=result.patch_type.value, outcome=outcome).inc()


def record_patch_applied(model_id: str, patch_type: str, version: int) -> None:
    PATCHES_APPLIED_TOTAL.labels(model_id=model_id, patch_type=patch_type).inc()
    RULESET_VERSION.labels(model_id=model_id).set(version)


def record_rollback(model_id: str, success: bool, version: Optional[int] = None) -> None:
    ROLLBACKS_TOTAL.labels(model_id=model_id, status="success" if success else "failed").inc()
    if success and version is not None:
        RULESET_VERSION.labels(model_id=model_id).set(version)


def record_analysis(model_id: str, drift_detected: Optional[bool], stage: str = "original",
                    score: Optional[float] = None) -> None:
    """
    Record a drift analysis.

    Args:
        model_id: Model identifier
        drift_detected: Verdict, or None when the analysis failed
        stage: 'original' or 'final'
        score: Overall drift score
    """
    if drift_detected is None:
        status = "failed"
    else:
        status = "drift" if drift_detected else "no_drift"
    ANALYSES_TOTAL.labels(model_id=model_id, status=status).inc()
    if score is not None:
        DRIFT_SCORE.labels(model_id=model_id, stage=stage).set(score)


def start_metrics_server(settings: Optional[MonitoringSettings] = None) -> bool:
    """
    Start the Prometheus HTTP endpoint if enabled.

    Returns:
        True if the server was started
    """
    settings = settings or get_settings().monitoring
    if not settings.prometheus_enabled:
        logger.debug("prometheus_disabled")
        return False
    start_http_server(settings.prometheus_port)
    logger.info("prometheus_metrics_server_started", port=settings.prometheus_port)
    return True
