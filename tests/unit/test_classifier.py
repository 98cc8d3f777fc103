"""Unit tests for DriftClassifier."""

import numpy as np
import pytest

from driftfix.config.settings import ClassificationSettings
from driftfix.detection.classifier import DriftClassifier, analyze_drift
from driftfix.models.drift import DriftSeverity, DriftType
from driftfix.utils.exceptions import IncompatibleSchemaError


@pytest.mark.unit
class TestDriftClassifier:
    """Test suite for DriftClassifier class."""

    def test_no_drifted_features(self, classifier, make_metric):
        """Quiet metrics give a low score and no detection."""
        result = classifier.classify([make_metric(i) for i in range(5)])

        assert not result.is_drift_detected
        assert result.overall_score == pytest.approx(0.01)
        assert result.drifted_feature_indices == frozenset()
        assert result.drift_type is DriftType.PRIOR_DRIFT

    def test_single_drifted_feature_is_prior_drift(self, classifier, make_metric):
        """One drifted feature out of twenty is prior drift and still detected."""
        metrics = [make_metric(0, psi=3.0, drifted=True)] + [make_metric(i) for i in range(1, 20)]

        result = classifier.classify(metrics)

        assert result.drift_type is DriftType.PRIOR_DRIFT
        assert result.is_drift_detected
        assert result.drifted_feature_indices == frozenset({0})
        assert result.drifted_ratio == pytest.approx(0.05)

    def test_localized_detection_can_be_disabled(self, make_metric):
        """Without localized detection only the overall score counts."""
        classifier = DriftClassifier(ClassificationSettings(localized_drift_detection=False))
        metrics = [make_metric(0, psi=3.0, drifted=True)] + [make_metric(i) for i in range(1, 20)]

        result = classifier.classify(metrics)

        assert result.overall_score < 0.2
        assert not result.is_drift_detected

    def test_heterogeneous_psi_is_concept_drift(self, classifier, make_metric):
        """A quarter of features drifting with uneven PSI is concept drift."""
        metrics = [make_metric(0, psi=0.9, drifted=True)] + [make_metric(i, psi=0.02) for i in range(1, 4)]

        result = classifier.classify(metrics)

        assert result.drift_type is DriftType.CONCEPT_DRIFT

    def test_scale_shift_dominated_is_concept_drift(self, classifier, make_metric):
        """Homogeneous PSI but std shifts dominating mean shifts is concept drift."""
        metrics = [
            make_metric(0, psi=0.5, mean_shift=0.1, std_shift=1.0, drifted=True),
            make_metric(1, psi=0.5, mean_shift=0.1, std_shift=1.0, drifted=True),
            make_metric(2, psi=0.3),
            make_metric(3, psi=0.3),
        ]

        result = classifier.classify(metrics)

        assert result.drift_type is DriftType.CONCEPT_DRIFT

    def test_location_shift_in_middle_band_is_covariate(self, classifier, make_metric):
        metrics = [
            make_metric(0, psi=0.5, mean_shift=2.0, std_shift=0.1, drifted=True),
            make_metric(1, psi=0.5, mean_shift=2.0, std_shift=0.1, drifted=True),
            make_metric(2, psi=0.3),
            make_metric(3, psi=0.3),
        ]

        result = classifier.classify(metrics)

        assert result.drift_type is DriftType.COVARIATE_DRIFT

    def test_majority_drift_is_covariate(self, classifier, make_metric):
        """Most features drifting is covariate drift regardless of PSI spread."""
        metrics = [make_metric(i, psi=2.0 if i else 0.3, drifted=True) for i in range(4)] + [make_metric(4)]

        result = classifier.classify(metrics)

        assert result.drifted_ratio == pytest.approx(0.8)
        assert result.drift_type is DriftType.COVARIATE_DRIFT
        assert result.is_drift_detected

    def test_psi_saturates_at_one(self, classifier, make_metric):
        result = classifier.classify([make_metric(i, psi=50.0, drifted=True) for i in range(3)])

        assert result.overall_score == pytest.approx(1.0)
        assert result.severity is DriftSeverity.CRITICAL

    def test_feature_weights(self, classifier, make_metric):
        """Weights shift the overall score toward heavily used features."""
        metrics = [make_metric(0, psi=1.0, drifted=True), make_metric(1, psi=0.0)]

        uniform = classifier.classify(metrics)
        weighted = classifier.classify(metrics, feature_weights=[3.0, 1.0])
        zero = classifier.classify(metrics, feature_weights=[0.0, 0.0])

        assert uniform.overall_score == pytest.approx(0.5)
        assert weighted.overall_score == pytest.approx(0.75)
        assert zero.overall_score == pytest.approx(0.5)

    def test_wrong_weight_count_raises(self, classifier, make_metric):
        with pytest.raises(IncompatibleSchemaError):
            classifier.classify([make_metric(0), make_metric(1)], feature_weights=[1.0])

    def test_negative_weights_raise(self, classifier, make_metric):
        with pytest.raises(ValueError):
            classifier.classify([make_metric(0), make_metric(1)], feature_weights=[1.0, -1.0])

    def test_empty_metrics_raise(self, classifier):
        with pytest.raises(IncompatibleSchemaError):
            classifier.classify([])

    def test_attributions_sum_to_one(self, classifier, make_metric):
        result = classifier.classify([make_metric(0, psi=0.3), make_metric(1, psi=0.1)])

        assert sum(result.feature_attributions) == pytest.approx(1.0)
        assert result.feature_attributions[0] == pytest.approx(0.75)

    def test_custom_ratio_bands(self, make_metric):
        """Classification bands come from settings."""
        classifier = DriftClassifier(ClassificationSettings(prior_max_ratio=0.5, concept_max_ratio=0.9))
        metrics = [make_metric(0, psi=0.9, drifted=True)] + [make_metric(i, psi=0.02) for i in range(1, 4)]

        assert classifier.classify(metrics).drift_type is DriftType.PRIOR_DRIFT

    def test_invalid_band_order_rejected(self):
        with pytest.raises(ValueError):
            ClassificationSettings(prior_max_ratio=0.7, concept_max_ratio=0.6)

    def test_result_serialization(self, classifier, make_metric):
        result = classifier.classify([make_metric(0, psi=0.5, drifted=True), make_metric(1)])

        payload = result.to_dict()
        frame = result.to_frame()

        assert payload["drift_type"] == result.drift_type.value
        assert payload["drifted_feature_indices"] == [0]
        assert list(frame.index) == [0, 1]
        assert "attribution" in frame.columns


@pytest.mark.unit
class TestAnalyzeDrift:
    """Test suite for the analyze_drift convenience function."""

    def test_identical_inputs_give_equal_results(self, reference_data, shifted_data):
        """Re-analysis of the same data is idempotent."""
        first = analyze_drift(reference_data, shifted_data)
        second = analyze_drift(reference_data, shifted_data)

        assert first == second
        assert first.n_reference == 1000
        assert first.n_current == 1000

    def test_same_distribution_not_detected(self, reference_data, same_distribution_data):
        result = analyze_drift(reference_data, same_distribution_data)

        assert not result.is_drift_detected
        assert result.overall_score < 0.2

    def test_same_distribution_across_seeds(self):
        """Independent draws from one distribution stay quiet for almost every seed."""
        results = []
        for seed in range(20):
            rng = np.random.default_rng(1000 + seed)
            results.append(analyze_drift(rng.normal(0, 1, size=(1000, 5)), rng.normal(0, 1, size=(1000, 5))))

        assert all(r.overall_score < 0.2 for r in results)
        assert sum(r.is_drift_detected for r in results) <= 2

    def test_shift_all_features_is_covariate(self, reference_data, shifted_data):
        result = analyze_drift(reference_data, shifted_data)

        assert result.is_drift_detected
        assert result.drift_type is DriftType.COVARIATE_DRIFT
        assert result.drifted_feature_indices == frozenset(range(5))
        assert np.isclose(result.drifted_ratio, 1.0)


@pytest.mark.unit
class TestDriftSeverity:
    """Test suite for severity bands."""

    @pytest.mark.parametrize(
        "score,expected",
        [
            (0.05, DriftSeverity.MINIMAL),
            (0.15, DriftSeverity.LOW),
            (0.25, DriftSeverity.MODERATE),
            (0.35, DriftSeverity.HIGH),
            (0.8, DriftSeverity.CRITICAL),
        ],
    )
    def test_from_score(self, score, expected):
        assert DriftSeverity.from_score(score) is expected
