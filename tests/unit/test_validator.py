"""Unit tests for PatchValidator."""

import time

import numpy as np
import pytest

from driftfix.config.settings import ValidationSettings
from driftfix.models.patch import (
    ClippingParameters,
    ModelUpdateParameters,
    NormalizationParameters,
    PatchType,
    ThresholdParameters,
)
from driftfix.patching.validator import PatchValidator
from driftfix.utils.exceptions import IncompatibleSchemaError, ValidationFailure


@pytest.fixture
def validator(analyzer, classifier):
    return PatchValidator(ValidationSettings(), analyzer, classifier)


def _normalization(reference, current):
    features = tuple(range(reference.shape[1]))
    return NormalizationParameters(
        feature_indices=features,
        current_means=tuple(current.mean(axis=0)),
        current_stds=tuple(current.std(axis=0)),
        reference_means=tuple(reference.mean(axis=0)),
        reference_stds=tuple(reference.std(axis=0)),
    )


@pytest.mark.unit
class TestDataSplit:
    """Test suite for the validation/application split."""

    @pytest.mark.parametrize(
        "n_samples,expected_validation",
        [(1000, 200), (100, 20), (120, 24)],
    )
    def test_large_dataset_split(self, validator, n_samples, expected_validation):
        split = validator.split(n_samples)

        assert not split.fast_track
        assert split.n_validation == expected_validation
        assert split.n_application == n_samples - expected_validation

    @pytest.mark.parametrize("n_samples", [99, 60, 50, 49, 30, 5])
    def test_small_and_medium_datasets_fast_track(self, validator, n_samples):
        """Held-out subsets below the validation minimum are fast-tracked."""
        split = validator.split(n_samples)

        assert split.fast_track
        assert split.n_validation == 0
        assert split.n_application == n_samples

    def test_medium_dataset_split_with_lower_minimum(self, analyzer, classifier):
        """The medium tier holds out 10% when the validation minimum allows it."""
        validator = PatchValidator(ValidationSettings(min_validation_samples=10), analyzer, classifier)

        split = validator.split(80)

        assert not split.fast_track
        assert split.n_validation == 10

    @pytest.mark.parametrize("n_samples", [100, 250, 1000, 5000])
    def test_subsets_are_disjoint_and_complete(self, validator, n_samples):
        split = validator.split(n_samples)

        validation = set(split.validation_indices.tolist())
        application = set(split.application_indices.tolist())
        assert validation.isdisjoint(application)
        assert validation | application == set(range(n_samples))

    def test_split_is_reproducible(self, validator):
        first = validator.split(500)
        second = validator.split(500)

        np.testing.assert_array_equal(first.validation_indices, second.validation_indices)


@pytest.mark.unit
class TestPatchValidator:
    """Test suite for PatchValidator class."""

    def test_normalization_accepted(self, validator, make_candidate, reference_data, shifted_data):
        """Re-standardizing shifted features measurably removes drift."""
        candidate = make_candidate(_normalization(reference_data, shifted_data), expected=0.7)

        run = validator.validate(reference_data, shifted_data, [candidate])

        result = run.results[0]
        assert result.accepted
        assert not result.approximate
        assert result.rejection_reason is None
        assert result.measured_drift_reduction > 0.15
        assert result.drift_score_after < result.drift_score_before
        assert result.safety_score > 0.4
        assert result.accuracy_delta == 0.0

    def test_model_update_without_effect_rejected(self, validator, make_candidate, reference_data, shifted_data):
        candidate = make_candidate(ModelUpdateParameters("v2"), expected=0.0)

        result = validator.validate(reference_data, shifted_data, [candidate]).results[0]

        assert not result.accepted
        assert result.measured_drift_reduction == pytest.approx(0.0)
        assert result.rejection_reason == "drift reduction 0.00 below threshold 0.10"
        with pytest.raises(ValidationFailure):
            result.raise_for_rejection()

    def test_results_keep_candidate_order(self, validator, make_candidate, reference_data, shifted_data):
        candidates = [
            make_candidate(ModelUpdateParameters("v2"), expected=0.0),
            make_candidate(_normalization(reference_data, shifted_data), expected=0.7),
        ]

        run = validator.validate(reference_data, shifted_data, candidates)

        assert [r.candidate_id for r in run.results] == [c.id for c in candidates]
        assert len(run.accepted) == 1
        assert len(run.rejected) == 1
        assert run.result_for(candidates[1].id).accepted

    def test_inputs_are_not_modified(self, validator, make_candidate, reference_data, shifted_data):
        before = shifted_data.copy()
        candidate = make_candidate(_normalization(reference_data, shifted_data))

        validator.validate(reference_data, shifted_data, [candidate])

        np.testing.assert_array_equal(shifted_data, before)

    def test_fast_track_is_approximate(self, validator, make_candidate, reference_data, shifted_data):
        """Small datasets use the expected reduction and are flagged approximate."""
        current = shifted_data[:30]
        candidate = make_candidate(_normalization(reference_data, current), expected=0.7)

        run = validator.validate(reference_data, current, [candidate])

        result = run.results[0]
        assert run.fast_track
        assert result.approximate
        assert result.measured_drift_reduction == pytest.approx(0.7)
        assert result.accepted

    def test_threshold_without_predictor_is_approximate(self, validator, make_candidate, reference_data, shifted_data):
        candidate = make_candidate(ThresholdParameters(delta=0.02), expected=0.35)

        result = validator.validate(reference_data, shifted_data, [candidate]).results[0]

        assert result.approximate
        assert result.measured_drift_reduction == pytest.approx(0.35)
        assert result.accepted

    def test_threshold_with_predictor_measures_output_drift(self, validator, make_candidate):
        """Shifting scores back toward the reference reduces output drift."""
        rng = np.random.default_rng(7)
        reference = rng.normal(0, 1, size=(1000, 2))
        current = rng.normal(0, 1, size=(1000, 2))
        current[:, 0] += 1.0

        def predict(matrix):
            return 1.0 / (1.0 + np.exp(-matrix[:, 0]))

        delta = float(predict(current).mean() - predict(reference).mean())
        candidate = make_candidate(ThresholdParameters(delta=delta), expected=0.35)

        result = validator.validate(reference, current, [candidate], predict=predict).results[0]

        assert not result.approximate
        assert result.drift_score_after < result.drift_score_before
        assert result.accuracy_confidence_interval is not None

    def test_harmless_predictor_keeps_accuracy(self, validator, make_candidate, reference_data, shifted_data):
        candidate = make_candidate(_normalization(reference_data, shifted_data), expected=0.7)

        def predict(matrix):
            return np.full(len(matrix), 0.9)

        result = validator.validate(reference_data, shifted_data, [candidate], predict=predict).results[0]

        assert result.accepted
        assert result.accuracy_delta == pytest.approx(0.0)
        lower, upper = result.accuracy_confidence_interval
        assert 0.9 < lower <= upper == pytest.approx(1.0)

    def test_accuracy_collapse_rejected(self, validator, make_candidate, reference_data, same_distribution_data):
        """A patch that flips most predictions fails the safety gate."""
        current = same_distribution_data + 3.0
        candidate = make_candidate(_normalization(reference_data, current), expected=0.7)

        def predict(matrix):
            return (matrix[:, 0] > 0).astype(float)

        result = validator.validate(reference_data, current, [candidate], predict=predict).results[0]

        assert not result.accepted
        assert result.accuracy_delta < -0.1
        assert result.rejection_reason.startswith("safety score")

    def test_labels_used_as_ground_truth(self, validator, make_candidate, reference_data, shifted_data):
        candidate = make_candidate(_normalization(reference_data, shifted_data), expected=0.7)
        labels = np.ones(len(shifted_data), dtype=int)

        def predict(matrix):
            return np.full(len(matrix), 0.9)

        result = validator.validate(
            reference_data, shifted_data, [candidate], predict=predict, labels=labels
        ).results[0]

        assert result.accuracy_delta == pytest.approx(0.0)

    def test_label_count_mismatch_raises(self, validator, make_candidate, reference_data, shifted_data):
        candidate = make_candidate(_normalization(reference_data, shifted_data))

        with pytest.raises(IncompatibleSchemaError):
            validator.validate(reference_data, shifted_data, [candidate], labels=[0, 1])

    def test_predict_timeout_rejects(self, analyzer, classifier, make_candidate, reference_data, shifted_data):
        """A predictor that exceeds its timeout rejects every candidate."""
        validator = PatchValidator(ValidationSettings(predict_timeout_seconds=0.05), analyzer, classifier)
        candidate = make_candidate(_normalization(reference_data, shifted_data), expected=0.7)

        def slow_predict(matrix):
            time.sleep(0.5)
            return np.zeros(len(matrix))

        result = validator.validate(reference_data, shifted_data, [candidate], predict=slow_predict).results[0]

        assert not result.accepted
        assert result.rejection_reason == "accuracy re-measurement unavailable"

    def test_predict_error_rejects(self, validator, make_candidate, reference_data, shifted_data):
        candidate = make_candidate(_normalization(reference_data, shifted_data), expected=0.7)

        def broken_predict(matrix):
            raise RuntimeError("model server down")

        result = validator.validate(reference_data, shifted_data, [candidate], predict=broken_predict).results[0]

        assert not result.accepted
        assert result.rejection_reason == "accuracy re-measurement unavailable"

    def test_invalid_predict_outputs_reject(self, validator, make_candidate, reference_data, shifted_data):
        candidate = make_candidate(_normalization(reference_data, shifted_data), expected=0.7)

        def short_predict(matrix):
            return np.zeros(3)

        result = validator.validate(reference_data, shifted_data, [candidate], predict=short_predict).results[0]

        assert result.rejection_reason == "accuracy re-measurement unavailable"

    @pytest.mark.parametrize(
        "predict",
        [
            lambda matrix: 0.5,
            lambda matrix: None,
            lambda matrix: "fraud",
            lambda matrix: ["fraud"] * len(matrix),
            lambda matrix: {"score": 0.5},
            lambda matrix: np.zeros((len(matrix), 2, 2)),
        ],
        ids=["scalar", "none", "string", "string_labels", "dict", "three_dimensional"],
    )
    def test_malformed_predict_outputs_reject(self, validator, make_candidate, reference_data, shifted_data, predict):
        """Outputs that are not a numeric score per row reject instead of raising."""
        candidates = [
            make_candidate(_normalization(reference_data, shifted_data), expected=0.7),
            make_candidate(ThresholdParameters(delta=0.05), expected=0.35),
        ]

        run = validator.validate(reference_data, shifted_data, candidates, predict=predict)

        assert len(run.results) == 2
        assert all(not r.accepted for r in run.results)
        assert {r.rejection_reason for r in run.results} == {"accuracy re-measurement unavailable"}

    def test_feature_weights_shape_drift_scores(self, validator, make_candidate, reference_data, same_distribution_data):
        """Re-measured drift uses the same feature weights as detection."""
        current = same_distribution_data.copy()
        current[:, 0] += 3.0
        candidate = make_candidate(_normalization(reference_data, current), expected=0.7)

        plain = validator.validate(reference_data, current, [candidate]).results[0]
        focused = validator.validate(
            reference_data, current, [candidate], feature_weights=[1.0, 0.0, 0.0, 0.0, 0.0]
        ).results[0]
        ignored = validator.validate(
            reference_data, current, [candidate], feature_weights=[0.0, 1.0, 1.0, 1.0, 1.0]
        ).results[0]

        assert focused.drift_score_before > plain.drift_score_before > ignored.drift_score_before
        assert focused.drift_score_before > 0.9
        assert focused.measured_drift_reduction > plain.measured_drift_reduction

    def test_feature_weight_count_mismatch_raises(self, validator, make_candidate, reference_data, shifted_data):
        candidate = make_candidate(_normalization(reference_data, shifted_data))

        with pytest.raises(IncompatibleSchemaError):
            validator.validate(reference_data, shifted_data, [candidate], feature_weights=[1.0, 2.0])

    def test_no_candidates(self, validator, reference_data, shifted_data):
        run = validator.validate(reference_data, shifted_data, [])

        assert run.results == ()

    def test_clipping_parameters_validated(self, validator, make_candidate, reference_data, shifted_data):
        lower = np.percentile(shifted_data, 1, axis=0)
        upper = np.percentile(shifted_data, 99, axis=0)
        candidate = make_candidate(ClippingParameters(tuple(range(5)), tuple(lower), tuple(upper)))

        result = validator.validate(reference_data, shifted_data, [candidate]).results[0]

        assert result.patch_type is PatchType.FEATURE_CLIPPING
        assert 0.0 <= result.safety_score <= 1.0
        assert result.drift_score_before is not None


@pytest.mark.unit
class TestAcceptanceRules:
    """Test suite for acceptance bands."""

    def test_clear_accept(self, validator):
        assert validator._decide(0.8, 0.5) == (True, None, ())

    def test_low_safety_rejected_with_reason(self, validator):
        accepted, reason, _ = validator._decide(0.28, 0.5)

        assert not accepted
        assert reason == "safety score 0.28 below threshold 0.30"

    def test_borderline_safety_accepted_with_warning(self, validator):
        accepted, reason, warnings = validator._decide(0.35, 0.5)

        assert accepted
        assert reason is None
        assert len(warnings) == 1
        assert "borderline" in warnings[0]

    def test_borderline_reduction_accepted_with_warning(self, validator):
        accepted, _, warnings = validator._decide(0.8, 0.12)

        assert accepted
        assert len(warnings) == 1

    def test_low_reduction_rejected(self, validator):
        accepted, reason, _ = validator._decide(0.8, 0.05)

        assert not accepted
        assert reason == "drift reduction 0.05 below threshold 0.10"

    def test_both_failing(self, validator):
        accepted, reason, _ = validator._decide(0.1, 0.0)

        assert not accepted
        assert "safety score" in reason and "drift reduction" in reason


@pytest.mark.unit
class TestSafetyScore:
    """Test suite for safety score components."""

    def test_neutral_patch_is_fully_safe(self, validator):
        assert validator._safety_score(0.0, 0.0, 0.0, 0.0) == pytest.approx(1.0)

    def test_accuracy_loss_bounded_at_ten_percent(self, validator):
        at_limit = validator._safety_score(-0.10, 0.0, 0.0, 0.0)
        beyond = validator._safety_score(-0.50, 0.0, 0.0, 0.0)

        assert at_limit == pytest.approx(0.5)
        assert beyond == pytest.approx(at_limit)

    def test_accuracy_gain_not_rewarded_beyond_neutral(self, validator):
        assert validator._safety_score(0.2, 0.0, 0.0, 0.0) == pytest.approx(1.0)

    def test_precision_recall_imbalance_lowers_safety(self, validator):
        assert validator._safety_score(0.0, 0.3, -0.3, 0.0) == pytest.approx(0.8)

    def test_large_parameter_change_lowers_safety(self, validator):
        assert validator._safety_score(0.0, 0.0, 0.0, 1.0) == pytest.approx(0.85)
