"""
Constants for drift analysis and patching.
"""

# PSI
DEFAULT_N_BINS = 10
PSI_EPSILON = 1e-4  # Floor for empty bins and std denominators
PSI_DRIFT_THRESHOLD = 0.2
PSI_SATURATION = 1.0  # PSI at which a feature's normalized score reaches 1

# Kolmogorov-Smirnov
KS_STATISTIC_THRESHOLD = 0.1
KS_ALPHA = 0.05

MIN_SAMPLES = 20

# Drift classification
DRIFT_SCORE_THRESHOLD = 0.2
PRIOR_MAX_DRIFTED_RATIO = 0.15
CONCEPT_MAX_DRIFTED_RATIO = 0.60
PSI_CV_THRESHOLD = 0.6
SHAPE_LOCATION_RATIO = 1.5

# Severity bands on the overall drift score
SEVERITY_CRITICAL = 0.4
SEVERITY_HIGH = 0.3
SEVERITY_MODERATE = 0.2
SEVERITY_LOW = 0.1

# Expected drift reduction per patch type
EXPECTED_REDUCTION_NORMALIZATION = 0.70
EXPECTED_REDUCTION_REWEIGHTING = 0.60
EXPECTED_REDUCTION_CLIPPING = 0.50
EXPECTED_REDUCTION_THRESHOLD = 0.35
EXPECTED_REDUCTION_MODEL_UPDATE = 0.0

CLIP_LOWER_PERCENTILE = 1.0
CLIP_UPPER_PERCENTILE = 99.0
EMERGENCY_CLIP_LOWER_PERCENTILE = 5.0
EMERGENCY_CLIP_UPPER_PERCENTILE = 95.0
EMERGENCY_DRIFT_SCORE = 0.6

BASE_DECISION_THRESHOLD = 0.5
THRESHOLD_DELTA_SCALE = 0.1

# Validation split
LARGE_DATASET_SIZE = 100
MEDIUM_DATASET_SIZE = 50
LARGE_VALIDATION_FRACTION = 0.20
MEDIUM_VALIDATION_FRACTION = 0.10
LARGE_VALIDATION_MINIMUM = 20
MEDIUM_VALIDATION_MINIMUM = 10
MIN_VALIDATION_SAMPLES = 20

# Acceptance
SAFETY_THRESHOLD = 0.4
DRIFT_REDUCTION_THRESHOLD = 0.15
BORDERLINE_SAFETY_FLOOR = 0.3
BORDERLINE_REDUCTION_FLOOR = 0.1

# Safety score
MAX_ACCURACY_DELTA = 0.10
BALANCE_TOLERANCE = 0.3
SAFETY_WEIGHT_ACCURACY = 0.5
SAFETY_WEIGHT_BALANCE = 0.2
SAFETY_WEIGHT_PARAMETER_CHANGE = 0.3
THRESHOLD_CHANGE_SCALE = 0.5
MODEL_UPDATE_RELATIVE_CHANGE = 1.0
WILSON_Z = 1.96  # 95% confidence

# Rule set history
MAX_RULESET_PATCHES = 100  # Newest patches kept on a rule set and in the history log

PREDICT_TIMEOUT_SECONDS = 30.0
RANDOM_SEED = 42

INFERENCE_UNAVAILABLE_REASON = "accuracy re-measurement unavailable"

# Error codes
ERROR_CODE_BASE = "F000"
ERROR_CODE_INCOMPATIBLE_SCHEMA = "F001"
ERROR_CODE_INSUFFICIENT_DATA = "F002"
ERROR_CODE_CORRUPT_DATA = "F003"
ERROR_CODE_VALIDATION_FAILURE = "F004"
ERROR_CODE_ROLLBACK = "F005"
ERROR_CODE_INFERENCE_UNAVAILABLE = "F006"
ERROR_CODE_PERSISTENCE = "F007"
