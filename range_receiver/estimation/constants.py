"""
Estimation Constants

Centralized location for the physical limits, detection thresholds and
estimator tuning used by the range estimation engine. Battery configuration
(capacity, cell count) is not a constant here; it is supplied per estimator.
"""

# Li-Ion discharge curve breakpoints (volts per cell)
CELL_VOLTAGE_MAX = 4.20  # 100% charged
CELL_VOLTAGE_FLAT_END = 3.95  # 80% remaining
CELL_VOLTAGE_GRADUAL_END = 3.50  # 20% remaining
CELL_VOLTAGE_MIN = 3.00  # 0% (empty)

# Energy percent at each breakpoint
ENERGY_PERCENT_FLAT_END = 80.0
ENERGY_PERCENT_GRADUAL_END = 20.0

# Sag/spike tolerance for is_voltage_valid (volts per cell)
CELL_VOLTAGE_VALIDITY_MARGIN = 0.2

# Voltage compensation defaults
COMPENSATION_ALPHA = 0.3
COMPENSATION_LOW_POWER_THRESHOLD_W = 500.0
COMPENSATION_MEDIUM_POWER_THRESHOLD_W = 1500.0
COMPENSATION_LOW_POWER_TRUST = 0.8
COMPENSATION_MEDIUM_POWER_TRUST = 0.5
COMPENSATION_HIGH_POWER_TRUST = 0.2
COMPENSATION_MAX_DEVIATION_V = 5.0

# Sample validation thresholds
TIME_GAP_THRESHOLD_MS = 5000  # strictly greater = gap
DISTANCE_JUMP_THRESHOLD_KM = 0.5
DISTANCE_JUMP_WINDOW_MS = 10000
CHARGING_BATTERY_INCREASE_PERCENT = 3.0
CHARGING_VOLTAGE_INCREASE_V = 1.0
STATIONARY_SPEED_KMH = 1.0
MAX_SPEED_KMH = 80.0
MAX_ACCELERATION_KMH_PER_S = 20.0
VALIDATOR_CELL_VOLTAGE_MIN = 3.0  # no margin, stricter than is_voltage_valid
VALIDATOR_CELL_VOLTAGE_MAX = 4.2
MAX_INSTANT_EFFICIENCY_WH_PER_KM = 200.0

# Instant efficiency is only defined above these values
MIN_SPEED_FOR_EFFICIENCY_KMH = 1.0
MIN_DISTANCE_FOR_EFFICIENCY_KM = 0.01

# Voltage sag above this is considered significant (volts)
SIGNIFICANT_SAG_V = 1.0

# Minimum data requirements for an estimate
MIN_TIME_MINUTES = 10.0
MIN_DISTANCE_KM = 10.0

# Confidence saturation points
CONFIDENCE_FULL_SAMPLES = 100
CONFIDENCE_FULL_DISTANCE_KM = 20.0
CONFIDENCE_FULL_TIME_MINUTES = 20.0
LOW_CONFIDENCE_THRESHOLD = 0.5

# Simple linear confidence weights
LINEAR_SAMPLE_WEIGHT = 0.3
LINEAR_DISTANCE_WEIGHT = 0.4
LINEAR_TIME_WEIGHT = 0.3

# Weighted window estimator
DEFAULT_WINDOW_MINUTES = 30
DEFAULT_WEIGHT_DECAY = 0.5
MIN_WINDOW_SAMPLES = 5
MIN_EFFICIENCY_WH_PER_KM = 5.0  # exclusive
MAX_EFFICIENCY_WH_PER_KM = 200.0  # exclusive
VARIANCE_WEIGHT = 0.5
ADEQUACY_WEIGHT = 0.5
RECENT_SPEED_SAMPLES = 120

# Trip state machine
INTERPOLATION_INTERVAL_MS = 5000
MAX_INTERPOLATED_SAMPLES = 720  # gaps yielding more samples are not back-filled
CHARGING_HEURISTIC_VOLTAGE_INCREASE_V = 0.5
CHARGING_HEURISTIC_BATTERY_INCREASE_PERCENT = 1.0
CHARGING_HEURISTIC_MAX_DISTANCE_KM = 0.01

TRIP_START_REASON = "Trip start"
POST_CHARGING_REASON = "Post-charging"

# Estimation throttling
ESTIMATION_INTERVAL_COLLECTING_MS = 10 * 1000
ESTIMATION_INTERVAL_HIGH_BATTERY_MS = 5 * 60 * 1000
ESTIMATION_INTERVAL_LOW_BATTERY_MS = 1 * 60 * 1000
ESTIMATION_BATTERY_THRESHOLD_PERCENT = 50.0

# Historical calibration
STANDARD_MILESTONES = [95, 90, 85, 80, 75, 70, 65, 60, 55, 50, 45, 40, 35, 30, 25, 20, 15, 10, 5]
MAX_HISTORICAL_SEGMENTS = 100
MIN_SEGMENT_DISTANCE_KM = 2.0
MIN_SEGMENT_PERCENT = 5
MIN_CALIBRATION_FACTOR = 0.8
MAX_CALIBRATION_FACTOR = 1.2
