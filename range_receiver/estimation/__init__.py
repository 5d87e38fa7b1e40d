"""
Range Estimation Engine

Battery range estimation for electric unicycle telemetry: discharge curve,
voltage sag compensation, sample validation, the trip model and the
estimation strategies.

The engine is synchronous and never raises for data problems. "Cannot
answer" comes back as None or an estimate status.

Usage:
    from range_receiver.estimation import create_estimator, validate_and_flag_sample
    from range_receiver.estimation.constants import MIN_DISTANCE_KM
"""

from range_receiver.exceptions import ConfigurationError

# Discharge curve
from .discharge_curve import (
    calculate_energy_consumed,
    energy_percent_to_voltage,
    get_voltage_range,
    is_voltage_valid,
    voltage_to_energy_percent,
)

# Voltage compensation
from .voltage_compensator import (
    CompensationConfig,
    WheelType,
    calculate_compensated_voltage,
    get_preset_config,
    initialize_compensated_voltage,
    validate_compensated_voltage,
)

# Sample validation
from .sample_validator import validate_and_flag_sample

# Trip model and outputs
from .trip import BatterySample, ChargingEvent, SampleFlag, SegmentType, TripSegment, TripSnapshot
from .estimate import DataQuality, EstimateStatus, RangeEstimate

# Estimators
from .estimator import RangeEstimator
from .simple_linear import SimpleLinearEstimator
from .weighted_window import WeightedWindowEstimator, WindowPreset

ESTIMATORS = {
    "simple_linear": SimpleLinearEstimator,
    "weighted_window": WeightedWindowEstimator,
}


def create_estimator(
    algorithm: str,
    battery_capacity_wh: float,
    cell_count: int,
    window_minutes: int = None,
    weight_decay: float = None,
) -> RangeEstimator:
    """
    Build an estimator by algorithm name.

    Args:
        algorithm: "simple_linear" or "weighted_window"
        battery_capacity_wh: Pack capacity in Wh (must be positive)
        cell_count: Cells in series (must be positive)
        window_minutes: Weighted-window only, overrides the default window
        weight_decay: Weighted-window only, overrides the default decay

    Raises:
        ConfigurationError: If the name or battery configuration is invalid
    """
    if battery_capacity_wh is None or battery_capacity_wh <= 0:
        raise ConfigurationError(
            f"Battery capacity must be positive, got {battery_capacity_wh}", config_key="BATTERY_CAPACITY_WH"
        )
    if cell_count is None or cell_count <= 0:
        raise ConfigurationError(f"Cell count must be positive, got {cell_count}", config_key="BATTERY_CELL_COUNT")

    estimator_class = ESTIMATORS.get((algorithm or "").lower())
    if estimator_class is None:
        raise ConfigurationError(
            f"Unknown range algorithm '{algorithm}', expected one of {sorted(ESTIMATORS)}",
            config_key="RANGE_ALGORITHM",
        )

    if estimator_class is WeightedWindowEstimator:
        kwargs = {}
        if window_minutes is not None:
            if window_minutes <= 0:
                raise ConfigurationError(
                    f"Window must be positive, got {window_minutes}", config_key="RANGE_WINDOW_MINUTES"
                )
            kwargs["window_minutes"] = window_minutes
        if weight_decay is not None:
            kwargs["weight_decay"] = weight_decay
        return WeightedWindowEstimator(battery_capacity_wh, cell_count, **kwargs)

    return estimator_class(battery_capacity_wh, cell_count)


__all__ = [
    # Discharge curve
    "voltage_to_energy_percent",
    "energy_percent_to_voltage",
    "get_voltage_range",
    "is_voltage_valid",
    "calculate_energy_consumed",
    # Compensation
    "CompensationConfig",
    "WheelType",
    "calculate_compensated_voltage",
    "initialize_compensated_voltage",
    "validate_compensated_voltage",
    "get_preset_config",
    # Validation
    "validate_and_flag_sample",
    # Model
    "BatterySample",
    "SampleFlag",
    "TripSegment",
    "SegmentType",
    "ChargingEvent",
    "TripSnapshot",
    "DataQuality",
    "EstimateStatus",
    "RangeEstimate",
    # Estimators
    "RangeEstimator",
    "SimpleLinearEstimator",
    "WeightedWindowEstimator",
    "WindowPreset",
    "ESTIMATORS",
    "create_estimator",
]
