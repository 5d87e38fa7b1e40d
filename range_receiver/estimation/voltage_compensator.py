"""
Voltage Compensation

Under load the pack voltage sags, so a raw reading taken while accelerating
understates the remaining energy. This module smooths readings with a
power-weighted exponential filter: readings taken at low power are trusted,
readings taken under heavy load barely move the running value.

All functions are stateless; the caller carries the previous compensated
voltage from sample to sample.
"""

from dataclasses import dataclass
from enum import Enum

from .constants import (
    COMPENSATION_ALPHA,
    COMPENSATION_HIGH_POWER_TRUST,
    COMPENSATION_LOW_POWER_THRESHOLD_W,
    COMPENSATION_LOW_POWER_TRUST,
    COMPENSATION_MAX_DEVIATION_V,
    COMPENSATION_MEDIUM_POWER_THRESHOLD_W,
    COMPENSATION_MEDIUM_POWER_TRUST,
)


class WheelType(str, Enum):
    """Wheel classes with their own compensation tuning."""

    SMALL = "small"  # < 1000Wh, lighter riders
    MEDIUM = "medium"  # 1000-2000Wh
    LARGE = "large"  # > 2000Wh
    HIGH_PERFORMANCE = "high_performance"  # racing wheels, aggressive riding


@dataclass(frozen=True)
class CompensationConfig:
    """Tuning for the power-weighted filter."""

    alpha: float = COMPENSATION_ALPHA
    low_power_threshold: float = COMPENSATION_LOW_POWER_THRESHOLD_W
    medium_power_threshold: float = COMPENSATION_MEDIUM_POWER_THRESHOLD_W
    low_power_trust: float = COMPENSATION_LOW_POWER_TRUST
    medium_power_trust: float = COMPENSATION_MEDIUM_POWER_TRUST
    high_power_trust: float = COMPENSATION_HIGH_POWER_TRUST


DEFAULT_CONFIG = CompensationConfig()

PRESETS = {
    WheelType.SMALL: CompensationConfig(alpha=0.35, low_power_threshold=400.0, medium_power_threshold=1000.0),
    WheelType.MEDIUM: DEFAULT_CONFIG,
    WheelType.LARGE: CompensationConfig(alpha=0.25, low_power_threshold=600.0, medium_power_threshold=2000.0),
    WheelType.HIGH_PERFORMANCE: CompensationConfig(
        alpha=0.25, low_power_threshold=800.0, medium_power_threshold=2500.0
    ),
}


def get_trust_factor(power_watts: float, config: CompensationConfig = DEFAULT_CONFIG) -> float:
    """
    Trust placed in a raw reading taken at the given power draw.

    Power is signed, so regen always falls in the low-power band.

    Examples:
        >>> get_trust_factor(200)
        0.8
        >>> get_trust_factor(-2000)
        0.8
    """
    if power_watts < config.low_power_threshold:
        return config.low_power_trust
    if power_watts < config.medium_power_threshold:
        return config.medium_power_trust
    return config.high_power_trust


def calculate_compensated_voltage(
    raw_voltage: float,
    power_watts: float,
    previous_compensated: float,
    config: CompensationConfig = DEFAULT_CONFIG,
) -> float:
    """
    Blend a raw reading into the running compensated voltage.

    compensated = alpha * trust * raw + (1 - alpha * trust) * previous

    The result always lies between raw_voltage and previous_compensated, and
    repeated calls with the same raw reading converge to it.

    Args:
        raw_voltage: Pack voltage as read from the wheel
        power_watts: Instantaneous power draw (negative = regen)
        previous_compensated: Compensated voltage of the previous sample
        config: Filter tuning

    Returns:
        New compensated voltage

    Examples:
        >>> round(calculate_compensated_voltage(80.0, 200, 82.0), 2)
        81.52
    """
    weight = config.alpha * get_trust_factor(power_watts, config)
    return weight * raw_voltage + (1.0 - weight) * previous_compensated


def initialize_compensated_voltage(raw_voltage: float) -> float:
    """Seed value for the first sample of a trip (or after charging)."""
    return raw_voltage


def validate_compensated_voltage(
    compensated: float,
    raw_voltage: float,
    max_deviation: float = COMPENSATION_MAX_DEVIATION_V,
) -> float:
    """
    Clamp compensated voltage to within max_deviation volts of the raw reading.

    Examples:
        >>> validate_compensated_voltage(90.0, 80.0)
        85.0
        >>> validate_compensated_voltage(81.0, 80.0)
        81.0
    """
    return max(raw_voltage - max_deviation, min(raw_voltage + max_deviation, compensated))


def get_preset_config(wheel_type) -> CompensationConfig:
    """
    Look up the compensation preset for a wheel type.

    Accepts a WheelType or its string value; unknown values fall back to the
    medium preset.
    """
    try:
        return PRESETS[WheelType(wheel_type)]
    except ValueError:
        return DEFAULT_CONFIG
