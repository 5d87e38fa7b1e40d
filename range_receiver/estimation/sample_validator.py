"""
Sample validation.

Flags anomalous battery samples so estimators can skip them. Samples are
never dropped: a flagged sample stays in the trip history for diagnostics.
"""

import math
from typing import Optional

from .constants import (
    CHARGING_BATTERY_INCREASE_PERCENT,
    CHARGING_VOLTAGE_INCREASE_V,
    DISTANCE_JUMP_THRESHOLD_KM,
    DISTANCE_JUMP_WINDOW_MS,
    MAX_ACCELERATION_KMH_PER_S,
    MAX_INSTANT_EFFICIENCY_WH_PER_KM,
    MAX_SPEED_KMH,
    STATIONARY_SPEED_KMH,
    TIME_GAP_THRESHOLD_MS,
    VALIDATOR_CELL_VOLTAGE_MAX,
    VALIDATOR_CELL_VOLTAGE_MIN,
)
from .trip import BatterySample, SampleFlag


def validate_and_flag_sample(
    current: BatterySample,
    previous: Optional[BatterySample],
    cell_count: int = 20,
) -> BatterySample:
    """
    Run every detector and return the sample with any new flags added.

    Continuity checks (time gap, distance jump, charging, speed) need a
    previous sample; voltage and efficiency checks always run. Flags already
    present on the incoming sample are kept, and neither input is modified.

    Args:
        current: Newly received sample (compensated voltage already applied)
        previous: Previous sample of the trip, or None for the first sample
        cell_count: Number of cells in series

    Returns:
        The same sample when nothing is flagged, otherwise a flagged copy
    """
    flags = set()

    if previous is not None:
        if detect_time_gap(current, previous):
            flags.add(SampleFlag.TIME_GAP)
        if detect_distance_anomaly(current, previous):
            flags.add(SampleFlag.DISTANCE_ANOMALY)
        if detect_charging(current, previous):
            flags.add(SampleFlag.CHARGING_DETECTED)
        if detect_speed_anomaly(current, previous):
            flags.add(SampleFlag.SPEED_ANOMALY)

    if detect_voltage_anomaly(current, cell_count):
        flags.add(SampleFlag.VOLTAGE_ANOMALY)

    if detect_efficiency_outlier(current):
        flags.add(SampleFlag.EFFICIENCY_OUTLIER)

    if not flags:
        return current
    return current.with_flags(*flags)


def detect_time_gap(current: BatterySample, previous: BatterySample) -> bool:
    """More than 5 seconds between samples (disconnect, app paused)."""
    return current.timestamp - previous.timestamp > TIME_GAP_THRESHOLD_MS


def detect_distance_anomaly(current: BatterySample, previous: BatterySample) -> bool:
    """Odometer jumped more than 500 m in under 10 seconds."""
    time_delta_ms = current.timestamp - previous.timestamp
    distance_delta_km = current.trip_distance_km - previous.trip_distance_km
    return distance_delta_km > DISTANCE_JUMP_THRESHOLD_KM and time_delta_ms < DISTANCE_JUMP_WINDOW_MS


def detect_charging(current: BatterySample, previous: BatterySample) -> bool:
    """Battery or raw voltage rose while the wheel is stationary."""
    battery_increase = current.battery_percent - previous.battery_percent
    voltage_increase = current.voltage - previous.voltage
    is_stationary = current.speed_kmh < STATIONARY_SPEED_KMH
    rising = battery_increase >= CHARGING_BATTERY_INCREASE_PERCENT or voltage_increase >= CHARGING_VOLTAGE_INCREASE_V
    return rising and is_stationary


def detect_speed_anomaly(current: BatterySample, previous: BatterySample) -> bool:
    """Negative or implausible speed, or an implausible acceleration."""
    if current.speed_kmh < 0 or current.speed_kmh > MAX_SPEED_KMH:
        return True

    time_delta_s = (current.timestamp - previous.timestamp) / 1000.0
    if time_delta_s > 0:
        acceleration = (current.speed_kmh - previous.speed_kmh) / time_delta_s
        if abs(acceleration) > MAX_ACCELERATION_KMH_PER_S:
            return True

    return False


def detect_voltage_anomaly(sample: BatterySample, cell_count: int) -> bool:
    """Raw or compensated voltage outside the 3.0V-4.2V per cell envelope."""
    min_voltage = VALIDATOR_CELL_VOLTAGE_MIN * cell_count
    max_voltage = VALIDATOR_CELL_VOLTAGE_MAX * cell_count
    return not (
        min_voltage <= sample.voltage <= max_voltage
        and min_voltage <= sample.compensated_voltage <= max_voltage
    )


def detect_efficiency_outlier(sample: BatterySample) -> bool:
    """Instant efficiency undefined, non-positive, or above 200 Wh/km."""
    efficiency = sample.instant_efficiency_wh_per_km
    if not math.isfinite(efficiency):
        return True
    return efficiency <= 0 or efficiency > MAX_INSTANT_EFFICIENCY_WH_PER_KM
