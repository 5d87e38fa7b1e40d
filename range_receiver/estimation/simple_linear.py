"""
Simple linear range estimator.

1. Energy consumed since the baseline (compensated voltage through the
   discharge curve)
2. Distance travelled since the baseline
3. Efficiency = consumed Wh / distance
4. Range = remaining Wh / efficiency

Predictable and works well for steady riding, but it does not adapt when the
riding style changes mid-trip.
"""

from typing import Optional

from .constants import (
    CONFIDENCE_FULL_DISTANCE_KM,
    CONFIDENCE_FULL_SAMPLES,
    CONFIDENCE_FULL_TIME_MINUTES,
    LINEAR_DISTANCE_WEIGHT,
    LINEAR_SAMPLE_WEIGHT,
    LINEAR_TIME_WEIGHT,
    LOW_CONFIDENCE_THRESHOLD,
    MIN_SPEED_FOR_EFFICIENCY_KMH,
)
from .discharge_curve import voltage_to_energy_percent
from .estimate import EstimateStatus, RangeEstimate
from .estimator import RangeEstimator
from .trip import TripSnapshot


def calculate_linear_confidence(sample_count: int, distance_km: float, time_minutes: float) -> float:
    """
    Weighted data-quantity score.

    Examples:
        >>> round(calculate_linear_confidence(100, 20.0, 20.0), 2)
        1.0
        >>> round(calculate_linear_confidence(50, 10.0, 10.0), 2)
        0.5
    """
    sample_score = min(sample_count / CONFIDENCE_FULL_SAMPLES, 1.0)
    distance_score = min(distance_km / CONFIDENCE_FULL_DISTANCE_KM, 1.0)
    time_score = min(time_minutes / CONFIDENCE_FULL_TIME_MINUTES, 1.0)
    return (
        sample_score * LINEAR_SAMPLE_WEIGHT
        + distance_score * LINEAR_DISTANCE_WEIGHT
        + time_score * LINEAR_TIME_WEIGHT
    )


class SimpleLinearEstimator(RangeEstimator):
    """Whole-trip average efficiency since the baseline."""

    name = "Simple Linear"

    @property
    def description(self) -> str:
        return "Basic linear estimation - simple and predictable"

    def estimate(self, trip: TripSnapshot) -> Optional[RangeEstimate]:
        if trip.is_currently_charging:
            return self._charging_estimate(trip)

        baseline = trip.current_baseline_segment
        if baseline is None or not baseline.samples:
            return None

        valid_samples = trip.get_valid_samples_since_baseline()
        if not valid_samples:
            return None

        start_sample = baseline.samples[0]
        current_sample = valid_samples[-1]
        quality = self._data_quality(trip, baseline, valid_samples)

        # Estimates are produced as soon as either requirement is met
        if not quality.meets_minimum_time and not quality.meets_minimum_distance:
            return self._insufficient(quality)

        start_energy = voltage_to_energy_percent(start_sample.compensated_voltage, self.cell_count)
        current_energy = voltage_to_energy_percent(current_sample.compensated_voltage, self.cell_count)
        consumed_percent = start_energy - current_energy

        if consumed_percent <= 0 or quality.travel_distance_km <= 0:
            return self._insufficient(quality)

        consumed_wh = consumed_percent * self.battery_capacity_wh / 100.0
        efficiency = consumed_wh / quality.travel_distance_km
        remaining_wh = current_energy * self.battery_capacity_wh / 100.0
        range_km = remaining_wh / efficiency

        confidence = calculate_linear_confidence(
            len(valid_samples), quality.travel_distance_km, quality.travel_time_minutes
        )

        if not quality.meets_both_requirements:
            status = EstimateStatus.COLLECTING
        elif confidence < LOW_CONFIDENCE_THRESHOLD:
            status = EstimateStatus.LOW_CONFIDENCE
        else:
            status = EstimateStatus.VALID

        estimated_time = None
        if current_sample.speed_kmh > MIN_SPEED_FOR_EFFICIENCY_KMH:
            estimated_time = range_km / current_sample.speed_kmh * 60.0

        return RangeEstimate(
            range_km=range_km,
            confidence=confidence,
            status=status,
            efficiency_wh_per_km=efficiency,
            estimated_time_minutes=estimated_time,
            data_quality=quality,
        )
