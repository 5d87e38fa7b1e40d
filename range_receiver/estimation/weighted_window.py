"""
Weighted window range estimator with exponential decay.

The default strategy. It adapts to riding style changes by weighting recent
instant-efficiency readings more heavily:

1. Keep valid samples inside the time window (default 30 minutes)
2. Weight each by exp(-decay * age_minutes / window_minutes)
3. Range = remaining Wh / weighted efficiency
4. Confidence from efficiency consistency and data adequacy

Presets:
- Conservative: 45 min window, decay 0.3
- Balanced: 30 min window, decay 0.5 (default)
- Responsive: 15 min window, decay 0.7
"""

import math
import statistics as stats_module
from enum import Enum
from typing import List, Optional

from .constants import (
    ADEQUACY_WEIGHT,
    CONFIDENCE_FULL_DISTANCE_KM,
    CONFIDENCE_FULL_SAMPLES,
    CONFIDENCE_FULL_TIME_MINUTES,
    DEFAULT_WEIGHT_DECAY,
    DEFAULT_WINDOW_MINUTES,
    LOW_CONFIDENCE_THRESHOLD,
    MAX_EFFICIENCY_WH_PER_KM,
    MIN_EFFICIENCY_WH_PER_KM,
    MIN_SPEED_FOR_EFFICIENCY_KMH,
    MIN_WINDOW_SAMPLES,
    RECENT_SPEED_SAMPLES,
    VARIANCE_WEIGHT,
)
from .discharge_curve import voltage_to_energy_percent
from .estimate import EstimateStatus, RangeEstimate
from .estimator import RangeEstimator
from .trip import BatterySample, TripSnapshot


class WindowPreset(str, Enum):
    CONSERVATIVE = "conservative"
    BALANCED = "balanced"
    RESPONSIVE = "responsive"


# (window minutes, weight decay)
WINDOW_PRESETS = {
    WindowPreset.CONSERVATIVE: (45, 0.3),
    WindowPreset.BALANCED: (30, 0.5),
    WindowPreset.RESPONSIVE: (15, 0.7),
}


def _usable_efficiency(efficiency: float) -> bool:
    return not math.isnan(efficiency) and MIN_EFFICIENCY_WH_PER_KM < efficiency < MAX_EFFICIENCY_WH_PER_KM


def calculate_weighted_efficiency(
    samples: List[BatterySample],
    latest_timestamp: int,
    window_minutes: float,
    weight_decay: float,
) -> float:
    """
    Exponentially weighted mean of instant efficiency.

    Only efficiencies strictly between 5 and 200 Wh/km contribute.

    Returns:
        Weighted efficiency in Wh/km, NaN when no sample contributes
    """
    weighted_sum = 0.0
    weight_sum = 0.0

    for sample in samples:
        efficiency = sample.instant_efficiency_wh_per_km
        if not _usable_efficiency(efficiency):
            continue
        age_minutes = (latest_timestamp - sample.timestamp) / 60000.0
        weight = math.exp(-weight_decay * age_minutes / window_minutes)
        weighted_sum += efficiency * weight
        weight_sum += weight

    if weight_sum <= 0:
        return math.nan
    return weighted_sum / weight_sum


def calculate_efficiency_std_dev(samples: List[BatterySample], mean: float) -> float:
    """Population standard deviation of usable efficiencies about the given mean."""
    efficiencies = [
        s.instant_efficiency_wh_per_km for s in samples if _usable_efficiency(s.instant_efficiency_wh_per_km)
    ]
    if len(efficiencies) < 2:
        return 0.0
    return stats_module.pstdev(efficiencies, mu=mean)


def calculate_window_confidence(
    sample_count: int,
    std_dev: float,
    mean: float,
    distance_km: float,
    time_minutes: float,
) -> float:
    """
    Consistency and adequacy score.

    The coefficient of variation drives the consistency half (1.0 at CV 0,
    0.0 at CV 0.5 or above); the adequacy half is the weakest of the sample,
    distance and time scores.
    """
    cv = std_dev / mean if mean > 0 else 1.0
    variance_confidence = max(0.0, 1.0 - cv * 2.0)

    sample_confidence = min(1.0, sample_count / CONFIDENCE_FULL_SAMPLES)
    distance_confidence = min(1.0, distance_km / CONFIDENCE_FULL_DISTANCE_KM)
    time_confidence = min(1.0, time_minutes / CONFIDENCE_FULL_TIME_MINUTES)
    adequacy = min(sample_confidence, distance_confidence, time_confidence)

    return variance_confidence * VARIANCE_WEIGHT + adequacy * ADEQUACY_WEIGHT


class WeightedWindowEstimator(RangeEstimator):
    """Recent-weighted efficiency over a sliding time window."""

    name = "Weighted Window"

    def __init__(
        self,
        battery_capacity_wh: float,
        cell_count: int,
        window_minutes: int = DEFAULT_WINDOW_MINUTES,
        weight_decay: float = DEFAULT_WEIGHT_DECAY,
    ):
        super().__init__(battery_capacity_wh, cell_count)
        self.window_minutes = window_minutes
        self.weight_decay = weight_decay

    @classmethod
    def from_preset(cls, battery_capacity_wh: float, cell_count: int, preset) -> "WeightedWindowEstimator":
        window_minutes, weight_decay = WINDOW_PRESETS[WindowPreset(preset)]
        return cls(battery_capacity_wh, cell_count, window_minutes, weight_decay)

    @property
    def description(self) -> str:
        return f"Adaptive algorithm that responds to riding style changes ({self.window_minutes}min window)"

    def _samples_for_estimation(self, valid_samples: List[BatterySample]) -> List[BatterySample]:
        window_start = valid_samples[-1].timestamp - self.window_minutes * 60 * 1000
        window_samples = [s for s in valid_samples if s.timestamp >= window_start]
        if len(window_samples) >= MIN_WINDOW_SAMPLES:
            return window_samples
        return valid_samples

    def _estimated_time(self, samples: List[BatterySample], range_km: float) -> Optional[float]:
        speeds = [s.speed_kmh for s in samples[-RECENT_SPEED_SAMPLES:] if s.speed_kmh > MIN_SPEED_FOR_EFFICIENCY_KMH]
        if not speeds:
            return None
        recent_speed = sum(speeds) / len(speeds)
        return range_km / recent_speed * 60.0

    def estimate(self, trip: TripSnapshot) -> Optional[RangeEstimate]:
        if trip.is_currently_charging:
            return self._charging_estimate(trip)

        baseline = trip.current_baseline_segment
        if baseline is None or not baseline.samples:
            return None

        valid_samples = trip.get_valid_samples_since_baseline()
        if not valid_samples:
            return None

        current_sample = valid_samples[-1]
        quality = self._data_quality(trip, baseline, valid_samples)

        if not quality.meets_both_requirements:
            return self._insufficient(quality)

        samples = self._samples_for_estimation(valid_samples)
        efficiency = calculate_weighted_efficiency(
            samples, current_sample.timestamp, self.window_minutes, self.weight_decay
        )

        if math.isnan(efficiency):
            return self._insufficient(quality)
        if not MIN_EFFICIENCY_WH_PER_KM < efficiency < MAX_EFFICIENCY_WH_PER_KM:
            return self._insufficient(quality, efficiency)

        std_dev = calculate_efficiency_std_dev(samples, efficiency)

        current_energy = voltage_to_energy_percent(current_sample.compensated_voltage, self.cell_count)
        remaining_wh = current_energy * self.battery_capacity_wh / 100.0
        range_km = remaining_wh / efficiency

        confidence = calculate_window_confidence(
            len(samples), std_dev, efficiency, quality.travel_distance_km, quality.travel_time_minutes
        )
        status = EstimateStatus.LOW_CONFIDENCE if confidence < LOW_CONFIDENCE_THRESHOLD else EstimateStatus.VALID

        return RangeEstimate(
            range_km=range_km,
            confidence=confidence,
            status=status,
            efficiency_wh_per_km=efficiency,
            estimated_time_minutes=self._estimated_time(samples, range_km),
            data_quality=quality,
        )
