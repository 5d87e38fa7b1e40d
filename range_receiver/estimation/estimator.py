"""
Range estimator base class.

Every estimator must:
- pause (CHARGING estimate) while the trip is charging
- return None when there is no baseline or no valid sample to work from
- require 10 minutes of riding and 10 km since the baseline
- use compensated voltage for energy calculations

Estimators are pure given the trip snapshot and never raise for data
problems; they report them through the estimate status instead.
"""

from typing import List, Optional

from .constants import MIN_DISTANCE_KM, MIN_TIME_MINUTES
from .estimate import DataQuality, EstimateStatus, RangeEstimate
from .trip import BatterySample, TripSegment, TripSnapshot


class RangeEstimator:
    """Base class for range estimation strategies."""

    name = "Range Estimator"

    def __init__(self, battery_capacity_wh: float, cell_count: int):
        self.battery_capacity_wh = battery_capacity_wh
        self.cell_count = cell_count

    @property
    def description(self) -> str:
        return ""

    def estimate(self, trip: TripSnapshot) -> Optional[RangeEstimate]:
        """Estimate remaining range for the trip, or None if there is nothing to go on."""
        raise NotImplementedError

    def _charging_estimate(self, trip: TripSnapshot) -> RangeEstimate:
        baseline = trip.current_baseline_segment
        return RangeEstimate(
            range_km=None,
            confidence=0.0,
            status=EstimateStatus.CHARGING,
            efficiency_wh_per_km=None,
            data_quality=DataQuality(
                total_samples=len(trip.samples),
                valid_samples=trip.valid_sample_count,
                interpolated_samples=trip.interpolated_sample_count,
                charging_events=len(trip.charging_events),
                baseline_reason=baseline.baseline_reason if baseline else None,
                travel_time_minutes=trip.get_riding_time_ms_since_baseline() / 60000.0,
                travel_distance_km=trip.get_distance_km_since_baseline(),
                meets_minimum_time=False,
                meets_minimum_distance=False,
            ),
        )

    def _data_quality(
        self,
        trip: TripSnapshot,
        baseline: TripSegment,
        valid_samples: List[BatterySample],
    ) -> DataQuality:
        travel_time_minutes = trip.get_riding_time_ms_since_baseline() / 60000.0
        travel_distance_km = trip.get_distance_km_since_baseline()
        return DataQuality(
            total_samples=len(trip.samples),
            valid_samples=len(valid_samples),
            interpolated_samples=trip.interpolated_sample_count,
            charging_events=len(trip.charging_events),
            baseline_reason=baseline.baseline_reason,
            travel_time_minutes=travel_time_minutes,
            travel_distance_km=travel_distance_km,
            meets_minimum_time=travel_time_minutes >= MIN_TIME_MINUTES,
            meets_minimum_distance=travel_distance_km >= MIN_DISTANCE_KM,
        )

    @staticmethod
    def _insufficient(data_quality: DataQuality, efficiency: Optional[float] = None) -> RangeEstimate:
        return RangeEstimate(
            range_km=None,
            confidence=0.0,
            status=EstimateStatus.INSUFFICIENT_DATA,
            efficiency_wh_per_km=efficiency,
            data_quality=data_quality,
        )

    def __repr__(self):
        return f"<{type(self).__name__} capacity={self.battery_capacity_wh}Wh cells={self.cell_count}>"
