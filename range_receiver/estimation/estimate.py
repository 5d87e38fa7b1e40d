"""
Range estimate output types.

Estimates are immutable value objects and hold no reference back into the
trip, so they can be handed to readers on other threads as-is.
"""

from dataclasses import asdict, dataclass, replace
from enum import Enum
from typing import Any, Dict, Optional

from .constants import LOW_CONFIDENCE_THRESHOLD, MIN_DISTANCE_KM, MIN_TIME_MINUTES


class EstimateStatus(str, Enum):
    """Status of a range estimate."""

    INSUFFICIENT_DATA = "insufficient_data"  # need 10 min + 10 km
    COLLECTING = "collecting"  # some requirements met
    VALID = "valid"
    CHARGING = "charging"  # paused while charging
    LOW_CONFIDENCE = "low_confidence"
    STALE = "stale"  # no data received recently


@dataclass(frozen=True)
class DataQuality:
    """Transparency about the data an estimate was computed from."""

    total_samples: int
    valid_samples: int
    interpolated_samples: int
    charging_events: int
    baseline_reason: Optional[str]
    travel_time_minutes: float
    travel_distance_km: float
    meets_minimum_time: bool
    meets_minimum_distance: bool

    @property
    def meets_both_requirements(self) -> bool:
        return self.meets_minimum_time and self.meets_minimum_distance

    @property
    def interpolated_percentage(self) -> float:
        if self.total_samples <= 0:
            return 0.0
        return self.interpolated_samples / self.total_samples * 100.0

    @property
    def valid_percentage(self) -> float:
        if self.total_samples <= 0:
            return 0.0
        return self.valid_samples / self.total_samples * 100.0

    @property
    def time_progress(self) -> float:
        """Progress toward the minimum riding time (1.0 = met)."""
        return min(self.travel_time_minutes / MIN_TIME_MINUTES, 1.0)

    @property
    def distance_progress(self) -> float:
        """Progress toward the minimum distance (1.0 = met)."""
        return min(self.travel_distance_km / MIN_DISTANCE_KM, 1.0)

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result.update(
            meets_both_requirements=self.meets_both_requirements,
            interpolated_percentage=round(self.interpolated_percentage, 1),
            valid_percentage=round(self.valid_percentage, 1),
            time_progress=round(self.time_progress, 3),
            distance_progress=round(self.distance_progress, 3),
        )
        return result


@dataclass(frozen=True)
class RangeEstimate:
    """
    Result of a range estimation.

    range_km is None when there is not enough data or the wheel is charging.
    Confidence runs from 0.0 (no basis) to 1.0; below 0.5 is low confidence.
    """

    range_km: Optional[float]
    confidence: float
    status: EstimateStatus
    efficiency_wh_per_km: Optional[float]
    data_quality: DataQuality
    estimated_time_minutes: Optional[float] = None

    @property
    def is_valid(self) -> bool:
        return self.status == EstimateStatus.VALID and self.range_km is not None

    @property
    def is_low_confidence(self) -> bool:
        return self.status == EstimateStatus.LOW_CONFIDENCE or self.confidence < LOW_CONFIDENCE_THRESHOLD

    def with_status(self, status: EstimateStatus) -> "RangeEstimate":
        return replace(self, status=status)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "range_km": round(self.range_km, 2) if self.range_km is not None else None,
            "confidence": round(self.confidence, 3),
            "status": self.status.value,
            "efficiency_wh_per_km": (
                round(self.efficiency_wh_per_km, 2) if self.efficiency_wh_per_km is not None else None
            ),
            "estimated_time_minutes": (
                round(self.estimated_time_minutes, 1) if self.estimated_time_minutes is not None else None
            ),
            "is_valid": self.is_valid,
            "is_low_confidence": self.is_low_confidence,
            "data_quality": self.data_quality.to_dict(),
        }
