"""
Battery milestones for historical calibration.

As the battery drains past standard percentages (95, 90, ..., 5) the distance,
time and average efficiency since the baseline are recorded. Consecutive
milestones form a HistoricalSegment: real-world data on how far one battery
band actually lasted.
"""

from dataclasses import dataclass
from typing import Optional

from .constants import STANDARD_MILESTONES


@dataclass(frozen=True)
class BatteryMilestone:
    """Trip state when the battery reached a standard percentage."""

    battery_percent: int
    voltage: float  # compensated
    distance_km: float  # since baseline
    time_ms: int  # since baseline
    timestamp: int
    average_efficiency_wh_per_km: float


@dataclass(frozen=True)
class HistoricalSegment:
    """Calibration data point between two milestones of a completed trip."""

    start_percent: int
    end_percent: int
    start_voltage: float
    end_voltage: float
    distance_km: float
    duration_ms: int
    efficiency_wh_per_km: float
    timestamp: int
    wheel_model: str
    battery_capacity_wh: float

    @property
    def energy_consumed_percent(self) -> float:
        return float(self.start_percent - self.end_percent)

    @property
    def energy_consumed_wh(self) -> float:
        return self.energy_consumed_percent / 100.0 * self.battery_capacity_wh


def get_milestone_crossed(previous_percent: float, current_percent: float) -> Optional[int]:
    """
    First standard milestone crossed going from previous to current percent.

    Percentages are truncated to whole numbers before comparing.

    Examples:
        >>> get_milestone_crossed(81.0, 79.5)
        80
        >>> get_milestone_crossed(79.9, 79.1) is None
        True
    """
    previous = int(previous_percent)
    current = int(current_percent)
    for milestone in STANDARD_MILESTONES:
        if previous > milestone >= current:
            return milestone
    return None
