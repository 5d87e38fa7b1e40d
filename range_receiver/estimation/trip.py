"""
Trip data model.

A trip spans from the first sample until an explicit user reset; it is never
reset automatically. It continues through connection gaps and charging
stops, which are recorded as segments so estimators can restrict themselves
to riding data since the most recent baseline.
"""

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import FrozenSet, List, Optional

from .constants import (
    MIN_DISTANCE_FOR_EFFICIENCY_KM,
    MIN_SPEED_FOR_EFFICIENCY_KMH,
    SIGNIFICANT_SAG_V,
)


class SampleFlag(str, Enum):
    """Quality flags attached to a battery sample."""

    TIME_GAP = "time_gap"
    DISTANCE_ANOMALY = "distance_anomaly"
    CHARGING_DETECTED = "charging_detected"
    SPEED_ANOMALY = "speed_anomaly"
    VOLTAGE_ANOMALY = "voltage_anomaly"
    EFFICIENCY_OUTLIER = "efficiency_outlier"
    INTERPOLATED = "interpolated"


class SegmentType(str, Enum):
    """Kinds of trip segments."""

    NORMAL_RIDING = "normal_riding"
    CONNECTION_GAP = "connection_gap"  # back-filled with interpolated samples
    CHARGING = "charging"
    PARKED = "parked"


@dataclass(frozen=True)
class BatterySample:
    """
    One battery telemetry reading.

    compensated_voltage defaults to the raw voltage until the compensation
    step has been applied. Samples are immutable: validation and compensation
    produce new instances.
    """

    timestamp: int  # ms since epoch
    voltage: float
    power_watts: float  # negative = regen
    speed_kmh: float
    trip_distance_km: float
    battery_percent: float
    compensated_voltage: Optional[float] = None
    current_amps: float = 0.0
    temperature_celsius: float = -1.0  # -1 when not reported
    flags: FrozenSet[SampleFlag] = frozenset()

    def __post_init__(self):
        if self.compensated_voltage is None:
            object.__setattr__(self, "compensated_voltage", self.voltage)
        if not isinstance(self.flags, frozenset):
            object.__setattr__(self, "flags", frozenset(self.flags))

    @property
    def instant_efficiency_wh_per_km(self) -> float:
        """Power over speed, NaN when stationary or before the trip has moved."""
        if self.speed_kmh > MIN_SPEED_FOR_EFFICIENCY_KMH and self.trip_distance_km > MIN_DISTANCE_FOR_EFFICIENCY_KM:
            return self.power_watts / self.speed_kmh
        return math.nan

    @property
    def voltage_sag(self) -> float:
        return self.compensated_voltage - self.voltage

    @property
    def has_significant_sag(self) -> bool:
        return self.voltage_sag > SIGNIFICANT_SAG_V

    @property
    def is_interpolated(self) -> bool:
        return SampleFlag.INTERPOLATED in self.flags

    @property
    def is_valid_for_estimation(self) -> bool:
        """
        Whether estimators may use this sample.

        Interpolated samples count as valid; any other flag excludes the
        sample, as do non-positive voltages, an out-of-range battery percent,
        negative speed or an undefined instant efficiency.
        """
        if self.flags - {SampleFlag.INTERPOLATED}:
            return False
        if self.voltage <= 0 or self.compensated_voltage <= 0:
            return False
        if not 0 <= self.battery_percent <= 100:
            return False
        if self.speed_kmh < 0:
            return False
        return math.isfinite(self.instant_efficiency_wh_per_km)

    def with_flags(self, *flags: SampleFlag) -> "BatterySample":
        """Copy with extra flags added to the existing set."""
        return replace(self, flags=self.flags | frozenset(flags))

    def with_compensated_voltage(self, compensated_voltage: float) -> "BatterySample":
        return replace(self, compensated_voltage=compensated_voltage)


@dataclass
class TripSegment:
    """
    A contiguous stretch of a trip of one kind.

    end_timestamp is None while the segment is active and is set once, when
    the next segment begins.
    """

    segment_type: SegmentType
    start_timestamp: int
    end_timestamp: Optional[int] = None
    samples: List[BatterySample] = field(default_factory=list)
    is_baseline_segment: bool = False
    baseline_reason: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.end_timestamp is None

    @property
    def duration_ms(self) -> int:
        """Elapsed time; an active segment is measured up to its last sample."""
        if self.end_timestamp is not None:
            end = self.end_timestamp
        elif self.samples:
            end = self.samples[-1].timestamp
        else:
            end = self.start_timestamp
        return end - self.start_timestamp

    @property
    def sample_count(self) -> int:
        return len(self.samples)

    @property
    def valid_sample_count(self) -> int:
        return sum(1 for s in self.samples if s.is_valid_for_estimation)

    @property
    def distance_km(self) -> float:
        if len(self.samples) < 2:
            return 0.0
        return self.samples[-1].trip_distance_km - self.samples[0].trip_distance_km

    def close(self, end_timestamp: int) -> None:
        if self.end_timestamp is None:
            self.end_timestamp = end_timestamp


@dataclass
class ChargingEvent:
    """A charging stop within a trip. Voltages are compensated values."""

    start_timestamp: int
    voltage_before: float
    battery_percent_before: float
    end_timestamp: Optional[int] = None
    voltage_after: Optional[float] = None
    battery_percent_after: Optional[float] = None
    energy_added_wh: Optional[float] = None

    @property
    def is_charging(self) -> bool:
        return self.end_timestamp is None

    @property
    def duration_ms(self) -> int:
        if self.end_timestamp is None:
            return 0
        return self.end_timestamp - self.start_timestamp

    @property
    def duration_minutes(self) -> float:
        return self.duration_ms / 60000.0

    @property
    def voltage_increase(self) -> float:
        if self.voltage_after is None:
            return 0.0
        return self.voltage_after - self.voltage_before

    @property
    def battery_percent_increase(self) -> float:
        if self.battery_percent_after is None:
            return 0.0
        return self.battery_percent_after - self.battery_percent_before

    @property
    def average_charging_power_w(self) -> Optional[float]:
        """Energy added over charging time, None while charging or for zero duration."""
        if self.energy_added_wh is None:
            return None
        duration_hours = self.duration_ms / 3600000.0
        if duration_hours <= 0:
            return None
        return self.energy_added_wh / duration_hours

    def complete(
        self,
        end_timestamp: int,
        voltage_after: float,
        battery_percent_after: float,
        energy_added_wh: float,
    ) -> None:
        self.end_timestamp = end_timestamp
        self.voltage_after = voltage_after
        self.battery_percent_after = battery_percent_after
        self.energy_added_wh = energy_added_wh


@dataclass
class TripSnapshot:
    """
    Aggregate root of a trip.

    samples holds every sample in chronological order, interpolated ones
    included. Segments are appended in order; only the last (active) segment
    and the open charging event are ever mutated.
    """

    start_time: int
    samples: List[BatterySample] = field(default_factory=list)
    segments: List[TripSegment] = field(default_factory=list)
    is_currently_charging: bool = False
    charging_events: List[ChargingEvent] = field(default_factory=list)

    @property
    def latest_sample(self) -> Optional[BatterySample]:
        return self.samples[-1] if self.samples else None

    @property
    def start_sample(self) -> Optional[BatterySample]:
        return self.samples[0] if self.samples else None

    @property
    def active_segment(self) -> Optional[TripSegment]:
        if self.segments and self.segments[-1].is_active:
            return self.segments[-1]
        return None

    @property
    def total_distance_km(self) -> float:
        if not self.samples:
            return 0.0
        return self.samples[-1].trip_distance_km - self.samples[0].trip_distance_km

    @property
    def valid_sample_count(self) -> int:
        return sum(1 for s in self.samples if s.is_valid_for_estimation)

    @property
    def interpolated_sample_count(self) -> int:
        return sum(1 for s in self.samples if s.is_interpolated)

    @property
    def trip_duration_ms(self) -> int:
        if not self.samples:
            return 0
        return self.samples[-1].timestamp - self.samples[0].timestamp

    @property
    def current_baseline_segment(self) -> Optional[TripSegment]:
        """Most recent baseline segment, else the first riding segment."""
        for segment in reversed(self.segments):
            if segment.is_baseline_segment:
                return segment
        for segment in self.segments:
            if segment.segment_type == SegmentType.NORMAL_RIDING:
                return segment
        return None

    def get_segments_since_baseline(self) -> List[TripSegment]:
        """Riding segments starting at or after the current baseline."""
        baseline = self.current_baseline_segment
        if baseline is None:
            return []
        return [
            s for s in self.segments
            if s.start_timestamp >= baseline.start_timestamp and s.segment_type == SegmentType.NORMAL_RIDING
        ]

    def get_valid_samples_since_baseline(self) -> List[BatterySample]:
        return [
            sample
            for segment in self.get_segments_since_baseline()
            for sample in segment.samples
            if sample.is_valid_for_estimation
        ]

    def get_riding_time_ms_since_baseline(self) -> int:
        """
        Riding time since baseline, excluding gaps and charging.

        Each riding segment contributes the span between its first and last
        valid samples.
        """
        total = 0
        for segment in self.get_segments_since_baseline():
            valid = [s for s in segment.samples if s.is_valid_for_estimation]
            if len(valid) >= 2:
                total += valid[-1].timestamp - valid[0].timestamp
        return total

    def get_distance_km_since_baseline(self) -> float:
        baseline = self.current_baseline_segment
        if baseline is None or not baseline.samples or not self.samples:
            return 0.0
        return self.samples[-1].trip_distance_km - baseline.samples[0].trip_distance_km
