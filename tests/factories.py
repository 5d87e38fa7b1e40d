"""
Test Data Factories for the range receiver

Builders for battery samples, steady rides and trips with sensible
defaults, so tests only spell out what they are about.

Usage:
    # One riding sample
    sample = make_sample(speed_kmh=25.0)

    # A steady ride: 60 km/h at 20 Wh/km, one sample every 5 seconds
    ride = RideFactory(start_percent=90.0)
    samples = ride.take(130)

    # A trip with one baseline segment
    trip = trip_from_samples(samples)
"""

from typing import Any, Dict, List

from range_receiver.estimation import (
    BatterySample,
    SegmentType,
    TripSegment,
    TripSnapshot,
    energy_percent_to_voltage,
)
from range_receiver.estimation.milestones import HistoricalSegment

CAPACITY_WH = 2000.0
CELLS = 20
BASE_TIME_MS = 1_700_000_000_000


def make_sample(**kwargs) -> BatterySample:
    """Valid riding sample: 30 km/h at 20 Wh/km, 80 V on a 20S pack."""
    defaults: Dict[str, Any] = {
        "timestamp": BASE_TIME_MS,
        "voltage": 80.0,
        "power_watts": 600.0,
        "speed_kmh": 30.0,
        "trip_distance_km": 1.0,
        "battery_percent": 80.0,
    }
    defaults.update(kwargs)
    return BatterySample(**defaults)


def sample_payload(**kwargs) -> Dict[str, Any]:
    """JSON body for POST /api/range/samples."""
    defaults: Dict[str, Any] = {
        "timestamp": BASE_TIME_MS,
        "voltage": 80.0,
        "power": 600.0,
        "speed": 30.0,
        "trip_distance": 1.0,
        "battery_percent": 80.0,
    }
    defaults.update(kwargs)
    return defaults


class RideFactory:
    """
    Steady ride at constant speed and efficiency.

    Voltage follows the discharge curve for the energy actually used, so a
    correct estimator recovers the configured efficiency.
    """

    def __init__(
        self,
        start_ms: int = BASE_TIME_MS,
        start_percent: float = 90.0,
        start_distance_km: float = 0.5,
        speed_kmh: float = 60.0,
        efficiency_wh_per_km: float = 20.0,
        interval_ms: int = 5000,
        capacity_wh: float = CAPACITY_WH,
        cell_count: int = CELLS,
    ):
        self.timestamp = start_ms
        self.energy_percent = start_percent
        self.distance_km = start_distance_km
        self.speed_kmh = speed_kmh
        self.efficiency_wh_per_km = efficiency_wh_per_km
        self.interval_ms = interval_ms
        self.capacity_wh = capacity_wh
        self.cell_count = cell_count

    def next(self, **overrides) -> BatterySample:
        """Sample for the current state, then move one interval forward."""
        sample = self.build(**overrides)
        self.advance(self.interval_ms)
        return sample

    def take(self, count: int) -> List[BatterySample]:
        return [self.next() for _ in range(count)]

    def advance(self, duration_ms: int) -> None:
        """Ride on for duration_ms without producing samples (e.g. a dropped link)."""
        distance = self.speed_kmh * duration_ms / 3_600_000
        self.distance_km += distance
        self.energy_percent -= self.efficiency_wh_per_km * distance / self.capacity_wh * 100.0
        self.timestamp += duration_ms

    def stand_still(self, duration_ms: int) -> None:
        """Time passes without moving or using energy."""
        self.timestamp += duration_ms

    def build(self, **overrides) -> BatterySample:
        fields: Dict[str, Any] = {
            "timestamp": self.timestamp,
            "voltage": energy_percent_to_voltage(self.energy_percent, self.cell_count),
            "power_watts": self.efficiency_wh_per_km * self.speed_kmh,
            "speed_kmh": self.speed_kmh,
            "trip_distance_km": self.distance_km,
            "battery_percent": self.energy_percent,
        }
        fields.update(overrides)
        return BatterySample(**fields)


def trip_from_samples(samples: List[BatterySample], baseline_reason: str = "Trip start") -> TripSnapshot:
    """Trip with a single active baseline riding segment holding every sample."""
    trip = TripSnapshot(start_time=samples[0].timestamp)
    trip.segments.append(TripSegment(
        segment_type=SegmentType.NORMAL_RIDING,
        start_timestamp=samples[0].timestamp,
        samples=list(samples),
        is_baseline_segment=True,
        baseline_reason=baseline_reason,
    ))
    trip.samples.extend(samples)
    return trip


def make_historical_segment(**kwargs) -> HistoricalSegment:
    """Valid calibration segment: 80% -> 70% over 10 km at 20 Wh/km."""
    defaults: Dict[str, Any] = {
        "start_percent": 80,
        "end_percent": 70,
        "start_voltage": energy_percent_to_voltage(80.0, CELLS),
        "end_voltage": energy_percent_to_voltage(70.0, CELLS),
        "distance_km": 10.0,
        "duration_ms": 20 * 60 * 1000,
        "efficiency_wh_per_km": 20.0,
        "timestamp": BASE_TIME_MS,
        "wheel_model": "Sherman",
        "battery_capacity_wh": CAPACITY_WH,
    }
    defaults.update(kwargs)
    return HistoricalSegment(**defaults)
