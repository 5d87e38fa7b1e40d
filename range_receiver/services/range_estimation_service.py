"""
Range Estimation Service

Orchestrates the estimation engine for one live trip:
- applies voltage sag compensation (seeded on the first sample and again
  after charging)
- validates and flags each sample
- back-fills connection gaps with interpolated samples
- tracks charging stops with a NOT_CHARGING -> SUSPECTED -> CONFIRMED state
  machine and starts a new baseline once charging ends
- records battery milestones for historical calibration
- runs the selected estimator on a battery-dependent schedule

The trip mutation path runs under a single lock. Readers receive immutable
RangeEstimate objects or freshly built dicts, never live trip state.
"""

import logging
import threading
from contextlib import contextmanager
from enum import Enum
from typing import Callable, Dict, List, Optional

from range_receiver.estimation import (
    BatterySample,
    ChargingEvent,
    EstimateStatus,
    RangeEstimate,
    SampleFlag,
    SegmentType,
    TripSegment,
    TripSnapshot,
    calculate_compensated_voltage,
    calculate_energy_consumed,
    create_estimator,
    get_preset_config,
    initialize_compensated_voltage,
    validate_and_flag_sample,
    validate_compensated_voltage,
)
from range_receiver.estimation.constants import (
    CHARGING_HEURISTIC_BATTERY_INCREASE_PERCENT,
    CHARGING_HEURISTIC_MAX_DISTANCE_KM,
    CHARGING_HEURISTIC_VOLTAGE_INCREASE_V,
    ESTIMATION_BATTERY_THRESHOLD_PERCENT,
    ESTIMATION_INTERVAL_COLLECTING_MS,
    ESTIMATION_INTERVAL_HIGH_BATTERY_MS,
    ESTIMATION_INTERVAL_LOW_BATTERY_MS,
    INTERPOLATION_INTERVAL_MS,
    MAX_INTERPOLATED_SAMPLES,
    POST_CHARGING_REASON,
    TRIP_START_REASON,
)
from range_receiver.estimation.milestones import BatteryMilestone, HistoricalSegment, get_milestone_crossed
from range_receiver.estimation.serialization import charging_event_to_dict, snapshot_to_dict
from range_receiver.utils.time_utils import ms_to_iso, now_ms
from range_receiver.utils.wide_events import log_trip_event

logger = logging.getLogger(__name__)


class ChargingState(str, Enum):
    NOT_CHARGING = "not_charging"
    CHARGING_SUSPECTED = "charging_suspected"
    CHARGING_CONFIRMED = "charging_confirmed"


def interpolate_samples(previous: BatterySample, current: BatterySample) -> List[BatterySample]:
    """
    Linearly interpolated samples between two readings, one per 5 seconds.

    Returns an empty list when the gap yields no samples or too many
    (MAX_INTERPOLATED_SAMPLES or more, roughly an hour).
    """
    gap_ms = current.timestamp - previous.timestamp
    count = gap_ms // INTERPOLATION_INTERVAL_MS
    if count <= 0 or count >= MAX_INTERPOLATED_SAMPLES:
        return []

    def lerp(start, end, progress):
        return start + (end - start) * progress

    samples = []
    for i in range(1, count + 1):
        progress = i / (count + 1)
        samples.append(BatterySample(
            timestamp=previous.timestamp + int(gap_ms * progress),
            voltage=lerp(previous.voltage, current.voltage, progress),
            compensated_voltage=lerp(previous.compensated_voltage, current.compensated_voltage, progress),
            battery_percent=lerp(previous.battery_percent, current.battery_percent, progress),
            trip_distance_km=lerp(previous.trip_distance_km, current.trip_distance_km, progress),
            speed_kmh=lerp(previous.speed_kmh, current.speed_kmh, progress),
            power_watts=lerp(previous.power_watts, current.power_watts, progress),
            current_amps=lerp(previous.current_amps, current.current_amps, progress),
            temperature_celsius=previous.temperature_celsius,
            flags=frozenset({SampleFlag.INTERPOLATED}),
        ))
    return samples


def segment_summary(segment: TripSegment) -> Dict:
    return {
        'segment_type': segment.segment_type.value,
        'start_time': ms_to_iso(segment.start_timestamp),
        'end_time': ms_to_iso(segment.end_timestamp),
        'is_active': segment.is_active,
        'is_baseline': segment.is_baseline_segment,
        'baseline_reason': segment.baseline_reason,
        'duration_ms': segment.duration_ms,
        'sample_count': segment.sample_count,
        'valid_sample_count': segment.valid_sample_count,
        'distance_km': round(segment.distance_km, 3),
    }


class RangeEstimationManager:
    """Live trip state plus the estimator that reads it."""

    def __init__(
        self,
        battery_capacity_wh: float,
        cell_count: int,
        algorithm: str = "weighted_window",
        window_minutes: Optional[int] = None,
        weight_decay: Optional[float] = None,
        wheel_type: str = "medium",
        wheel_model: str = "Unknown",
        stale_after_ms: int = 60000,
        on_historical_segment: Optional[Callable[[HistoricalSegment], None]] = None,
    ):
        self.battery_capacity_wh = battery_capacity_wh
        self.cell_count = cell_count
        self.wheel_type = wheel_type
        self.wheel_model = wheel_model
        self.stale_after_ms = stale_after_ms
        self.on_historical_segment = on_historical_segment
        self.compensation_config = get_preset_config(wheel_type)

        self._window_minutes = window_minutes
        self._weight_decay = weight_decay
        self.algorithm = algorithm
        self.estimator = create_estimator(algorithm, battery_capacity_wh, cell_count, window_minutes, weight_decay)

        self._lock = threading.RLock()
        self._clear_state()

    def _clear_state(self) -> None:
        self._trip: Optional[TripSnapshot] = None
        self._last_sample: Optional[BatterySample] = None
        self._previous_compensated: Optional[float] = None
        self._charging_state = ChargingState.NOT_CHARGING
        self._suspected_sample: Optional[BatterySample] = None
        self._pre_charge_sample: Optional[BatterySample] = None
        self._latest_estimate: Optional[RangeEstimate] = None
        self._last_estimation_ms: Optional[int] = None
        self._last_received_ms: Optional[int] = None
        self._milestones: List[BatteryMilestone] = []
        self._last_milestone_percent: Optional[int] = None

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def latest_estimate(self) -> Optional[RangeEstimate]:
        return self._latest_estimate

    @property
    def charging_state(self) -> ChargingState:
        return self._charging_state

    @property
    def last_sample(self) -> Optional[BatterySample]:
        return self._last_sample

    @property
    def has_trip(self) -> bool:
        return self._trip is not None

    @property
    def last_received_ms(self) -> Optional[int]:
        return self._last_received_ms

    @property
    def milestones(self) -> List[BatteryMilestone]:
        with self._lock:
            return list(self._milestones)

    @contextmanager
    def trip_guard(self):
        """Hold the trip lock: the live trip cannot be reset or replaced inside the block."""
        with self._lock:
            yield

    def is_current_trip(self, start_time_ms: int) -> bool:
        with self._lock:
            return self._trip is not None and self._trip.start_time == start_time_ms

    def snapshot_dict(self) -> Optional[Dict]:
        """Serialized copy of the current trip, None before the first sample."""
        with self._lock:
            if self._trip is None:
                return None
            return snapshot_to_dict(self._trip)

    def trip_summary(self) -> Optional[Dict]:
        """Trip overview without per-sample data."""
        with self._lock:
            trip = self._trip
            if trip is None:
                return None
            baseline = trip.current_baseline_segment
            return {
                'start_time': ms_to_iso(trip.start_time),
                'duration_ms': trip.trip_duration_ms,
                'total_distance_km': round(trip.total_distance_km, 3),
                'sample_count': len(trip.samples),
                'valid_sample_count': trip.valid_sample_count,
                'interpolated_sample_count': trip.interpolated_sample_count,
                'is_currently_charging': trip.is_currently_charging,
                'charging_state': self._charging_state.value,
                'baseline_reason': baseline.baseline_reason if baseline else None,
                'distance_since_baseline_km': round(trip.get_distance_km_since_baseline(), 3),
                'riding_time_since_baseline_ms': trip.get_riding_time_ms_since_baseline(),
                'segments': [segment_summary(s) for s in trip.segments],
                'charging_events': [charging_event_to_dict(e) for e in trip.charging_events],
                'milestones': [m.battery_percent for m in self._milestones],
            }

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def set_algorithm(self, algorithm: str) -> None:
        """Switch estimator by name; raises ConfigurationError for unknown names."""
        estimator = create_estimator(
            algorithm, self.battery_capacity_wh, self.cell_count, self._window_minutes, self._weight_decay
        )
        with self._lock:
            self.estimator = estimator
            self.algorithm = algorithm
            logger.info(f"Range algorithm set to {estimator.name}")

    # ------------------------------------------------------------------
    # Write side
    # ------------------------------------------------------------------

    def process_sample(
        self,
        raw_sample: BatterySample,
        is_charging: bool = False,
        received_at_ms: Optional[int] = None,
    ) -> Optional[RangeEstimate]:
        """
        Run one telemetry reading through the pipeline.

        Args:
            raw_sample: Uncompensated reading from the wheel
            is_charging: Charger state reported by the wheel, if any
            received_at_ms: Host receive time, used for staleness (defaults to now)

        Returns:
            The latest estimate after this sample (may be unchanged by throttling)
        """
        new_segments: List[HistoricalSegment] = []

        with self._lock:
            self._last_received_ms = received_at_ms if received_at_ms is not None else now_ms()
            previous = self._last_sample

            base = raw_sample.with_flags(SampleFlag.CHARGING_DETECTED) if is_charging else raw_sample
            sample = validate_and_flag_sample(
                base.with_compensated_voltage(self._compensate(base)), previous, self.cell_count
            )

            force_estimate = self._latest_estimate is not None and self._latest_estimate.status == EstimateStatus.STALE

            if self._trip is None:
                self._start_trip(sample)
            else:
                if SampleFlag.TIME_GAP in sample.flags:
                    self._handle_connection_gap(previous, sample)

                transition = self._update_charging_state(sample, previous)
                if transition == "ended":
                    # Compensation restarts from the settled post-charge voltage
                    self._previous_compensated = initialize_compensated_voltage(base.voltage)
                    sample = validate_and_flag_sample(
                        base.with_compensated_voltage(self._previous_compensated), previous, self.cell_count
                    )
                    self._finish_charging(sample)
                elif transition == "started":
                    self._begin_charging(sample)
                force_estimate = force_estimate or transition is not None

                self._trip.active_segment.samples.append(sample)
                self._trip.samples.append(sample)

            if not self._trip.is_currently_charging:
                new_segments = self._track_milestone(sample)

            if force_estimate or self._should_run_estimation(sample.timestamp, sample.battery_percent):
                self._run_estimation(sample.timestamp)

            self._last_sample = sample
            estimate = self._latest_estimate

        for segment in new_segments:
            self.on_historical_segment(segment)

        return estimate

    def estimate_now(self) -> Optional[RangeEstimate]:
        """Run the estimator immediately, bypassing the refresh schedule."""
        with self._lock:
            if self._trip is None:
                return None
            timestamp = self._last_sample.timestamp if self._last_sample else self._trip.start_time
            return self._run_estimation(timestamp)

    def mark_stale(self, now: Optional[int] = None) -> bool:
        """
        Mark the latest estimate STALE when no sample arrived recently.

        Returns:
            True if the estimate was changed to STALE
        """
        with self._lock:
            if self._latest_estimate is None or self._last_received_ms is None:
                return False
            if self._latest_estimate.status == EstimateStatus.STALE:
                return False
            now = now if now is not None else now_ms()
            if now - self._last_received_ms <= self.stale_after_ms:
                return False
            self._latest_estimate = self._latest_estimate.with_status(EstimateStatus.STALE)
            logger.info(f"Range estimate marked stale, no data for {(now - self._last_received_ms) / 1000:.0f}s")
            return True

    def reset_trip(self) -> Optional[TripSnapshot]:
        """
        Clear the trip. The only way a trip ends.

        Returns:
            The finished trip, or None if no trip was in progress
        """
        with self._lock:
            finished = self._trip
            self._clear_state()

        if finished is not None:
            log_trip_event(
                finished.start_time,
                "trip_reset",
                samples=len(finished.samples),
                distance_km=round(finished.total_distance_km, 3),
                charging_events=len(finished.charging_events),
            )
        return finished

    def restore(self, trip: TripSnapshot) -> Optional[RangeEstimate]:
        """Resume a persisted trip, e.g. after a restart."""
        with self._lock:
            self._clear_state()
            self._trip = trip

            real_samples = [s for s in trip.samples if not s.is_interpolated]
            if real_samples:
                self._last_sample = real_samples[-1]
                self._previous_compensated = real_samples[-1].compensated_voltage
                self._last_milestone_percent = int(real_samples[-1].battery_percent)

            if trip.is_currently_charging:
                self._charging_state = ChargingState.CHARGING_CONFIRMED
                self._pre_charge_sample = self._last_sample

            logger.info(f"Restored trip started {ms_to_iso(trip.start_time)} with {len(trip.samples)} samples")

            if self._last_sample is None:
                return None
            return self._run_estimation(self._last_sample.timestamp)

    # ------------------------------------------------------------------
    # Pipeline steps
    # ------------------------------------------------------------------

    def _compensate(self, sample: BatterySample) -> float:
        if self._previous_compensated is None:
            compensated = initialize_compensated_voltage(sample.voltage)
        else:
            compensated = calculate_compensated_voltage(
                sample.voltage, sample.power_watts, self._previous_compensated, self.compensation_config
            )
            compensated = validate_compensated_voltage(compensated, sample.voltage)
        self._previous_compensated = compensated
        return compensated

    def _start_trip(self, sample: BatterySample) -> None:
        self._trip = TripSnapshot(start_time=sample.timestamp)
        self._trip.segments.append(TripSegment(
            segment_type=SegmentType.NORMAL_RIDING,
            start_timestamp=sample.timestamp,
            samples=[sample],
            is_baseline_segment=True,
            baseline_reason=TRIP_START_REASON,
        ))
        self._trip.samples.append(sample)
        self._last_milestone_percent = int(sample.battery_percent)
        logger.info(f"Trip started at {ms_to_iso(sample.timestamp)}")

    def _handle_connection_gap(self, previous: BatterySample, sample: BatterySample) -> None:
        """
        Record a CONNECTION_GAP segment between previous and sample, then
        resume in a fresh segment of the interrupted kind.
        """
        trip = self._trip
        interrupted = trip.active_segment
        resume_type = interrupted.segment_type if interrupted else SegmentType.NORMAL_RIDING
        if interrupted is not None:
            interrupted.close(previous.timestamp)

        interpolated = interpolate_samples(previous, sample)
        trip.segments.append(TripSegment(
            segment_type=SegmentType.CONNECTION_GAP,
            start_timestamp=previous.timestamp,
            end_timestamp=sample.timestamp,
            samples=interpolated,
        ))
        trip.samples.extend(interpolated)
        trip.segments.append(TripSegment(segment_type=resume_type, start_timestamp=sample.timestamp))

        gap_ms = sample.timestamp - previous.timestamp
        logger.info(f"Connection gap of {gap_ms / 1000:.1f}s, {len(interpolated)} samples interpolated")
        log_trip_event(trip.start_time, "connection_gap", gap_ms=gap_ms, interpolated_samples=len(interpolated))

    def _charging_indicated(self, sample: BatterySample, previous: Optional[BatterySample]) -> bool:
        if SampleFlag.CHARGING_DETECTED in sample.flags:
            return True
        if previous is None:
            return False
        voltage_increase = sample.voltage - previous.voltage
        battery_increase = sample.battery_percent - previous.battery_percent
        distance_change = sample.trip_distance_km - previous.trip_distance_km
        rising = (
            voltage_increase > CHARGING_HEURISTIC_VOLTAGE_INCREASE_V
            or battery_increase > CHARGING_HEURISTIC_BATTERY_INCREASE_PERCENT
        )
        return rising and distance_change < CHARGING_HEURISTIC_MAX_DISTANCE_KM

    def _update_charging_state(self, sample: BatterySample, previous: Optional[BatterySample]) -> Optional[str]:
        """Advance the charging state machine; returns "started", "ended" or None."""
        indicated = self._charging_indicated(sample, previous)

        if self._charging_state == ChargingState.NOT_CHARGING:
            if indicated:
                self._charging_state = ChargingState.CHARGING_SUSPECTED
                self._suspected_sample = sample
                self._pre_charge_sample = previous
                logger.debug("Charging suspected")
            return None

        if self._charging_state == ChargingState.CHARGING_SUSPECTED:
            if indicated:
                self._charging_state = ChargingState.CHARGING_CONFIRMED
                return "started"
            self._charging_state = ChargingState.NOT_CHARGING
            self._suspected_sample = None
            self._pre_charge_sample = None
            return None

        if not indicated:
            self._charging_state = ChargingState.NOT_CHARGING
            return "ended"
        return None

    def _begin_charging(self, sample: BatterySample) -> None:
        trip = self._trip
        suspected = self._suspected_sample or sample
        before = self._pre_charge_sample or suspected

        active = trip.active_segment
        if active is not None:
            active.close(suspected.timestamp)

        trip.charging_events.append(ChargingEvent(
            start_timestamp=suspected.timestamp,
            voltage_before=before.compensated_voltage,
            battery_percent_before=before.battery_percent,
        ))
        trip.segments.append(TripSegment(segment_type=SegmentType.CHARGING, start_timestamp=suspected.timestamp))
        trip.is_currently_charging = True
        self._suspected_sample = None

        logger.info(f"Charging started at {before.battery_percent:.0f}%")
        log_trip_event(
            trip.start_time, "charging_started",
            battery_percent=before.battery_percent, voltage=round(before.compensated_voltage, 2),
        )

    def _finish_charging(self, sample: BatterySample) -> None:
        trip = self._trip
        event = trip.charging_events[-1] if trip.charging_events else None
        if event is not None and event.is_charging:
            energy_percent = calculate_energy_consumed(
                sample.compensated_voltage, event.voltage_before, self.cell_count
            )
            event.complete(
                end_timestamp=sample.timestamp,
                voltage_after=sample.compensated_voltage,
                battery_percent_after=sample.battery_percent,
                energy_added_wh=energy_percent * self.battery_capacity_wh / 100.0,
            )

        active = trip.active_segment
        if active is not None:
            active.close(sample.timestamp)
        trip.segments.append(TripSegment(
            segment_type=SegmentType.NORMAL_RIDING,
            start_timestamp=sample.timestamp,
            is_baseline_segment=True,
            baseline_reason=POST_CHARGING_REASON,
        ))
        trip.is_currently_charging = False
        self._pre_charge_sample = None

        # Milestones restart from the new baseline
        self._milestones = []
        self._last_milestone_percent = int(sample.battery_percent)

        if event is not None:
            logger.info(
                f"Charging completed: +{event.battery_percent_increase:.0f}%, "
                f"{event.energy_added_wh or 0:.0f}Wh in {event.duration_minutes:.1f}min"
            )
            log_trip_event(
                trip.start_time, "charging_completed",
                energy_added_wh=round(event.energy_added_wh or 0.0, 1),
                duration_minutes=round(event.duration_minutes, 1),
                battery_percent_after=sample.battery_percent,
            )

    def _track_milestone(self, sample: BatterySample) -> List[HistoricalSegment]:
        """Record a milestone if the battery crossed one; returns new calibration segments."""
        if self._last_milestone_percent is None or not sample.is_valid_for_estimation:
            return []

        crossed = get_milestone_crossed(self._last_milestone_percent, sample.battery_percent)
        if crossed is None:
            self._last_milestone_percent = int(sample.battery_percent)
            return []

        baseline = self._trip.current_baseline_segment
        if baseline is None or not baseline.samples:
            return []
        start = baseline.samples[0]
        distance_km = sample.trip_distance_km - start.trip_distance_km
        if distance_km <= 0:
            return []

        consumed_percent = calculate_energy_consumed(start.compensated_voltage, sample.compensated_voltage, self.cell_count)
        average_efficiency = consumed_percent / 100.0 * self.battery_capacity_wh / distance_km
        if average_efficiency <= 0:
            return []

        milestone = BatteryMilestone(
            battery_percent=crossed,
            voltage=sample.compensated_voltage,
            distance_km=distance_km,
            time_ms=sample.timestamp - start.timestamp,
            timestamp=sample.timestamp,
            average_efficiency_wh_per_km=average_efficiency,
        )
        self._milestones.append(milestone)
        self._last_milestone_percent = crossed
        logger.debug(f"Milestone {crossed}% at {distance_km:.2f}km, {average_efficiency:.1f}Wh/km")

        if len(self._milestones) < 2 or self.on_historical_segment is None:
            return []
        segment = self._historical_segment(self._milestones[-2], milestone)
        return [segment] if segment else []

    def _historical_segment(self, start: BatteryMilestone, end: BatteryMilestone) -> Optional[HistoricalSegment]:
        distance_km = end.distance_km - start.distance_km
        if distance_km <= 0:
            return None
        consumed_percent = calculate_energy_consumed(start.voltage, end.voltage, self.cell_count)
        return HistoricalSegment(
            start_percent=start.battery_percent,
            end_percent=end.battery_percent,
            start_voltage=start.voltage,
            end_voltage=end.voltage,
            distance_km=distance_km,
            duration_ms=end.time_ms - start.time_ms,
            efficiency_wh_per_km=consumed_percent / 100.0 * self.battery_capacity_wh / distance_km,
            timestamp=end.timestamp,
            wheel_model=self.wheel_model,
            battery_capacity_wh=self.battery_capacity_wh,
        )

    def _should_run_estimation(self, timestamp: int, battery_percent: float) -> bool:
        """
        Refresh schedule:
        - always on the first sample
        - every 10 s until a useful estimate exists
        - then every 5 min at or above 50% battery, every minute below
        """
        if self._last_estimation_ms is None:
            return True

        elapsed = timestamp - self._last_estimation_ms
        latest = self._latest_estimate
        if latest is None or latest.status == EstimateStatus.INSUFFICIENT_DATA:
            return elapsed >= ESTIMATION_INTERVAL_COLLECTING_MS

        if battery_percent >= ESTIMATION_BATTERY_THRESHOLD_PERCENT:
            return elapsed >= ESTIMATION_INTERVAL_HIGH_BATTERY_MS
        return elapsed >= ESTIMATION_INTERVAL_LOW_BATTERY_MS

    def _run_estimation(self, timestamp: int) -> Optional[RangeEstimate]:
        self._latest_estimate = self.estimator.estimate(self._trip)
        self._last_estimation_ms = timestamp
        return self._latest_estimate
