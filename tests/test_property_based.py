"""
Property-based tests using Hypothesis.

Invariants of the estimation engine checked over generated inputs:
discharge curve shape, consumption sign, compensation bounds, validator
boundaries and snapshot serialization.
"""

import pytest
from hypothesis import HealthCheck, given, settings, strategies as st

from range_receiver.estimation import (
    SampleFlag,
    calculate_compensated_voltage,
    calculate_energy_consumed,
    energy_percent_to_voltage,
    validate_and_flag_sample,
    validate_compensated_voltage,
    voltage_to_energy_percent,
)
from range_receiver.estimation.serialization import snapshot_from_dict, snapshot_to_dict
from range_receiver.services.range_estimation_service import RangeEstimationManager
from range_receiver.utils.time_utils import normalize_timestamp_ms

from tests.factories import BASE_TIME_MS, CAPACITY_WH, CELLS, RideFactory, make_sample

cell_counts = st.integers(min_value=10, max_value=40)
percents = st.floats(min_value=0.0, max_value=100.0, allow_nan=False)
pack_voltages = st.floats(min_value=40.0, max_value=180.0, allow_nan=False)


# ============================================================================
# Discharge Curve Property Tests
# ============================================================================

class TestDischargeCurve:
    """Property-based tests for the discharge curve."""

    @given(percents, cell_counts)
    def test_round_trip(self, percent, cells):
        """Property: voltage_to_energy_percent inverts energy_percent_to_voltage."""
        voltage = energy_percent_to_voltage(percent, cells)
        assert voltage_to_energy_percent(voltage, cells) == pytest.approx(percent, abs=1e-6)

    @given(pack_voltages, pack_voltages, cell_counts)
    def test_monotonic(self, a, b, cells):
        """Property: a higher voltage never maps to less energy."""
        low, high = sorted((a, b))
        assert voltage_to_energy_percent(low, cells) <= voltage_to_energy_percent(high, cells) + 1e-9

    @given(pack_voltages, cell_counts)
    def test_bounded(self, voltage, cells):
        assert 0.0 <= voltage_to_energy_percent(voltage, cells) <= 100.0

    @given(pack_voltages, pack_voltages, cell_counts)
    def test_consumption_never_negative(self, start, end, cells):
        assert calculate_energy_consumed(start, end, cells) >= 0.0


# ============================================================================
# Voltage Compensation Property Tests
# ============================================================================

class TestCompensation:
    """Property-based tests for voltage sag compensation."""

    @given(
        st.floats(min_value=60.0, max_value=84.0),
        st.floats(min_value=60.0, max_value=84.0),
        st.floats(min_value=0.0, max_value=5000.0),
    )
    def test_between_raw_and_previous(self, raw, previous, power):
        """Property: the smoothed value lies between the new reading and the last value."""
        compensated = calculate_compensated_voltage(raw, power, previous)
        assert min(raw, previous) - 1e-9 <= compensated <= max(raw, previous) + 1e-9

    @given(st.floats(min_value=60.0, max_value=84.0), st.floats(min_value=-100.0, max_value=200.0))
    def test_clamped_to_max_deviation(self, raw, compensated):
        assert abs(validate_compensated_voltage(compensated, raw) - raw) <= 5.0 + 1e-9

    @given(st.floats(min_value=60.0, max_value=84.0), st.floats(min_value=60.0, max_value=84.0))
    def test_converges_on_steady_voltage(self, start, steady):
        """Property: a constant reading is approached without overshoot."""
        value = start
        for _ in range(200):
            value = calculate_compensated_voltage(steady, 200.0, value)
        assert value == pytest.approx(steady, abs=0.01)


# ============================================================================
# Validator Property Tests
# ============================================================================

class TestValidator:
    """Property-based tests for sample validation."""

    @given(st.integers(min_value=0, max_value=3_600_000))
    def test_time_gap_boundary(self, delta_ms):
        """Property: TIME_GAP is set exactly when the gap exceeds five seconds."""
        previous = make_sample()
        current = make_sample(timestamp=BASE_TIME_MS + delta_ms)

        flags = validate_and_flag_sample(current, previous).flags

        assert (SampleFlag.TIME_GAP in flags) == (delta_ms > 5000)

    @given(st.sets(st.sampled_from(list(SampleFlag))))
    def test_flags_only_added(self, existing):
        previous = make_sample()
        current = make_sample(timestamp=BASE_TIME_MS + 30000, flags=existing)
        assert existing <= validate_and_flag_sample(current, previous).flags

    @given(st.floats(min_value=0.0, max_value=1e10, allow_nan=False))
    def test_seconds_normalized(self, seconds):
        assert normalize_timestamp_ms(seconds) == int(round(seconds * 1000))


# ============================================================================
# Trip Pipeline Property Tests
# ============================================================================

class TestTripPipeline:
    """Property-based tests for the manager and snapshot serialization."""

    @given(
        st.lists(st.integers(min_value=1000, max_value=60000), min_size=1, max_size=30),
        st.floats(min_value=10.0, max_value=60.0),
    )
    @settings(max_examples=50, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    def test_samples_stay_ordered(self, intervals, speed):
        """Property: trip samples are chronological whatever gaps occur."""
        manager = RangeEstimationManager(CAPACITY_WH, CELLS, algorithm="simple_linear")
        ride = RideFactory(speed_kmh=speed)
        for interval in intervals:
            ride.interval_ms = interval
            manager.process_sample(ride.next())

        timestamps = [s["timestamp"] for s in manager.snapshot_dict()["samples"]]
        assert timestamps == sorted(timestamps)
        assert len(timestamps) >= len(intervals)

    @given(st.integers(min_value=1, max_value=40))
    @settings(max_examples=25, deadline=None)
    def test_snapshot_round_trip(self, count):
        """Property: serializing a snapshot loses nothing."""
        manager = RangeEstimationManager(CAPACITY_WH, CELLS, algorithm="simple_linear")
        for sample in RideFactory().take(count):
            manager.process_sample(sample)

        data = manager.snapshot_dict()

        assert snapshot_to_dict(snapshot_from_dict(data)) == data

