"""
Tests for the simple linear estimator and estimator construction.
"""

import pytest

from range_receiver.estimation import (
    EstimateStatus,
    SampleFlag,
    SimpleLinearEstimator,
    TripSnapshot,
    WeightedWindowEstimator,
    create_estimator,
)
from range_receiver.estimation.simple_linear import calculate_linear_confidence
from range_receiver.exceptions import ConfigurationError

from tests.factories import BASE_TIME_MS, CAPACITY_WH, CELLS, RideFactory, trip_from_samples


@pytest.fixture
def estimator():
    return SimpleLinearEstimator(CAPACITY_WH, CELLS)


class TestLinearConfidence:
    """Tests for calculate_linear_confidence()"""

    def test_full_data(self):
        assert calculate_linear_confidence(100, 20.0, 20.0) == pytest.approx(1.0)

    def test_half_data(self):
        assert calculate_linear_confidence(50, 10.0, 10.0) == pytest.approx(0.5)

    def test_capped_at_one(self):
        assert calculate_linear_confidence(1000, 200.0, 300.0) == pytest.approx(1.0)

    def test_no_data(self):
        assert calculate_linear_confidence(0, 0.0, 0.0) == 0.0


class TestSimpleLinearEstimate:
    """Tests for SimpleLinearEstimator.estimate()"""

    def test_steady_ride(self, estimator):
        """90% start, 10.75 km at 20 Wh/km leaves 79.25% = 79.25 km."""
        trip = trip_from_samples(RideFactory(start_percent=90.0).take(130))

        estimate = estimator.estimate(trip)

        assert estimate.status == EstimateStatus.VALID
        assert estimate.efficiency_wh_per_km == pytest.approx(20.0, rel=1e-6)
        assert estimate.range_km == pytest.approx(79.25, rel=1e-6)
        assert estimate.estimated_time_minutes == pytest.approx(79.25, rel=1e-6)
        assert estimate.confidence == pytest.approx(0.3 + 0.4 * 10.75 / 20 + 0.3 * 10.75 / 20)
        assert estimate.data_quality.meets_both_requirements
        assert estimate.data_quality.baseline_reason == "Trip start"

    def test_nine_minutes_nine_km_is_insufficient(self, estimator):
        trip = trip_from_samples(RideFactory().take(109))

        estimate = estimator.estimate(trip)

        assert estimate.status == EstimateStatus.INSUFFICIENT_DATA
        assert estimate.range_km is None
        assert estimate.data_quality.travel_distance_km == pytest.approx(9.0)
        assert estimate.data_quality.travel_time_minutes == pytest.approx(9.0)

    def test_time_met_but_not_distance_is_collecting(self, estimator):
        """Slow ride: 10 minutes but only 5 km still gets a provisional range."""
        trip = trip_from_samples(RideFactory(speed_kmh=30.0).take(121))

        estimate = estimator.estimate(trip)

        assert estimate.status == EstimateStatus.COLLECTING
        assert estimate.range_km is not None
        assert estimate.data_quality.meets_minimum_time
        assert not estimate.data_quality.meets_minimum_distance

    def test_low_confidence_with_few_samples(self, estimator):
        """Sparse samples meet the thresholds but score low."""
        trip = trip_from_samples(RideFactory(interval_ms=60000).take(12))

        estimate = estimator.estimate(trip)

        assert estimate.data_quality.meets_both_requirements
        assert estimate.status == EstimateStatus.LOW_CONFIDENCE
        assert estimate.is_low_confidence

    def test_charging_short_circuits(self, estimator):
        trip = trip_from_samples(RideFactory().take(130))
        trip.is_currently_charging = True

        estimate = estimator.estimate(trip)

        assert estimate.status == EstimateStatus.CHARGING
        assert estimate.range_km is None
        assert estimate.confidence == 0.0

    def test_no_baseline_returns_none(self, estimator):
        assert estimator.estimate(TripSnapshot(start_time=BASE_TIME_MS)) is None

    def test_no_valid_samples_returns_none(self, estimator):
        samples = [s.with_flags(SampleFlag.SPEED_ANOMALY) for s in RideFactory().take(20)]
        assert estimator.estimate(trip_from_samples(samples)) is None

    def test_no_consumption_is_insufficient(self, estimator):
        """Voltage never dropped: efficiency would be zero."""
        samples = [s.with_compensated_voltage(80.0) for s in RideFactory().take(130)]

        estimate = estimator.estimate(trip_from_samples(samples))

        assert estimate.status == EstimateStatus.INSUFFICIENT_DATA

    def test_flagged_samples_ignored(self, estimator):
        samples = RideFactory().take(130)
        samples[50] = samples[50].with_flags(SampleFlag.VOLTAGE_ANOMALY)
        trip = trip_from_samples(samples)

        estimate = estimator.estimate(trip)

        assert estimate.data_quality.valid_samples == 129
        assert estimate.data_quality.total_samples == 130
        assert estimate.status == EstimateStatus.VALID

    def test_to_dict(self, estimator):
        result = estimator.estimate(trip_from_samples(RideFactory().take(130))).to_dict()
        assert result["status"] == "valid"
        assert result["range_km"] == pytest.approx(79.25, abs=0.01)
        assert result["is_valid"] is True
        assert result["data_quality"]["meets_minimum_distance"] is True


class TestCreateEstimator:
    """Tests for create_estimator()"""

    def test_simple_linear(self):
        estimator = create_estimator("simple_linear", CAPACITY_WH, CELLS)
        assert isinstance(estimator, SimpleLinearEstimator)
        assert estimator.name == "Simple Linear"

    def test_weighted_window_overrides(self):
        estimator = create_estimator("weighted_window", CAPACITY_WH, CELLS, window_minutes=15, weight_decay=0.7)
        assert isinstance(estimator, WeightedWindowEstimator)
        assert estimator.window_minutes == 15
        assert estimator.weight_decay == 0.7

    def test_name_is_case_insensitive(self):
        assert isinstance(create_estimator("Simple_Linear", CAPACITY_WH, CELLS), SimpleLinearEstimator)

    def test_unknown_algorithm(self):
        with pytest.raises(ConfigurationError) as exc_info:
            create_estimator("neural_net", CAPACITY_WH, CELLS)
        assert exc_info.value.config_key == "RANGE_ALGORITHM"

    @pytest.mark.parametrize("capacity, cells, key", [
        (0, 20, "BATTERY_CAPACITY_WH"),
        (-100, 20, "BATTERY_CAPACITY_WH"),
        (2000, 0, "BATTERY_CELL_COUNT"),
    ])
    def test_invalid_battery_config(self, capacity, cells, key):
        with pytest.raises(ConfigurationError) as exc_info:
            create_estimator("simple_linear", capacity, cells)
        assert exc_info.value.config_key == key

    def test_invalid_window(self):
        with pytest.raises(ConfigurationError):
            create_estimator("weighted_window", CAPACITY_WH, CELLS, window_minutes=0)
