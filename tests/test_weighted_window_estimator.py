"""
Tests for the weighted window estimator.
"""

import math

import pytest

from range_receiver.estimation import EstimateStatus, SampleFlag, WeightedWindowEstimator, WindowPreset
from range_receiver.estimation.weighted_window import (
    calculate_efficiency_std_dev,
    calculate_weighted_efficiency,
    calculate_window_confidence,
)

from tests.factories import BASE_TIME_MS, CAPACITY_WH, CELLS, RideFactory, make_sample, trip_from_samples


@pytest.fixture
def estimator():
    return WeightedWindowEstimator(CAPACITY_WH, CELLS)


class TestWeightedEfficiency:
    """Tests for calculate_weighted_efficiency()"""

    def test_recent_samples_weigh_more(self):
        old = make_sample(timestamp=BASE_TIME_MS, power_watts=600.0, speed_kmh=30.0)  # 20 Wh/km
        new = make_sample(timestamp=BASE_TIME_MS + 30 * 60000, power_watts=1200.0, speed_kmh=30.0)  # 40 Wh/km

        result = calculate_weighted_efficiency([old, new], new.timestamp, 30, 0.5)

        old_weight = math.exp(-0.5)
        assert result == pytest.approx((20.0 * old_weight + 40.0) / (old_weight + 1.0))

    def test_unusable_efficiencies_skipped(self):
        samples = [
            make_sample(power_watts=600.0),  # 20 Wh/km
            make_sample(power_watts=90.0),  # 3 Wh/km, below range
            make_sample(speed_kmh=0.0),  # undefined
        ]
        assert calculate_weighted_efficiency(samples, BASE_TIME_MS, 30, 0.5) == pytest.approx(20.0)

    def test_nothing_usable_is_nan(self):
        samples = [make_sample(speed_kmh=0.0)]
        assert math.isnan(calculate_weighted_efficiency(samples, BASE_TIME_MS, 30, 0.5))


class TestStdDevAndConfidence:
    """Tests for calculate_efficiency_std_dev() and calculate_window_confidence()"""

    def test_std_dev(self):
        samples = [make_sample(power_watts=300.0), make_sample(power_watts=900.0)]  # 10 and 30 Wh/km
        assert calculate_efficiency_std_dev(samples, 20.0) == pytest.approx(10.0)

    def test_std_dev_about_weighted_mean(self):
        """Deviation is measured from the supplied mean, not the plain average."""
        samples = [make_sample(power_watts=300.0), make_sample(power_watts=900.0)]
        assert calculate_efficiency_std_dev(samples, 25.0) == pytest.approx(125.0 ** 0.5)

    def test_std_dev_single_sample(self):
        assert calculate_efficiency_std_dev([make_sample()], 20.0) == 0.0

    def test_perfect_confidence(self):
        assert calculate_window_confidence(100, 0.0, 20.0, 20.0, 20.0) == pytest.approx(1.0)

    def test_high_variation_loses_consistency_half(self):
        assert calculate_window_confidence(100, 10.0, 20.0, 20.0, 20.0) == pytest.approx(0.5)

    def test_adequacy_uses_weakest_score(self):
        assert calculate_window_confidence(100, 0.0, 20.0, 5.0, 20.0) == pytest.approx(0.5 + 0.5 * 0.25)


class TestWeightedWindowEstimate:
    """Tests for WeightedWindowEstimator.estimate()"""

    def test_steady_ride(self, estimator):
        trip = trip_from_samples(RideFactory(start_percent=90.0).take(130))

        estimate = estimator.estimate(trip)

        assert estimate.status == EstimateStatus.VALID
        assert estimate.efficiency_wh_per_km == pytest.approx(20.0)
        assert estimate.range_km == pytest.approx(79.25, rel=1e-6)
        assert estimate.confidence == pytest.approx(0.5 + 0.5 * 10.75 / 20)
        assert estimate.estimated_time_minutes == pytest.approx(79.25, rel=1e-6)

    def test_requires_both_thresholds(self, estimator):
        """Unlike Simple Linear there is no COLLECTING state."""
        trip = trip_from_samples(RideFactory(speed_kmh=30.0).take(121))

        estimate = estimator.estimate(trip)

        assert estimate.status == EstimateStatus.INSUFFICIENT_DATA
        assert estimate.range_km is None

    def test_adapts_to_harder_riding(self, estimator):
        """After switching from 20 to 40 Wh/km the estimate leans to the recent figure."""
        ride = RideFactory(start_percent=95.0)
        samples = ride.take(120)
        ride.efficiency_wh_per_km = 40.0
        samples += ride.take(120)

        estimate = estimator.estimate(trip_from_samples(samples))

        assert 30.0 < estimate.efficiency_wh_per_km < 40.0

    def test_shorter_window_reacts_faster(self, estimator):
        """A 15 minute window drops most of the gentle first half of a 20 minute ride."""
        ride = RideFactory(start_percent=95.0)
        samples = ride.take(120)
        ride.efficiency_wh_per_km = 40.0
        samples += ride.take(120)
        trip = trip_from_samples(samples)
        responsive = WeightedWindowEstimator.from_preset(CAPACITY_WH, CELLS, WindowPreset.RESPONSIVE)

        balanced_efficiency = estimator.estimate(trip).efficiency_wh_per_km
        responsive_efficiency = responsive.estimate(trip).efficiency_wh_per_km

        assert responsive_efficiency > balanced_efficiency

    def test_charging_short_circuits(self, estimator):
        trip = trip_from_samples(RideFactory().take(130))
        trip.is_currently_charging = True
        assert estimator.estimate(trip).status == EstimateStatus.CHARGING

    def test_no_valid_samples_returns_none(self, estimator):
        samples = [s.with_flags(SampleFlag.TIME_GAP) for s in RideFactory().take(10)]
        assert estimator.estimate(trip_from_samples(samples)) is None

    def test_degenerate_efficiency_is_insufficient(self, estimator):
        """Every efficiency outside (5, 200) Wh/km leaves nothing to weight."""
        samples = RideFactory(efficiency_wh_per_km=4.0).take(130)

        estimate = estimator.estimate(trip_from_samples(samples))

        assert estimate.status == EstimateStatus.INSUFFICIENT_DATA


class TestPresets:
    """Tests for window presets."""

    @pytest.mark.parametrize("preset, window, decay", [
        (WindowPreset.CONSERVATIVE, 45, 0.3),
        (WindowPreset.BALANCED, 30, 0.5),
        ("responsive", 15, 0.7),
    ])
    def test_from_preset(self, preset, window, decay):
        estimator = WeightedWindowEstimator.from_preset(CAPACITY_WH, CELLS, preset)
        assert estimator.window_minutes == window
        assert estimator.weight_decay == decay

    def test_description_mentions_window(self):
        assert "45min" in WeightedWindowEstimator(CAPACITY_WH, CELLS, window_minutes=45).description
