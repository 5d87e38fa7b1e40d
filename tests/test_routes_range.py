"""
Tests for the range API endpoints.

Tests:
- Sample ingestion (single, list, wrapped batch) and payload errors
- Estimate, trip summary and trip reset
- Historical calibration data
- Configuration
"""

from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from range_receiver.exceptions import DatabaseError
from range_receiver.models import TripRecord
from range_receiver.services import historical_data_service

from tests.factories import BASE_TIME_MS, RideFactory, make_historical_segment, sample_payload


def ride_payloads(count, **ride_kwargs):
    return [
        {
            "timestamp": s.timestamp,
            "voltage": s.voltage,
            "power": s.power_watts,
            "speed": s.speed_kmh,
            "trip_distance": s.trip_distance_km,
            "battery_percent": s.battery_percent,
        }
        for s in RideFactory(**ride_kwargs).take(count)
    ]


class TestIngestSamples:
    """Tests for POST /api/range/samples"""

    def test_single_sample(self, client):
        response = client.post("/api/range/samples", json=sample_payload())

        assert response.status_code == 200
        data = response.get_json()
        assert data["processed"] == 1
        assert data["estimate"]["status"] == "insufficient_data"

    def test_batch_reaches_valid_estimate(self, client):
        response = client.post("/api/range/samples", json=ride_payloads(130))

        data = response.get_json()
        assert data["processed"] == 130
        assert data["estimate"]["status"] == "valid"
        assert data["estimate"]["range_km"] > 0

    def test_wrapped_batch(self, client):
        response = client.post("/api/range/samples", json={"samples": ride_payloads(3)})
        assert response.get_json()["processed"] == 3

    def test_charging_flag_passed_through(self, client, range_manager):
        client.post("/api/range/samples", json=ride_payloads(3))
        client.post("/api/range/samples", json=sample_payload(timestamp=BASE_TIME_MS + 15000, speed=0, power=0, charging=True))
        assert range_manager.charging_state.value == "charging_suspected"

    def test_empty_body(self, client):
        response = client.post("/api/range/samples")

        assert response.status_code == 400
        assert response.get_json()["code"] == "E001"

    def test_invalid_json(self, client):
        response = client.post("/api/range/samples", data="{not json", content_type="application/json")

        assert response.status_code == 400
        assert response.get_json()["code"] == "E303"

    def test_empty_list(self, client):
        response = client.post("/api/range/samples", json=[])
        assert response.get_json()["code"] == "E001"

    def test_batch_too_large(self, client):
        response = client.post("/api/range/samples", json=[sample_payload()] * 1001)

        assert response.status_code == 413
        assert response.get_json()["details"]["samples"] == 1001

    def test_bad_sample_rejects_whole_batch(self, client, range_manager):
        payloads = ride_payloads(3)
        payloads[1]["speed"] = "fast"

        response = client.post("/api/range/samples", json=payloads)

        assert response.status_code == 400
        data = response.get_json()
        assert data["code"] == "E003"
        assert data["details"]["index"] == 1
        assert data["details"]["field"] == "speed_kmh"
        assert not range_manager.has_trip

    def test_missing_field(self, client):
        payload = sample_payload()
        del payload["voltage"]

        response = client.post("/api/range/samples", json=payload)

        assert response.get_json()["code"] == "E002"


class TestEstimateAndTrip:
    """Tests for GET /api/range/estimate and /api/range/trip"""

    def test_no_estimate_yet(self, client):
        response = client.get("/api/range/estimate")

        assert response.status_code == 404
        assert response.get_json()["code"] == "E402"

    def test_estimate(self, client):
        client.post("/api/range/samples", json=ride_payloads(130))

        data = client.get("/api/range/estimate").get_json()

        assert data["status"] == "valid"
        assert data["algorithm"] == "Weighted Window"
        assert data["data_quality"]["baseline_reason"] == "Trip start"

    def test_refresh(self, client, range_manager):
        client.post("/api/range/samples", json=ride_payloads(5))
        before = range_manager.latest_estimate

        client.get("/api/range/estimate?refresh=1")

        assert range_manager.latest_estimate is not before

    def test_no_trip_yet(self, client):
        assert client.get("/api/range/trip").status_code == 404

    def test_trip_summary(self, client):
        client.post("/api/range/samples", json=ride_payloads(13))

        data = client.get("/api/range/trip").get_json()

        assert data["sample_count"] == 13
        assert data["distance_since_baseline_km"] == 1.0
        assert data["segments"][0]["is_baseline"] is True
        assert data["charging_state"] == "not_charging"


class TestResetTrip:
    """Tests for POST /api/range/trip/reset"""

    def test_nothing_to_reset(self, client):
        data = client.post("/api/range/trip/reset").get_json()
        assert data["reset"] is False

    def test_reset_stores_finished_trip(self, client, db_session):
        client.post("/api/range/samples", json=ride_payloads(20))

        data = client.post("/api/range/trip/reset").get_json()

        assert data["reset"] is True
        assert data["trip"]["is_active"] is False
        assert data["trip"]["sample_count"] == 20
        assert db_session.query(TripRecord).count() == 1
        assert client.get("/api/range/trip").status_code == 404

    def test_database_failure(self, client):
        client.post("/api/range/samples", json=ride_payloads(3))

        with patch("range_receiver.routes.range.save_trip", side_effect=DatabaseError("Failed to save trip")):
            response = client.post("/api/range/trip/reset")

        assert response.status_code == 500
        data = response.get_json()
        assert data["code"] == "E201"
        assert data["details"]["path"] == "/api/range/trip/reset"

    def test_lost_database_connection_is_503(self, client):
        client.post("/api/range/samples", json=ride_payloads(3))
        lost = OperationalError("COMMIT", {}, Exception("server closed the connection unexpectedly"))

        with patch("sqlalchemy.orm.session.Session.commit", side_effect=lost):
            response = client.post("/api/range/trip/reset")

        assert response.status_code == 503
        assert response.get_json()["code"] == "E200"


class TestHistory:
    """Tests for /api/range/history"""

    def test_empty_history(self, client):
        data = client.get("/api/range/history").get_json()

        assert data["statistics"]["total_segments"] == 0
        assert data["segments"] == []
        assert data["calibration"] is None

    def test_history_with_calibration(self, client, db_session):
        historical_data_service.add_segment(db_session, make_historical_segment(wheel_model="Unknown"))
        client.post("/api/range/samples", json=ride_payloads(130))

        data = client.get("/api/range/history").get_json()

        assert data["wheel_model"] == "Unknown"
        # The ride itself stores its 85% -> 80% band as well
        assert 200.0 in [s["energy_consumed_wh"] for s in data["segments"]]
        calibration = data["calibration"]
        assert calibration["historical_efficiency_wh_per_km"] == pytest.approx(20.0, rel=0.1)
        assert 0.8 <= calibration["factor"] <= 1.2

    def test_wheel_filter(self, client, db_session):
        historical_data_service.add_segment(db_session, make_historical_segment(wheel_model="Sherman"))

        assert len(client.get("/api/range/history?wheel=sherman").get_json()["segments"]) == 1
        assert client.get("/api/range/history").get_json()["segments"] == []

    def test_clear_history(self, client, db_session):
        historical_data_service.add_segment(db_session, make_historical_segment())

        assert client.delete("/api/range/history").get_json() == {"removed": 1}
        assert client.get("/api/range/history").get_json()["statistics"]["total_segments"] == 0


class TestConfig:
    """Tests for /api/range/config"""

    def test_get_config(self, client):
        data = client.get("/api/range/config").get_json()

        assert data["cell_count"] == 20
        assert data["voltage_range"] == {"min": 60.0, "max": 84.0}
        assert data["algorithm"] == "weighted_window"
        assert data["available_algorithms"] == ["simple_linear", "weighted_window"]
        assert data["stale_after_seconds"] == 60

    def test_switch_algorithm(self, client, range_manager):
        response = client.post("/api/range/config", json={"algorithm": "Simple_Linear"})

        assert response.get_json() == {"algorithm": "simple_linear", "algorithm_name": "Simple Linear"}
        assert range_manager.estimator.name == "Simple Linear"

    def test_unknown_algorithm(self, client):
        response = client.post("/api/range/config", json={"algorithm": "tea_leaves"})

        assert response.status_code == 400
        data = response.get_json()
        assert data["code"] == "E003"
        assert data["details"]["available"] == ["simple_linear", "weighted_window"]
