"""
Range routes for the range receiver.

Handles telemetry sample ingestion, the live range estimate, the trip
summary and reset, historical calibration data and configuration.
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from range_receiver.config import Config
from range_receiver.database import get_db
from range_receiver.estimation import ESTIMATORS, get_voltage_range
from range_receiver.estimation.serialization import snapshot_to_dict
from range_receiver.exceptions import RangeTrackerError, SampleParsingError
from range_receiver.services import historical_data_service
from range_receiver.services.trip_store import save_trip
from range_receiver.utils.error_codes import ErrorCode, StructuredError
from range_receiver.utils.sample_parser import SampleParser
from range_receiver.utils.wide_events import WideEvent

logger = logging.getLogger(__name__)

range_bp = Blueprint("range", __name__)

MAX_BATCH_SAMPLES = 1000


def get_manager():
    """RangeEstimationManager owned by the current app."""
    return current_app.extensions["range_manager"]


def error_response(structured_error: StructuredError):
    return jsonify(structured_error.to_response()), structured_error.http_status


@range_bp.errorhandler(RangeTrackerError)
def handle_range_error(error):
    structured_error = StructuredError.from_exception(error, path=request.path)
    log = logger.warning if structured_error.http_status < 500 else logger.error
    log(str(structured_error), extra={"error": structured_error.to_dict()})
    return error_response(structured_error)


def _no_data_response():
    return error_response(StructuredError(ErrorCode.E402_NO_TELEMETRY_DATA, "No telemetry received yet"))


@range_bp.route("/range/samples", methods=["POST"])
def ingest_samples():
    """
    Ingest one sample or a batch of samples.

    Request body: a sample object, a list of sample objects, or
    {"samples": [...]} (see SampleParser for field names).

    The whole batch is parsed before any sample is processed, so a bad
    sample rejects the batch without touching the trip.
    """
    event = WideEvent("sample_ingest")
    event.add_context(remote_addr=request.remote_addr)

    data = request.get_json(silent=True)
    if data is None:
        code = ErrorCode.E303_JSON_DECODE_ERROR if request.get_data() else ErrorCode.E001_EMPTY_PAYLOAD
        structured_error = StructuredError(code, "Request body must be a JSON sample or list of samples")
        event.mark_failure(structured_error.message)
        event.emit(level="warning")
        return error_response(structured_error)

    if isinstance(data, dict) and isinstance(data.get("samples"), list):
        data = data["samples"]
    payloads = data if isinstance(data, list) else [data]

    if not payloads:
        event.mark_failure("empty batch")
        event.emit(level="warning")
        return error_response(StructuredError(ErrorCode.E001_EMPTY_PAYLOAD, "No samples provided"))
    if len(payloads) > MAX_BATCH_SAMPLES:
        event.mark_failure("batch too large")
        event.emit(level="warning")
        return error_response(StructuredError(
            ErrorCode.E004_BATCH_TOO_LARGE,
            f"At most {MAX_BATCH_SAMPLES} samples per request",
            samples=len(payloads),
        ))

    manager = get_manager()
    parsed = []
    for index, payload in enumerate(payloads):
        try:
            parsed.append(SampleParser.parse(payload, cell_count=manager.cell_count))
        except SampleParsingError as e:
            structured_error = StructuredError.from_exception(e, index=index)
            event.add_error(e, index=index)
            event.emit(level="warning")
            return error_response(structured_error)

    with event.timer("process"):
        for fields in parsed:
            estimate = manager.process_sample(
                SampleParser.to_battery_sample(fields), is_charging=fields["is_charging"]
            )

    event.add_business_metric("samples", len(parsed))
    if estimate is not None:
        event.add_business_metric("status", estimate.status.value)
        event.add_business_metric("range_km", estimate.to_dict()["range_km"])
    event.mark_success()
    event.emit()

    return jsonify({
        "processed": len(parsed),
        "estimate": estimate.to_dict() if estimate else None,
    })


@range_bp.route("/range/estimate", methods=["GET"])
def get_estimate():
    """
    Get the current range estimate.

    Query params:
        refresh: "1" or "true" to recompute now instead of returning the
            last scheduled estimate
    """
    manager = get_manager()
    refresh = request.args.get("refresh", "").lower() in ("1", "true", "yes")
    estimate = manager.estimate_now() if refresh else manager.latest_estimate
    if estimate is None:
        return _no_data_response()

    result = estimate.to_dict()
    result["algorithm"] = manager.estimator.name
    return jsonify(result)


@range_bp.route("/range/trip", methods=["GET"])
def get_trip():
    """Summary of the live trip: segments, charging events and counts."""
    summary = get_manager().trip_summary()
    if summary is None:
        return _no_data_response()
    return jsonify(summary)


@range_bp.route("/range/trip/reset", methods=["POST"])
def reset_trip():
    """
    Reset the live trip.

    The finished trip is stored as an inactive record before the state is
    cleared. This is the only way a trip ends.
    """
    manager = get_manager()
    finished = manager.reset_trip()
    if finished is None:
        return jsonify({"reset": False, "message": "No trip in progress"})

    record = save_trip(get_db(), snapshot_to_dict(finished), algorithm=manager.algorithm, is_active=False)
    return jsonify({"reset": True, "trip": record.to_dict()})


@range_bp.route("/range/history", methods=["GET"])
def get_history():
    """
    Historical calibration data.

    Query params:
        wheel: Wheel model to filter segments by (defaults to configured model)
    """
    db = get_db()
    manager = get_manager()
    wheel_model = request.args.get("wheel", manager.wheel_model)

    segments = historical_data_service.get_segments_for_wheel(db, wheel_model)
    result = {
        "statistics": historical_data_service.get_statistics(db),
        "wheel_model": wheel_model,
        "segments": [
            {
                "start_percent": s.start_percent,
                "end_percent": s.end_percent,
                "distance_km": round(s.distance_km, 3),
                "efficiency_wh_per_km": round(s.efficiency_wh_per_km, 2),
                "energy_consumed_wh": round(s.energy_consumed_wh, 1),
            }
            for s in segments
        ],
        "calibration": None,
    }

    sample = manager.last_sample
    estimate = manager.latest_estimate
    if sample is not None and estimate is not None and (estimate.efficiency_wh_per_km or 0) > 0:
        current_percent = sample.battery_percent
        result["calibration"] = {
            "enabled": Config.HISTORICAL_CALIBRATION_ENABLED,
            "current_percent": round(current_percent, 1),
            "predicted_efficiency_wh_per_km": round(estimate.efficiency_wh_per_km, 2),
            "historical_efficiency_wh_per_km": historical_data_service.get_average_efficiency(
                db, 100, current_percent, wheel_model
            ),
            "factor": historical_data_service.get_calibration_factor(
                db, current_percent, estimate.efficiency_wh_per_km, wheel_model
            ),
        }

    return jsonify(result)


@range_bp.route("/range/history", methods=["DELETE"])
def clear_history():
    """Delete all historical calibration segments."""
    removed = historical_data_service.clear_all_data(get_db())
    return jsonify({"removed": removed})


@range_bp.route("/range/config", methods=["GET"])
def get_config():
    """Battery configuration and the selected algorithm."""
    manager = get_manager()
    min_voltage, max_voltage = get_voltage_range(manager.cell_count)
    return jsonify({
        "battery_capacity_wh": manager.battery_capacity_wh,
        "cell_count": manager.cell_count,
        "voltage_range": {"min": round(min_voltage, 2), "max": round(max_voltage, 2)},
        "wheel_type": manager.wheel_type,
        "wheel_model": manager.wheel_model,
        "algorithm": manager.algorithm,
        "algorithm_name": manager.estimator.name,
        "algorithm_description": manager.estimator.description,
        "available_algorithms": sorted(ESTIMATORS),
        "stale_after_seconds": manager.stale_after_ms // 1000,
        "historical_calibration_enabled": Config.HISTORICAL_CALIBRATION_ENABLED,
    })


@range_bp.route("/range/config", methods=["POST"])
def update_config():
    """
    Select the estimation algorithm.

    Request body:
        algorithm: One of the available algorithm names
    """
    data = request.get_json(silent=True) or {}
    algorithm = str(data.get("algorithm", "")).strip().lower()
    if algorithm not in ESTIMATORS:
        return error_response(StructuredError(
            ErrorCode.E003_INVALID_DATA_TYPE,
            f"Unknown algorithm '{algorithm}'",
            field="algorithm",
            available=sorted(ESTIMATORS),
        ))

    manager = get_manager()
    manager.set_algorithm(algorithm)
    return jsonify({"algorithm": manager.algorithm, "algorithm_name": manager.estimator.name})
