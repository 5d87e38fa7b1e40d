"""
Trip snapshot serialization.

Converts a TripSnapshot to plain JSON-compatible dicts and back, preserving
every field: segment boundaries, baseline markers, charging events and the
flag set of each sample.
"""

from typing import Any, Dict

from range_receiver.exceptions import TripStateError

from .trip import BatterySample, ChargingEvent, SampleFlag, SegmentType, TripSegment, TripSnapshot

SNAPSHOT_FORMAT_VERSION = 1


def sample_to_dict(sample: BatterySample) -> Dict[str, Any]:
    return {
        "timestamp": sample.timestamp,
        "voltage": sample.voltage,
        "compensated_voltage": sample.compensated_voltage,
        "power_watts": sample.power_watts,
        "speed_kmh": sample.speed_kmh,
        "trip_distance_km": sample.trip_distance_km,
        "battery_percent": sample.battery_percent,
        "current_amps": sample.current_amps,
        "temperature_celsius": sample.temperature_celsius,
        "flags": sorted(flag.value for flag in sample.flags),
    }


def sample_from_dict(data: Dict[str, Any]) -> BatterySample:
    return BatterySample(
        timestamp=int(data["timestamp"]),
        voltage=float(data["voltage"]),
        compensated_voltage=float(data["compensated_voltage"]),
        power_watts=float(data["power_watts"]),
        speed_kmh=float(data["speed_kmh"]),
        trip_distance_km=float(data["trip_distance_km"]),
        battery_percent=float(data["battery_percent"]),
        current_amps=float(data.get("current_amps", 0.0)),
        temperature_celsius=float(data.get("temperature_celsius", -1.0)),
        flags=frozenset(SampleFlag(flag) for flag in data.get("flags", [])),
    )


def segment_to_dict(segment: TripSegment) -> Dict[str, Any]:
    return {
        "segment_type": segment.segment_type.value,
        "start_timestamp": segment.start_timestamp,
        "end_timestamp": segment.end_timestamp,
        "is_baseline_segment": segment.is_baseline_segment,
        "baseline_reason": segment.baseline_reason,
        "samples": [sample_to_dict(s) for s in segment.samples],
    }


def segment_from_dict(data: Dict[str, Any]) -> TripSegment:
    end_timestamp = data.get("end_timestamp")
    return TripSegment(
        segment_type=SegmentType(data["segment_type"]),
        start_timestamp=int(data["start_timestamp"]),
        end_timestamp=int(end_timestamp) if end_timestamp is not None else None,
        samples=[sample_from_dict(s) for s in data.get("samples", [])],
        is_baseline_segment=bool(data.get("is_baseline_segment", False)),
        baseline_reason=data.get("baseline_reason"),
    )


def charging_event_to_dict(event: ChargingEvent) -> Dict[str, Any]:
    return {
        "start_timestamp": event.start_timestamp,
        "end_timestamp": event.end_timestamp,
        "voltage_before": event.voltage_before,
        "voltage_after": event.voltage_after,
        "battery_percent_before": event.battery_percent_before,
        "battery_percent_after": event.battery_percent_after,
        "energy_added_wh": event.energy_added_wh,
    }


def _optional_float(value):
    return float(value) if value is not None else None


def charging_event_from_dict(data: Dict[str, Any]) -> ChargingEvent:
    end_timestamp = data.get("end_timestamp")
    return ChargingEvent(
        start_timestamp=int(data["start_timestamp"]),
        end_timestamp=int(end_timestamp) if end_timestamp is not None else None,
        voltage_before=float(data["voltage_before"]),
        voltage_after=_optional_float(data.get("voltage_after")),
        battery_percent_before=float(data["battery_percent_before"]),
        battery_percent_after=_optional_float(data.get("battery_percent_after")),
        energy_added_wh=_optional_float(data.get("energy_added_wh")),
    )


def snapshot_to_dict(trip: TripSnapshot) -> Dict[str, Any]:
    """Serialize a trip snapshot to a JSON-compatible dict."""
    return {
        "version": SNAPSHOT_FORMAT_VERSION,
        "start_time": trip.start_time,
        "is_currently_charging": trip.is_currently_charging,
        "samples": [sample_to_dict(s) for s in trip.samples],
        "segments": [segment_to_dict(s) for s in trip.segments],
        "charging_events": [charging_event_to_dict(e) for e in trip.charging_events],
    }


def snapshot_from_dict(data: Dict[str, Any]) -> TripSnapshot:
    """
    Rebuild a trip snapshot from snapshot_to_dict output.

    Raises:
        TripStateError: If the payload is missing fields or holds invalid values
    """
    if not isinstance(data, dict):
        raise TripStateError(f"Trip snapshot must be a mapping, got {type(data).__name__}")

    version = data.get("version", SNAPSHOT_FORMAT_VERSION)
    if version != SNAPSHOT_FORMAT_VERSION:
        raise TripStateError(f"Unsupported trip snapshot version: {version}", key="version")

    try:
        return TripSnapshot(
            start_time=int(data["start_time"]),
            samples=[sample_from_dict(s) for s in data.get("samples", [])],
            segments=[segment_from_dict(s) for s in data.get("segments", [])],
            is_currently_charging=bool(data.get("is_currently_charging", False)),
            charging_events=[charging_event_from_dict(e) for e in data.get("charging_events", [])],
        )
    except KeyError as e:
        raise TripStateError(f"Trip snapshot is missing field {e.args[0]}", key=str(e.args[0])) from e
    except (TypeError, ValueError) as e:
        raise TripStateError(f"Trip snapshot holds an invalid value: {e}") from e
