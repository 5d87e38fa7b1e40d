"""Parse inbound JSON telemetry into battery samples."""

import logging
import math
from typing import Any, Dict, Optional

from range_receiver.config import Config
from range_receiver.estimation import BatterySample, voltage_to_energy_percent
from range_receiver.exceptions import SampleParsingError
from range_receiver.utils.time_utils import normalize_timestamp_ms, now_ms, parse_timestamp_ms

logger = logging.getLogger(__name__)


class SampleParser:
    """
    Parses one telemetry reading posted by the wheel bridge.

    Accepts the short field names used by EUC.World style feeds as well as
    explicit unit-suffixed names:
    - timestamp / time / ts: epoch milliseconds (seconds and ISO 8601
      strings are accepted too)
    - voltage / voltage_v
    - power / power_watts / power_w
    - speed / speed_kmh
    - trip_distance / trip_distance_km / distance_km
    - battery_percent / battery / battery_level
    - current / current_amps (optional)
    - temperature / temperature_celsius (optional)
    - is_charging / charging (optional)
    """

    # Alias -> canonical field, lowercase keys for case-insensitive matching
    FIELD_MAP = {
        'timestamp': 'timestamp',
        'time': 'timestamp',
        'ts': 'timestamp',
        'voltage': 'voltage',
        'voltage_v': 'voltage',
        'power': 'power_watts',
        'power_watts': 'power_watts',
        'power_w': 'power_watts',
        'speed': 'speed_kmh',
        'speed_kmh': 'speed_kmh',
        'trip_distance': 'trip_distance_km',
        'trip_distance_km': 'trip_distance_km',
        'distance_km': 'trip_distance_km',
        'battery_percent': 'battery_percent',
        'battery': 'battery_percent',
        'battery_level': 'battery_percent',
        'current': 'current_amps',
        'current_amps': 'current_amps',
        'temperature': 'temperature_celsius',
        'temperature_celsius': 'temperature_celsius',
        'is_charging': 'is_charging',
        'charging': 'is_charging',
    }

    REQUIRED_FIELDS = ('voltage', 'power_watts', 'speed_kmh', 'trip_distance_km')

    @classmethod
    def parse(cls, payload: Dict[str, Any], cell_count: Optional[int] = None) -> Dict[str, Any]:
        """
        Parse a telemetry payload.

        Missing timestamp falls back to server time; missing battery percent
        is derived from the voltage through the discharge curve.

        Args:
            payload: Decoded JSON object
            cell_count: Cells in series, defaults to Config.BATTERY_CELL_COUNT

        Returns:
            Dictionary with canonical field names

        Raises:
            SampleParsingError: If the payload is not an object, a required
                field is missing, or a value is not a finite number
        """
        if not isinstance(payload, dict):
            raise SampleParsingError(f"Sample must be a JSON object, got {type(payload).__name__}")

        raw = {}
        for key, value in payload.items():
            field = cls.FIELD_MAP.get(str(key).lower())
            if field and field not in raw and value is not None:
                raw[field] = value

        for field in cls.REQUIRED_FIELDS:
            if field not in raw:
                raise SampleParsingError(f"Missing required field '{field}'", field=field)

        result = {
            field: cls._parse_number(field, raw[field])
            for field in cls.REQUIRED_FIELDS
        }

        if result['voltage'] <= 0:
            raise SampleParsingError("Voltage must be positive", field='voltage', value=str(raw['voltage']))

        if 'timestamp' in raw:
            result['timestamp'] = cls._parse_timestamp(raw['timestamp'])
        else:
            result['timestamp'] = now_ms()

        if 'battery_percent' in raw:
            result['battery_percent'] = cls._parse_number('battery_percent', raw['battery_percent'])
        else:
            cells = cell_count or Config.BATTERY_CELL_COUNT
            result['battery_percent'] = voltage_to_energy_percent(result['voltage'], cells)

        result['current_amps'] = (
            cls._parse_number('current_amps', raw['current_amps']) if 'current_amps' in raw else 0.0
        )
        result['temperature_celsius'] = (
            cls._parse_number('temperature_celsius', raw['temperature_celsius'])
            if 'temperature_celsius' in raw else -1.0
        )
        result['is_charging'] = cls._parse_bool(raw.get('is_charging', False))

        return result

    @staticmethod
    def to_battery_sample(parsed: Dict[str, Any]) -> BatterySample:
        """Build an unflagged, uncompensated sample from parse() output."""
        return BatterySample(
            timestamp=parsed['timestamp'],
            voltage=parsed['voltage'],
            power_watts=parsed['power_watts'],
            speed_kmh=parsed['speed_kmh'],
            trip_distance_km=parsed['trip_distance_km'],
            battery_percent=parsed['battery_percent'],
            current_amps=parsed['current_amps'],
            temperature_celsius=parsed['temperature_celsius'],
        )

    @staticmethod
    def _parse_number(field: str, value: Any) -> float:
        """Parse a finite number, raising SampleParsingError otherwise."""
        if isinstance(value, bool):
            raise SampleParsingError(f"Field '{field}' must be numeric", field=field, value=str(value))
        try:
            number = float(value)
        except (ValueError, TypeError):
            raise SampleParsingError(f"Field '{field}' must be numeric", field=field, value=str(value))
        if not math.isfinite(number):
            raise SampleParsingError(f"Field '{field}' must be finite", field=field, value=str(value))
        return number

    @classmethod
    def _parse_timestamp(cls, value: Any) -> int:
        if isinstance(value, str):
            timestamp = parse_timestamp_ms(value)
            if timestamp is None:
                raise SampleParsingError("Field 'timestamp' is not a valid time", field='timestamp', value=value)
            return timestamp
        return normalize_timestamp_ms(cls._parse_number('timestamp', value))

    @staticmethod
    def _parse_bool(value: Any) -> bool:
        if isinstance(value, str):
            return value.strip().lower() in ('1', 'true', 'yes', 'on')
        return bool(value)
