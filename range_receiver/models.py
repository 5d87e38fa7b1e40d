import uuid as uuid_module
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Float,
    Integer,
    String,
    TypeDecorator,
    create_engine,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from range_receiver.estimation.milestones import HistoricalSegment
from range_receiver.utils.time_utils import ms_to_iso

Base = declarative_base()


def _utc_now():
    return datetime.now(timezone.utc)


# Custom UUID type that works with both PostgreSQL and SQLite
class GUID(TypeDecorator):
    """Platform-independent GUID type.

    Uses PostgreSQL's UUID type when available, otherwise stores as String(36).
    """
    impl = String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(UUID(as_uuid=True))
        return dialect.type_descriptor(String(36))

    def process_bind_param(self, value, dialect):
        if value is None or dialect.name == 'postgresql':
            return value
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, uuid_module.UUID):
            return value
        return uuid_module.UUID(value)


# Custom JSON type that works with both PostgreSQL (JSONB) and SQLite (JSON)
class JSONType(TypeDecorator):
    """Platform-independent JSON type.

    Uses PostgreSQL's JSONB type when available, otherwise uses JSON.
    """
    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(JSONB)
        return dialect.type_descriptor(JSON)


class TripRecord(Base):
    """Persisted trip snapshot. At most one trip is active at a time."""

    __tablename__ = 'range_trips'

    id = Column(Integer, primary_key=True, autoincrement=True)
    trip_id = Column(GUID(), nullable=False, unique=True, index=True, default=uuid_module.uuid4)
    start_time_ms = Column(BigInteger, nullable=False, index=True)
    last_sample_ms = Column(BigInteger)
    is_active = Column(Boolean, default=True, index=True)
    sample_count = Column(Integer, default=0)
    charging_event_count = Column(Integer, default=0)
    total_distance_km = Column(Float, default=0.0)
    algorithm = Column(String(32))
    snapshot = Column(JSONType, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utc_now)
    updated_at = Column(DateTime(timezone=True), default=_utc_now, onupdate=_utc_now)

    def to_dict(self):
        return {
            'id': self.id,
            'trip_id': str(self.trip_id),
            'start_time': ms_to_iso(self.start_time_ms),
            'last_sample_time': ms_to_iso(self.last_sample_ms),
            'is_active': self.is_active,
            'sample_count': self.sample_count,
            'charging_event_count': self.charging_event_count,
            'total_distance_km': self.total_distance_km,
            'algorithm': self.algorithm,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


class HistoricalSegmentRecord(Base):
    """Calibration segment between two battery milestones of a past trip."""

    __tablename__ = 'range_historical_segments'

    id = Column(Integer, primary_key=True, autoincrement=True)
    start_percent = Column(Integer, nullable=False)
    end_percent = Column(Integer, nullable=False)
    start_voltage = Column(Float, nullable=False)
    end_voltage = Column(Float, nullable=False)
    distance_km = Column(Float, nullable=False)
    duration_ms = Column(BigInteger, nullable=False)
    efficiency_wh_per_km = Column(Float, nullable=False)
    timestamp_ms = Column(BigInteger, nullable=False, index=True)
    wheel_model = Column(String(64), nullable=False, index=True)
    battery_capacity_wh = Column(Float, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utc_now)

    @classmethod
    def from_segment(cls, segment: HistoricalSegment) -> "HistoricalSegmentRecord":
        return cls(
            start_percent=segment.start_percent,
            end_percent=segment.end_percent,
            start_voltage=segment.start_voltage,
            end_voltage=segment.end_voltage,
            distance_km=segment.distance_km,
            duration_ms=segment.duration_ms,
            efficiency_wh_per_km=segment.efficiency_wh_per_km,
            timestamp_ms=segment.timestamp,
            wheel_model=segment.wheel_model,
            battery_capacity_wh=segment.battery_capacity_wh,
        )

    def to_segment(self) -> HistoricalSegment:
        return HistoricalSegment(
            start_percent=self.start_percent,
            end_percent=self.end_percent,
            start_voltage=self.start_voltage,
            end_voltage=self.end_voltage,
            distance_km=self.distance_km,
            duration_ms=self.duration_ms,
            efficiency_wh_per_km=self.efficiency_wh_per_km,
            timestamp=self.timestamp_ms,
            wheel_model=self.wheel_model,
            battery_capacity_wh=self.battery_capacity_wh,
        )

    def to_dict(self):
        return {
            'id': self.id,
            'start_percent': self.start_percent,
            'end_percent': self.end_percent,
            'start_voltage': self.start_voltage,
            'end_voltage': self.end_voltage,
            'distance_km': self.distance_km,
            'duration_ms': self.duration_ms,
            'efficiency_wh_per_km': self.efficiency_wh_per_km,
            'timestamp': ms_to_iso(self.timestamp_ms),
            'wheel_model': self.wheel_model,
            'battery_capacity_wh': self.battery_capacity_wh,
        }


def get_engine(database_url):
    """Create database engine."""
    if database_url.startswith('sqlite') and ':memory:' in database_url:
        # One shared connection so every session sees the same in-memory database
        return create_engine(
            database_url,
            connect_args={'check_same_thread': False},
            poolclass=StaticPool,
        )
    return create_engine(database_url, pool_pre_ping=True)
