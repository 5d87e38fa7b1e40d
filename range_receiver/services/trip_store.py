"""
Trip persistence.

The live trip is saved as a JSON snapshot so it survives a restart. At most
one TripRecord is active; a reset marks it inactive and the next sample
starts a new record.
"""

import logging
from typing import Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from range_receiver.estimation import TripSnapshot
from range_receiver.estimation.serialization import snapshot_from_dict
from range_receiver.exceptions import DatabaseError, TripStateError
from range_receiver.models import TripRecord
from range_receiver.utils.wide_events import track_operation

logger = logging.getLogger(__name__)


def _summary_fields(snapshot: Dict) -> Dict:
    samples = snapshot.get("samples", [])
    distance = 0.0
    if samples:
        distance = max(0.0, samples[-1]["trip_distance_km"] - samples[0]["trip_distance_km"])
    return {
        "last_sample_ms": samples[-1]["timestamp"] if samples else None,
        "sample_count": len(samples),
        "charging_event_count": len(snapshot.get("charging_events", [])),
        "total_distance_km": distance,
    }


def save_trip(db: Session, snapshot: Dict, algorithm: Optional[str] = None, is_active: bool = True) -> TripRecord:
    """
    Insert or update the record for a trip snapshot.

    Records are matched on the trip start time, so repeated saves of the same
    trip overwrite one row.

    Raises:
        DatabaseError: If the write fails
    """
    start_time_ms = snapshot["start_time"]
    with track_operation("trip_persist", trip_start=start_time_ms) as event:
        try:
            record = db.query(TripRecord).filter(TripRecord.start_time_ms == start_time_ms).first()
            created = record is None
            if created:
                record = TripRecord(start_time_ms=start_time_ms)
                db.add(record)

            record.snapshot = snapshot
            record.is_active = is_active
            record.algorithm = algorithm
            for key, value in _summary_fields(snapshot).items():
                setattr(record, key, value)

            # Only one active trip at a time
            if is_active:
                db.query(TripRecord).filter(
                    TripRecord.is_active.is_(True), TripRecord.start_time_ms != start_time_ms
                ).update({TripRecord.is_active: False}, synchronize_session=False)

            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise DatabaseError(f"Failed to save trip: {e}", {"trip_start": start_time_ms}) from e

        event.add_business_metric("samples", record.sample_count)
        event.add_business_metric("created", created)
        event.add_context(is_active=is_active)

    return record


def load_active_trip(db: Session) -> Optional[TripSnapshot]:
    """
    Latest active trip, or None.

    Raises:
        TripStateError: If the stored snapshot is malformed
    """
    record = (
        db.query(TripRecord)
        .filter(TripRecord.is_active.is_(True))
        .order_by(TripRecord.start_time_ms.desc())
        .first()
    )
    if record is None:
        return None
    try:
        return snapshot_from_dict(record.snapshot)
    except TripStateError as e:
        e.trip_id = record.id
        e.details["trip_id"] = record.id
        raise


def close_active_trips(db: Session) -> int:
    """Mark every active trip inactive; returns the number closed."""
    try:
        closed = (
            db.query(TripRecord)
            .filter(TripRecord.is_active.is_(True))
            .update({TripRecord.is_active: False}, synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise DatabaseError(f"Failed to close active trips: {e}") from e
    if closed:
        logger.info(f"Closed {closed} active trip(s)")
    return closed


def get_recent_trips(db: Session, limit: int = 10):
    """Most recent trip records, newest first."""
    return db.query(TripRecord).order_by(TripRecord.start_time_ms.desc()).limit(limit).all()
