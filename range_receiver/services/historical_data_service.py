"""
Historical Data Service

Stores efficiency segments between battery milestones of past rides and
derives a calibration factor from them:
- segments are validated before storage and only the newest 100 are kept
- average efficiency over a battery range is distance-weighted
- calibration factor is predicted / historical, clamped to [0.8, 1.2]
"""

import logging
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from range_receiver.config import Config
from range_receiver.estimation.constants import (
    MAX_CALIBRATION_FACTOR,
    MAX_EFFICIENCY_WH_PER_KM,
    MAX_HISTORICAL_SEGMENTS,
    MIN_CALIBRATION_FACTOR,
    MIN_EFFICIENCY_WH_PER_KM,
    MIN_SEGMENT_DISTANCE_KM,
    MIN_SEGMENT_PERCENT,
)
from range_receiver.estimation.milestones import HistoricalSegment
from range_receiver.exceptions import DatabaseError
from range_receiver.models import HistoricalSegmentRecord
from range_receiver.utils.time_utils import ms_to_iso

logger = logging.getLogger(__name__)


def is_segment_valid(segment: HistoricalSegment) -> bool:
    """Segments must be long enough and plausible to be worth learning from."""
    return (
        segment.distance_km >= MIN_SEGMENT_DISTANCE_KM
        and segment.start_percent - segment.end_percent >= MIN_SEGMENT_PERCENT
        and MIN_EFFICIENCY_WH_PER_KM <= segment.efficiency_wh_per_km <= MAX_EFFICIENCY_WH_PER_KM
        and segment.start_percent > segment.end_percent
    )


def _trim_to_limit(db: Session, limit: int = MAX_HISTORICAL_SEGMENTS) -> int:
    stale_ids = [
        row.id
        for row in db.query(HistoricalSegmentRecord.id)
        .order_by(HistoricalSegmentRecord.timestamp_ms.desc(), HistoricalSegmentRecord.id.desc())
        .offset(limit)
        .all()
    ]
    if not stale_ids:
        return 0
    db.query(HistoricalSegmentRecord).filter(HistoricalSegmentRecord.id.in_(stale_ids)).delete(
        synchronize_session=False
    )
    return len(stale_ids)


def add_segment(db: Session, segment: HistoricalSegment) -> bool:
    """
    Validate and store a segment, dropping the oldest beyond the limit.

    Returns:
        True if the segment was stored

    Raises:
        DatabaseError: If the write fails
    """
    if not is_segment_valid(segment):
        logger.debug(
            f"Rejected historical segment {segment.start_percent}%->{segment.end_percent}%: "
            f"{segment.distance_km:.2f}km at {segment.efficiency_wh_per_km:.1f}Wh/km"
        )
        return False

    try:
        db.add(HistoricalSegmentRecord.from_segment(segment))
        db.flush()
        removed = _trim_to_limit(db)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise DatabaseError(f"Failed to store historical segment: {e}") from e

    logger.info(
        f"Stored historical segment {segment.start_percent}%->{segment.end_percent}% "
        f"({segment.distance_km:.2f}km, {segment.efficiency_wh_per_km:.1f}Wh/km)"
        + (f", trimmed {removed} old segments" if removed else "")
    )
    return True


def get_all_segments(db: Session) -> List[HistoricalSegment]:
    """All stored segments, newest first."""
    records = db.query(HistoricalSegmentRecord).order_by(HistoricalSegmentRecord.timestamp_ms.desc()).all()
    return [r.to_segment() for r in records]


def get_segments_for_wheel(db: Session, wheel_model: str) -> List[HistoricalSegment]:
    """Segments recorded with the given wheel model (case-insensitive)."""
    records = (
        db.query(HistoricalSegmentRecord)
        .filter(func.lower(HistoricalSegmentRecord.wheel_model) == wheel_model.lower())
        .order_by(HistoricalSegmentRecord.timestamp_ms.desc())
        .all()
    )
    return [r.to_segment() for r in records]


def _overlaps(segment: HistoricalSegment, start_percent: float, end_percent: float) -> bool:
    return (
        (segment.start_percent >= start_percent and segment.end_percent <= end_percent)
        or end_percent <= segment.start_percent <= start_percent
        or end_percent <= segment.end_percent <= start_percent
    )


def get_average_efficiency(
    db: Session, start_percent: float, end_percent: float, wheel_model: Optional[str] = None
) -> Optional[float]:
    """
    Distance-weighted average efficiency of segments overlapping a battery range.

    Args:
        db: Database session
        start_percent: Upper end of the range (e.g. 100)
        end_percent: Lower end of the range (e.g. current battery %)
        wheel_model: Restrict to one wheel model, or None for all

    Returns:
        Efficiency in Wh/km, or None without overlapping data
    """
    segments = get_segments_for_wheel(db, wheel_model) if wheel_model else get_all_segments(db)
    relevant = [s for s in segments if _overlaps(s, start_percent, end_percent)]

    total_distance = sum(s.distance_km for s in relevant)
    if total_distance <= 0:
        return None

    return sum(s.efficiency_wh_per_km * s.distance_km for s in relevant) / total_distance


def get_calibration_factor(
    db: Session,
    current_percent: float,
    predicted_efficiency: float,
    wheel_model: Optional[str] = None,
    enabled: Optional[bool] = None,
) -> float:
    """
    Ratio of the live efficiency to the historical one for the same battery range.

    Returns 1.0 when calibration is disabled or there is no history.
    """
    if enabled is None:
        enabled = Config.HISTORICAL_CALIBRATION_ENABLED
    if not enabled:
        return 1.0

    historical = get_average_efficiency(db, 100, current_percent, wheel_model)
    if historical is None or historical <= 0:
        return 1.0

    factor = predicted_efficiency / historical
    return max(MIN_CALIBRATION_FACTOR, min(MAX_CALIBRATION_FACTOR, factor))


def get_statistics(db: Session) -> Dict:
    """Summary of stored calibration data."""
    segments = get_all_segments(db)
    if not segments:
        return {
            'total_segments': 0,
            'total_distance_km': 0.0,
            'average_efficiency_wh_per_km': None,
            'oldest_timestamp': None,
            'newest_timestamp': None,
            'unique_wheels': 0,
        }

    timestamps = [s.timestamp for s in segments]
    return {
        'total_segments': len(segments),
        'total_distance_km': round(sum(s.distance_km for s in segments), 3),
        'average_efficiency_wh_per_km': round(
            sum(s.efficiency_wh_per_km for s in segments) / len(segments), 2
        ),
        'oldest_timestamp': ms_to_iso(min(timestamps)),
        'newest_timestamp': ms_to_iso(max(timestamps)),
        'unique_wheels': len({s.wheel_model for s in segments}),
    }


def clear_all_data(db: Session) -> int:
    """Delete every stored segment; returns the number removed."""
    try:
        removed = db.query(HistoricalSegmentRecord).delete(synchronize_session=False)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise DatabaseError(f"Failed to clear historical data: {e}") from e
    logger.info(f"Cleared {removed} historical segments")
    return removed
