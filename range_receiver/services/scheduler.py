"""
Background scheduler service for the range receiver.

Handles periodic tasks that do not depend on incoming samples:
marking the estimate stale when the wheel goes quiet and saving the live
trip snapshot.
"""

import logging

from apscheduler.schedulers.background import BackgroundScheduler

from range_receiver.config import Config
from range_receiver.database import SessionLocal
from range_receiver.exceptions import DatabaseError
from range_receiver.services.trip_store import save_trip

logger = logging.getLogger(__name__)

# Module-level scheduler instance
scheduler = None


def get_scheduler_db():
    """Get a database session for scheduler tasks."""
    return SessionLocal()


def mark_stale_estimate(manager):
    """Mark the current estimate STALE when no sample arrived for STALE_AFTER_SECONDS."""
    try:
        manager.mark_stale()
    except Exception as e:
        logger.exception(f"Unexpected error marking estimate stale: {e}")


def persist_active_trip(manager):
    """Save the live trip snapshot so it survives a restart."""
    with manager.trip_guard():
        save_active_snapshot(manager, manager.snapshot_dict())


def save_active_snapshot(manager, snapshot):
    """
    Save a snapshot as the active trip.

    The save runs under the manager's trip guard and is skipped when the
    snapshot no longer belongs to the live trip, so a trip the user reset
    is never written back as active.
    """
    if snapshot is None:
        return

    db = get_scheduler_db()
    try:
        with manager.trip_guard():
            if not manager.is_current_trip(snapshot['start_time']):
                logger.info(f"Trip {snapshot['start_time']} was reset, not saving it as active")
                return
            save_trip(db, snapshot, algorithm=manager.algorithm, is_active=True)
        logger.debug(f"Persisted trip {snapshot['start_time']} ({len(snapshot['samples'])} samples)")
    except DatabaseError as e:
        logger.error(str(e), exc_info=True)
        db.rollback()
    except Exception as e:
        logger.exception(f"Unexpected error persisting trip: {e}")
        db.rollback()
    finally:
        SessionLocal.remove()


def init_scheduler(manager):
    """
    Initialize and start the background scheduler.

    Args:
        manager: RangeEstimationManager the jobs operate on

    Returns:
        The BackgroundScheduler instance
    """
    global scheduler
    scheduler = BackgroundScheduler()
    scheduler.add_job(
        mark_stale_estimate, "interval", seconds=Config.STALE_CHECK_INTERVAL_SECONDS, args=[manager]
    )
    scheduler.add_job(
        persist_active_trip, "interval", seconds=Config.TRIP_SAVE_INTERVAL_SECONDS, args=[manager]
    )
    scheduler.start()
    logger.info("Background scheduler initialized")
    return scheduler


def shutdown_scheduler():
    """Shutdown the background scheduler gracefully."""
    global scheduler
    if scheduler:
        scheduler.shutdown()
        scheduler = None
        logger.info("Background scheduler shut down")
