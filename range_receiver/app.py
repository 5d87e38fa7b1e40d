"""
Range Receiver - Flask Application

Receives electric unicycle telemetry and serves a live battery range
estimate.
"""

import atexit
import logging

from flask import Flask

from range_receiver.config import Config
from range_receiver.database import SessionLocal, init_app, init_db
from range_receiver.estimation.milestones import HistoricalSegment
from range_receiver.exceptions import DatabaseError, TripStateError
from range_receiver.routes import register_blueprints
from range_receiver.services.historical_data_service import add_segment
from range_receiver.services.range_estimation_service import RangeEstimationManager
from range_receiver.services.scheduler import init_scheduler, shutdown_scheduler
from range_receiver.services.trip_store import close_active_trips, load_active_trip

# Configure logging
logging.basicConfig(
    level=getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def record_historical_segment(segment: HistoricalSegment) -> None:
    """Store a calibration segment produced by the live trip."""
    # Own session: this runs inside request handling, which holds the scoped one
    db = SessionLocal.session_factory()
    try:
        add_segment(db, segment)
    except DatabaseError as e:
        logger.error(str(e), exc_info=True)
    finally:
        db.close()


def create_manager() -> RangeEstimationManager:
    """Build the estimation manager from Config."""
    return RangeEstimationManager(
        battery_capacity_wh=Config.BATTERY_CAPACITY_WH,
        cell_count=Config.BATTERY_CELL_COUNT,
        algorithm=Config.RANGE_ALGORITHM,
        window_minutes=Config.RANGE_WINDOW_MINUTES,
        weight_decay=Config.RANGE_WEIGHT_DECAY,
        wheel_type=Config.WHEEL_TYPE,
        wheel_model=Config.WHEEL_MODEL,
        stale_after_ms=Config.STALE_AFTER_SECONDS * 1000,
        on_historical_segment=record_historical_segment,
    )


def restore_active_trip(manager: RangeEstimationManager) -> bool:
    """
    Resume the trip that was live before a restart.

    A snapshot that cannot be read is closed so the next sample starts a
    fresh trip.
    """
    db = SessionLocal()
    try:
        trip = load_active_trip(db)
        if trip is None:
            return False
        manager.restore(trip)
        return True
    except TripStateError as e:
        logger.error(f"Discarding unreadable trip snapshot: {e}")
        close_active_trips(db)
        return False
    finally:
        SessionLocal.remove()


def create_app(start_scheduler: bool = None) -> Flask:
    """
    Create the Flask application.

    Args:
        start_scheduler: Start background jobs, defaults to Config.SCHEDULER_ENABLED

    Raises:
        ConfigurationError: If the battery or algorithm configuration is invalid
    """
    app = Flask(__name__)
    app.config.from_object(Config)

    init_db()
    init_app(app)
    register_blueprints(app)

    manager = create_manager()
    app.extensions["range_manager"] = manager
    restore_active_trip(manager)

    if start_scheduler is None:
        start_scheduler = Config.SCHEDULER_ENABLED
    if start_scheduler:
        init_scheduler(manager)
        atexit.register(shutdown_scheduler)

    logger.info(
        f"Range receiver ready: {manager.battery_capacity_wh:.0f}Wh, {manager.cell_count}S, "
        f"{manager.estimator.name}"
    )
    return app


if __name__ == '__main__':
    app = create_app()
    app.run(host=Config.FLASK_HOST, port=Config.FLASK_PORT, debug=Config.DEBUG)
