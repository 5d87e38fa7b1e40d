"""
Database session management for the range receiver.

Provides the database engine and session factory that can be imported
by blueprints and services without circular dependencies.
"""

import logging
import time

from flask import g
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import scoped_session, sessionmaker

from range_receiver.config import Config
from range_receiver.models import Base, get_engine

logger = logging.getLogger(__name__)

engine = get_engine(Config.DATABASE_URL)
SessionLocal = scoped_session(sessionmaker(bind=engine))

# Trip snapshots are written every few seconds; anything slower is worth a warning
SLOW_QUERY_THRESHOLD_MS = 500


@event.listens_for(Engine, "before_cursor_execute")
def before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    conn.info.setdefault("query_start_time", []).append(time.time())


@event.listens_for(Engine, "after_cursor_execute")
def after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    starts = conn.info.get("query_start_time")
    if not starts:
        return
    duration_ms = (time.time() - starts.pop(-1)) * 1000

    if duration_ms > SLOW_QUERY_THRESHOLD_MS:
        truncated_query = statement[:200] + "..." if len(statement) > 200 else statement
        logger.warning(
            f"Slow query detected: {duration_ms:.2f}ms - {truncated_query}", extra={"duration_ms": duration_ms}
        )


def init_db():
    """Create tables that do not exist yet."""
    Base.metadata.create_all(engine)


def get_db():
    """
    Get database session for the current request.

    Stored on Flask's application context so it is closed at the end of the
    request.
    """
    if "db" not in g:
        g.db = SessionLocal()
    return g.db


def close_db(exception=None):
    """Close database session at end of request (teardown_appcontext)."""
    db = g.pop("db", None)
    if db is not None:
        SessionLocal.remove()


def init_app(app):
    """Register session teardown with the Flask app."""
    app.teardown_appcontext(close_db)
