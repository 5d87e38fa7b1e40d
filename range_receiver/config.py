import os


class Config:
    """Application configuration from environment variables."""

    # Database
    DATABASE_URL = os.environ.get(
        'DATABASE_URL',
        'sqlite:///range_receiver.db'
    )

    # Flask
    SECRET_KEY = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production')
    FLASK_ENV = os.environ.get('FLASK_ENV', 'production')
    DEBUG = FLASK_ENV == 'development'
    FLASK_HOST = os.environ.get('FLASK_HOST', '0.0.0.0')
    FLASK_PORT = int(os.environ.get('FLASK_PORT', 8080))

    # Logging
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    # Battery configuration (20S pack, 84V nominal)
    BATTERY_CAPACITY_WH = float(os.environ.get('BATTERY_CAPACITY_WH', 2000.0))
    BATTERY_CELL_COUNT = int(os.environ.get('BATTERY_CELL_COUNT', 20))
    WHEEL_MODEL = os.environ.get('WHEEL_MODEL', 'Unknown')

    # Range estimation
    RANGE_ALGORITHM = os.environ.get('RANGE_ALGORITHM', 'weighted_window')
    RANGE_WINDOW_MINUTES = int(os.environ.get('RANGE_WINDOW_MINUTES', 30))
    RANGE_WEIGHT_DECAY = float(os.environ.get('RANGE_WEIGHT_DECAY', 0.5))

    # Voltage compensation preset: small, medium, large, high_performance
    WHEEL_TYPE = os.environ.get('WHEEL_TYPE', 'medium')

    # Historical calibration
    HISTORICAL_CALIBRATION_ENABLED = os.environ.get(
        'HISTORICAL_CALIBRATION_ENABLED', 'true'
    ).lower() == 'true'

    # Background jobs
    SCHEDULER_ENABLED = os.environ.get('SCHEDULER_ENABLED', 'true').lower() == 'true'
    STALE_AFTER_SECONDS = int(os.environ.get('STALE_AFTER_SECONDS', 60))
    STALE_CHECK_INTERVAL_SECONDS = int(os.environ.get('STALE_CHECK_INTERVAL_SECONDS', 15))
    TRIP_SAVE_INTERVAL_SECONDS = int(os.environ.get('TRIP_SAVE_INTERVAL_SECONDS', 30))
