"""Settings shared by every environment.

Environment modules import * from here and override what differs.
"""
import os

SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key")
DEBUG = False
TESTING = False

# "mysql" or "memory"
DOCUMENT_STORE = os.getenv("DOCUMENT_STORE", "mysql")

DB_CONFIG = {
    "host": os.getenv("DB_HOST", "localhost"),
    "port": int(os.getenv("DB_PORT", "3306")),
    "user": os.getenv("DB_USER", "root"),
    "password": os.getenv("DB_PASSWORD", ""),
    "database": os.getenv("DB_NAME", "dance_school"),
}

# If enabled, app will apply schema.sql on startup (idempotent: CREATE IF NOT EXISTS)
AUTO_INIT_DB = bool(int(os.getenv("AUTO_INIT_DB", "0")))

# Local calendar every day-key is computed in.
TIMEZONE = os.getenv("SCHOOL_TIMEZONE", "America/New_York")

# (month, day) the fee year starts on.
FEE_YEAR_ANCHOR = (
    int(os.getenv("FEE_YEAR_START_MONTH", "8")),
    int(os.getenv("FEE_YEAR_START_DAY", "13")),
)

FEE_SCHEDULE = {
    "absent": "5",
    "medicalAbsence": "0",
    "holiday": "0",
    "presentSingleAttribute": "1",
    "presentMultipleAttributes": "2",
}

# ISO weekdays (Monday=1 ... Sunday=7) with no classes.
RECURRING_HOLIDAY_WEEKDAYS = [7]

# Fixed-date holidays repeated every year: (month, day, name).
ANNUAL_HOLIDAYS = [
    (1, 1, "New Year's Day"),
    (7, 4, "Independence Day"),
    (11, 11, "Veterans Day"),
    (12, 25, "Christmas Day"),
]

# Holidays on the nth weekday of a month: (month, ISO weekday, nth, name).
# nth = -1 is the last such weekday.
MOVING_HOLIDAYS = [
    (1, 1, 3, "Martin Luther King Jr. Day"),
    (2, 1, 3, "Presidents Day"),
    (5, 1, -1, "Memorial Day"),
    (9, 1, 1, "Labor Day"),
    (10, 1, 2, "Columbus Day"),
    (11, 4, 4, "Thanksgiving Day"),
]

# Seconds before the override cache is reloaded from storage; None never expires.
HOLIDAY_CACHE_TTL = float(os.getenv("HOLIDAY_CACHE_TTL", "60"))

PERSISTENCE_RETRY_ATTEMPTS = int(os.getenv("PERSISTENCE_RETRY_ATTEMPTS", "3"))
PERSISTENCE_RETRY_BASE_DELAY = float(os.getenv("PERSISTENCE_RETRY_BASE_DELAY", "0.05"))
AUDIT_RETRY_QUEUE_SIZE = int(os.getenv("AUDIT_RETRY_QUEUE_SIZE", "256"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "detailed": {
            "format": "{asctime} {levelname} [{name}:{lineno}] {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {
            "level": "DEBUG",
            "class": "logging.StreamHandler",
            "formatter": "detailed",
        },
    },
    "loggers": {
        "dance_school": {
            "handlers": ["console"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "WARNING",
    },
}
