from .base import *  # noqa: F401,F403

SECRET_KEY = "test-secret"

DEBUG = False
TESTING = True

DOCUMENT_STORE = "memory"
AUTO_INIT_DB = False

TIMEZONE = "America/New_York"
FEE_YEAR_ANCHOR = (8, 13)
RECURRING_HOLIDAY_WEEKDAYS = [7]

PERSISTENCE_RETRY_BASE_DELAY = 0.0
AUDIT_RETRY_QUEUE_SIZE = 8
HOLIDAY_CACHE_TTL = None
