"""Constants and defaults.

Note: Keep constants here to avoid magic numbers spread across code.
"""

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_RETRY_BASE_DELAY = 0.05
DEFAULT_AUDIT_QUEUE_SIZE = 256
MAX_CONFLICT_RETRIES = 3
DAY_KEY_FORMAT = "%Y-%m-%d"

# Collections of the document store.
STUDENTS = "students"
ATTENDANCE = "attendance"
PAYMENTS = "payments"
HOLIDAYS = "holidays"
AUDIT_LOGS = "auditLogs"
USERS = "users"
EXPENSES = "expenses"
