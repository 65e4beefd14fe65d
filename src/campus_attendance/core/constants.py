"""Constants and defaults.

Note: Keep constants here to avoid magic numbers spread across code.
"""

MIN_CHECK_IN_DURATION_SECONDS = 1
MAX_CHECK_IN_DURATION_SECONDS = 86400
MIN_PERIOD = 1
MAX_PERIOD = 14
DEFAULT_QR_TOKEN_TTL_SECONDS = 30
QR_TOKEN_BYTES = 24
DEFAULT_LIST_LIMIT = 200
