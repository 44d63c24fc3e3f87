"""Constants and defaults.

Note: Keep constants here to avoid magic numbers spread across code.
"""

from datetime import time

DEFAULT_SCHOOL_START = time(7, 0)
DEFAULT_LATE_GRACE_MINUTES = 15

SUGGESTION_MIN_SCORE = 50.0
SUGGESTION_MAX_CANDIDATES = 5
DEPARTMENT_MATCH_BONUS = 5.0

CONFIDENCE_HIGH = 80.0
CONFIDENCE_MEDIUM = 60.0

MANUAL_CONFIDENCE = 100.0

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 200
