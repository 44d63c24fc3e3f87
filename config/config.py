"""Settings shared by every environment; each value can be overridden by env vars."""

import os


def env_flag(name: str, default: str = "0") -> bool:
    return bool(int(os.environ.get(name, default)))


class Config:
    # DB
    DB_USER = os.environ.get("DB_USER", "root")
    DB_PASSWORD = os.environ.get("DB_PASSWORD", "")
    DB_HOST = os.environ.get("DB_HOST", "localhost")
    DB_PORT = int(os.environ.get("DB_PORT", "3306"))
    DB_NAME = os.environ.get("DB_NAME", "attendance_pipeline")

    # Logging
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "text")

    # Attendance policy: check-in after SCHOOL_START + grace is late.
    SCHOOL_START = os.environ.get("SCHOOL_START", "07:00")
    LATE_GRACE_MINUTES = int(os.environ.get("LATE_GRACE_MINUTES", "15"))

    # Identity reconciliation
    SUGGESTION_MIN_SCORE = float(os.environ.get("SUGGESTION_MIN_SCORE", "50"))
    SUGGESTION_MAX_CANDIDATES = int(os.environ.get("SUGGESTION_MAX_CANDIDATES", "5"))

    MAX_UPLOAD_MB = int(os.environ.get("MAX_UPLOAD_MB", "10"))


DB_CONFIG = {
    "host": Config.DB_HOST,
    "port": Config.DB_PORT,
    "user": Config.DB_USER,
    "password": Config.DB_PASSWORD,
    "database": Config.DB_NAME,
}

LOG_LEVEL = Config.LOG_LEVEL
LOG_FORMAT = Config.LOG_FORMAT
SCHOOL_START = Config.SCHOOL_START
LATE_GRACE_MINUTES = Config.LATE_GRACE_MINUTES
SUGGESTION_MIN_SCORE = Config.SUGGESTION_MIN_SCORE
SUGGESTION_MAX_CANDIDATES = Config.SUGGESTION_MAX_CANDIDATES
MAX_UPLOAD_MB = Config.MAX_UPLOAD_MB
