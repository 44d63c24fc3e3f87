from __future__ import annotations

from enum import Enum


class AttendanceStatus(str, Enum):
    """Daily attendance status stored per student and date."""

    PRESENT = "present"
    ABSENT = "absent"
    LATE = "late"
    PERMISSION = "permission"
    SICK = "sick"


class MappingStatus(str, Enum):
    """Lifecycle of a device user -> student suggestion."""

    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class SuggestionSource(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"


class BatchStatus(str, Enum):
    """Lifecycle of an import batch."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


class FileType(str, Enum):
    MASTER = "master"
    USERS = "users"
    LOGS = "logs"
    ATTENDANCE = "attendance"


class DeviceStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    MAINTENANCE = "maintenance"


class ConfidenceBand(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
