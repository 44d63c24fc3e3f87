from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Tuple

from ..core.enums import AttendanceStatus

# (student_nis, work_date): the unit of merge and of locking.
DayKey = Tuple[str, date]

# Fields a manual edit can pin; import merges never overwrite them.
EDITABLE_FIELDS = ("status", "check_in_time", "check_out_time", "note")


@dataclass(frozen=True)
class AttendanceRecord:
    """Domain entity: one student's attendance for one day."""

    record_id: int
    student_nis: str
    work_date: date
    status: AttendanceStatus
    check_in_time: Optional[datetime] = None
    check_out_time: Optional[datetime] = None
    note: Optional[str] = None
    batch_id: Optional[int] = None
    manual_fields: frozenset = frozenset()
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def key(self) -> DayKey:
        return (self.student_nis, self.work_date)


@dataclass(frozen=True)
class Contribution:
    """What one import batch observed for one student on one day."""

    batch_id: int
    student_nis: str
    work_date: date
    check_in_time: datetime
    check_out_time: Optional[datetime]
    status: AttendanceStatus
    punch_count: int = 1
    note: Optional[str] = None

    @property
    def key(self) -> DayKey:
        return (self.student_nis, self.work_date)


@dataclass(frozen=True)
class RecordDraft:
    """Merged state to persist for a day."""

    student_nis: str
    work_date: date
    status: AttendanceStatus
    check_in_time: Optional[datetime]
    check_out_time: Optional[datetime]
    note: Optional[str]
    batch_id: Optional[int]
    manual_fields: frozenset = frozenset()
