from __future__ import annotations

from datetime import date
from typing import ContextManager, Iterable, Optional, Protocol, Sequence

from .model import AttendanceRecord, Contribution, DayKey, RecordDraft


class AttendanceDayUnitOfWork(Protocol):
    """Reads and writes on days locked by AttendanceRepository.lock_days."""

    def get_record(self, key: DayKey) -> Optional[AttendanceRecord]:
        raise NotImplementedError

    def get_contributions(self, key: DayKey) -> Sequence[Contribution]:
        raise NotImplementedError

    def put_contribution(self, contribution: Contribution) -> None:
        """Insert or replace the contribution of (batch, student, date)."""

        raise NotImplementedError

    def delete_contribution(self, *, batch_id: int, key: DayKey) -> None:
        raise NotImplementedError

    def save_record(self, draft: RecordDraft) -> int:
        raise NotImplementedError

    def delete_record(self, key: DayKey) -> None:
        raise NotImplementedError


class AttendanceRepository(Protocol):
    def get_by_id(self, record_id: int) -> Optional[AttendanceRecord]:
        raise NotImplementedError

    def get_for_student_and_date(self, student_nis: str, work_date: date) -> Optional[AttendanceRecord]:
        raise NotImplementedError

    def list_for_date(self, work_date: date) -> Sequence[AttendanceRecord]:
        raise NotImplementedError

    def list_contribution_keys(self, batch_id: int) -> Sequence[DayKey]:
        raise NotImplementedError

    def lock_days(self, keys: Iterable[DayKey]) -> ContextManager[AttendanceDayUnitOfWork]:
        """Open one transaction holding exclusive locks on the given days.

        Keys are locked in sorted order; everything done through the yielded
        unit of work commits together or not at all.
        """

        raise NotImplementedError
