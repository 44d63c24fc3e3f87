from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Optional, Sequence

from ..core.enums import AttendanceStatus
from ..core.exceptions import NotFoundError, ValidationError
from .factory import AttendanceStrategyFactory
from .merge import merge_day, settle
from .model import EDITABLE_FIELDS, AttendanceRecord, Contribution, DayKey, RecordDraft
from .repository import AttendanceDayUnitOfWork, AttendanceRepository

logger = logging.getLogger(__name__)


class AttendanceService:
    """Daily attendance store: merges import contributions and manual edits per (student, date)."""

    def __init__(self, attendance: AttendanceRepository, *, policy: AttendanceStrategyFactory | None = None):
        self._attendance = attendance
        self._policy = policy or AttendanceStrategyFactory()

    @property
    def policy(self) -> AttendanceStrategyFactory:
        return self._policy

    def _recompute(self, uow: AttendanceDayUnitOfWork, key: DayKey) -> Optional[int]:
        record = uow.get_record(key)
        draft = merge_day(key, record, uow.get_contributions(key), self._policy)
        if draft is None:
            if record:
                uow.delete_record(key)
            return None
        return uow.save_record(draft)

    def get(self, record_id: int) -> AttendanceRecord:
        rec = self._attendance.get_by_id(int(record_id))
        if not rec:
            raise NotFoundError(f"Attendance record {record_id} not found")
        return rec

    def get_for_student_and_date(self, student_nis: str, work_date: date) -> Optional[AttendanceRecord]:
        return self._attendance.get_for_student_and_date(student_nis, work_date)

    def list_daily(self, work_date: date) -> Sequence[AttendanceRecord]:
        return self._attendance.list_for_date(work_date)

    def apply_batch(self, batch_id: int, contributions: Sequence[Contribution]) -> int:
        """Merge all contributions of one batch in a single transaction; returns days touched."""

        if not contributions:
            return 0
        if any(c.batch_id != batch_id for c in contributions):
            raise ValidationError("Contribution belongs to another batch")

        keys = sorted({c.key for c in contributions})
        with self._attendance.lock_days(keys) as uow:
            for c in contributions:
                uow.put_contribution(c)
            for key in keys:
                self._recompute(uow, key)

        logger.info("Batch %s merged into %s daily records", batch_id, len(keys))
        return len(keys)

    def remove_batch(self, batch_id: int) -> int:
        """Drop one batch's contributions and recompute the affected days."""

        keys = sorted(set(self._attendance.list_contribution_keys(int(batch_id))))
        if not keys:
            return 0

        removed = 0
        with self._attendance.lock_days(keys) as uow:
            for key in keys:
                uow.delete_contribution(batch_id=int(batch_id), key=key)
                if self._recompute(uow, key) is None:
                    removed += 1

        logger.info("Batch %s removed from %s days (%s records deleted)", batch_id, len(keys), removed)
        return len(keys)

    def upsert_daily(
        self,
        *,
        student_nis: str,
        work_date: date,
        status: AttendanceStatus,
        check_in_time: Optional[datetime] = None,
        check_out_time: Optional[datetime] = None,
        note: Optional[str] = None,
        batch_id: Optional[int] = None,
    ) -> AttendanceRecord:
        """Merge one day's values.

        With a batch_id the values become that batch's contribution (manual
        fields still win); without one they are a manual edit.
        """

        if batch_id is None:
            return self.record_manual(
                student_nis=student_nis,
                work_date=work_date,
                status=status,
                check_in_time=check_in_time,
                check_out_time=check_out_time,
                note=note,
            )

        if check_in_time is None:
            raise ValidationError("Imported attendance needs a check-in time")
        contribution = Contribution(
            batch_id=int(batch_id),
            student_nis=student_nis,
            work_date=work_date,
            check_in_time=check_in_time,
            check_out_time=check_out_time,
            status=status,
            note=note,
        )
        self.apply_batch(int(batch_id), [contribution])
        return self._reload(contribution.key)

    def record_manual(
        self,
        *,
        student_nis: str,
        work_date: date,
        status: AttendanceStatus,
        check_in_time: Optional[datetime] = None,
        check_out_time: Optional[datetime] = None,
        note: Optional[str] = None,
    ) -> AttendanceRecord:
        nis = (student_nis or "").strip()
        if not nis:
            raise ValidationError("Student NIS is required")

        changes = {"status": AttendanceStatus(status)}
        if check_in_time is not None:
            changes["check_in_time"] = check_in_time
        if check_out_time is not None:
            changes["check_out_time"] = check_out_time
        if note is not None:
            changes["note"] = note

        key = (nis, work_date)
        with self._attendance.lock_days([key]) as uow:
            self._write_manual(uow, key, changes)
        logger.info("Manual attendance for %s on %s: %s", nis, work_date, sorted(changes))
        return self._reload(key)

    def update(self, record_id: int, **changes) -> AttendanceRecord:
        """Direct correction of a record; provenance (batch_id) is left as is."""

        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot update field(s): {', '.join(sorted(unknown))}")
        if not changes:
            raise ValidationError("Nothing to update")
        if "status" in changes:
            changes["status"] = AttendanceStatus(changes["status"])

        rec = self.get(record_id)
        with self._attendance.lock_days([rec.key]) as uow:
            if uow.get_record(rec.key) is None:
                raise NotFoundError(f"Attendance record {record_id} not found")
            self._write_manual(uow, rec.key, changes)
        logger.info("Attendance record %s updated: %s", record_id, sorted(changes))
        return self._reload(rec.key)

    def _write_manual(self, uow: AttendanceDayUnitOfWork, key: DayKey, changes: dict) -> None:
        current = uow.get_record(key)
        base = merge_day(key, current, uow.get_contributions(key), self._policy)

        values = {
            "status": base.status if base else AttendanceStatus.ABSENT,
            "check_in_time": base.check_in_time if base else None,
            "check_out_time": base.check_out_time if base else None,
            "note": base.note if base else None,
        }
        values.update(changes)
        manual = (base.manual_fields if base else frozenset()) | frozenset(changes)
        settle(values, manual, key[1], self._policy)
        if values["check_in_time"] and values["check_out_time"] and values["check_out_time"] < values["check_in_time"]:
            raise ValidationError("Check-out cannot be earlier than check-in")

        uow.save_record(
            RecordDraft(
                student_nis=key[0],
                work_date=key[1],
                status=values["status"],
                check_in_time=values["check_in_time"],
                check_out_time=values["check_out_time"],
                note=values["note"],
                batch_id=current.batch_id if current else None,
                manual_fields=manual,
            )
        )

    def _reload(self, key: DayKey) -> AttendanceRecord:
        rec = self._attendance.get_for_student_and_date(*key)
        if rec is None:
            raise NotFoundError(f"Attendance for {key[0]} on {key[1]} not found")
        return rec
