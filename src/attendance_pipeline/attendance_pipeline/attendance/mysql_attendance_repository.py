from __future__ import annotations

from contextlib import contextmanager
from datetime import date
from typing import Iterable, Iterator, Optional, Sequence

from ..core.enums import AttendanceStatus
from ..database.connection import DatabaseConnection
from ..database.mysql_base import db_cursor, fetchall, fetchone
from .model import AttendanceRecord, Contribution, DayKey, RecordDraft
from .repository import AttendanceDayUnitOfWork, AttendanceRepository

_RECORD_COLUMNS = """
    record_id, student_nis, work_date, status, check_in_time, check_out_time, note,
    batch_id, manual_fields, created_at, updated_at
"""

_CONTRIBUTION_COLUMNS = "batch_id, student_nis, work_date, check_in_time, check_out_time, status, punch_count, note"


def _split_fields(value: Optional[str]) -> frozenset:
    return frozenset(f for f in (value or "").split(",") if f)


def _record(r: dict) -> AttendanceRecord:
    return AttendanceRecord(
        record_id=int(r["record_id"]),
        student_nis=str(r["student_nis"]),
        work_date=r["work_date"],
        status=AttendanceStatus(r["status"]),
        check_in_time=r.get("check_in_time"),
        check_out_time=r.get("check_out_time"),
        note=r.get("note"),
        batch_id=int(r["batch_id"]) if r.get("batch_id") is not None else None,
        manual_fields=_split_fields(r.get("manual_fields")),
        created_at=r.get("created_at"),
        updated_at=r.get("updated_at"),
    )


def _contribution(r: dict) -> Contribution:
    return Contribution(
        batch_id=int(r["batch_id"]),
        student_nis=str(r["student_nis"]),
        work_date=r["work_date"],
        check_in_time=r["check_in_time"],
        check_out_time=r.get("check_out_time"),
        status=AttendanceStatus(r["status"]),
        punch_count=int(r.get("punch_count") or 1),
        note=r.get("note"),
    )


class _MySQLDayUnitOfWork(AttendanceDayUnitOfWork):
    def __init__(self, cur):
        self._cur = cur

    def get_record(self, key: DayKey) -> Optional[AttendanceRecord]:
        self._cur.execute(
            f"SELECT {_RECORD_COLUMNS} FROM attendance_records WHERE student_nis=%s AND work_date=%s",
            key,
        )
        r = fetchone(self._cur)
        return _record(r) if r else None

    def get_contributions(self, key: DayKey) -> Sequence[Contribution]:
        self._cur.execute(
            f"""
            SELECT {_CONTRIBUTION_COLUMNS} FROM attendance_contributions
            WHERE student_nis=%s AND work_date=%s
            ORDER BY batch_id ASC
            """,
            key,
        )
        return [_contribution(r) for r in fetchall(self._cur)]

    def put_contribution(self, contribution: Contribution) -> None:
        c = contribution
        self._cur.execute(
            f"""
            INSERT INTO attendance_contributions({_CONTRIBUTION_COLUMNS})
            VALUES(%s,%s,%s,%s,%s,%s,%s,%s)
            ON DUPLICATE KEY UPDATE
                check_in_time=VALUES(check_in_time),
                check_out_time=VALUES(check_out_time),
                status=VALUES(status),
                punch_count=VALUES(punch_count),
                note=VALUES(note)
            """,
            (
                int(c.batch_id),
                c.student_nis,
                c.work_date,
                c.check_in_time,
                c.check_out_time,
                c.status.value,
                int(c.punch_count),
                c.note,
            ),
        )

    def delete_contribution(self, *, batch_id: int, key: DayKey) -> None:
        self._cur.execute(
            "DELETE FROM attendance_contributions WHERE batch_id=%s AND student_nis=%s AND work_date=%s",
            (int(batch_id), key[0], key[1]),
        )

    def save_record(self, draft: RecordDraft) -> int:
        d = draft
        self._cur.execute(
            """
            INSERT INTO attendance_records(
                student_nis, work_date, status, check_in_time, check_out_time, note, batch_id, manual_fields
            )
            VALUES(%s,%s,%s,%s,%s,%s,%s,%s)
            ON DUPLICATE KEY UPDATE
                status=VALUES(status),
                check_in_time=VALUES(check_in_time),
                check_out_time=VALUES(check_out_time),
                note=VALUES(note),
                batch_id=VALUES(batch_id),
                manual_fields=VALUES(manual_fields)
            """,
            (
                d.student_nis,
                d.work_date,
                d.status.value,
                d.check_in_time,
                d.check_out_time,
                d.note,
                d.batch_id,
                ",".join(sorted(d.manual_fields)),
            ),
        )

        # If it was an update, lastrowid can be 0; fetch record_id.
        if self._cur.lastrowid:
            return int(self._cur.lastrowid)
        self._cur.execute(
            "SELECT record_id FROM attendance_records WHERE student_nis=%s AND work_date=%s",
            (d.student_nis, d.work_date),
        )
        r = fetchone(self._cur)
        return int(r["record_id"]) if r else 0

    def delete_record(self, key: DayKey) -> None:
        self._cur.execute("DELETE FROM attendance_records WHERE student_nis=%s AND work_date=%s", key)


class MySQLAttendanceRepository(AttendanceRepository):
    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    def get_by_id(self, record_id: int) -> Optional[AttendanceRecord]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(f"SELECT {_RECORD_COLUMNS} FROM attendance_records WHERE record_id=%s", (int(record_id),))
            r = fetchone(cur)
            return _record(r) if r else None

    def get_for_student_and_date(self, student_nis: str, work_date: date) -> Optional[AttendanceRecord]:
        with db_cursor(self._conn_factory) as (_, cur):
            return _MySQLDayUnitOfWork(cur).get_record((student_nis, work_date))

    def list_for_date(self, work_date: date) -> Sequence[AttendanceRecord]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"SELECT {_RECORD_COLUMNS} FROM attendance_records WHERE work_date=%s ORDER BY student_nis ASC",
                (work_date,),
            )
            return [_record(r) for r in fetchall(cur)]

    def list_contribution_keys(self, batch_id: int) -> Sequence[DayKey]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                SELECT student_nis, work_date FROM attendance_contributions
                WHERE batch_id=%s
                ORDER BY student_nis ASC, work_date ASC
                """,
                (int(batch_id),),
            )
            return [(str(r["student_nis"]), r["work_date"]) for r in fetchall(cur)]

    @contextmanager
    def lock_days(self, keys: Iterable[DayKey]) -> Iterator[AttendanceDayUnitOfWork]:
        with db_cursor(self._conn_factory) as (_, cur):
            for nis, work_date in sorted(set(keys)):
                # Locks the row, or the index gap when the day has no record yet.
                cur.execute(
                    "SELECT record_id FROM attendance_records WHERE student_nis=%s AND work_date=%s FOR UPDATE",
                    (nis, work_date),
                )
                fetchall(cur)
            yield _MySQLDayUnitOfWork(cur)
