from __future__ import annotations

from datetime import datetime
from typing import Optional, Sequence

import mysql.connector

from ..core.constants import MANUAL_CONFIDENCE
from ..core.enums import MappingStatus, SuggestionSource
from ..core.exceptions import MappingConflictError, NotFoundError
from ..database.connection import DatabaseConnection
from ..database.mysql_base import READ_COMMITTED, db_cursor, fetchall, fetchone, is_duplicate_key, is_lock_failure
from .model import Mapping, MappingSuggestion
from .repository import MappingRepository

_SUGGESTION_COLUMNS = """
    suggestion_id, device_user_id, student_nis, confidence_score, status, source,
    created_at, decided_at, decided_by
"""

_MAPPING_COLUMNS = "mapping_id, device_user_id, student_nis, suggestion_id, created_at, created_by"


def _suggestion(r: dict) -> MappingSuggestion:
    return MappingSuggestion(
        suggestion_id=int(r["suggestion_id"]),
        device_user_id=int(r["device_user_id"]),
        student_nis=r.get("student_nis"),
        confidence_score=float(r["confidence_score"]),
        status=MappingStatus(r["status"]),
        source=SuggestionSource(r.get("source") or SuggestionSource.AUTO.value),
        created_at=r.get("created_at"),
        decided_at=r.get("decided_at"),
        decided_by=r.get("decided_by"),
    )


def _mapping(r: dict) -> Mapping:
    return Mapping(
        mapping_id=int(r["mapping_id"]),
        device_user_id=int(r["device_user_id"]),
        student_nis=str(r["student_nis"]),
        suggestion_id=int(r["suggestion_id"]) if r.get("suggestion_id") is not None else None,
        created_at=r.get("created_at"),
        created_by=r.get("created_by"),
    )


class MySQLMappingRepository(MappingRepository):
    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    def get_suggestion(self, suggestion_id: int) -> Optional[MappingSuggestion]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(f"SELECT {_SUGGESTION_COLUMNS} FROM mapping_suggestions WHERE suggestion_id=%s", (int(suggestion_id),))
            r = fetchone(cur)
            return _suggestion(r) if r else None

    def list_suggestions(
        self,
        *,
        status: Optional[MappingStatus] = None,
        device_user_id: Optional[int] = None,
    ) -> Sequence[MappingSuggestion]:
        clauses = ["1=1"]
        params: list[object] = []
        if status is not None:
            clauses.append("status=%s")
            params.append(status.value)
        if device_user_id is not None:
            clauses.append("device_user_id=%s")
            params.append(int(device_user_id))

        where = " AND ".join(clauses)
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"SELECT {_SUGGESTION_COLUMNS} FROM mapping_suggestions WHERE {where} ORDER BY suggestion_id ASC",
                tuple(params),
            )
            return [_suggestion(r) for r in fetchall(cur)]

    def create_suggestion(
        self,
        *,
        device_user_id: int,
        student_nis: Optional[str],
        confidence_score: float,
        source: SuggestionSource = SuggestionSource.AUTO,
    ) -> int:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                INSERT INTO mapping_suggestions(device_user_id, student_nis, confidence_score, status, source)
                VALUES(%s,%s,%s,%s,%s)
                """,
                (int(device_user_id), student_nis, float(confidence_score), MappingStatus.PENDING.value, source.value),
            )
            return int(cur.lastrowid)

    def update_pending_target(self, *, suggestion_id: int, student_nis: Optional[str], confidence_score: float) -> bool:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                UPDATE mapping_suggestions
                SET student_nis=%s, confidence_score=%s
                WHERE suggestion_id=%s AND status=%s
                """,
                (student_nis, float(confidence_score), int(suggestion_id), MappingStatus.PENDING.value),
            )
            return cur.rowcount > 0

    @staticmethod
    def _lock_identities(cur, *, device_user_id: int, student_nis: str) -> None:
        # Always the device user row first, then the student row. Writers aimed
        # at the same pair queue here instead of racing on the mapping index.
        cur.execute("SELECT device_user_id FROM device_users WHERE device_user_id=%s FOR UPDATE", (int(device_user_id),))
        if not fetchone(cur):
            raise NotFoundError(f"Device user {device_user_id} not found")
        cur.execute("SELECT nis FROM students WHERE nis=%s FOR UPDATE", (student_nis,))
        if not fetchone(cur):
            raise NotFoundError(f"Student {student_nis} not found")

    @staticmethod
    def _lock_conflict(*, device_user_id: int, student_nis: str) -> MappingConflictError:
        return MappingConflictError(
            f"Student {student_nis} or device user {device_user_id} is being mapped concurrently",
            student_nis=student_nis,
            device_user_id=int(device_user_id),
        )

    @staticmethod
    def _ensure_unmapped(cur, *, device_user_id: int, student_nis: str) -> None:
        cur.execute(
            f"""
            SELECT {_MAPPING_COLUMNS} FROM device_user_mappings
            WHERE student_nis=%s OR device_user_id=%s
            FOR UPDATE
            """,
            (student_nis, int(device_user_id)),
        )
        existing = fetchone(cur)
        if existing:
            if str(existing["student_nis"]) == student_nis:
                raise MappingConflictError(
                    f"Student {student_nis} is already mapped to device user {existing['device_user_id']}",
                    student_nis=student_nis,
                    device_user_id=int(existing["device_user_id"]),
                )
            raise MappingConflictError(
                f"Device user {device_user_id} is already mapped to student {existing['student_nis']}",
                student_nis=str(existing["student_nis"]),
                device_user_id=int(device_user_id),
            )

    @staticmethod
    def _insert_mapping(cur, *, device_user_id: int, student_nis: str, suggestion_id: int, created_by, created_at) -> Mapping:
        try:
            cur.execute(
                """
                INSERT INTO device_user_mappings(device_user_id, student_nis, suggestion_id, created_at, created_by)
                VALUES(%s,%s,%s,%s,%s)
                """,
                (int(device_user_id), student_nis, int(suggestion_id), created_at, created_by),
            )
        except mysql.connector.IntegrityError as e:
            # A concurrent transaction won the unique key between our check and insert.
            if is_duplicate_key(e):
                raise MappingConflictError(
                    f"Student {student_nis} or device user {device_user_id} is already mapped",
                    student_nis=student_nis,
                    device_user_id=int(device_user_id),
                ) from e
            raise
        return Mapping(
            mapping_id=int(cur.lastrowid),
            device_user_id=int(device_user_id),
            student_nis=student_nis,
            suggestion_id=int(suggestion_id),
            created_at=created_at,
            created_by=created_by,
        )

    def verify_suggestion(self, *, suggestion_id: int, decided_by: Optional[str], decided_at: datetime) -> Optional[Mapping]:
        """Flip a pending suggestion to verified and insert its mapping.

        Runs at READ COMMITTED so probing the mapping table for a missing
        row takes no gap locks; the identity row locks serialize writers.
        """

        query = f"SELECT {_SUGGESTION_COLUMNS} FROM mapping_suggestions WHERE suggestion_id=%s"
        s = None
        try:
            with db_cursor(self._conn_factory, isolation_level=READ_COMMITTED) as (_, cur):
                cur.execute(query, (int(suggestion_id),))
                r = fetchone(cur)
                if not r:
                    return None
                s = _suggestion(r)
                if s.status != MappingStatus.PENDING or not s.student_nis:
                    return None

                self._lock_identities(cur, device_user_id=s.device_user_id, student_nis=s.student_nis)
                cur.execute(query + " FOR UPDATE", (s.suggestion_id,))
                r = fetchone(cur)
                # Decided or retargeted while we waited for the locks.
                if not r or r["status"] != MappingStatus.PENDING.value or r.get("student_nis") != s.student_nis:
                    return None

                self._ensure_unmapped(cur, device_user_id=s.device_user_id, student_nis=s.student_nis)
                mapping = self._insert_mapping(
                    cur,
                    device_user_id=s.device_user_id,
                    student_nis=s.student_nis,
                    suggestion_id=s.suggestion_id,
                    created_by=decided_by,
                    created_at=decided_at,
                )
                cur.execute(
                    """
                    UPDATE mapping_suggestions
                    SET status=%s, decided_at=%s, decided_by=%s
                    WHERE suggestion_id=%s
                    """,
                    (MappingStatus.VERIFIED.value, decided_at, decided_by, s.suggestion_id),
                )
                return mapping
        except mysql.connector.DatabaseError as e:
            if s is not None and is_lock_failure(e):
                raise self._lock_conflict(device_user_id=s.device_user_id, student_nis=s.student_nis) from e
            raise

    def reject_suggestion(self, *, suggestion_id: int, decided_by: Optional[str], decided_at: datetime) -> bool:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                UPDATE mapping_suggestions
                SET status=%s, decided_at=%s, decided_by=%s
                WHERE suggestion_id=%s AND status=%s
                """,
                (MappingStatus.REJECTED.value, decided_at, decided_by, int(suggestion_id), MappingStatus.PENDING.value),
            )
            return cur.rowcount > 0

    def delete_suggestion(self, suggestion_id: int) -> bool:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute("DELETE FROM device_user_mappings WHERE suggestion_id=%s", (int(suggestion_id),))
            cur.execute("DELETE FROM mapping_suggestions WHERE suggestion_id=%s", (int(suggestion_id),))
            return cur.rowcount > 0

    def create_manual_mapping(
        self,
        *,
        device_user_id: int,
        student_nis: str,
        created_by: Optional[str],
        created_at: datetime,
    ) -> Mapping:
        try:
            with db_cursor(self._conn_factory, isolation_level=READ_COMMITTED) as (_, cur):
                self._lock_identities(cur, device_user_id=device_user_id, student_nis=student_nis)
                self._ensure_unmapped(cur, device_user_id=device_user_id, student_nis=student_nis)
                cur.execute(
                    "DELETE FROM mapping_suggestions WHERE device_user_id=%s AND status=%s",
                    (int(device_user_id), MappingStatus.PENDING.value),
                )
                cur.execute(
                    """
                    INSERT INTO mapping_suggestions(
                        device_user_id, student_nis, confidence_score, status, source, decided_at, decided_by
                    )
                    VALUES(%s,%s,%s,%s,%s,%s,%s)
                    """,
                    (
                        int(device_user_id),
                        student_nis,
                        MANUAL_CONFIDENCE,
                        MappingStatus.VERIFIED.value,
                        SuggestionSource.MANUAL.value,
                        created_at,
                        created_by,
                    ),
                )
                suggestion_id = int(cur.lastrowid)
                return self._insert_mapping(
                    cur,
                    device_user_id=device_user_id,
                    student_nis=student_nis,
                    suggestion_id=suggestion_id,
                    created_by=created_by,
                    created_at=created_at,
                )
        except mysql.connector.DatabaseError as e:
            if is_lock_failure(e):
                raise self._lock_conflict(device_user_id=device_user_id, student_nis=student_nis) from e
            raise

    def delete_mapping(self, *, device_user_id: Optional[int] = None, student_nis: Optional[str] = None) -> Optional[Mapping]:
        column, value = ("device_user_id", int(device_user_id)) if device_user_id is not None else ("student_nis", student_nis)
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(f"SELECT {_MAPPING_COLUMNS} FROM device_user_mappings WHERE {column}=%s FOR UPDATE", (value,))
            r = fetchone(cur)
            if not r:
                return None
            mapping = _mapping(r)
            cur.execute("DELETE FROM device_user_mappings WHERE mapping_id=%s", (mapping.mapping_id,))
            if mapping.suggestion_id is not None:
                cur.execute(
                    "DELETE FROM mapping_suggestions WHERE suggestion_id=%s AND status=%s",
                    (mapping.suggestion_id, MappingStatus.VERIFIED.value),
                )
            return mapping

    def get_mapping(self, *, device_user_id: Optional[int] = None, student_nis: Optional[str] = None) -> Optional[Mapping]:
        column, value = ("device_user_id", int(device_user_id)) if device_user_id is not None else ("student_nis", student_nis)
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(f"SELECT {_MAPPING_COLUMNS} FROM device_user_mappings WHERE {column}=%s", (value,))
            r = fetchone(cur)
            return _mapping(r) if r else None

    def list_mappings(self) -> Sequence[Mapping]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(f"SELECT {_MAPPING_COLUMNS} FROM device_user_mappings ORDER BY mapping_id ASC")
            return [_mapping(r) for r in fetchall(cur)]
