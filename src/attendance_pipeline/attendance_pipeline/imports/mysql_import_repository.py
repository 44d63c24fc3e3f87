from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional, Sequence, Tuple

from ..core.enums import BatchStatus, FileType
from ..database.connection import DatabaseConnection
from ..database.mysql_base import db_cursor, dump_json, fetchall, fetchone, load_json
from .model import ImportBatch
from .parsers.base import Punch
from .repository import ImportBatchRepository, PunchLogRepository

_BATCH_COLUMNS = """
    batch_id, filename, file_type, status, records_processed, error_log,
    device_code, created_by, created_at
"""


def _batch(r: dict) -> ImportBatch:
    return ImportBatch(
        batch_id=int(r["batch_id"]),
        filename=str(r["filename"]),
        file_type=FileType(r["file_type"]),
        status=BatchStatus(r["status"]),
        records_processed=int(r.get("records_processed") or 0),
        error_log=tuple(load_json(r.get("error_log"), [])),
        created_at=r.get("created_at"),
        device_code=r.get("device_code"),
        created_by=r.get("created_by"),
    )


class MySQLImportBatchRepository(ImportBatchRepository):
    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    def create(
        self,
        *,
        filename: str,
        file_type: FileType,
        status: BatchStatus,
        created_at: datetime,
        device_code: Optional[str] = None,
        created_by: Optional[str] = None,
        records_processed: int = 0,
        error_log: Sequence[dict] = (),
    ) -> int:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                INSERT INTO import_batches(
                    filename, file_type, status, records_processed, error_log, device_code, created_by, created_at
                )
                VALUES(%s,%s,%s,%s,%s,%s,%s,%s)
                """,
                (
                    filename,
                    file_type.value,
                    status.value,
                    int(records_processed),
                    dump_json(list(error_log)),
                    device_code,
                    created_by,
                    created_at,
                ),
            )
            return int(cur.lastrowid)

    def get(self, batch_id: int) -> Optional[ImportBatch]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(f"SELECT {_BATCH_COLUMNS} FROM import_batches WHERE batch_id=%s", (int(batch_id),))
            r = fetchone(cur)
            return _batch(r) if r else None

    def list_batches(
        self,
        *,
        file_type: Optional[FileType] = None,
        status: Optional[BatchStatus] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> Tuple[Sequence[ImportBatch], int]:
        where = []
        params: list = []
        if file_type is not None:
            where.append("file_type=%s")
            params.append(file_type.value)
        if status is not None:
            where.append("status=%s")
            params.append(status.value)
        clause = f"WHERE {' AND '.join(where)}" if where else ""

        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(f"SELECT COUNT(*) AS total FROM import_batches {clause}", tuple(params))
            total = int((fetchone(cur) or {}).get("total") or 0)
            cur.execute(
                f"""
                SELECT {_BATCH_COLUMNS} FROM import_batches {clause}
                ORDER BY created_at DESC, batch_id DESC
                LIMIT %s OFFSET %s
                """,
                tuple(params) + (int(limit), int(offset)),
            )
            return [_batch(r) for r in fetchall(cur)], total

    def finish(self, *, batch_id: int, status: BatchStatus, records_processed: int, error_log: Sequence[dict]) -> None:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                "UPDATE import_batches SET status=%s, records_processed=%s, error_log=%s WHERE batch_id=%s",
                (status.value, int(records_processed), dump_json(list(error_log)), int(batch_id)),
            )

    def transition(self, *, batch_id: int, from_statuses: Iterable[BatchStatus], to_status: BatchStatus) -> bool:
        allowed = [s.value for s in from_statuses]
        if not allowed:
            return False
        placeholders = ",".join(["%s"] * len(allowed))
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"UPDATE import_batches SET status=%s WHERE batch_id=%s AND status IN ({placeholders})",
                (to_status.value, int(batch_id), *allowed),
            )
            return cur.rowcount == 1

    def delete_unless(self, *, batch_id: int, status: BatchStatus) -> bool:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute("DELETE FROM import_batches WHERE batch_id=%s AND status<>%s", (int(batch_id), status.value))
            return cur.rowcount == 1


class MySQLPunchLogRepository(PunchLogRepository):
    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    def save_punch_logs(self, *, batch_id: int, device_code: str, punches: Sequence[Punch]) -> int:
        if not punches:
            return 0
        with db_cursor(self._conn_factory) as (_, cur):
            cur.executemany(
                "INSERT INTO punch_logs(batch_id, device_code, local_user_id, punched_at) VALUES(%s,%s,%s,%s)",
                [(int(batch_id), device_code, p.local_user_id, p.punched_at) for p in punches],
            )
            return len(punches)

    def delete_punch_logs(self, batch_id: int) -> int:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute("DELETE FROM punch_logs WHERE batch_id=%s", (int(batch_id),))
            return int(cur.rowcount or 0)
