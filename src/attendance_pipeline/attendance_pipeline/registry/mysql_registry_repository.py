from __future__ import annotations

from datetime import datetime
from typing import Optional, Sequence

from ..core.enums import DeviceStatus
from ..database.connection import DatabaseConnection
from ..database.mysql_base import db_cursor, fetchall, fetchone
from .model import Device, DeviceUser, Student
from .repository import DeviceRepository, DeviceUserRepository, StudentRepository


class MySQLStudentRepository(StudentRepository):
    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    def get_by_nis(self, nis: str) -> Optional[Student]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute("SELECT nis, name, class_id FROM students WHERE nis=%s", (nis,))
            r = fetchone(cur)
            if not r:
                return None
            return Student(nis=str(r["nis"]), name=r["name"], class_id=r.get("class_id"))

    def list_all(self) -> Sequence[Student]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute("SELECT nis, name, class_id FROM students ORDER BY nis")
            return [Student(nis=str(r["nis"]), name=r["name"], class_id=r.get("class_id")) for r in fetchall(cur)]


class MySQLDeviceRepository(DeviceRepository):
    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    def get_by_code(self, device_code: str) -> Optional[Device]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                SELECT device_id, device_code, location, status, last_sync
                FROM devices
                WHERE device_code=%s
                """,
                (device_code,),
            )
            r = fetchone(cur)
            if not r:
                return None
            return Device(
                device_id=int(r["device_id"]),
                device_code=r["device_code"],
                location=r.get("location"),
                status=DeviceStatus(r["status"]),
                last_sync=r.get("last_sync"),
            )

    def mark_synced(self, *, device_id: int, synced_at: datetime) -> None:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute("UPDATE devices SET last_sync=%s WHERE device_id=%s", (synced_at, int(device_id)))


class MySQLDeviceUserRepository(DeviceUserRepository):
    _SELECT = """
        SELECT
            du.device_user_id, du.device_id, du.local_user_id, du.local_user_name, du.department,
            d.device_code,
            (m.mapping_id IS NOT NULL) AS is_mapped
        FROM device_users du
        JOIN devices d ON d.device_id = du.device_id
        LEFT JOIN device_user_mappings m ON m.device_user_id = du.device_user_id
    """

    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    @staticmethod
    def _row(r: dict) -> DeviceUser:
        return DeviceUser(
            device_user_id=int(r["device_user_id"]),
            device_id=int(r["device_id"]),
            local_user_id=str(r["local_user_id"]),
            local_user_name=r["local_user_name"],
            department=r.get("department"),
            device_code=r.get("device_code"),
            is_mapped=bool(r.get("is_mapped")),
        )

    def get_by_id(self, device_user_id: int) -> Optional[DeviceUser]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(self._SELECT + " WHERE du.device_user_id=%s", (int(device_user_id),))
            r = fetchone(cur)
            return self._row(r) if r else None

    def list_all(self, *, device_id: Optional[int] = None) -> Sequence[DeviceUser]:
        sql = self._SELECT
        params: tuple = ()
        if device_id is not None:
            sql += " WHERE du.device_id=%s"
            params = (int(device_id),)
        sql += " ORDER BY du.device_user_id ASC"

        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(sql, params)
            return [self._row(r) for r in fetchall(cur)]

    def upsert(
        self,
        *,
        device_id: int,
        local_user_id: str,
        local_user_name: str,
        department: Optional[str] = None,
    ) -> int:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                INSERT INTO device_users(device_id, local_user_id, local_user_name, department)
                VALUES(%s,%s,%s,%s)
                ON DUPLICATE KEY UPDATE local_user_name=VALUES(local_user_name), department=VALUES(department)
                """,
                (int(device_id), str(local_user_id), local_user_name, department),
            )

            # If it was an update, lastrowid can be 0; fetch device_user_id.
            if cur.lastrowid:
                return int(cur.lastrowid)

            cur.execute(
                "SELECT device_user_id FROM device_users WHERE device_id=%s AND local_user_id=%s",
                (int(device_id), str(local_user_id)),
            )
            r = fetchone(cur)
            return int(r["device_user_id"]) if r else 0
