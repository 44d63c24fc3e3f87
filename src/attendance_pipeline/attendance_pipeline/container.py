from __future__ import annotations

from dataclasses import dataclass
from datetime import time
from typing import Optional

from .attendance.factory import AttendanceStrategyFactory
from .attendance.mysql_attendance_repository import MySQLAttendanceRepository
from .attendance.repository import AttendanceRepository
from .attendance.service import AttendanceService
from .core.constants import (
    DEFAULT_LATE_GRACE_MINUTES,
    DEFAULT_SCHOOL_START,
    SUGGESTION_MAX_CANDIDATES,
    SUGGESTION_MIN_SCORE,
)
from .database.connection import DBConfig, DatabaseConnection
from .imports.mysql_import_repository import MySQLImportBatchRepository, MySQLPunchLogRepository
from .imports.repository import ImportBatchRepository, PunchLogRepository
from .imports.service import ImportService
from .mapping.mysql_mapping_repository import MySQLMappingRepository
from .mapping.reconciler import IdentityReconciler
from .mapping.repository import MappingRepository
from .mapping.service import MappingService
from .registry.mysql_registry_repository import (
    MySQLDeviceRepository,
    MySQLDeviceUserRepository,
    MySQLStudentRepository,
)
from .registry.repository import DeviceRepository, DeviceUserRepository, StudentRepository


@dataclass(frozen=True)
class Settings:
    school_start: time = DEFAULT_SCHOOL_START
    late_grace_minutes: int = DEFAULT_LATE_GRACE_MINUTES
    suggestion_min_score: float = SUGGESTION_MIN_SCORE
    suggestion_max_candidates: int = SUGGESTION_MAX_CANDIDATES


@dataclass(frozen=True)
class Container:
    conn: Optional[DatabaseConnection]

    students_repo: StudentRepository
    devices_repo: DeviceRepository
    device_users_repo: DeviceUserRepository
    mappings_repo: MappingRepository
    attendance_repo: AttendanceRepository
    batches_repo: ImportBatchRepository
    punch_logs_repo: PunchLogRepository

    reconciler: IdentityReconciler
    mapping_service: MappingService
    attendance_service: AttendanceService
    import_service: ImportService


def wire(
    *,
    students_repo: StudentRepository,
    devices_repo: DeviceRepository,
    device_users_repo: DeviceUserRepository,
    mappings_repo: MappingRepository,
    attendance_repo: AttendanceRepository,
    batches_repo: ImportBatchRepository,
    punch_logs_repo: PunchLogRepository,
    settings: Settings = Settings(),
    conn: Optional[DatabaseConnection] = None,
) -> Container:
    """Build services over any repository implementations (MySQL or in-memory)."""

    reconciler = IdentityReconciler(
        mappings_repo,
        device_users_repo,
        students_repo,
        min_score=settings.suggestion_min_score,
        max_candidates=settings.suggestion_max_candidates,
    )
    mapping_service = MappingService(mappings_repo, device_users_repo, students_repo)
    attendance_service = AttendanceService(
        attendance_repo,
        policy=AttendanceStrategyFactory(
            school_start=settings.school_start,
            grace_minutes=settings.late_grace_minutes,
        ),
    )
    import_service = ImportService(
        batches=batches_repo,
        punch_logs=punch_logs_repo,
        devices=devices_repo,
        device_users=device_users_repo,
        mappings=mappings_repo,
        reconciler=reconciler,
        attendance=attendance_service,
    )

    return Container(
        conn=conn,
        students_repo=students_repo,
        devices_repo=devices_repo,
        device_users_repo=device_users_repo,
        mappings_repo=mappings_repo,
        attendance_repo=attendance_repo,
        batches_repo=batches_repo,
        punch_logs_repo=punch_logs_repo,
        reconciler=reconciler,
        mapping_service=mapping_service,
        attendance_service=attendance_service,
        import_service=import_service,
    )


def build_container(*, db_config: dict, settings: Settings = Settings()) -> Container:
    conn = DatabaseConnection.get_instance(DBConfig.from_dict(db_config))

    return wire(
        students_repo=MySQLStudentRepository(conn),
        devices_repo=MySQLDeviceRepository(conn),
        device_users_repo=MySQLDeviceUserRepository(conn),
        mappings_repo=MySQLMappingRepository(conn),
        attendance_repo=MySQLAttendanceRepository(conn),
        batches_repo=MySQLImportBatchRepository(conn),
        punch_logs_repo=MySQLPunchLogRepository(conn),
        settings=settings,
        conn=conn,
    )
