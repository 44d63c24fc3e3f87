from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple

from ..core.enums import BatchStatus, FileType

# Batches that can be rolled back: only those that wrote attendance.
ROLLBACK_FILE_TYPES = (FileType.LOGS, FileType.ATTENDANCE)
ROLLBACK_FROM = (BatchStatus.COMPLETED, BatchStatus.PARTIAL)


@dataclass(frozen=True)
class ImportBatch:
    """Provenance of one executed import; the unit of rollback."""

    batch_id: int
    filename: str
    file_type: FileType
    status: BatchStatus
    records_processed: int = 0
    error_log: Tuple[dict, ...] = ()
    created_at: Optional[datetime] = None
    device_code: Optional[str] = None
    created_by: Optional[str] = None

    @property
    def can_rollback(self) -> bool:
        return self.status in ROLLBACK_FROM and self.file_type in ROLLBACK_FILE_TYPES

    def to_dict(self) -> dict:
        return {
            "id": self.batch_id,
            "filename": self.filename,
            "file_type": self.file_type.value,
            "status": self.status.value,
            "records_processed": self.records_processed,
            "error_log": list(self.error_log),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "device_code": self.device_code,
            "created_by": self.created_by,
        }


@dataclass(frozen=True)
class BatchPage:
    items: Tuple[ImportBatch, ...]
    total: int
    page: int
    per_page: int

    def to_dict(self) -> dict:
        return {
            "items": [b.to_dict() for b in self.items],
            "total": self.total,
            "page": self.page,
            "per_page": self.per_page,
        }


@dataclass(frozen=True)
class PreviewUser:
    user_id: str
    name: str
    found_in_device: bool
    mapped_to: Optional[str]
    suggestion: Optional[dict]
    log_count: int
    status: str

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "name": self.name,
            "found_in_device": self.found_in_device,
            "mapped_to": self.mapped_to,
            "suggestion": self.suggestion,
            "log_count": self.log_count,
            "status": self.status,
        }


@dataclass(frozen=True)
class PreviewResult:
    format: str
    period: Optional[Tuple[int, int]]
    total_logs: int
    users: Tuple[PreviewUser, ...]
    warnings: Tuple[str, ...] = ()

    @property
    def unmapped_users(self) -> int:
        return sum(1 for u in self.users if u.found_in_device and u.mapped_to is None)

    @property
    def users_not_found(self) -> int:
        return sum(1 for u in self.users if not u.found_in_device)

    def to_dict(self) -> dict:
        return {
            "format": self.format,
            "period": {"year": self.period[0], "month": self.period[1]} if self.period else None,
            "summary": {
                "total_logs": self.total_logs,
                "total_users": len(self.users),
                "unmapped_users": self.unmapped_users,
                "users_not_found": self.users_not_found,
            },
            "users": [u.to_dict() for u in self.users],
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class CommitResult:
    batch_id: int
    status: BatchStatus
    logs_imported: int
    daily_records_created: int
    errors: List[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "batch_id": self.batch_id,
            "status": self.status.value,
            "logs_imported": self.logs_imported,
            "daily_records_created": self.daily_records_created,
            "errors": list(self.errors),
        }


@dataclass(frozen=True)
class SyncResult:
    batch_id: int
    status: BatchStatus
    records_processed: int
    errors: List[dict] = field(default_factory=list)
    warnings: Tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "batch_id": self.batch_id,
            "status": self.status.value,
            "records_processed": self.records_processed,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class RollbackResult:
    batch_id: int
    days_affected: int

    def to_dict(self) -> dict:
        return {"batch_id": self.batch_id, "days_affected": self.days_affected}
