from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional, Protocol, Sequence, Tuple

from ..core.enums import BatchStatus, FileType
from .parsers.base import Punch
from .model import ImportBatch


class ImportBatchRepository(Protocol):
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
        raise NotImplementedError

    def get(self, batch_id: int) -> Optional[ImportBatch]:
        raise NotImplementedError

    def list_batches(
        self,
        *,
        file_type: Optional[FileType] = None,
        status: Optional[BatchStatus] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> Tuple[Sequence[ImportBatch], int]:
        """Newest first; returns (page, total matching)."""

        raise NotImplementedError

    def finish(self, *, batch_id: int, status: BatchStatus, records_processed: int, error_log: Sequence[dict]) -> None:
        raise NotImplementedError

    def transition(self, *, batch_id: int, from_statuses: Iterable[BatchStatus], to_status: BatchStatus) -> bool:
        """Compare-and-set on status; False when the batch is not in from_statuses."""

        raise NotImplementedError

    def delete_unless(self, *, batch_id: int, status: BatchStatus) -> bool:
        """Delete the batch row unless it currently has `status`."""

        raise NotImplementedError


class PunchLogRepository(Protocol):
    def save_punch_logs(self, *, batch_id: int, device_code: str, punches: Sequence[Punch]) -> int:
        raise NotImplementedError

    def delete_punch_logs(self, batch_id: int) -> int:
        raise NotImplementedError
