from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional, Tuple, Union

from ..attendance.model import Contribution
from ..attendance.service import AttendanceService
from ..common.datetime_utils import now_local
from ..common.validators import require_file, require_non_empty
from ..core.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from ..core.enums import BatchStatus, DeviceStatus, FileType, MappingStatus
from ..core.exceptions import BatchStateError, NotFoundError, UnresolvedIdentityError, ValidationError
from ..mapping.reconciler import IdentityReconciler
from ..mapping.repository import MappingRepository
from ..registry.model import Device, DeviceUser
from ..registry.repository import DeviceRepository, DeviceUserRepository
from .model import (
    ROLLBACK_FROM,
    BatchPage,
    CommitResult,
    ImportBatch,
    PreviewResult,
    PreviewUser,
    RollbackResult,
    SyncResult,
)
from .parsers.base import ParsedFile, Punch
from .parsers.factory import AttendanceParserFactory, parse_device_users
from .parsers.table_reader import extension_of
from .repository import ImportBatchRepository, PunchLogRepository

logger = logging.getLogger(__name__)

# Column limits of device_users.
MAX_LOCAL_USER_ID = 32
MAX_LOCAL_USER_NAME = 150


def _error_entry(message: str, *, row: Optional[int] = None, device_user: Optional[str] = None) -> dict:
    return {"row": row, "device_user": device_user, "date": None, "message": message}


def _enum_or_none(enum_cls, value, field_name: str):
    if value is None or value == "":
        return None
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        raise ValidationError(f"Invalid {field_name} '{value}' (expected one of: {allowed})")


class ImportService:
    """Staged import of terminal exports: preview, commit, rollback, delete."""

    def __init__(
        self,
        *,
        batches: ImportBatchRepository,
        punch_logs: PunchLogRepository,
        devices: DeviceRepository,
        device_users: DeviceUserRepository,
        mappings: MappingRepository,
        reconciler: IdentityReconciler,
        attendance: AttendanceService,
        parsers: Optional[AttendanceParserFactory] = None,
    ):
        self._batches = batches
        self._punch_logs = punch_logs
        self._devices = devices
        self._device_users = device_users
        self._mappings = mappings
        self._reconciler = reconciler
        self._attendance = attendance
        self._parsers = parsers or AttendanceParserFactory()

    # ---------- helpers ----------
    def _device(self, device_code: str) -> Device:
        code = require_non_empty(device_code or "", "Device code")
        device = self._devices.get_by_code(code)
        if not device:
            raise ValidationError(f"Unknown device '{code}'", code="unknown_device")
        return device

    def _device_users_by_local_id(self, device: Device) -> Dict[str, DeviceUser]:
        return {du.local_user_id: du for du in self._device_users.list_all(device_id=device.device_id)}

    def _mapped_students(self) -> Dict[int, str]:
        return {m.device_user_id: m.student_nis for m in self._mappings.list_mappings()}

    def _record_failure(
        self,
        *,
        filename: str,
        file_type: FileType,
        device_code: Optional[str],
        created_by: Optional[str],
        error: Exception,
        now: datetime,
    ) -> int:
        """Audit-only batch for an import that was refused before any write."""

        batch_id = self._batches.create(
            filename=filename,
            file_type=file_type,
            status=BatchStatus.FAILED,
            created_at=now,
            device_code=device_code,
            created_by=created_by,
            error_log=[_error_entry(str(error))],
        )
        logger.warning("Import of %s refused (batch %s): %s", filename, batch_id, error)
        return batch_id

    def _guess_file_type(self, filename: str) -> FileType:
        # Parsing failed, so the layout is unknown; spreadsheets are usually matrix reports.
        return FileType.ATTENDANCE if extension_of(filename) in (".xls", ".xlsx") else FileType.LOGS

    # ---------- preview ----------
    def preview(self, *, filename: str, content: bytes, device_code: str) -> PreviewResult:
        """Parse and resolve identities without writing anything."""

        require_file(filename, content)
        device = self._device(device_code)
        parsed = self._parsers.parse(filename=filename, content=content)

        known = self._device_users_by_local_id(device)
        mapped = self._mapped_students()
        pending = {
            s.device_user_id: s
            for s in self._mappings.list_suggestions(status=MappingStatus.PENDING)
            if s.student_nis
        }

        by_user = parsed.punches_by_user()
        names = parsed.user_names()
        user_ids = list(by_user)
        user_ids.extend(u.local_user_id for u in parsed.users if u.local_user_id not in by_user)

        unmapped_known = [
            known[uid] for uid in user_ids if uid in known and known[uid].device_user_id not in mapped
        ]
        live = self._reconciler.best_matches(
            [du for du in unmapped_known if du.device_user_id not in pending]
        )

        rows: List[PreviewUser] = []
        for uid in user_ids:
            du = known.get(uid)
            name = names.get(uid) or (du.local_user_name if du else "")
            log_count = len(by_user.get(uid, []))
            if du is None:
                rows.append(PreviewUser(uid, name, False, None, None, log_count, "not_found"))
                continue

            nis = mapped.get(du.device_user_id)
            if nis:
                rows.append(PreviewUser(uid, name, True, nis, None, log_count, "mapped"))
                continue

            suggestion = None
            if du.device_user_id in pending:
                s = pending[du.device_user_id]
                suggestion = {
                    "suggestion_id": s.suggestion_id,
                    "student_nis": s.student_nis,
                    "confidence_score": s.confidence_score,
                    "band": s.band.value,
                }
            elif live.get(du.device_user_id):
                c = live[du.device_user_id]
                suggestion = {
                    "suggestion_id": None,
                    "student_nis": c.student.nis,
                    "confidence_score": c.confidence_score,
                    "band": c.band.value,
                }
            rows.append(PreviewUser(uid, name, True, None, suggestion, log_count, "unmapped"))

        warnings = list(parsed.warnings)
        if device.status != DeviceStatus.ACTIVE:
            warnings.append(f"Device {device.device_code} is {device.status.value}")

        return PreviewResult(
            format=parsed.format,
            period=parsed.period,
            total_logs=len(parsed.punches),
            users=tuple(rows),
            warnings=tuple(warnings),
        )

    # ---------- commit ----------
    def _contributions(
        self,
        *,
        batch_id: int,
        parsed: ParsedFile,
        known: Dict[str, DeviceUser],
        mapped: Dict[int, str],
    ) -> Tuple[List[Contribution], List[dict], int]:
        contributions: List[Contribution] = []
        errors: List[dict] = []
        resolved = 0

        for uid, punches in parsed.punches_by_user().items():
            du = known.get(uid)
            nis = mapped.get(du.device_user_id) if du else None
            if nis is None:
                for p in punches:
                    err = UnresolvedIdentityError(
                        local_user_id=uid,
                        work_date=p.work_date,
                        row=p.row,
                        user_name=p.user_name or (du.local_user_name if du else None),
                        found=du is not None,
                    )
                    errors.append(err.to_log_entry())
                logger.warning(
                    "Batch %s: %s punches of device user %s skipped (%s)",
                    batch_id,
                    len(punches),
                    uid,
                    "unmapped" if du else "not registered",
                )
                continue

            resolved += len(punches)
            per_day: Dict[object, List[Punch]] = defaultdict(list)
            for p in punches:
                per_day[p.work_date].append(p)
            for work_date, day_punches in sorted(per_day.items()):
                check_in = day_punches[0].punched_at
                check_out = day_punches[-1].punched_at
                decision = self._attendance.policy.decide(work_date=work_date, check_in_time=check_in)
                contributions.append(
                    Contribution(
                        batch_id=batch_id,
                        student_nis=nis,
                        work_date=work_date,
                        check_in_time=check_in,
                        check_out_time=check_out if check_out > check_in else None,
                        status=decision.status,
                        punch_count=len(day_punches),
                        note=decision.note,
                    )
                )

        return contributions, errors, resolved

    def commit(
        self,
        *,
        filename: str,
        content: bytes,
        device_code: str,
        created_by: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CommitResult:
        """Persist a terminal export as one batch.

        Punches of device users without a verified mapping are skipped and
        logged in the batch error log; a file that cannot be parsed writes
        nothing but a failed audit batch.
        """

        now = now or now_local()
        name = require_non_empty(filename or "", "File name")
        try:
            require_file(name, content)
            device = self._device(device_code)
            parsed = self._parsers.parse(filename=name, content=content)
        except ValidationError as e:
            self._record_failure(
                filename=name,
                file_type=self._guess_file_type(name),
                device_code=device_code or None,
                created_by=created_by,
                error=e,
                now=now,
            )
            raise

        batch_id = self._batches.create(
            filename=name,
            file_type=parsed.file_type,
            status=BatchStatus.PROCESSING,
            created_at=now,
            device_code=device.device_code,
            created_by=created_by,
        )
        logger.info("Batch %s: importing %s (%s punches, %s)", batch_id, name, len(parsed.punches), parsed.format)

        try:
            self._punch_logs.save_punch_logs(batch_id=batch_id, device_code=device.device_code, punches=parsed.punches)
            contributions, errors, resolved = self._contributions(
                batch_id=batch_id,
                parsed=parsed,
                known=self._device_users_by_local_id(device),
                mapped=self._mapped_students(),
            )
            self._attendance.apply_batch(batch_id, contributions)

            status = BatchStatus.PARTIAL if errors else BatchStatus.COMPLETED
            self._batches.finish(batch_id=batch_id, status=status, records_processed=resolved, error_log=errors)
            self._devices.mark_synced(device_id=device.device_id, synced_at=now)
        except Exception as e:
            logger.exception("Batch %s: import failed, undoing its writes", batch_id)
            self._compensate(batch_id, e)
            raise

        logger.info(
            "Batch %s %s: %s punches stored, %s resolved, %s days, %s skipped",
            batch_id,
            status.value,
            len(parsed.punches),
            resolved,
            len(contributions),
            len(errors),
        )
        return CommitResult(
            batch_id=batch_id,
            status=status,
            logs_imported=len(parsed.punches),
            daily_records_created=len({c.key for c in contributions}),
            errors=errors,
        )

    def _compensate(self, batch_id: int, cause: Exception) -> None:
        try:
            self._attendance.remove_batch(batch_id)
            self._punch_logs.delete_punch_logs(batch_id)
            self._batches.finish(
                batch_id=batch_id,
                status=BatchStatus.FAILED,
                records_processed=0,
                error_log=[_error_entry(f"Import aborted: {cause}")],
            )
        except Exception:
            logger.exception("Batch %s: compensation incomplete; batch left for manual cleanup", batch_id)

    # ---------- device users ----------
    def sync_device_users(
        self,
        *,
        filename: str,
        content: bytes,
        device_code: str,
        created_by: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> SyncResult:
        """Upsert a terminal's user list; new users become reconcilable."""

        now = now or now_local()
        name = require_non_empty(filename or "", "File name")
        try:
            require_file(name, content)
            device = self._device(device_code)
            parsed = parse_device_users(filename=name, content=content)
        except ValidationError as e:
            self._record_failure(
                filename=name,
                file_type=FileType.USERS,
                device_code=device_code or None,
                created_by=created_by,
                error=e,
                now=now,
            )
            raise

        batch_id = self._batches.create(
            filename=name,
            file_type=FileType.USERS,
            status=BatchStatus.PROCESSING,
            created_at=now,
            device_code=device.device_code,
            created_by=created_by,
        )

        errors: List[dict] = []
        processed = 0
        try:
            for u in parsed.users:
                if len(u.local_user_id) > MAX_LOCAL_USER_ID or len(u.name) > MAX_LOCAL_USER_NAME:
                    errors.append(_error_entry("User id or name too long; row skipped", row=u.row, device_user=u.local_user_id))
                    continue
                self._device_users.upsert(
                    device_id=device.device_id,
                    local_user_id=u.local_user_id,
                    local_user_name=u.name,
                    department=u.department,
                )
                processed += 1

            status = BatchStatus.PARTIAL if errors else BatchStatus.COMPLETED
            self._batches.finish(batch_id=batch_id, status=status, records_processed=processed, error_log=errors)
            self._devices.mark_synced(device_id=device.device_id, synced_at=now)
        except Exception as e:
            logger.exception("Batch %s: device user sync failed", batch_id)
            self._batches.finish(
                batch_id=batch_id,
                status=BatchStatus.FAILED,
                records_processed=processed,
                error_log=errors + [_error_entry(f"Sync aborted: {e}")],
            )
            raise

        logger.info("Batch %s: synced %s device users for %s (%s skipped)", batch_id, processed, device.device_code, len(errors))
        return SyncResult(
            batch_id=batch_id,
            status=status,
            records_processed=processed,
            errors=errors,
            warnings=parsed.warnings,
        )

    # ---------- batches ----------
    def get_batch(self, batch_id: int) -> ImportBatch:
        batch = self._batches.get(int(batch_id))
        if not batch:
            raise NotFoundError(f"Import batch {batch_id} not found")
        return batch

    def list_batches(
        self,
        *,
        file_type: Union[FileType, str, None] = None,
        status: Union[BatchStatus, str, None] = None,
        page: int = 1,
        per_page: int = DEFAULT_PAGE_SIZE,
    ) -> BatchPage:
        ft = _enum_or_none(FileType, file_type, "file_type")
        st = _enum_or_none(BatchStatus, status, "status")
        try:
            page, per_page = int(page), int(per_page)
        except (TypeError, ValueError):
            raise ValidationError("page and per_page must be integers")
        if page < 1:
            raise ValidationError("page must be >= 1")
        per_page = max(1, min(per_page, MAX_PAGE_SIZE))

        items, total = self._batches.list_batches(
            file_type=ft,
            status=st,
            offset=(page - 1) * per_page,
            limit=per_page,
        )
        return BatchPage(items=tuple(items), total=total, page=page, per_page=per_page)

    def rollback(self, batch_id: int) -> RollbackResult:
        """Undo one batch's contribution to attendance; other batches and manual edits stay."""

        batch = self.get_batch(batch_id)
        if not batch.can_rollback:
            raise BatchStateError(
                f"Batch {batch.batch_id} ({batch.file_type.value}, {batch.status.value}) cannot be rolled back"
            )
        if not self._batches.transition(batch_id=batch.batch_id, from_statuses=ROLLBACK_FROM, to_status=BatchStatus.ROLLED_BACK):
            raise BatchStateError(f"Batch {batch.batch_id} changed state; rollback not applied")

        try:
            days = self._attendance.remove_batch(batch.batch_id)
            self._punch_logs.delete_punch_logs(batch.batch_id)
        except Exception:
            logger.exception("Batch %s: rollback failed, restoring %s", batch.batch_id, batch.status.value)
            self._batches.transition(
                batch_id=batch.batch_id, from_statuses=[BatchStatus.ROLLED_BACK], to_status=batch.status
            )
            raise

        logger.info("Batch %s rolled back (%s days recomputed)", batch.batch_id, days)
        return RollbackResult(batch_id=batch.batch_id, days_affected=days)

    def delete_batch(self, batch_id: int) -> None:
        """Remove batch metadata only; attendance records keep their values."""

        batch = self.get_batch(batch_id)
        if batch.status == BatchStatus.PROCESSING:
            raise BatchStateError(f"Batch {batch.batch_id} is still processing")
        if not self._batches.delete_unless(batch_id=batch.batch_id, status=BatchStatus.PROCESSING):
            if self._batches.get(batch.batch_id) is None:
                raise NotFoundError(f"Import batch {batch_id} not found")
            raise BatchStateError(f"Batch {batch.batch_id} is still processing")
        logger.info("Batch %s deleted (%s)", batch.batch_id, batch.status.value)
