from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Optional, Sequence

from ..common.datetime_utils import now_local
from ..core.enums import MappingStatus
from ..core.exceptions import DomainError, MappingConflictError, NotFoundError, ValidationError
from ..registry.repository import DeviceUserRepository, StudentRepository
from .model import BulkFailure, BulkReport, Mapping, MappingSuggestion
from .repository import MappingRepository

logger = logging.getLogger(__name__)


def _failure_reason(exc: Exception) -> str:
    if isinstance(exc, MappingConflictError):
        return "conflict"
    if isinstance(exc, NotFoundError):
        return "not_found"
    if isinstance(exc, ValidationError):
        return exc.code
    return "error"


class MappingService:
    """Turns suggestions (or manual input) into verified device user <-> student mappings."""

    def __init__(
        self,
        mappings: MappingRepository,
        device_users: DeviceUserRepository,
        students: StudentRepository,
    ):
        self._mappings = mappings
        self._device_users = device_users
        self._students = students

    def _get_suggestion(self, suggestion_id: int) -> MappingSuggestion:
        s = self._mappings.get_suggestion(int(suggestion_id))
        if not s:
            raise NotFoundError(f"Suggestion {suggestion_id} not found")
        return s

    def list_suggestions(self, *, status: Optional[MappingStatus] = None) -> Sequence[MappingSuggestion]:
        return self._mappings.list_suggestions(status=status)

    def verify(self, suggestion_id: int, *, decided_by: Optional[str] = None, now: datetime | None = None) -> Mapping:
        s = self._get_suggestion(suggestion_id)
        if s.status != MappingStatus.PENDING:
            raise ValidationError(f"Suggestion {suggestion_id} is already {s.status.value}", code="not_pending")
        if not s.student_nis:
            raise ValidationError(f"Suggestion {suggestion_id} has no suggested student", code="no_candidate")

        try:
            mapping = self._mappings.verify_suggestion(
                suggestion_id=s.suggestion_id,
                decided_by=decided_by,
                decided_at=now or now_local(),
            )
        except MappingConflictError:
            logger.warning("Verify of suggestion %s rejected: student %s already mapped", s.suggestion_id, s.student_nis)
            raise

        if mapping is None:
            # Decided by someone else between our read and the write.
            raise ValidationError(f"Suggestion {suggestion_id} is no longer pending", code="not_pending")

        logger.info(
            "Verified suggestion %s: device user %s -> student %s",
            s.suggestion_id,
            mapping.device_user_id,
            mapping.student_nis,
        )
        return mapping

    def reject(self, suggestion_id: int, *, decided_by: Optional[str] = None, now: datetime | None = None) -> None:
        s = self._get_suggestion(suggestion_id)
        if s.status != MappingStatus.PENDING:
            raise ValidationError(f"Suggestion {suggestion_id} is already {s.status.value}", code="not_pending")

        ok = self._mappings.reject_suggestion(
            suggestion_id=s.suggestion_id,
            decided_by=decided_by,
            decided_at=now or now_local(),
        )
        if not ok:
            raise ValidationError(f"Suggestion {suggestion_id} is no longer pending", code="not_pending")
        logger.info("Rejected suggestion %s for device user %s", s.suggestion_id, s.device_user_id)

    def _bulk(self, ids: Iterable[int], action) -> BulkReport:
        report = BulkReport()
        seen: set[int] = set()
        for raw in ids:
            sid = int(raw)
            if sid in seen:
                continue
            seen.add(sid)
            try:
                action(sid)
                report.succeeded.append(sid)
            except DomainError as e:
                report.failed.append(BulkFailure(id=sid, reason=_failure_reason(e)))
            except Exception:
                # One broken item must not stop the rest of the batch.
                logger.exception("Unexpected error while processing suggestion %s", sid)
                report.failed.append(BulkFailure(id=sid, reason="error"))
        return report

    def bulk_verify(self, ids: Iterable[int], *, decided_by: Optional[str] = None) -> BulkReport:
        report = self._bulk(ids, lambda sid: self.verify(sid, decided_by=decided_by))
        logger.info("Bulk verify: %s succeeded, %s failed", len(report.succeeded), len(report.failed))
        return report

    def bulk_reject(self, ids: Iterable[int], *, decided_by: Optional[str] = None) -> BulkReport:
        report = self._bulk(ids, lambda sid: self.reject(sid, decided_by=decided_by))
        logger.info("Bulk reject: %s succeeded, %s failed", len(report.succeeded), len(report.failed))
        return report

    def bulk_decide(
        self,
        items: Iterable[tuple[Optional[int], Optional[MappingStatus]]],
        *,
        decided_by: Optional[str] = None,
    ) -> BulkReport:
        """Mixed verify/reject list, processed in order with per-item isolation.

        Items the caller could not parse arrive with a None id or status and
        are reported as ``invalid`` without touching the others.
        """

        actions = {
            MappingStatus.VERIFIED: lambda sid: self.verify(sid, decided_by=decided_by),
            MappingStatus.REJECTED: lambda sid: self.reject(sid, decided_by=decided_by),
        }
        report = BulkReport()
        for sid, status in items:
            action = actions.get(status)
            if sid is None or action is None:
                report.failed.append(BulkFailure(id=sid, reason="invalid"))
                continue
            report = report.merge(self._bulk([sid], action))
        logger.info("Bulk decide: %s succeeded, %s failed", len(report.succeeded), len(report.failed))
        return report

    def manual_map(
        self,
        *,
        device_user_id: int,
        student_nis: str,
        created_by: Optional[str] = None,
        now: datetime | None = None,
    ) -> Mapping:
        du = self._device_users.get_by_id(int(device_user_id))
        if not du:
            raise NotFoundError(f"Device user {device_user_id} not found")
        nis = (student_nis or "").strip()
        if not nis:
            raise ValidationError("Student NIS is required")
        if not self._students.get_by_nis(nis):
            raise NotFoundError(f"Student {nis} not found")

        mapping = self._mappings.create_manual_mapping(
            device_user_id=du.device_user_id,
            student_nis=nis,
            created_by=created_by,
            created_at=now or now_local(),
        )
        logger.info("Manual mapping: device user %s -> student %s", du.device_user_id, nis)
        return mapping

    def unmap(self, *, device_user_id: Optional[int] = None, student_nis: Optional[str] = None) -> Mapping:
        if (device_user_id is None) == (not student_nis):
            raise ValidationError("Provide exactly one of device_user_id or student_nis")

        mapping = self._mappings.delete_mapping(device_user_id=device_user_id, student_nis=student_nis or None)
        if not mapping:
            raise NotFoundError("Mapping not found")
        logger.info("Unmapped device user %s from student %s", mapping.device_user_id, mapping.student_nis)
        return mapping

    def delete_suggestion(self, suggestion_id: int) -> None:
        s = self._get_suggestion(suggestion_id)
        if s.status == MappingStatus.VERIFIED:
            mapping = self._mappings.get_mapping(device_user_id=s.device_user_id)
            if mapping and mapping.suggestion_id == s.suggestion_id:
                self._mappings.delete_mapping(device_user_id=s.device_user_id)
                logger.info("Deleted verified suggestion %s and its mapping", s.suggestion_id)
                return
            if mapping:
                raise ValidationError(
                    f"Suggestion {suggestion_id} is verified but device user {s.device_user_id} "
                    f"is mapped through suggestion {mapping.suggestion_id}; unmap it first",
                    code="mapping_mismatch",
                )

        if not self._mappings.delete_suggestion(s.suggestion_id):
            raise NotFoundError(f"Suggestion {suggestion_id} not found")
        logger.info("Deleted suggestion %s", s.suggestion_id)
