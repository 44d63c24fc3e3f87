from __future__ import annotations

import logging
from collections import defaultdict
from typing import Iterable, Optional, Sequence

from ..core.constants import SUGGESTION_MAX_CANDIDATES, SUGGESTION_MIN_SCORE
from ..core.enums import MappingStatus
from ..registry.model import DeviceUser, Student
from ..registry.repository import DeviceUserRepository, StudentRepository
from .model import Candidate, MappingStats, MappingSuggestion, ReconcileResult, UnmappedEntry
from .repository import MappingRepository
from .similarity import confidence_score

logger = logging.getLogger(__name__)


class _Snapshot:
    """Mapping state read once per reconciliation pass."""

    def __init__(self, mappings: MappingRepository):
        self.mapped_device_users: set[int] = set()
        self.taken_students: set[str] = set()
        for m in mappings.list_mappings():
            self.mapped_device_users.add(m.device_user_id)
            self.taken_students.add(m.student_nis)

        self.pending: dict[int, MappingSuggestion] = {}
        self.rejected: dict[int, set[str]] = defaultdict(set)
        for s in mappings.list_suggestions():
            if s.status == MappingStatus.PENDING:
                self.pending.setdefault(s.device_user_id, s)
            elif s.status == MappingStatus.REJECTED and s.student_nis:
                self.rejected[s.device_user_id].add(s.student_nis)

    def excluded_for(self, device_user_id: int) -> frozenset[str]:
        return frozenset(self.taken_students | self.rejected.get(device_user_id, set()))


class IdentityReconciler:
    """Proposes student matches for device users that are not mapped yet."""

    def __init__(
        self,
        mappings: MappingRepository,
        device_users: DeviceUserRepository,
        students: StudentRepository,
        *,
        min_score: float = SUGGESTION_MIN_SCORE,
        max_candidates: int = SUGGESTION_MAX_CANDIDATES,
    ):
        self._mappings = mappings
        self._device_users = device_users
        self._students = students
        self._min_score = float(min_score)
        self._max_candidates = int(max_candidates)

    def rank_candidates(
        self,
        device_user: DeviceUser,
        students: Iterable[Student],
        *,
        excluded: frozenset[str] = frozenset(),
    ) -> list[Candidate]:
        """Score, filter and order candidates: highest score first, NIS breaks ties."""

        scored = []
        for student in students:
            if student.nis in excluded:
                continue
            score = confidence_score(
                device_user_name=device_user.local_user_name,
                student_name=student.name,
                department=device_user.department,
                class_id=student.class_id,
            )
            if score >= self._min_score:
                scored.append(Candidate(student=student, confidence_score=score))

        scored.sort(key=lambda c: (-c.confidence_score, c.student.nis))
        return scored[: self._max_candidates]

    @staticmethod
    def pick_top(candidates: Sequence[Candidate]) -> Optional[Candidate]:
        return candidates[0] if candidates else None

    def generate_suggestions(self) -> ReconcileResult:
        """Refresh the pending suggestion of every unmapped device user.

        Verified and rejected suggestions are never touched, and a pending
        suggestion is only rewritten when its target or score changed, so
        repeated passes over unchanged inputs are no-ops.
        """

        students = list(self._students.list_all())
        snap = _Snapshot(self._mappings)

        processed = matched = created = updated = 0
        for du in self._device_users.list_all():
            if du.device_user_id in snap.mapped_device_users:
                continue
            processed += 1

            top = self.pick_top(self.rank_candidates(du, students, excluded=snap.excluded_for(du.device_user_id)))
            nis = top.student.nis if top else None
            score = top.confidence_score if top else 0.0
            if top:
                matched += 1

            existing = snap.pending.get(du.device_user_id)
            if existing is None:
                self._mappings.create_suggestion(device_user_id=du.device_user_id, student_nis=nis, confidence_score=score)
                created += 1
            elif existing.student_nis != nis or float(existing.confidence_score) != score:
                if self._mappings.update_pending_target(
                    suggestion_id=existing.suggestion_id, student_nis=nis, confidence_score=score
                ):
                    updated += 1

        result = ReconcileResult(
            processed=processed,
            matched=matched,
            unmatched=processed - matched,
            created=created,
            updated=updated,
        )
        logger.info(
            "Reconciliation pass: processed=%s matched=%s unmatched=%s created=%s updated=%s",
            result.processed,
            result.matched,
            result.unmatched,
            result.created,
            result.updated,
        )
        return result

    def list_unmapped(self) -> list[UnmappedEntry]:
        students = list(self._students.list_all())
        snap = _Snapshot(self._mappings)

        out: list[UnmappedEntry] = []
        for du in self._device_users.list_all():
            if du.device_user_id in snap.mapped_device_users:
                continue
            matches = self.rank_candidates(du, students, excluded=snap.excluded_for(du.device_user_id))
            out.append(
                UnmappedEntry(
                    device_user=du,
                    suggestion=snap.pending.get(du.device_user_id),
                    suggested_matches=tuple(matches),
                )
            )
        return out

    def best_matches(self, device_users: Iterable[DeviceUser]) -> dict[int, Optional[Candidate]]:
        """Read-only top candidate per unmapped device user (used by import previews)."""

        students = list(self._students.list_all())
        snap = _Snapshot(self._mappings)
        out: dict[int, Optional[Candidate]] = {}
        for du in device_users:
            if du.device_user_id in snap.mapped_device_users:
                continue
            candidates = self.rank_candidates(du, students, excluded=snap.excluded_for(du.device_user_id))
            out[du.device_user_id] = self.pick_top(candidates)
        return out

    def stats(self) -> MappingStats:
        snap = _Snapshot(self._mappings)
        device_users = list(self._device_users.list_all())

        verified = sum(1 for du in device_users if du.device_user_id in snap.mapped_device_users)
        pending = sum(
            1
            for du in device_users
            if du.device_user_id not in snap.mapped_device_users
            and du.device_user_id in snap.pending
            and snap.pending[du.device_user_id].student_nis
        )
        return MappingStats(
            total_device_users=len(device_users),
            verified_count=verified,
            pending_count=pending,
            unmapped_count=len(device_users) - verified,
        )
