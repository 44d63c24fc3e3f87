from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from ..core.enums import ConfidenceBand, MappingStatus, SuggestionSource
from ..registry.model import DeviceUser, Student
from .similarity import confidence_band


@dataclass(frozen=True)
class MappingSuggestion:
    suggestion_id: int
    device_user_id: int
    student_nis: Optional[str]
    confidence_score: float
    status: MappingStatus
    source: SuggestionSource = SuggestionSource.AUTO
    created_at: Optional[datetime] = None
    decided_at: Optional[datetime] = None
    decided_by: Optional[str] = None

    @property
    def band(self) -> ConfidenceBand:
        return confidence_band(self.confidence_score)


@dataclass(frozen=True)
class Mapping:
    """Durable device user <-> student association."""

    mapping_id: int
    device_user_id: int
    student_nis: str
    suggestion_id: Optional[int] = None
    created_at: Optional[datetime] = None
    created_by: Optional[str] = None


@dataclass(frozen=True)
class Candidate:
    student: Student
    confidence_score: float

    @property
    def band(self) -> ConfidenceBand:
        return confidence_band(self.confidence_score)

    def to_dict(self) -> dict:
        return {
            "student": {"nis": self.student.nis, "name": self.student.name, "class_id": self.student.class_id},
            "confidence_score": self.confidence_score,
            "band": self.band.value,
        }


@dataclass(frozen=True)
class ReconcileResult:
    processed: int
    matched: int
    unmatched: int
    created: int = 0
    updated: int = 0

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "matched": self.matched,
            "unmatched": self.unmatched,
            "created": self.created,
            "updated": self.updated,
        }


@dataclass(frozen=True)
class UnmappedEntry:
    device_user: DeviceUser
    suggestion: Optional[MappingSuggestion]
    suggested_matches: tuple[Candidate, ...] = ()


@dataclass(frozen=True)
class MappingStats:
    total_device_users: int
    verified_count: int
    pending_count: int
    unmapped_count: int


@dataclass(frozen=True)
class BulkFailure:
    id: Optional[int]
    reason: str


@dataclass
class BulkReport:
    """Per-item outcome of a bulk verify/reject; items never affect each other."""

    succeeded: list[int] = field(default_factory=list)
    failed: list[BulkFailure] = field(default_factory=list)

    def merge(self, other: "BulkReport") -> "BulkReport":
        return BulkReport(succeeded=self.succeeded + other.succeeded, failed=self.failed + other.failed)

    def to_dict(self) -> dict:
        return {
            "succeeded": list(self.succeeded),
            "failed": [{"id": f.id, "reason": f.reason} for f in self.failed],
        }
