from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol, Sequence

from ..core.enums import MappingStatus, SuggestionSource
from .model import Mapping, MappingSuggestion


class MappingRepository(Protocol):
    # Suggestions
    def get_suggestion(self, suggestion_id: int) -> Optional[MappingSuggestion]:
        raise NotImplementedError

    def list_suggestions(
        self,
        *,
        status: Optional[MappingStatus] = None,
        device_user_id: Optional[int] = None,
    ) -> Sequence[MappingSuggestion]:
        """Ordered by suggestion_id."""

        raise NotImplementedError

    def create_suggestion(
        self,
        *,
        device_user_id: int,
        student_nis: Optional[str],
        confidence_score: float,
        source: SuggestionSource = SuggestionSource.AUTO,
    ) -> int:
        raise NotImplementedError

    def update_pending_target(self, *, suggestion_id: int, student_nis: Optional[str], confidence_score: float) -> bool:
        """Retarget a suggestion; only succeeds while it is still pending."""

        raise NotImplementedError

    def verify_suggestion(self, *, suggestion_id: int, decided_by: Optional[str], decided_at: datetime) -> Optional[Mapping]:
        """Atomically flip a pending suggestion to verified and create its mapping.

        Returns None if the suggestion is no longer pending or has no target.
        Raises MappingConflictError if the student or device user is already
        mapped; nothing is written in that case.
        """

        raise NotImplementedError

    def reject_suggestion(self, *, suggestion_id: int, decided_by: Optional[str], decided_at: datetime) -> bool:
        """Only pending suggestions can be rejected."""

        raise NotImplementedError

    def delete_suggestion(self, suggestion_id: int) -> bool:
        raise NotImplementedError

    # Mappings
    def create_manual_mapping(
        self,
        *,
        device_user_id: int,
        student_nis: str,
        created_by: Optional[str],
        created_at: datetime,
    ) -> Mapping:
        """Insert a verified manual suggestion and its mapping in one transaction.

        Pending suggestions of the device user are removed. Raises
        MappingConflictError on an existing mapping.
        """

        raise NotImplementedError

    def delete_mapping(self, *, device_user_id: Optional[int] = None, student_nis: Optional[str] = None) -> Optional[Mapping]:
        """Remove the association and the verified suggestion behind it."""

        raise NotImplementedError

    def get_mapping(self, *, device_user_id: Optional[int] = None, student_nis: Optional[str] = None) -> Optional[Mapping]:
        raise NotImplementedError

    def list_mappings(self) -> Sequence[Mapping]:
        raise NotImplementedError
