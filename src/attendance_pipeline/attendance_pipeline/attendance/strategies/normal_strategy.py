from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from ...core.enums import AttendanceStatus
from .base import AttendanceStrategy, StatusDecision


class NormalStrategy(AttendanceStrategy):
    """Arrived on or before the cutoff."""

    def decide(self, *, work_date: date, check_in_time: Optional[datetime], cutoff: datetime) -> StatusDecision:
        return StatusDecision(status=AttendanceStatus.PRESENT)
