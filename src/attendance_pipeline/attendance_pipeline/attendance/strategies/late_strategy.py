from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from ...core.enums import AttendanceStatus
from .base import AttendanceStrategy, StatusDecision


class LateStrategy(AttendanceStrategy):
    """Late check-in."""

    def decide(self, *, work_date: date, check_in_time: Optional[datetime], cutoff: datetime) -> StatusDecision:
        minutes = int((check_in_time - cutoff).total_seconds() // 60) if check_in_time else 0
        return StatusDecision(status=AttendanceStatus.LATE, note=f"Late by {minutes} min" if minutes > 0 else None)
