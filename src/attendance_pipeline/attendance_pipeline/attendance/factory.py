from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional

from ..core.constants import DEFAULT_LATE_GRACE_MINUTES, DEFAULT_SCHOOL_START
from .strategies.absent_strategy import AbsentStrategy
from .strategies.base import AttendanceStrategy, StatusDecision
from .strategies.late_strategy import LateStrategy
from .strategies.normal_strategy import NormalStrategy


@dataclass
class AttendanceStrategyFactory:
    """Factory Pattern: choose the status strategy from the lateness cutoff."""

    school_start: time = DEFAULT_SCHOOL_START
    grace_minutes: int = DEFAULT_LATE_GRACE_MINUTES

    def cutoff_for(self, work_date: date) -> datetime:
        return datetime.combine(work_date, self.school_start) + timedelta(minutes=int(self.grace_minutes))

    def for_day(self, *, work_date: date, check_in_time: Optional[datetime]) -> AttendanceStrategy:
        if check_in_time is None:
            return AbsentStrategy()
        if check_in_time <= self.cutoff_for(work_date):
            return NormalStrategy()
        return LateStrategy()

    def decide(self, *, work_date: date, check_in_time: Optional[datetime]) -> StatusDecision:
        strategy = self.for_day(work_date=work_date, check_in_time=check_in_time)
        return strategy.decide(work_date=work_date, check_in_time=check_in_time, cutoff=self.cutoff_for(work_date))
