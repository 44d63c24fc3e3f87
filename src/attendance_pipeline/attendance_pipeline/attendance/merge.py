"""Recompute a day's record from its remaining provenance.

A record is the merge of every batch contribution for the day (earliest
check-in, latest check-out) overlaid with the fields a person edited by
hand. Recomputing from scratch on every change makes commit and rollback
symmetric: removing a batch is just merging what is left.
"""

from __future__ import annotations

from datetime import date
from typing import Optional, Sequence

from .factory import AttendanceStrategyFactory
from .model import AttendanceRecord, Contribution, DayKey, RecordDraft


def merge_day(
    key: DayKey,
    record: Optional[AttendanceRecord],
    contributions: Sequence[Contribution],
    policy: AttendanceStrategyFactory,
) -> Optional[RecordDraft]:
    """Return the merged state, or None when nothing justifies a record."""

    student_nis, work_date = key
    manual = frozenset(record.manual_fields) if record else frozenset()
    if not contributions and not manual:
        return None

    if contributions:
        ordered = sorted(contributions, key=lambda c: (c.check_in_time, c.batch_id))
        first = ordered[0]
        check_in = first.check_in_time
        last = max(c.check_out_time or c.check_in_time for c in contributions)
        values = {
            "status": first.status,
            "check_in_time": check_in,
            "check_out_time": last if last > check_in else None,
            "note": first.note,
        }
        batch_id = min(c.batch_id for c in contributions)
    else:
        decision = policy.decide(work_date=work_date, check_in_time=None)
        values = {"status": decision.status, "check_in_time": None, "check_out_time": None, "note": None}
        batch_id = None

    for field in manual:
        values[field] = getattr(record, field)
    settle(values, manual, work_date, policy)

    return RecordDraft(
        student_nis=student_nis,
        work_date=work_date,
        status=values["status"],
        check_in_time=values["check_in_time"],
        check_out_time=values["check_out_time"],
        note=values["note"],
        batch_id=batch_id,
        manual_fields=manual,
    )


def settle(values: dict, manual: frozenset, work_date: date, policy: AttendanceStrategyFactory) -> None:
    """Make derived fields agree with a hand-set check-in.

    Status and note follow the lateness rule unless they were set by hand
    too, and an imported check-out that is not after the check-in is dropped.
    """

    check_in = values["check_in_time"]
    if "check_in_time" in manual and "status" not in manual:
        decision = policy.decide(work_date=work_date, check_in_time=check_in)
        values["status"] = decision.status
        if "note" not in manual:
            values["note"] = decision.note

    check_out = values["check_out_time"]
    if "check_out_time" not in manual and check_in and check_out and check_out <= check_in:
        values["check_out_time"] = None
