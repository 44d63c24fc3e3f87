"""Parser for the per-day "attendance record" report exported by terminals.

Layout::

    Att. Time | 2024-01-01 ~ 2024-01-31
    1 | 2 | 3 | ... | 31                  <- day-number header
    ID: | 195 | Name: | Budi Santoso | Dept: | X-IPA-1
    07:0212:05 | | 06:58 | ...            <- punches per day column

A user block is an ID/Name/Dept row followed by one row of day cells; a
cell holds zero or more HH:MM punches, sometimes with no separator.
"""

from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional, Tuple

from ...core.enums import FileType
from ...core.exceptions import ValidationError
from .base import FileParser, ParsedFile, Punch, Table, UserRow

PERIOD_RE = re.compile(r"(\d{4}[-/]\d{2}[-/]\d{2})\s*~\s*(\d{4}[-/]\d{2}[-/]\d{2})")
TIME_RE = re.compile(r"(\d{1,2}):(\d{2})")

_LABELS = {"id": "id", "name": "name", "dept": "department", "department": "department"}


def find_period(table: Table) -> Optional[Tuple[date, date]]:
    for row in table:
        for c in row:
            m = PERIOD_RE.search(c)
            if m:
                start, end = (datetime.strptime(v.replace("/", "-"), "%Y-%m-%d").date() for v in m.groups())
                if end < start:
                    raise ValidationError(f"Report period ends before it starts: {m.group(0)}")
                return start, end
    return None


def looks_like_matrix(table: Table, *, scan_rows: int = 10) -> bool:
    head = table[:scan_rows]
    if find_period(head):
        return True
    return any(_label(c) == "id" for row in head for c in row)


def _label(value: str) -> Optional[str]:
    text = value.strip().lower()
    if not text.endswith(":") and ":" not in text:
        return None
    key = text.split(":", 1)[0].strip()
    return _LABELS.get(key)


def _user_header(row: List[str]) -> Optional[Dict[str, str]]:
    """Read an `ID: x  Name: y  Dept: z` row; the value follows the label.

    The value may sit in the same cell ("ID:195") or in the next non-empty one.
    """

    found: Dict[str, str] = {}
    i = 0
    while i < len(row):
        label = _label(row[i])
        if label:
            inline = row[i].split(":", 1)[1].strip()
            if inline:
                found[label] = inline
            else:
                j = i + 1
                while j < len(row) and not row[j]:
                    j += 1
                if j < len(row) and not _label(row[j]):
                    found[label] = row[j]
                    i = j
        i += 1
    return found if "id" in found else None


def _day_columns(row: List[str]) -> Optional[Dict[int, int]]:
    days: Dict[int, int] = {}
    for col, c in enumerate(row):
        if c.isdigit() and 1 <= int(c) <= 31:
            days[col] = int(c)
        elif c:
            return None
    # A single number is more likely an id than a calendar header.
    return days if len(days) >= 2 else None


def _dates_for_columns(days: Dict[int, int], start: date, end: date) -> Dict[int, date]:
    out: Dict[int, date] = {}
    current = start
    for col in sorted(days):
        while current <= end and current.day != days[col]:
            current += timedelta(days=1)
        if current > end:
            raise ValidationError(f"Day {days[col]} in the report header is outside the period {start} ~ {end}")
        out[col] = current
        current += timedelta(days=1)
    return out


def _times(value: str, *, row_no: int) -> List[time]:
    out = []
    for hh, mm in TIME_RE.findall(value):
        h, m = int(hh), int(mm)
        if h > 23 or m > 59:
            raise ValidationError(f"Row {row_no}: invalid punch time '{hh}:{mm}'")
        out.append(time(h, m))
    if value and not out:
        raise ValidationError(f"Row {row_no}: cannot read punch times from '{value}'")
    return out


class MatrixReportParser(FileParser):
    format_name = "matrix"

    def parse(self, table: Table) -> ParsedFile:
        period = find_period(table)
        if period is None:
            raise ValidationError("Report period (YYYY-MM-DD ~ YYYY-MM-DD) not found")
        start, end = period

        column_dates: Optional[Dict[int, date]] = None
        punches: List[Punch] = []
        users: List[UserRow] = []
        warnings: List[str] = []

        i = 0
        while i < len(table):
            row = table[i]
            if column_dates is None:
                days = _day_columns(row)
                if days:
                    column_dates = _dates_for_columns(days, start, end)
                i += 1
                continue

            header = _user_header(row)
            if header is None:
                i += 1
                continue

            row_no = i + 1
            user_id = header["id"]
            name = header.get("name") or ""
            users.append(UserRow(row=row_no, local_user_id=user_id, name=name, department=header.get("department")))

            if i + 1 >= len(table) or _user_header(table[i + 1]) is not None:
                raise ValidationError(f"Row {row_no}: user {user_id} has no punch row")
            data_row = table[i + 1]
            before = len(punches)
            for col, work_date in column_dates.items():
                value = data_row[col] if col < len(data_row) else ""
                for t in _times(value, row_no=i + 2):
                    punches.append(
                        Punch(
                            row=i + 2,
                            local_user_id=user_id,
                            user_name=name or None,
                            punched_at=datetime.combine(work_date, t),
                        )
                    )
            if len(punches) == before:
                warnings.append(f"User {user_id} has no punches in the period")
            i += 2

        if column_dates is None:
            raise ValidationError("Day-number header row not found")
        if not users:
            raise ValidationError("No user blocks (ID:/Name:) found in report")

        return ParsedFile(
            format=self.format_name,
            file_type=FileType.ATTENDANCE,
            punches=tuple(punches),
            users=tuple(users),
            period=(start.year, start.month),
            warnings=tuple(warnings),
        )
