from __future__ import annotations

from datetime import datetime
from typing import Optional

from ...common.datetime_utils import parse_date, parse_timestamp
from ...core.enums import FileType
from ...core.exceptions import ValidationError
from .base import FileParser, ParsedFile, Punch, Table, cell, find_column, first_non_blank, period_of

USER_ID_COLUMNS = ("user_id", "user id", "id", "no", "no.", "ac-no.", "ac-no", "pin", "enroll_no", "enrollnumber")
TIMESTAMP_COLUMNS = ("timestamp", "datetime", "date/time", "date time", "checktime", "time_stamp")
DATE_COLUMNS = ("date",)
TIME_COLUMNS = ("time",)
NAME_COLUMNS = ("name", "user_name", "user name", "nama")


def _combine(date_text: str, time_text: str) -> Optional[datetime]:
    d = parse_date(date_text)
    if d is None:
        return None
    t = (time_text or "").strip()
    # Spreadsheet time cells may carry a dummy date prefix.
    if " " in t:
        t = t.split(" ")[-1]
    for fmt in ("%H:%M:%S", "%H:%M"):
        try:
            return datetime.combine(d, datetime.strptime(t, fmt).time())
        except ValueError:
            continue
    return None


class FlatLogParser(FileParser):
    """One punch per row: user id plus a timestamp (or a date and a time column)."""

    format_name = "flat_log"

    def parse(self, table: Table) -> ParsedFile:
        header_at = first_non_blank(table)
        if header_at is None:
            raise ValidationError("File has no header row")
        header = table[header_at]

        id_col = find_column(header, USER_ID_COLUMNS)
        ts_col = find_column(header, TIMESTAMP_COLUMNS)
        date_col = find_column(header, DATE_COLUMNS)
        time_col = find_column(header, TIME_COLUMNS)
        name_col = find_column(header, NAME_COLUMNS)

        if id_col is None:
            raise ValidationError(f"Missing user id column (one of: {', '.join(USER_ID_COLUMNS)})")
        if ts_col is None and (date_col is None or time_col is None):
            raise ValidationError("Missing timestamp column (or separate date and time columns)")

        punches = []
        for i in range(header_at + 1, len(table)):
            row = table[i]
            if not any(row):
                continue
            row_no = i + 1

            user_id = cell(row, id_col)
            if not user_id:
                raise ValidationError(f"Row {row_no}: user id is empty")

            if ts_col is not None:
                raw = cell(row, ts_col)
                punched_at = parse_timestamp(raw)
            else:
                raw = f"{cell(row, date_col)} {cell(row, time_col)}".strip()
                punched_at = _combine(cell(row, date_col), cell(row, time_col))
            if punched_at is None:
                raise ValidationError(f"Row {row_no}: invalid timestamp '{raw}'")

            punches.append(
                Punch(
                    row=row_no,
                    local_user_id=user_id,
                    user_name=cell(row, name_col) or None,
                    punched_at=punched_at,
                )
            )

        warnings = []
        if not punches:
            warnings.append("File contains a header but no punches")

        return ParsedFile(
            format=self.format_name,
            file_type=FileType.LOGS,
            punches=tuple(punches),
            period=period_of([p.work_date for p in punches]),
            warnings=tuple(warnings),
        )
