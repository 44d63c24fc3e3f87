from __future__ import annotations

from ...core.enums import FileType
from ...core.exceptions import ValidationError
from .base import FileParser, ParsedFile, Table, UserRow, cell, find_column, first_non_blank
from .flat_log_parser import NAME_COLUMNS, USER_ID_COLUMNS

DEPARTMENT_COLUMNS = ("department", "dept", "dept.", "class", "kelas")


class DeviceUsersParser(FileParser):
    """User list exported from a terminal: id, name and an optional department."""

    format_name = "users"

    def parse(self, table: Table) -> ParsedFile:
        header_at = first_non_blank(table)
        if header_at is None:
            raise ValidationError("File has no header row")
        header = table[header_at]

        id_col = find_column(header, USER_ID_COLUMNS)
        name_col = find_column(header, NAME_COLUMNS)
        dept_col = find_column(header, DEPARTMENT_COLUMNS)
        if id_col is None or name_col is None:
            raise ValidationError("User file needs a user id and a name column")

        users = []
        seen = {}
        warnings = []
        for i in range(header_at + 1, len(table)):
            row = table[i]
            if not any(row):
                continue
            row_no = i + 1
            user_id, name = cell(row, id_col), cell(row, name_col)
            if not user_id:
                raise ValidationError(f"Row {row_no}: user id is empty")
            if not name:
                raise ValidationError(f"Row {row_no}: name is empty for user {user_id}")
            if user_id in seen:
                warnings.append(f"Row {row_no}: user {user_id} repeats row {seen[user_id]}; last one wins")
            seen[user_id] = row_no
            users.append(UserRow(row=row_no, local_user_id=user_id, name=name, department=cell(row, dept_col) or None))

        return ParsedFile(format=self.format_name, file_type=FileType.USERS, users=tuple(users), warnings=tuple(warnings))
