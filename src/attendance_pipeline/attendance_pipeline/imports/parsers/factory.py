from __future__ import annotations

from .base import FileParser, ParsedFile, Table
from .flat_log_parser import FlatLogParser
from .matrix_parser import MatrixReportParser, looks_like_matrix
from .table_reader import read_table
from .users_parser import DeviceUsersParser


class AttendanceParserFactory:
    """Factory Pattern: pick the parser for an attendance export by its layout."""

    def for_table(self, table: Table) -> FileParser:
        if looks_like_matrix(table):
            return MatrixReportParser()
        return FlatLogParser()

    def parse(self, *, filename: str, content: bytes) -> ParsedFile:
        table = read_table(filename, content)
        return self.for_table(table).parse(table)


def parse_device_users(*, filename: str, content: bytes) -> ParsedFile:
    table = read_table(filename, content)
    return DeviceUsersParser().parse(table)
