from __future__ import annotations

from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Optional, Sequence, Tuple

from ...core.enums import FileType

# Raw cell grid as read from a CSV or a worksheet; every cell is a stripped str.
Table = List[List[str]]


@dataclass(frozen=True)
class Punch:
    """One timestamped event of a device user, with its source row (1-based)."""

    row: int
    local_user_id: str
    user_name: Optional[str]
    punched_at: datetime

    @property
    def work_date(self) -> date:
        return self.punched_at.date()


@dataclass(frozen=True)
class UserRow:
    row: int
    local_user_id: str
    name: str
    department: Optional[str] = None


@dataclass(frozen=True)
class ParsedFile:
    """Terminal export normalised to punches, whatever the source layout."""

    format: str
    file_type: FileType
    punches: Tuple[Punch, ...] = ()
    users: Tuple[UserRow, ...] = ()
    period: Optional[Tuple[int, int]] = None
    warnings: Tuple[str, ...] = field(default_factory=tuple)

    def punches_by_user(self) -> "OrderedDict[str, List[Punch]]":
        """Punches grouped per device user id, each list in time order.

        Users keep the order of their first appearance in the file.
        """

        grouped: "OrderedDict[str, List[Punch]]" = OrderedDict()
        for p in self.punches:
            grouped.setdefault(p.local_user_id, []).append(p)
        for punches in grouped.values():
            punches.sort(key=lambda p: (p.punched_at, p.row))
        return grouped

    def user_names(self) -> dict:
        names = {u.local_user_id: u.name for u in self.users}
        for p in self.punches:
            if p.user_name and p.local_user_id not in names:
                names[p.local_user_id] = p.user_name
        return names


class FileParser(ABC):
    format_name: str = ""

    @abstractmethod
    def parse(self, table: Table) -> ParsedFile:
        raise NotImplementedError


def norm_header(value: str) -> str:
    return " ".join((value or "").strip().lower().split())


def find_column(header: Sequence[str], candidates: Sequence[str]) -> Optional[int]:
    normalized = [norm_header(h) for h in header]
    for name in candidates:
        if name in normalized:
            return normalized.index(name)
    return None


def first_non_blank(table: Table) -> Optional[int]:
    for i, row in enumerate(table):
        if any(cell for cell in row):
            return i
    return None


def cell(row: Sequence[str], index: Optional[int]) -> str:
    if index is None or index >= len(row):
        return ""
    return row[index]


def period_of(dates: Sequence[date]) -> Optional[Tuple[int, int]]:
    if not dates:
        return None
    first = min(dates)
    return (first.year, first.month)
