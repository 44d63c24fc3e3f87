from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol, Sequence

from .model import Device, DeviceUser, Student


class StudentRepository(Protocol):
    def get_by_nis(self, nis: str) -> Optional[Student]:
        raise NotImplementedError

    def list_all(self) -> Sequence[Student]:
        raise NotImplementedError


class DeviceRepository(Protocol):
    def get_by_code(self, device_code: str) -> Optional[Device]:
        raise NotImplementedError

    def mark_synced(self, *, device_id: int, synced_at: datetime) -> None:
        raise NotImplementedError


class DeviceUserRepository(Protocol):
    def get_by_id(self, device_user_id: int) -> Optional[DeviceUser]:
        raise NotImplementedError

    def list_all(self, *, device_id: Optional[int] = None) -> Sequence[DeviceUser]:
        """Ordered by device_user_id."""

        raise NotImplementedError

    def upsert(
        self,
        *,
        device_id: int,
        local_user_id: str,
        local_user_name: str,
        department: Optional[str] = None,
    ) -> int:
        raise NotImplementedError
