from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ..core.enums import DeviceStatus


@dataclass(frozen=True)
class Student:
    nis: str
    name: str
    class_id: Optional[str] = None


@dataclass(frozen=True)
class Device:
    device_id: int
    device_code: str
    location: Optional[str] = None
    status: DeviceStatus = DeviceStatus.ACTIVE
    last_sync: Optional[datetime] = None


@dataclass(frozen=True)
class DeviceUser:
    """A terminal's local user record (machine-local id, not a student)."""

    device_user_id: int
    device_id: int
    local_user_id: str
    local_user_name: str
    department: Optional[str] = None
    device_code: Optional[str] = None
    is_mapped: bool = False
