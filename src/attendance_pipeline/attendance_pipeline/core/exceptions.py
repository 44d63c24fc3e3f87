from __future__ import annotations

from datetime import date
from typing import Optional


class DomainError(Exception):
    """Base exception for business rule violations."""


class ValidationError(DomainError):
    """Raised when input data is invalid or a file cannot be parsed."""

    def __init__(self, message: str, *, code: str = "invalid"):
        super().__init__(message)
        self.code = code


class NotFoundError(DomainError):
    """Raised when a referenced entity does not exist."""


class MappingConflictError(DomainError):
    """Raised when a student or device user already holds a verified mapping."""

    def __init__(self, message: str, *, student_nis: Optional[str] = None, device_user_id: Optional[int] = None):
        super().__init__(message)
        self.student_nis = student_nis
        self.device_user_id = device_user_id


class UnresolvedIdentityError(DomainError):
    """A punch belongs to a device user without a verified mapping.

    Never escapes a commit: it is rendered into the batch error log.
    """

    def __init__(self, *, local_user_id: str, work_date: date, row: Optional[int] = None, user_name: Optional[str] = None, found: bool = True):
        who = f"{local_user_id} ({user_name})" if user_name else str(local_user_id)
        reason = "has no verified mapping" if found else "is not registered on this device"
        super().__init__(f"Device user {who} {reason}; punch on {work_date.isoformat()} skipped")
        self.local_user_id = local_user_id
        self.work_date = work_date
        self.row = row

    def to_log_entry(self) -> dict:
        return {
            "row": self.row,
            "device_user": self.local_user_id,
            "date": self.work_date.isoformat(),
            "message": str(self),
        }


class BatchStateError(DomainError):
    """Raised when a batch transition is not allowed from its current status."""
