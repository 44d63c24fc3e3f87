from __future__ import annotations

from ..core.exceptions import ValidationError


def require_non_empty(value: str, field_name: str) -> str:
    if not value or not value.strip():
        raise ValidationError(f"{field_name} is required")
    return value.strip()


def require_file(filename: str, content: bytes) -> str:
    name = require_non_empty(filename, "File name")
    if not content:
        raise ValidationError("Uploaded file is empty")
    return name
