"""JSON envelope and domain-error mapping shared by the API controllers."""

from __future__ import annotations

import logging
from datetime import date, datetime, time
from enum import Enum
from functools import wraps
from typing import Any, Optional

from flask import jsonify, request

from ..core.exceptions import BatchStateError, DomainError, MappingConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR = (
    (NotFoundError, 404),
    (MappingConflictError, 409),
    (BatchStateError, 409),
    (ValidationError, 400),
    (DomainError, 400),
)


def status_for(exc: DomainError) -> int:
    for cls, code in _STATUS_BY_ERROR:
        if isinstance(exc, cls):
            return code
    return 400


def to_json(value: Any) -> Any:
    """Make dataclass-free payloads JSON friendly (enums, dates, tuples)."""

    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: to_json(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_json(v) for v in value]
    return value


def ok(data: Any = None, message: str = "OK", status: int = 200):
    return jsonify({"success": True, "message": message, "data": to_json(data)}), status


def fail(message: str, status: int = 400, data: Any = None):
    return jsonify({"success": False, "message": message, "data": to_json(data)}), status


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def uploaded_file() -> tuple[str, bytes]:
    f = request.files.get("file")
    if f is None or not f.filename:
        raise ValidationError("Missing file")
    return f.filename, f.read()


def form_value(name: str, *aliases: str) -> Optional[str]:
    for key in (name, *aliases):
        value = request.form.get(key)
        if value:
            return value.strip()
    return None


def api_errors(view):
    """Translate domain errors to the JSON envelope; unexpected ones become 500."""

    @wraps(view)
    def wrapper(*args, **kwargs):
        try:
            return view(*args, **kwargs)
        except DomainError as e:
            code = status_for(e)
            if code >= 409:
                logger.warning("%s %s -> %s: %s", request.method, request.path, code, e)
            data = {"code": e.code} if isinstance(e, ValidationError) else None
            return fail(str(e), code, data)
        except Exception:
            logger.exception("Unhandled error on %s %s", request.method, request.path)
            return fail("Internal server error", 500)

    return wrapper
