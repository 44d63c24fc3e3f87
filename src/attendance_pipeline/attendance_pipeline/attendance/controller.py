from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from flask import Flask, request

from ..common.datetime_utils import parse_date, parse_timestamp
from ..common.http import api_errors, json_body, ok
from ..core.enums import AttendanceStatus
from ..core.exceptions import ValidationError
from .model import AttendanceRecord

API = "/api/v1/attendance"

# Client field name -> record field.
_FIELD_ALIASES = {
    "status": "status",
    "check_in": "check_in_time",
    "check_in_time": "check_in_time",
    "check_out": "check_out_time",
    "check_out_time": "check_out_time",
    "notes": "note",
    "note": "note",
}

_STATUS_ALIASES = {"excused": AttendanceStatus.PERMISSION.value}


def record_dict(r: AttendanceRecord) -> dict:
    return {
        "id": r.record_id,
        "student_nis": r.student_nis,
        "date": r.work_date,
        "status": r.status.value,
        "check_in": r.check_in_time,
        "check_out": r.check_out_time,
        "notes": r.note,
        "batch_id": r.batch_id,
        "manual_fields": sorted(r.manual_fields),
    }


def _date(value, field_name: str = "date") -> date:
    d = parse_date(str(value or ""))
    if d is None:
        raise ValidationError(f"{field_name} must be a date (YYYY-MM-DD)")
    return d


def _status(value) -> AttendanceStatus:
    text = str(value or "").strip().lower()
    try:
        return AttendanceStatus(_STATUS_ALIASES.get(text, text))
    except ValueError:
        allowed = ", ".join(s.value for s in AttendanceStatus)
        raise ValidationError(f"Invalid status '{value}' (expected one of: {allowed})")


def _moment(value, work_date: Optional[date], field_name: str) -> Optional[datetime]:
    """Accept a full timestamp or an HH:MM[:SS] time on the record's day."""

    if value in (None, ""):
        return None
    text = str(value).strip()
    ts = parse_timestamp(text)
    if ts is None and work_date is not None:
        ts = parse_timestamp(f"{work_date.isoformat()} {text}")
    if ts is None:
        raise ValidationError(f"{field_name} must be a time (HH:MM) or a timestamp")
    return ts


def register(app: Flask, container) -> None:
    attendance_service = container.attendance_service

    @app.route(f"{API}/daily", methods=["GET"], endpoint="attendance_daily")
    @api_errors
    def daily():
        work_date = _date(request.args.get("date") or date.today().isoformat())
        records = attendance_service.list_daily(work_date)
        return ok([record_dict(r) for r in records])

    @app.route(f"{API}/manual", methods=["POST"], endpoint="attendance_manual")
    @api_errors
    def manual():
        payload = json_body()
        work_date = _date(payload.get("date"))
        rec = attendance_service.record_manual(
            student_nis=str(payload.get("student_nis") or ""),
            work_date=work_date,
            status=_status(payload.get("status")),
            check_in_time=_moment(payload.get("check_in"), work_date, "check_in"),
            check_out_time=_moment(payload.get("check_out"), work_date, "check_out"),
            note=payload.get("notes", payload.get("note")),
        )
        return ok(record_dict(rec), "Attendance saved", 201)

    @app.route(f"{API}/<int:record_id>", methods=["PUT"], endpoint="attendance_update")
    @api_errors
    def update(record_id: int):
        payload = json_body()
        current = attendance_service.get(record_id)

        changes = {}
        for key, value in payload.items():
            field = _FIELD_ALIASES.get(key)
            if field is None:
                raise ValidationError(f"Unknown field '{key}'")
            if field == "status":
                changes[field] = _status(value)
            elif field in ("check_in_time", "check_out_time"):
                changes[field] = _moment(value, current.work_date, key)
            else:
                changes[field] = value
        rec = attendance_service.update(record_id, **changes)
        return ok(record_dict(rec), "Attendance updated")
