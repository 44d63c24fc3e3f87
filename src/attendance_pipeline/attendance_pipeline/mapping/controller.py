from __future__ import annotations

from typing import Optional

from flask import Flask, request

from ..common.http import api_errors, json_body, ok
from ..core.enums import MappingStatus
from ..core.exceptions import ValidationError
from ..registry.model import DeviceUser
from .model import MappingSuggestion, UnmappedEntry

API = "/api/v1/mapping"


def _device_user_dict(du: Optional[DeviceUser]) -> Optional[dict]:
    if du is None:
        return None
    return {
        "id": du.device_user_id,
        "device_id": du.device_id,
        "device_code": du.device_code,
        "machine_user_id": du.local_user_id,
        "machine_user_name": du.local_user_name,
        "department": du.department,
    }


def _suggestion_dict(s: Optional[MappingSuggestion], du: Optional[DeviceUser] = None) -> Optional[dict]:
    if s is None:
        return None
    return {
        "id": s.suggestion_id,
        "device_user_id": s.device_user_id,
        "machine_user": _device_user_dict(du),
        "student_nis": s.student_nis,
        "confidence_score": s.confidence_score,
        "band": s.band.value,
        "status": s.status.value,
        "source": s.source.value,
        "created_at": s.created_at,
        "verified_at": s.decided_at,
        "verified_by": s.decided_by,
    }


def _unmapped_dict(entry: UnmappedEntry) -> dict:
    return {
        "machine_user": _device_user_dict(entry.device_user),
        "suggestion": _suggestion_dict(entry.suggestion),
        "suggested_matches": [c.to_dict() for c in entry.suggested_matches],
    }


def _suggestion_id(payload: dict) -> int:
    # `mapping_id` is the name older clients send.
    raw = payload.get("suggestion_id", payload.get("mapping_id"))
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValidationError("suggestion_id must be an integer")


def _decision(value) -> MappingStatus:
    try:
        status = MappingStatus(str(value or MappingStatus.VERIFIED.value).lower())
    except ValueError:
        raise ValidationError(f"Invalid status '{value}'")
    if status == MappingStatus.PENDING:
        raise ValidationError("status must be verified or rejected")
    return status


def _bulk_item(item) -> tuple[Optional[int], Optional[MappingStatus]]:
    """Parse one bulk entry; a malformed one fails alone, not the request."""

    if not isinstance(item, dict):
        return None, None
    try:
        sid = _suggestion_id(item)
    except ValidationError:
        return None, None
    try:
        return sid, _decision(item.get("status"))
    except ValidationError:
        return sid, None


def register(app: Flask, container) -> None:
    reconciler = container.reconciler
    mapping_service = container.mapping_service

    @app.route(f"{API}/process", methods=["POST"], endpoint="mapping_process")
    @api_errors
    def process():
        result = reconciler.generate_suggestions()
        return ok(result.to_dict(), f"Processed {result.processed} device users, {result.matched} matched")

    @app.route(f"{API}/unmapped", methods=["GET"], endpoint="mapping_unmapped")
    @api_errors
    def unmapped():
        return ok([_unmapped_dict(e) for e in reconciler.list_unmapped()])

    @app.route(f"{API}/suggestions", methods=["GET"], endpoint="mapping_suggestions")
    @api_errors
    def suggestions():
        raw = request.args.get("status")
        status = None
        if raw:
            try:
                status = MappingStatus(raw.lower())
            except ValueError:
                raise ValidationError(f"Invalid status '{raw}'")
        users = {du.device_user_id: du for du in container.device_users_repo.list_all()}
        items = mapping_service.list_suggestions(status=status)
        return ok([_suggestion_dict(s, users.get(s.device_user_id)) for s in items])

    @app.route(f"{API}/stats", methods=["GET"], endpoint="mapping_stats")
    @api_errors
    def stats():
        s = reconciler.stats()
        return ok(
            {
                "total_users": s.total_device_users,
                "mapped": s.verified_count,
                "pending": s.pending_count,
                "unmapped": s.unmapped_count,
            }
        )

    @app.route(f"{API}/verify", methods=["POST"], endpoint="mapping_verify")
    @api_errors
    def verify():
        payload = json_body()
        sid = _suggestion_id(payload)
        decided_by = payload.get("decided_by")
        if _decision(payload.get("status")) == MappingStatus.REJECTED:
            mapping_service.reject(sid, decided_by=decided_by)
            return ok({"suggestion_id": sid, "status": MappingStatus.REJECTED.value}, "Suggestion rejected")

        mapping = mapping_service.verify(sid, decided_by=decided_by)
        return ok(
            {
                "suggestion_id": sid,
                "status": MappingStatus.VERIFIED.value,
                "mapping_id": mapping.mapping_id,
                "device_user_id": mapping.device_user_id,
                "student_nis": mapping.student_nis,
            },
            "Mapping verified",
        )

    @app.route(f"{API}/bulk-verify", methods=["POST"], endpoint="mapping_bulk_verify")
    @api_errors
    def bulk_verify():
        payload = json_body()
        decided_by = payload.get("decided_by")

        if "mappings" in payload:
            items = payload.get("mappings") or []
            if not isinstance(items, list):
                raise ValidationError("mappings must be a list")
            pairs = [_bulk_item(item) for item in items]
            report = mapping_service.bulk_decide(pairs, decided_by=decided_by)
        else:
            ids = payload.get("ids") or []
            if not isinstance(ids, list):
                raise ValidationError("ids must be a list")
            try:
                ids = [int(i) for i in ids]
            except (TypeError, ValueError):
                raise ValidationError("ids must be integers")
            if _decision(payload.get("status")) == MappingStatus.REJECTED:
                report = mapping_service.bulk_reject(ids, decided_by=decided_by)
            else:
                report = mapping_service.bulk_verify(ids, decided_by=decided_by)

        data = report.to_dict()
        data["processed"] = len(report.succeeded)
        return ok(data, f"{len(report.succeeded)} succeeded, {len(report.failed)} failed")

    @app.route(f"{API}/manual", methods=["POST"], endpoint="mapping_manual")
    @api_errors
    def manual():
        payload = json_body()
        try:
            device_user_id = int(payload.get("device_user_id"))
        except (TypeError, ValueError):
            raise ValidationError("device_user_id must be an integer")
        mapping = mapping_service.manual_map(
            device_user_id=device_user_id,
            student_nis=str(payload.get("student_nis") or ""),
            created_by=payload.get("created_by"),
        )
        return ok(
            {"mapping_id": mapping.mapping_id, "device_user_id": mapping.device_user_id, "student_nis": mapping.student_nis},
            "Mapping created",
            201,
        )

    @app.route(f"{API}/unmap", methods=["POST"], endpoint="mapping_unmap")
    @api_errors
    def unmap():
        payload = json_body()
        device_user_id = payload.get("device_user_id")
        if device_user_id is not None:
            try:
                device_user_id = int(device_user_id)
            except (TypeError, ValueError):
                raise ValidationError("device_user_id must be an integer")
        mapping = mapping_service.unmap(device_user_id=device_user_id, student_nis=payload.get("student_nis"))
        return ok({"device_user_id": mapping.device_user_id, "student_nis": mapping.student_nis}, "Mapping removed")

    @app.route(f"{API}/<int:suggestion_id>", methods=["DELETE"], endpoint="mapping_delete")
    @api_errors
    def delete(suggestion_id: int):
        mapping_service.delete_suggestion(suggestion_id)
        return ok({"suggestion_id": suggestion_id}, "Suggestion deleted")
