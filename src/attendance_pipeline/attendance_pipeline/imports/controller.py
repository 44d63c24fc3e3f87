from __future__ import annotations

from flask import Flask, request

from ..common.http import api_errors, fail, form_value, ok, uploaded_file
from ..core.constants import DEFAULT_PAGE_SIZE
from ..core.exceptions import ValidationError

API = "/api/v1/import"


def _device_code() -> str:
    code = form_value("device_code", "machine_code")
    if not code:
        raise ValidationError("device_code is required")
    return code


def register(app: Flask, container) -> None:
    import_service = container.import_service

    @app.route(f"{API}/attendance/preview", methods=["POST"], endpoint="import_preview")
    @api_errors
    def preview():
        filename, content = uploaded_file()
        result = import_service.preview(filename=filename, content=content, device_code=_device_code())
        return ok(result.to_dict(), "Preview ready")

    @app.route(f"{API}/attendance", methods=["POST"], endpoint="import_attendance")
    @api_errors
    def commit():
        filename, content = uploaded_file()
        try:
            result = import_service.commit(
                filename=filename,
                content=content,
                device_code=_device_code(),
                created_by=form_value("created_by"),
            )
        except ValidationError as e:
            return fail(f"Import failed, nothing written: {e}", 400, {"code": e.code})

        skipped = len(result.errors)
        message = (
            f"Imported {result.logs_imported} logs"
            if not skipped
            else f"Imported {result.logs_imported} logs with {skipped} skipped (see error_log)"
        )
        return ok(result.to_dict(), message, 201)

    @app.route(f"{API}/users-sync", methods=["POST"], endpoint="import_users_sync")
    @api_errors
    def users_sync():
        filename, content = uploaded_file()
        result = import_service.sync_device_users(
            filename=filename,
            content=content,
            device_code=_device_code(),
            created_by=form_value("created_by"),
        )
        return ok(result.to_dict(), f"Synced {result.records_processed} device users", 201)

    @app.route(f"{API}/batches", methods=["GET"], endpoint="import_batches")
    @api_errors
    def batches():
        page = import_service.list_batches(
            file_type=request.args.get("file_type"),
            status=request.args.get("status"),
            page=request.args.get("page", 1),
            per_page=request.args.get("per_page", DEFAULT_PAGE_SIZE),
        )
        return ok(page.to_dict())

    @app.route(f"{API}/batches/<int:batch_id>", methods=["GET"], endpoint="import_batch")
    @api_errors
    def batch(batch_id: int):
        return ok(import_service.get_batch(batch_id).to_dict())

    @app.route(f"{API}/batches/<int:batch_id>/rollback", methods=["POST"], endpoint="import_batch_rollback")
    @api_errors
    def rollback(batch_id: int):
        result = import_service.rollback(batch_id)
        return ok(result.to_dict(), f"Batch {batch_id} rolled back")

    @app.route(f"{API}/batches/<int:batch_id>", methods=["DELETE"], endpoint="import_batch_delete")
    @api_errors
    def delete(batch_id: int):
        import_service.delete_batch(batch_id)
        return ok({"batch_id": batch_id}, f"Batch {batch_id} deleted")
