from __future__ import annotations

from datetime import date, datetime

import pytest

from src.attendance_pipeline.attendance_pipeline.core.enums import AttendanceStatus, BatchStatus, FileType
from src.attendance_pipeline.attendance_pipeline.core.exceptions import (
    BatchStateError,
    NotFoundError,
    ValidationError,
)

NOW = datetime(2024, 1, 20, 9, 0)

LOGS = b"""user_id,name,timestamp
101,AHMAD FAUZI,2024-01-15 06:50:00
101,AHMAD FAUZI,2024-01-15 14:05:00
101,AHMAD FAUZI,2024-01-16 07:20:00
101,AHMAD FAUZI,2024-01-16 13:00:00
195,Budi Santoso,2024-01-15 07:05:00
195,Budi Santoso,2024-01-15 12:00:00
195,Budi Santoso,2024-01-16 06:59:00
103,Dewi L,2024-01-15 06:45:00
103,Dewi L,2024-01-15 13:30:00
103,Dewi L,2024-01-16 07:00:00
"""


def _map_known(world):
    world.mapping_service.manual_map(device_user_id=1, student_nis="2024001")
    world.mapping_service.manual_map(device_user_id=195, student_nis="2024099")


def _logs(*rows):
    return ("user_id,timestamp\n" + "\n".join(f"{uid},{ts}" for uid, ts in rows) + "\n").encode("utf-8")


def test_preview_resolves_users_without_writing(world):
    _map_known(world)
    writes = world.mappings_repo.writes
    content = LOGS + b"999,Stranger,2024-01-15 07:00:00\n"

    result = world.import_service.preview(filename="logs.csv", content=content, device_code="GATE-01")

    data = result.to_dict()
    assert data["format"] == "flat_log"
    assert data["period"] == {"year": 2024, "month": 1}
    assert data["summary"] == {"total_logs": 11, "total_users": 4, "unmapped_users": 1, "users_not_found": 1}
    by_id = {u["user_id"]: u for u in data["users"]}
    assert by_id["101"]["status"] == "mapped" and by_id["101"]["mapped_to"] == "2024001"
    assert by_id["195"]["mapped_to"] == "2024099"
    assert by_id["103"]["status"] == "unmapped"
    assert by_id["103"]["log_count"] == 3
    assert by_id["103"]["suggestion"]["student_nis"] == "2024003"
    assert by_id["103"]["suggestion"]["suggestion_id"] is None
    assert by_id["999"]["status"] == "not_found"
    assert by_id["999"]["found_in_device"] is False

    assert world.batches_repo.by_id == {}
    assert world.punch_logs_repo.by_batch == {}
    assert world.attendance_repo.records == {}
    assert world.mappings_repo.writes == writes


def test_preview_prefers_stored_pending_suggestion(world):
    _map_known(world)
    world.reconciler.generate_suggestions()
    pending = {s.device_user_id: s for s in world.mapping_service.list_suggestions()}

    result = world.import_service.preview(filename="logs.csv", content=LOGS, device_code="GATE-01")

    dewi = next(u for u in result.users if u.user_id == "103")
    assert dewi.suggestion["suggestion_id"] == pending[3].suggestion_id


def test_preview_unknown_device_is_rejected(world):
    with pytest.raises(ValidationError) as exc:
        world.import_service.preview(filename="logs.csv", content=LOGS, device_code="GATE-99")
    assert exc.value.code == "unknown_device"


def test_commit_imports_mapped_users_and_logs_the_rest(world):
    _map_known(world)

    result = world.import_service.commit(filename="logs.csv", content=LOGS, device_code="GATE-01", created_by="admin", now=NOW)

    assert result.status == BatchStatus.PARTIAL
    assert result.logs_imported == 10
    assert result.daily_records_created == 4
    assert len(result.errors) == 3
    assert {e["device_user"] for e in result.errors} == {"103"}
    assert [e["row"] for e in result.errors] == [9, 10, 11]

    batch = world.import_service.get_batch(result.batch_id)
    assert batch.status == BatchStatus.PARTIAL
    assert batch.records_processed == 7
    assert batch.file_type == FileType.LOGS
    assert batch.created_by == "admin"
    assert len(world.punch_logs_repo.by_batch[result.batch_id]) == 10
    assert world.devices_repo.synced == [(1, NOW)]

    svc = world.attendance_service
    ahmad_15 = svc.get_for_student_and_date("2024001", date(2024, 1, 15))
    assert ahmad_15.status == AttendanceStatus.PRESENT
    assert ahmad_15.check_in_time == datetime(2024, 1, 15, 6, 50)
    assert ahmad_15.check_out_time == datetime(2024, 1, 15, 14, 5)
    assert ahmad_15.batch_id == result.batch_id
    assert svc.get_for_student_and_date("2024001", date(2024, 1, 16)).status == AttendanceStatus.LATE
    budi_16 = svc.get_for_student_and_date("2024099", date(2024, 1, 16))
    assert budi_16.check_out_time is None
    assert svc.list_daily(date(2024, 1, 15))[0].student_nis == "2024001"
    assert len(svc.list_daily(date(2024, 1, 15))) == 2


def test_commit_with_everyone_mapped_completes(world):
    _map_known(world)

    result = world.import_service.commit(
        filename="logs.csv", content=_logs(("101", "2024-01-15 06:50")), device_code="GATE-01", now=NOW
    )

    assert result.status == BatchStatus.COMPLETED
    assert result.errors == []


def test_unparseable_file_leaves_failed_audit_batch_only(world):
    _map_known(world)
    content = _logs(("101", "2024-01-15 06:50"), ("195", "not a time"))

    with pytest.raises(ValidationError, match="Row 3"):
        world.import_service.commit(filename="logs.csv", content=content, device_code="GATE-01", now=NOW)

    [batch] = world.batches_repo.by_id.values()
    assert batch.status == BatchStatus.FAILED
    assert batch.records_processed == 0
    assert "Row 3" in batch.error_log[0]["message"]
    assert world.punch_logs_repo.by_batch == {}
    assert world.attendance_repo.records == {}
    assert world.devices_repo.synced == []


def test_unknown_device_on_commit_is_audited(world):
    with pytest.raises(ValidationError):
        world.import_service.commit(filename="logs.csv", content=LOGS, device_code="GATE-99", now=NOW)

    [batch] = world.batches_repo.by_id.values()
    assert batch.status == BatchStatus.FAILED
    assert batch.device_code == "GATE-99"


def test_storage_failure_is_compensated(world):
    _map_known(world)
    world.attendance_repo.fail_on_commit = True

    with pytest.raises(RuntimeError):
        world.import_service.commit(filename="logs.csv", content=LOGS, device_code="GATE-01", now=NOW)

    [batch] = world.batches_repo.by_id.values()
    assert batch.status == BatchStatus.FAILED
    assert "Import aborted" in batch.error_log[0]["message"]
    assert world.punch_logs_repo.by_batch == {}
    assert world.attendance_repo.records == {}


def test_rollback_keeps_other_batches_and_manual_edits(world):
    _map_known(world)
    svc = world.import_service
    first = svc.commit(
        filename="a.csv", content=_logs(("101", "2024-01-15 06:50"), ("101", "2024-01-15 14:05")), device_code="GATE-01", now=NOW
    )
    second = svc.commit(filename="b.csv", content=_logs(("101", "2024-01-15 07:30")), device_code="GATE-01", now=NOW)
    day = date(2024, 1, 15)
    rec = world.attendance_service.get_for_student_and_date("2024001", day)
    world.attendance_service.update(rec.record_id, note="left early for a match")

    result = svc.rollback(first.batch_id)

    assert result.days_affected == 1
    after = world.attendance_service.get_for_student_and_date("2024001", day)
    assert after.record_id == rec.record_id
    assert after.check_in_time == datetime(2024, 1, 15, 7, 30)
    assert after.check_out_time is None
    assert after.status == AttendanceStatus.LATE
    assert after.note == "left early for a match"
    assert after.batch_id == second.batch_id
    assert svc.get_batch(first.batch_id).status == BatchStatus.ROLLED_BACK
    assert first.batch_id not in world.punch_logs_repo.by_batch
    assert second.batch_id in world.punch_logs_repo.by_batch

    with pytest.raises(BatchStateError):
        svc.rollback(first.batch_id)


def test_rollback_of_only_batch_removes_record(world):
    _map_known(world)
    batch = world.import_service.commit(filename="a.csv", content=_logs(("101", "2024-01-15 06:50")), device_code="GATE-01", now=NOW)

    world.import_service.rollback(batch.batch_id)

    assert world.attendance_service.get_for_student_and_date("2024001", date(2024, 1, 15)) is None


def test_rollback_restores_status_when_attendance_fails(world, monkeypatch):
    _map_known(world)
    batch = world.import_service.commit(filename="a.csv", content=_logs(("101", "2024-01-15 06:50")), device_code="GATE-01", now=NOW)

    def boom(batch_id):
        raise RuntimeError("lock wait timeout")

    monkeypatch.setattr(world.attendance_service, "remove_batch", boom)
    with pytest.raises(RuntimeError):
        world.import_service.rollback(batch.batch_id)

    assert world.import_service.get_batch(batch.batch_id).status == BatchStatus.COMPLETED


def test_failed_and_user_batches_cannot_be_rolled_back(world):
    with pytest.raises(ValidationError):
        world.import_service.commit(filename="logs.csv", content=b"nope", device_code="GATE-01", now=NOW)
    failed_id = next(iter(world.batches_repo.by_id))
    sync = world.import_service.sync_device_users(
        filename="users.csv", content=b"user_id,name\n104,New Student\n", device_code="GATE-01", now=NOW
    )

    with pytest.raises(BatchStateError):
        world.import_service.rollback(failed_id)
    with pytest.raises(BatchStateError):
        world.import_service.rollback(sync.batch_id)
    with pytest.raises(NotFoundError):
        world.import_service.rollback(404)


def test_delete_batch_keeps_attendance(world):
    _map_known(world)
    batch = world.import_service.commit(filename="a.csv", content=_logs(("101", "2024-01-15 06:50")), device_code="GATE-01", now=NOW)

    world.import_service.delete_batch(batch.batch_id)

    with pytest.raises(NotFoundError):
        world.import_service.get_batch(batch.batch_id)
    assert world.attendance_service.get_for_student_and_date("2024001", date(2024, 1, 15)) is not None


def test_processing_batch_cannot_be_deleted(world):
    bid = world.batches_repo.create(filename="x.csv", file_type=FileType.LOGS, status=BatchStatus.PROCESSING, created_at=NOW)

    with pytest.raises(BatchStateError):
        world.import_service.delete_batch(bid)
    assert world.batches_repo.get(bid) is not None


def test_sync_device_users_upserts_and_skips_oversized_rows(world):
    content = ("user_id,name,department\n101,AHMAD FAUZI R,X-IPA-1\n104,Rina Marlina,X-IPS-2\n" + "9" * 40 + ",Too Long,\n").encode()

    result = world.import_service.sync_device_users(filename="users.csv", content=content, device_code="GATE-01", now=NOW)

    assert result.status == BatchStatus.PARTIAL
    assert result.records_processed == 2
    assert len(result.errors) == 1
    names = {du.local_user_id: du.local_user_name for du in world.device_users_repo.list_all(device_id=1)}
    assert names["101"] == "AHMAD FAUZI R"
    assert names["104"] == "Rina Marlina"
    assert world.import_service.get_batch(result.batch_id).file_type == FileType.USERS


def test_list_batches_paginates_newest_first(world):
    for day in range(1, 6):
        world.batches_repo.create(
            filename=f"{day}.csv",
            file_type=FileType.USERS if day == 3 else FileType.LOGS,
            status=BatchStatus.COMPLETED,
            created_at=datetime(2024, 1, day),
        )

    page = world.import_service.list_batches(page=2, per_page=2)
    assert page.total == 5
    assert [b.filename for b in page.items] == ["3.csv", "2.csv"]

    logs = world.import_service.list_batches(file_type="logs", per_page=1000)
    assert logs.total == 4
    assert logs.per_page == 200

    with pytest.raises(ValidationError):
        world.import_service.list_batches(status="done")
    with pytest.raises(ValidationError):
        world.import_service.list_batches(page=0)
