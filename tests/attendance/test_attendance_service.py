from __future__ import annotations

import threading
from datetime import date, datetime

import pytest

from src.attendance_pipeline.attendance_pipeline.attendance.model import Contribution
from src.attendance_pipeline.attendance_pipeline.core.enums import AttendanceStatus
from src.attendance_pipeline.attendance_pipeline.core.exceptions import NotFoundError, ValidationError

DAY = date(2024, 1, 15)
NIS = "2024099"


def _c(batch_id, hh, mm, out=None, status=AttendanceStatus.PRESENT):
    return Contribution(
        batch_id=batch_id,
        student_nis=NIS,
        work_date=DAY,
        check_in_time=datetime(2024, 1, 15, hh, mm),
        check_out_time=datetime(2024, 1, 15, *out) if out else None,
        status=status,
    )


def test_apply_batch_creates_record_with_provenance(world):
    svc = world.attendance_service

    assert svc.apply_batch(7, [_c(7, 6, 50, (14, 0))]) == 1

    rec = svc.get_for_student_and_date(NIS, DAY)
    assert rec.status == AttendanceStatus.PRESENT
    assert rec.batch_id == 7
    assert rec.check_out_time == datetime(2024, 1, 15, 14, 0)


def test_apply_batch_rejects_foreign_contribution(world):
    with pytest.raises(ValidationError):
        world.attendance_service.apply_batch(1, [_c(2, 7, 0)])


def test_remove_batch_restores_state_from_remaining_batches(world):
    svc = world.attendance_service
    svc.apply_batch(1, [_c(1, 7, 40, status=AttendanceStatus.LATE)])
    svc.apply_batch(2, [_c(2, 6, 55, (13, 0))])

    merged = svc.get_for_student_and_date(NIS, DAY)
    assert merged.check_in_time == datetime(2024, 1, 15, 6, 55)
    assert merged.status == AttendanceStatus.PRESENT

    svc.remove_batch(2)

    rec = svc.get_for_student_and_date(NIS, DAY)
    assert rec.check_in_time == datetime(2024, 1, 15, 7, 40)
    assert rec.check_out_time is None
    assert rec.status == AttendanceStatus.LATE
    assert rec.batch_id == 1


def test_remove_last_batch_deletes_record(world):
    svc = world.attendance_service
    svc.apply_batch(1, [_c(1, 7, 0)])

    svc.remove_batch(1)

    assert svc.get_for_student_and_date(NIS, DAY) is None


def test_manual_edit_wins_over_later_import_and_rollback(world):
    svc = world.attendance_service
    svc.apply_batch(1, [_c(1, 7, 40, status=AttendanceStatus.LATE)])
    rec = svc.get_for_student_and_date(NIS, DAY)

    svc.update(rec.record_id, status=AttendanceStatus.SICK, note="clinic")
    svc.apply_batch(2, [_c(2, 6, 50)])

    after_import = svc.get_for_student_and_date(NIS, DAY)
    assert after_import.status == AttendanceStatus.SICK
    assert after_import.check_in_time == datetime(2024, 1, 15, 6, 50)

    svc.remove_batch(1)
    svc.remove_batch(2)

    kept = svc.get_for_student_and_date(NIS, DAY)
    assert kept.status == AttendanceStatus.SICK
    assert kept.note == "clinic"
    assert kept.check_in_time is None


def test_update_does_not_touch_batch_id(world):
    svc = world.attendance_service
    svc.apply_batch(5, [_c(5, 7, 0)])
    rec = svc.get_for_student_and_date(NIS, DAY)

    updated = svc.update(rec.record_id, check_out_time=datetime(2024, 1, 15, 15, 0))

    assert updated.batch_id == 5
    assert updated.manual_fields == frozenset({"check_out_time"})


def test_update_rejects_checkout_before_checkin(world):
    svc = world.attendance_service
    svc.apply_batch(1, [_c(1, 7, 0)])
    rec = svc.get_for_student_and_date(NIS, DAY)

    with pytest.raises(ValidationError):
        svc.update(rec.record_id, check_out_time=datetime(2024, 1, 15, 6, 0))

    assert svc.get(rec.record_id).manual_fields == frozenset()


def test_manual_checkin_rederives_status(world):
    svc = world.attendance_service
    svc.apply_batch(1, [_c(1, 7, 40, status=AttendanceStatus.LATE)])
    rec = svc.get_for_student_and_date(NIS, DAY)

    updated = svc.update(rec.record_id, check_in_time=datetime(2024, 1, 15, 6, 50))

    assert updated.check_in_time == datetime(2024, 1, 15, 6, 50)
    assert updated.status == AttendanceStatus.PRESENT
    assert updated.manual_fields == frozenset({"check_in_time"})

    svc.apply_batch(2, [_c(2, 7, 50, status=AttendanceStatus.LATE)])
    assert svc.get(rec.record_id).status == AttendanceStatus.PRESENT


def test_manual_checkin_after_imported_checkout_drops_it(world):
    svc = world.attendance_service
    svc.apply_batch(1, [_c(1, 6, 50, (8, 0))])
    rec = svc.get_for_student_and_date(NIS, DAY)

    updated = svc.update(rec.record_id, check_in_time=datetime(2024, 1, 15, 9, 0))

    assert updated.check_out_time is None
    assert updated.status == AttendanceStatus.LATE

    svc.apply_batch(2, [_c(2, 7, 0, (8, 30))])
    after_import = svc.get(rec.record_id)
    assert after_import.check_in_time == datetime(2024, 1, 15, 9, 0)
    assert after_import.check_out_time is None


def test_update_unknown_field_and_missing_record(world):
    svc = world.attendance_service
    with pytest.raises(NotFoundError):
        svc.update(999, status=AttendanceStatus.SICK)

    svc.apply_batch(1, [_c(1, 7, 0)])
    rec = svc.get_for_student_and_date(NIS, DAY)
    with pytest.raises(ValidationError):
        svc.update(rec.record_id, batch_id=3)


def test_record_manual_creates_record_without_batch(world):
    rec = world.attendance_service.record_manual(
        student_nis=NIS, work_date=DAY, status=AttendanceStatus.PERMISSION, note="family event"
    )

    assert rec.batch_id is None
    assert rec.status == AttendanceStatus.PERMISSION
    assert {"status", "note"} <= rec.manual_fields


def test_upsert_daily_with_batch_is_a_contribution(world):
    svc = world.attendance_service
    rec = svc.upsert_daily(
        student_nis=NIS,
        work_date=DAY,
        status=AttendanceStatus.PRESENT,
        check_in_time=datetime(2024, 1, 15, 6, 58),
        batch_id=3,
    )

    assert rec.batch_id == 3
    assert rec.manual_fields == frozenset()


def test_concurrent_batches_on_same_day_do_not_lose_updates(world):
    svc = world.attendance_service
    barrier = threading.Barrier(8)

    def run(batch_id):
        barrier.wait()
        svc.apply_batch(batch_id, [_c(batch_id, 7, batch_id)])

    threads = [threading.Thread(target=run, args=(b,)) for b in range(1, 9)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(world.attendance_repo.list_contribution_keys(1)) == 1
    rec = svc.get_for_student_and_date(NIS, DAY)
    assert rec.check_in_time == datetime(2024, 1, 15, 7, 1)
    assert rec.check_out_time == datetime(2024, 1, 15, 7, 8)
    assert rec.batch_id == 1
