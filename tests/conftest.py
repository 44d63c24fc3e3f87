from __future__ import annotations

import threading
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from typing import Optional

import pytest

from src.attendance_pipeline.attendance_pipeline.attendance.model import AttendanceRecord
from src.attendance_pipeline.attendance_pipeline.container import Settings, wire
from src.attendance_pipeline.attendance_pipeline.core.constants import MANUAL_CONFIDENCE
from src.attendance_pipeline.attendance_pipeline.core.enums import MappingStatus, SuggestionSource
from src.attendance_pipeline.attendance_pipeline.core.exceptions import MappingConflictError
from src.attendance_pipeline.attendance_pipeline.imports.model import ImportBatch
from src.attendance_pipeline.attendance_pipeline.mapping.model import Mapping, MappingSuggestion
from src.attendance_pipeline.attendance_pipeline.registry.model import Device, DeviceUser, Student


# ---------- registry ----------
class InMemoryStudents:
    def __init__(self, students=()):
        self.by_nis = {s.nis: s for s in students}

    def get_by_nis(self, nis):
        return self.by_nis.get(nis)

    def list_all(self):
        return [self.by_nis[k] for k in sorted(self.by_nis)]


class InMemoryDevices:
    def __init__(self, devices=()):
        self.by_code = {d.device_code: d for d in devices}
        self.synced: list[tuple[int, datetime]] = []

    def get_by_code(self, device_code):
        return self.by_code.get(device_code)

    def mark_synced(self, *, device_id, synced_at):
        self.synced.append((device_id, synced_at))


class InMemoryDeviceUsers:
    def __init__(self, users=()):
        self.by_id = {u.device_user_id: u for u in users}

    def get_by_id(self, device_user_id):
        return self.by_id.get(int(device_user_id))

    def list_all(self, *, device_id=None):
        return [
            self.by_id[k]
            for k in sorted(self.by_id)
            if device_id is None or self.by_id[k].device_id == device_id
        ]

    def upsert(self, *, device_id, local_user_id, local_user_name, department=None):
        for du in self.by_id.values():
            if du.device_id == device_id and du.local_user_id == local_user_id:
                self.by_id[du.device_user_id] = replace(du, local_user_name=local_user_name, department=department)
                return du.device_user_id
        new_id = max(self.by_id, default=0) + 1
        self.by_id[new_id] = DeviceUser(
            device_user_id=new_id,
            device_id=device_id,
            local_user_id=local_user_id,
            local_user_name=local_user_name,
            department=department,
        )
        return new_id


# ---------- mapping ----------
class InMemoryMappings:
    """Suggestions and mappings with the same uniqueness rules as the MySQL tables."""

    def __init__(self):
        self._lock = threading.Lock()
        self._next_suggestion = 1
        self._next_mapping = 1
        self.suggestions: dict[int, MappingSuggestion] = {}
        self.mappings: dict[int, Mapping] = {}
        self.writes = 0

    def get_suggestion(self, suggestion_id):
        return self.suggestions.get(int(suggestion_id))

    def list_suggestions(self, *, status=None, device_user_id=None):
        return [
            s
            for _, s in sorted(self.suggestions.items())
            if (status is None or s.status == status) and (device_user_id is None or s.device_user_id == device_user_id)
        ]

    def create_suggestion(self, *, device_user_id, student_nis, confidence_score, source=SuggestionSource.AUTO):
        with self._lock:
            sid = self._next_suggestion
            self._next_suggestion += 1
            self.suggestions[sid] = MappingSuggestion(
                suggestion_id=sid,
                device_user_id=device_user_id,
                student_nis=student_nis,
                confidence_score=float(confidence_score),
                status=MappingStatus.PENDING,
                source=source,
            )
            self.writes += 1
            return sid

    def update_pending_target(self, *, suggestion_id, student_nis, confidence_score):
        with self._lock:
            s = self.suggestions.get(suggestion_id)
            if not s or s.status != MappingStatus.PENDING:
                return False
            self.suggestions[suggestion_id] = replace(s, student_nis=student_nis, confidence_score=float(confidence_score))
            self.writes += 1
            return True

    def _ensure_unmapped(self, *, device_user_id, student_nis):
        for m in self.mappings.values():
            if m.student_nis == student_nis:
                raise MappingConflictError(f"Student {student_nis} is already mapped", student_nis=student_nis)
            if m.device_user_id == device_user_id:
                raise MappingConflictError(f"Device user {device_user_id} is already mapped", device_user_id=device_user_id)

    def _insert_mapping(self, *, device_user_id, student_nis, suggestion_id, created_by, created_at):
        mid = self._next_mapping
        self._next_mapping += 1
        m = Mapping(
            mapping_id=mid,
            device_user_id=device_user_id,
            student_nis=student_nis,
            suggestion_id=suggestion_id,
            created_at=created_at,
            created_by=created_by,
        )
        self.mappings[mid] = m
        return m

    def verify_suggestion(self, *, suggestion_id, decided_by, decided_at):
        with self._lock:
            s = self.suggestions.get(int(suggestion_id))
            if not s or s.status != MappingStatus.PENDING or not s.student_nis:
                return None
            self._ensure_unmapped(device_user_id=s.device_user_id, student_nis=s.student_nis)
            m = self._insert_mapping(
                device_user_id=s.device_user_id,
                student_nis=s.student_nis,
                suggestion_id=s.suggestion_id,
                created_by=decided_by,
                created_at=decided_at,
            )
            self.suggestions[s.suggestion_id] = replace(
                s, status=MappingStatus.VERIFIED, decided_at=decided_at, decided_by=decided_by
            )
            return m

    def reject_suggestion(self, *, suggestion_id, decided_by, decided_at):
        with self._lock:
            s = self.suggestions.get(int(suggestion_id))
            if not s or s.status != MappingStatus.PENDING:
                return False
            self.suggestions[s.suggestion_id] = replace(
                s, status=MappingStatus.REJECTED, decided_at=decided_at, decided_by=decided_by
            )
            return True

    def delete_suggestion(self, suggestion_id):
        with self._lock:
            for mid, m in list(self.mappings.items()):
                if m.suggestion_id == suggestion_id:
                    del self.mappings[mid]
            return self.suggestions.pop(int(suggestion_id), None) is not None

    def create_manual_mapping(self, *, device_user_id, student_nis, created_by, created_at):
        with self._lock:
            self._ensure_unmapped(device_user_id=device_user_id, student_nis=student_nis)
            for sid, s in list(self.suggestions.items()):
                if s.device_user_id == device_user_id and s.status == MappingStatus.PENDING:
                    del self.suggestions[sid]
            sid = self._next_suggestion
            self._next_suggestion += 1
            self.suggestions[sid] = MappingSuggestion(
                suggestion_id=sid,
                device_user_id=device_user_id,
                student_nis=student_nis,
                confidence_score=MANUAL_CONFIDENCE,
                status=MappingStatus.VERIFIED,
                source=SuggestionSource.MANUAL,
                decided_at=created_at,
                decided_by=created_by,
            )
            return self._insert_mapping(
                device_user_id=device_user_id,
                student_nis=student_nis,
                suggestion_id=sid,
                created_by=created_by,
                created_at=created_at,
            )

    def delete_mapping(self, *, device_user_id=None, student_nis=None):
        with self._lock:
            m = self.get_mapping(device_user_id=device_user_id, student_nis=student_nis)
            if not m:
                return None
            del self.mappings[m.mapping_id]
            s = self.suggestions.get(m.suggestion_id)
            if s and s.status == MappingStatus.VERIFIED:
                del self.suggestions[s.suggestion_id]
            return m

    def get_mapping(self, *, device_user_id=None, student_nis=None):
        for m in self.mappings.values():
            if device_user_id is not None and m.device_user_id == int(device_user_id):
                return m
            if student_nis is not None and m.student_nis == student_nis:
                return m
        return None

    def list_mappings(self):
        return [self.mappings[k] for k in sorted(self.mappings)]


# ---------- attendance ----------
class _DayUnitOfWork:
    """Stages writes; the owning store applies them only if the block succeeds."""

    def __init__(self, store: "InMemoryAttendance"):
        self._store = store
        self.records: dict = {}
        self.contributions: dict = {}

    def get_record(self, key):
        if key in self.records:
            return self.records[key]
        return self._store.records.get(key)

    def get_contributions(self, key):
        with self._store._meta:
            committed = list(self._store.contributions.items())
        merged = {k: c for k, c in committed if (k[1], k[2]) == key}
        for k, c in self.contributions.items():
            if (k[1], k[2]) == key:
                merged[k] = c
        return [c for _, c in sorted(merged.items(), key=lambda kv: kv[0][0]) if c is not None]

    def put_contribution(self, contribution):
        self.contributions[(contribution.batch_id, contribution.student_nis, contribution.work_date)] = contribution

    def delete_contribution(self, *, batch_id, key):
        self.contributions[(batch_id, key[0], key[1])] = None

    def save_record(self, draft):
        existing = self.get_record((draft.student_nis, draft.work_date))
        record_id = existing.record_id if existing else self._store.next_id()
        self.records[(draft.student_nis, draft.work_date)] = AttendanceRecord(
            record_id=record_id,
            student_nis=draft.student_nis,
            work_date=draft.work_date,
            status=draft.status,
            check_in_time=draft.check_in_time,
            check_out_time=draft.check_out_time,
            note=draft.note,
            batch_id=draft.batch_id,
            manual_fields=frozenset(draft.manual_fields),
        )
        return record_id

    def delete_record(self, key):
        self.records[key] = None


class InMemoryAttendance:
    def __init__(self):
        self.records: dict = {}
        self.contributions: dict = {}
        self._meta = threading.Lock()
        self._day_locks: dict = defaultdict(threading.Lock)
        self._next_id = 1
        self.fail_on_commit = False

    def next_id(self):
        with self._meta:
            rid = self._next_id
            self._next_id += 1
            return rid

    def get_by_id(self, record_id):
        with self._meta:
            records = list(self.records.values())
        for r in records:
            if r.record_id == int(record_id):
                return r
        return None

    def get_for_student_and_date(self, student_nis, work_date):
        with self._meta:
            return self.records.get((student_nis, work_date))

    def list_for_date(self, work_date):
        return sorted((r for r in self.records.values() if r.work_date == work_date), key=lambda r: r.student_nis)

    def list_contribution_keys(self, batch_id):
        return sorted((nis, d) for (b, nis, d) in self.contributions if b == int(batch_id))

    @contextmanager
    def lock_days(self, keys):
        ordered = sorted(set(keys))
        with self._meta:
            locks = [self._day_locks[k] for k in ordered]
        for lock in locks:
            lock.acquire()
        try:
            uow = _DayUnitOfWork(self)
            yield uow
            if self.fail_on_commit:
                raise RuntimeError("storage unavailable")
            with self._meta:
                for k, r in uow.records.items():
                    if r is None:
                        self.records.pop(k, None)
                    else:
                        self.records[k] = r
                for k, c in uow.contributions.items():
                    if c is None:
                        self.contributions.pop(k, None)
                    else:
                        self.contributions[k] = c
        finally:
            for lock in reversed(locks):
                lock.release()


# ---------- imports ----------
class InMemoryBatches:
    def __init__(self):
        self._lock = threading.Lock()
        self.by_id: dict[int, ImportBatch] = {}
        self._next_id = 1

    def create(self, *, filename, file_type, status, created_at, device_code=None, created_by=None, records_processed=0, error_log=()):
        with self._lock:
            bid = self._next_id
            self._next_id += 1
            self.by_id[bid] = ImportBatch(
                batch_id=bid,
                filename=filename,
                file_type=file_type,
                status=status,
                records_processed=records_processed,
                error_log=tuple(error_log),
                created_at=created_at,
                device_code=device_code,
                created_by=created_by,
            )
            return bid

    def get(self, batch_id):
        return self.by_id.get(int(batch_id))

    def list_batches(self, *, file_type=None, status=None, offset=0, limit=20):
        items = [
            b
            for b in self.by_id.values()
            if (file_type is None or b.file_type == file_type) and (status is None or b.status == status)
        ]
        items.sort(key=lambda b: (b.created_at, b.batch_id), reverse=True)
        return items[offset : offset + limit], len(items)

    def finish(self, *, batch_id, status, records_processed, error_log):
        with self._lock:
            b = self.by_id[batch_id]
            self.by_id[batch_id] = replace(b, status=status, records_processed=records_processed, error_log=tuple(error_log))

    def transition(self, *, batch_id, from_statuses, to_status):
        with self._lock:
            b = self.by_id.get(int(batch_id))
            if not b or b.status not in tuple(from_statuses):
                return False
            self.by_id[b.batch_id] = replace(b, status=to_status)
            return True

    def delete_unless(self, *, batch_id, status):
        with self._lock:
            b = self.by_id.get(int(batch_id))
            if not b or b.status == status:
                return False
            del self.by_id[b.batch_id]
            return True


class InMemoryPunchLogs:
    def __init__(self):
        self.by_batch: dict[int, list] = {}

    def save_punch_logs(self, *, batch_id, device_code, punches):
        self.by_batch.setdefault(batch_id, []).extend((device_code, p) for p in punches)
        return len(punches)

    def delete_punch_logs(self, batch_id):
        return len(self.by_batch.pop(int(batch_id), []))


# ---------- fixtures ----------
GATE = Device(device_id=1, device_code="GATE-01", location="Main gate")


def make_world(*, students=(), device_users=(), devices=(GATE,), settings: Optional[Settings] = None):
    return wire(
        students_repo=InMemoryStudents(students),
        devices_repo=InMemoryDevices(devices),
        device_users_repo=InMemoryDeviceUsers(device_users),
        mappings_repo=InMemoryMappings(),
        attendance_repo=InMemoryAttendance(),
        batches_repo=InMemoryBatches(),
        punch_logs_repo=InMemoryPunchLogs(),
        settings=settings or Settings(),
    )


@pytest.fixture
def students():
    return [
        Student(nis="2024001", name="Ahmad Fauzi", class_id="X-IPA-1"),
        Student(nis="2024002", name="Siti Rahmawati", class_id="X-IPA-1"),
        Student(nis="2024003", name="Dewi Lestari", class_id="X-IPS-2"),
        Student(nis="2024099", name="Budi Santoso", class_id="X-IPA-1"),
    ]


@pytest.fixture
def device_users():
    return [
        DeviceUser(device_user_id=1, device_id=1, local_user_id="101", local_user_name="AHMAD FAUZI", department="X-IPA-1"),
        DeviceUser(device_user_id=2, device_id=1, local_user_id="102", local_user_name="Siti Rahma", department="X-IPA-1"),
        DeviceUser(device_user_id=3, device_id=1, local_user_id="103", local_user_name="Dewi L"),
        DeviceUser(device_user_id=195, device_id=1, local_user_id="195", local_user_name="Budi Santoso"),
    ]


@pytest.fixture
def world(students, device_users):
    return make_world(students=students, device_users=device_users)


@pytest.fixture
def world_factory():
    return make_world
