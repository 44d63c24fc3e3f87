from __future__ import annotations

from src.attendance_pipeline.attendance_pipeline.core.enums import MappingStatus
from src.attendance_pipeline.attendance_pipeline.registry.model import DeviceUser


def _pending_by_user(world):
    return {s.device_user_id: s for s in world.mappings_repo.list_suggestions(status=MappingStatus.PENDING)}


def test_generate_suggestions_picks_best_student(world):
    result = world.reconciler.generate_suggestions()

    assert result.processed == 4
    assert result.created == 4
    pending = _pending_by_user(world)
    assert pending[1].student_nis == "2024001"
    assert pending[2].student_nis == "2024002"
    assert pending[3].student_nis == "2024003"
    assert pending[195].student_nis == "2024099"
    assert pending[195].confidence_score == 100.0


def test_second_pass_over_unchanged_inputs_writes_nothing(world):
    world.reconciler.generate_suggestions()
    writes = world.mappings_repo.writes
    before = world.mappings_repo.list_suggestions()

    again = world.reconciler.generate_suggestions()

    assert again.created == 0
    assert again.updated == 0
    assert world.mappings_repo.writes == writes
    assert world.mappings_repo.list_suggestions() == before


def test_rejected_student_is_not_proposed_again(world):
    world.reconciler.generate_suggestions()
    dewi = _pending_by_user(world)[3]
    world.mapping_service.reject(dewi.suggestion_id, decided_by="admin")

    world.reconciler.generate_suggestions()

    fresh = _pending_by_user(world)[3]
    assert fresh.suggestion_id != dewi.suggestion_id
    assert fresh.student_nis != "2024003"
    assert world.mappings_repo.get_suggestion(dewi.suggestion_id).status == MappingStatus.REJECTED


def test_students_with_a_mapping_are_excluded(world_factory, students, device_users):
    extra = DeviceUser(device_user_id=4, device_id=1, local_user_id="104", local_user_name="Ahmad F")
    world = world_factory(students=students, device_users=device_users + [extra])
    world.mapping_service.manual_map(device_user_id=1, student_nis="2024001")

    world.reconciler.generate_suggestions()

    pending = _pending_by_user(world)
    assert 1 not in pending
    assert pending[4].student_nis != "2024001"


def test_list_unmapped_ranks_candidates(world):
    world.mapping_service.manual_map(device_user_id=195, student_nis="2024099")

    entries = world.reconciler.list_unmapped()

    assert [e.device_user.device_user_id for e in entries] == [1, 2, 3]
    for e in entries:
        scores = [c.confidence_score for c in e.suggested_matches]
        assert scores == sorted(scores, reverse=True)
        assert len(scores) <= 5
        assert all(s >= 50 for s in scores)
        assert "2024099" not in {c.student.nis for c in e.suggested_matches}


def test_stats(world):
    world.reconciler.generate_suggestions()
    pending = _pending_by_user(world)
    world.mapping_service.verify(pending[195].suggestion_id)

    stats = world.reconciler.stats()

    assert stats.total_device_users == 4
    assert stats.verified_count == 1
    assert stats.pending_count == 3
    assert stats.unmapped_count == 3
