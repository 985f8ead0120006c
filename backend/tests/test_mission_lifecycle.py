from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from kidcare.errors import (
    InvalidArgumentError, InvalidTransitionError, NotFoundError, PermissionDeniedError, StorageError,
)
from kidcare.models import (
    MISSION_TRANSITIONS, AssignedMission, ChildNote, ChildPermission, MissionStatus, NoteType,
)
from kidcare.services import authorization_service as authz
from kidcare.services import mission_service, note_service, template_service

pytestmark = pytest.mark.asyncio

ALLOWED = {
    (MissionStatus.ASSIGNED, MissionStatus.IN_PROGRESS),
    (MissionStatus.ASSIGNED, MissionStatus.CANCELLED),
    (MissionStatus.IN_PROGRESS, MissionStatus.COMPLETED),
    (MissionStatus.IN_PROGRESS, MissionStatus.CANCELLED),
    (MissionStatus.COMPLETED, MissionStatus.VERIFIED),
    (MissionStatus.COMPLETED, MissionStatus.CANCELLED),
}

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)

OPERATIONS = {
    MissionStatus.IN_PROGRESS: lambda m: m.start(NOW),
    MissionStatus.COMPLETED: lambda m: m.complete("done", NOW),
    MissionStatus.VERIFIED: lambda m: m.verify("good", NOW),
    MissionStatus.CANCELLED: lambda m: m.cancel(NOW),
}


async def system_notes(db, child_id):
    return await db.scalar(
        select(func.count(ChildNote.id)).where(
            ChildNote.child_id == child_id, ChildNote.note_type == NoteType.SYSTEM
        )
    )


async def mission_status(db, mission_id):
    return await db.scalar(select(AssignedMission.status).where(AssignedMission.id == mission_id))


@pytest.fixture
def assigned(db, family, tomorrow):
    async def _assign():
        mission = await mission_service.assign(
            db, family.child_id, family.therapist_id, family.template_id, tomorrow
        )
        return mission.id

    return _assign


# ============= 전이 표 =============

@pytest.mark.parametrize("source", list(MissionStatus))
@pytest.mark.parametrize("target", list(MissionStatus))
async def test_transition_table(source, target):
    assert source.can_transition_to(target) == ((source, target) in ALLOWED)


@pytest.mark.parametrize("source", list(MissionStatus))
@pytest.mark.parametrize("target", list(OPERATIONS))
async def test_disallowed_transition_leaves_mission_untouched(source, target):
    mission = AssignedMission(status=source)
    if (source, target) in ALLOWED:
        OPERATIONS[target](mission)
        assert mission.status == target
        return

    with pytest.raises(InvalidTransitionError):
        OPERATIONS[target](mission)
    assert mission.status == source
    assert mission.completed_at is None and mission.verified_at is None


async def test_terminal_states_have_no_exits():
    assert MissionStatus.VERIFIED.is_terminal
    assert MissionStatus.CANCELLED.is_terminal
    assert not any(MISSION_TRANSITIONS[MissionStatus.VERIFIED])


# ============= 시나리오 =============

async def test_assign_creates_mission_and_system_note(db, family, assigned):
    mission_id = await assigned()

    mission = await mission_service.get_mission(db, mission_id, family.parent_id)
    assert mission.status == MissionStatus.ASSIGNED
    assert mission.therapist_id == family.therapist_id
    assert await system_notes(db, family.child_id) == 1
    note = await db.get(ChildNote, mission.system_note_id)
    assert note.content.startswith("미션 할당")


async def test_parent_starts_and_completes(db, family, assigned, producer):
    mission_id = await assigned()

    started = await mission_service.start(db, mission_id, family.parent_id)
    assert started.status == MissionStatus.IN_PROGRESS
    assert started.started_at is not None

    completed = await mission_service.complete(db, mission_id, family.parent_id, "done")
    assert completed.status == MissionStatus.COMPLETED
    assert completed.completed_at is not None
    assert completed.parent_note == "done"

    assert len(producer.sent) == 1
    payload = producer.sent[0]["value"]
    assert payload["type"] == "MISSION_COMPLETED"
    assert payload["therapist_id"] == str(family.therapist_id)
    assert payload["actor_id"] == str(family.parent_id)
    assert await system_notes(db, family.child_id) == 3


async def test_therapist_verifies(db, family, assigned, producer):
    mission_id = await assigned()
    await mission_service.start(db, mission_id, family.parent_id)
    await mission_service.complete(db, mission_id, family.parent_id)

    with pytest.raises(PermissionDeniedError):
        await mission_service.verify(db, mission_id, family.parent_id, "ok")

    verified = await mission_service.verify(db, mission_id, family.therapist_id, "잘했어요")
    assert verified.status == MissionStatus.VERIFIED
    assert verified.therapist_feedback == "잘했어요"
    assert verified.verified_at is not None

    with pytest.raises(InvalidTransitionError):
        await mission_service.cancel(db, mission_id, family.therapist_id)
    assert await mission_status(db, mission_id) == MissionStatus.VERIFIED


async def test_verify_assigned_mission_is_rejected_without_side_effects(db, family, assigned):
    mission_id = await assigned()

    with pytest.raises(InvalidTransitionError):
        await mission_service.verify(db, mission_id, family.therapist_id, "too early")

    assert await mission_status(db, mission_id) == MissionStatus.ASSIGNED
    assert await system_notes(db, family.child_id) == 1


async def test_complete_rolls_back_when_system_note_fails(db, family, assigned, producer, monkeypatch):
    mission_id = await assigned()
    await mission_service.start(db, mission_id, family.parent_id)

    async def broken_note(*args, **kwargs):
        raise StorageError("disk full")

    monkeypatch.setattr(note_service, "create_system_note", broken_note)

    with pytest.raises(StorageError):
        await mission_service.complete(db, mission_id, family.parent_id, "done")

    assert await mission_status(db, mission_id) == MissionStatus.IN_PROGRESS
    completed_at = await db.scalar(select(AssignedMission.completed_at).where(AssignedMission.id == mission_id))
    assert completed_at is None
    assert producer.sent == []


async def test_start_requires_write_note(db, family, assigned):
    mission_id = await assigned()
    await authz.revise(db, family.child_id, family.parent_id, family.therapist_id, [ChildPermission.VIEW_REPORT])

    with pytest.raises(PermissionDeniedError):
        await mission_service.start(db, mission_id, family.therapist_id)
    with pytest.raises(NotFoundError):
        await mission_service.start(db, mission_id, family.stranger_id)
    assert await mission_status(db, mission_id) == MissionStatus.ASSIGNED


async def test_cancel_only_by_assigning_therapist(db, family, assigned):
    mission_id = await assigned()

    with pytest.raises(PermissionDeniedError):
        await mission_service.cancel(db, mission_id, family.parent_id)

    cancelled = await mission_service.cancel(db, mission_id, family.therapist_id)
    assert cancelled.status == MissionStatus.CANCELLED
    assert cancelled.cancelled_at is not None
    with pytest.raises(InvalidTransitionError):
        await mission_service.start(db, mission_id, family.parent_id)


async def test_assign_requires_grant_and_active_template(db, family, tomorrow):
    with pytest.raises(NotFoundError):
        await mission_service.assign(db, family.child_id, family.stranger_id, family.template_id, tomorrow)

    await template_service.set_active(db, family.template_id, False)
    with pytest.raises(InvalidArgumentError):
        await mission_service.assign(db, family.child_id, family.therapist_id, family.template_id, tomorrow)


async def test_due_date_must_be_in_future(db, family):
    yesterday = datetime.now(timezone.utc) - timedelta(days=1)
    with pytest.raises(InvalidArgumentError):
        await mission_service.assign(db, family.child_id, family.therapist_id, family.template_id, yesterday)
    assert await system_notes(db, family.child_id) == 0


# ============= 조회 =============

async def test_overdue_is_derived_on_read(db, family, assigned):
    mission_id = await assigned()
    mission = await mission_service.get_mission(db, mission_id, family.parent_id)
    assert not mission.is_overdue()

    later = datetime.now(timezone.utc) + timedelta(days=2)
    assert mission.is_overdue(later)

    await mission_service.start(db, mission_id, family.parent_id)
    await mission_service.complete(db, mission_id, family.parent_id)
    mission = await mission_service.get_mission(db, mission_id, family.parent_id)
    assert not mission.is_overdue(later)


async def test_overdue_listing(db, family, assigned):
    mission_id = await assigned()
    await db.execute(
        AssignedMission.__table__.update()
        .where(AssignedMission.id == mission_id)
        .values(due_date=datetime.now(timezone.utc) - timedelta(hours=1))
    )
    await db.commit()
    db.expire_all()

    overdue = await mission_service.list_overdue_missions(db, family.child_id, family.parent_id)
    assert [m.id for m in overdue] == [mission_id]


async def test_listing_and_counts(db, family, assigned):
    first = await assigned()
    await assigned()
    await mission_service.start(db, first, family.parent_id)
    await mission_service.complete(db, first, family.parent_id)

    assert await mission_service.count_missions(db, family.child_id, family.parent_id) == 2
    assert await mission_service.count_missions(
        db, family.child_id, family.parent_id, MissionStatus.ASSIGNED
    ) == 1
    pending = await mission_service.list_pending_verification(db, family.child_id, family.therapist_id)
    assert [m.id for m in pending] == [first]
    mine = await mission_service.list_missions(
        db, family.child_id, family.parent_id, therapist_id=family.therapist_id
    )
    assert len(mine) == 2


async def test_stranger_sees_nothing(db, family, assigned):
    mission_id = await assigned()
    with pytest.raises(NotFoundError):
        await mission_service.get_mission(db, mission_id, family.stranger_id)
    with pytest.raises(NotFoundError):
        await mission_service.list_missions(db, family.child_id, family.stranger_id)


async def test_delete_mission(db, family, assigned, storage):
    mission_id = await assigned()
    with pytest.raises(PermissionDeniedError):
        await mission_service.delete_mission(db, storage, mission_id, family.parent_id)

    await mission_service.delete_mission(db, storage, mission_id, family.therapist_id)
    with pytest.raises(NotFoundError):
        await mission_service.get_mission(db, mission_id, family.parent_id)
