import uuid

import pytest
from sqlalchemy import select

from kidcare.errors import (
    InvalidArgumentError, LimitExceededError, NotFoundError, PermissionDeniedError, StorageError,
)
from kidcare.models import AssetType, ChildNote, ChildPermission, NoteAsset, NoteComment, NoteType
from kidcare.services import asset_service, authorization_service as authz
from kidcare.services import comment_service, mission_service, note_service

pytestmark = pytest.mark.asyncio


async def therapist_note(db, family, content="오늘 표정 따라하기에 적극적으로 참여함"):
    note = await note_service.create_note(
        db, family.child_id, family.therapist_id, NoteType.THERAPIST_NOTE, "3회차 소견", content
    )
    return note.id


# ============= 노트 =============

async def test_create_note_requires_write_note(db, family):
    note_id = await therapist_note(db, family)
    note = await note_service.get_note(db, note_id, family.parent_id)
    assert note.author_id == family.therapist_id

    await authz.revise(db, family.child_id, family.parent_id, family.therapist_id, [ChildPermission.VIEW_REPORT])
    with pytest.raises(PermissionDeniedError):
        await therapist_note(db, family)


async def test_system_notes_are_not_user_creatable(db, family):
    with pytest.raises(InvalidArgumentError):
        await note_service.create_note(db, family.child_id, family.parent_id, NoteType.SYSTEM, None, "x")


async def test_unauthorized_reads_look_missing(db, family, tomorrow):
    note_id = await therapist_note(db, family)
    mission = await mission_service.assign(db, family.child_id, family.therapist_id, family.template_id, tomorrow)
    mission_id = mission.id

    assert not await authz.evaluate(db, family.child_id, family.stranger_id, ChildPermission.VIEW_REPORT)
    with pytest.raises(NotFoundError) as missing_note:
        await note_service.get_note(db, note_id, family.stranger_id)
    with pytest.raises(NotFoundError):
        await note_service.search_notes(db, family.child_id, family.stranger_id)
    with pytest.raises(NotFoundError):
        await mission_service.get_mission(db, mission_id, family.stranger_id)

    # 존재하지 않는 노트와 같은 모양
    with pytest.raises(NotFoundError) as truly_missing:
        await note_service.get_note(db, uuid.uuid4(), family.stranger_id)
    assert missing_note.value.detail == truly_missing.value.detail


async def test_search_and_count(db, family):
    await therapist_note(db, family, "웃는 표정 연습")
    await note_service.create_note(
        db, family.child_id, family.parent_id, NoteType.PARENT_NOTE, None, "집에서 인사 연습"
    )

    found = await note_service.search_notes(db, family.child_id, family.parent_id, keyword="인사")
    assert [n.content for n in found] == ["집에서 인사 연습"]
    found = await note_service.search_notes(
        db, family.child_id, family.parent_id, note_type=NoteType.THERAPIST_NOTE
    )
    assert len(found) == 1
    found = await note_service.search_notes(db, family.child_id, family.parent_id, author_id=family.parent_id)
    assert len(found) == 1
    assert await note_service.count_notes(db, family.child_id, family.parent_id) == 2


async def test_only_author_edits(db, family):
    note_id = await therapist_note(db, family)
    with pytest.raises(PermissionDeniedError):
        await note_service.update_note(db, note_id, family.parent_id, {"content": "수정"})

    note = await note_service.update_note(db, note_id, family.therapist_id, {"content": "수정된 소견"})
    assert note.content == "수정된 소견"
    with pytest.raises(InvalidArgumentError):
        await note_service.update_note(db, note_id, family.therapist_id, {"content": "가" * 50_001})


async def test_system_note_is_immutable(db, family, tomorrow):
    mission = await mission_service.assign(db, family.child_id, family.therapist_id, family.template_id, tomorrow)
    system_note_id = mission.system_note_id

    with pytest.raises(InvalidArgumentError):
        await note_service.update_note(db, system_note_id, family.therapist_id, {"content": "변조"})
    with pytest.raises(InvalidArgumentError):
        await note_service.delete_note(db, system_note_id, family.parent_id)


async def test_primary_can_delete_any_note_with_cascade(db, family, storage):
    note_id = await therapist_note(db, family)
    top = await comment_service.create_comment(db, note_id, family.parent_id, "감사합니다")
    top_id = top.id
    await comment_service.create_comment(db, note_id, family.therapist_id, "네", parent_id=top_id)
    await asset_service.upload_asset(
        db, storage, note_id, family.therapist_id, "report.pdf", "application/pdf", b"%PDF-1.4"
    )

    await note_service.delete_note(db, note_id, family.parent_id)

    with pytest.raises(NotFoundError):
        await note_service.get_note(db, note_id, family.parent_id)
    alive_comments = (await db.execute(
        select(NoteComment.id).where(NoteComment.note_id == note_id, NoteComment.is_deleted.is_(False))
    )).all()
    assert alive_comments == []
    alive_assets = (await db.execute(
        select(NoteAsset.id).where(NoteAsset.note_id == note_id, NoteAsset.is_deleted.is_(False))
    )).all()
    assert alive_assets == []


async def test_delete_note_is_idempotent_at_cascade_level(db, family):
    from kidcare.services.cascade import new_context, soft_delete

    note_id = await therapist_note(db, family)
    await note_service.delete_note(db, note_id, family.therapist_id)
    deleted_at = select(ChildNote.deleted_at).where(ChildNote.id == note_id)
    first_deleted_at = await db.scalar(deleted_at)
    note = await db.get(ChildNote, note_id)

    await soft_delete(note, new_context(db))
    await db.commit()
    assert await db.scalar(deleted_at) == first_deleted_at


# ============= 댓글 =============

async def test_reply_nesting_and_cascade(db, family):
    note_id = await therapist_note(db, family)
    r1 = await comment_service.create_comment(db, note_id, family.parent_id, "질문이 있어요")
    r1_id = r1.id
    r2 = await comment_service.create_comment(db, note_id, family.therapist_id, "말씀하세요", parent_id=r1_id)
    r2_id = r2.id

    with pytest.raises(InvalidArgumentError):
        await comment_service.create_comment(db, note_id, family.parent_id, "답글의 답글", parent_id=r2_id)

    threads = await comment_service.list_comments(db, note_id, family.parent_id)
    assert [(c.id, [r.id for r in replies]) for c, replies in threads] == [(r1_id, [r2_id])]

    await comment_service.delete_comment(db, r1_id, family.parent_id)

    deleted = dict((await db.execute(
        select(NoteComment.id, NoteComment.is_deleted).where(NoteComment.id.in_([r1_id, r2_id]))
    )).all())
    assert deleted == {r1_id: True, r2_id: True}
    assert await comment_service.list_comments(db, note_id, family.parent_id) == []


async def test_comment_edit_and_delete_rights(db, family):
    note_id = await therapist_note(db, family)
    comment = await comment_service.create_comment(db, note_id, family.therapist_id, "치료사 댓글")
    comment_id = comment.id

    with pytest.raises(PermissionDeniedError):
        await comment_service.update_comment(db, comment_id, family.parent_id, "남의 댓글")
    updated = await comment_service.update_comment(db, comment_id, family.therapist_id, "수정")
    assert updated.content == "수정"

    # 주보호자는 다른 사람 댓글도 삭제 가능
    await comment_service.delete_comment(db, comment_id, family.parent_id)
    with pytest.raises(NotFoundError):
        await comment_service.get_replies(db, comment_id, family.parent_id)


async def test_stranger_cannot_comment(db, family):
    note_id = await therapist_note(db, family)
    with pytest.raises(NotFoundError):
        await comment_service.create_comment(db, note_id, family.stranger_id, "안녕하세요")


# ============= 첨부파일 =============

async def test_asset_rules(db, family, storage):
    note_id = await therapist_note(db, family)

    with pytest.raises(InvalidArgumentError):
        await asset_service.upload_asset(db, storage, note_id, family.therapist_id, "run.exe", None, b"MZ")
    with pytest.raises(InvalidArgumentError):
        await asset_service.upload_asset(
            db, storage, note_id, family.therapist_id, "big.jpg", "image/jpeg", b"\x00" * (5 * 1024 * 1024 + 1)
        )
    with pytest.raises(PermissionDeniedError):
        await asset_service.upload_asset(db, storage, note_id, family.parent_id, "a.png", "image/png", b"png")

    for i in range(10):
        await asset_service.upload_asset(db, storage, note_id, family.therapist_id, f"{i}.png", "image/png", b"png")
    with pytest.raises(LimitExceededError):
        await asset_service.upload_asset(db, storage, note_id, family.therapist_id, "11.png", "image/png", b"png")

    assets = await asset_service.list_assets(db, note_id, family.parent_id)
    assert len(assets) == 10
    assert assets[0].asset_type == AssetType.IMAGE
    assert assets[0].file_path.startswith(f"notes/{family.child_id}/{note_id}/")

    asset, data = await asset_service.read_asset(db, storage, assets[0].id, family.parent_id)
    assert data == b"png"
    await asset_service.delete_asset(db, storage, asset.id, family.parent_id)
    assert len(await asset_service.list_assets(db, note_id, family.parent_id)) == 9


async def test_asset_file_survives_failed_delete(db, family, storage, monkeypatch):
    note_id = await therapist_note(db, family)
    asset = await asset_service.upload_asset(db, storage, note_id, family.therapist_id, "a.png", "image/png", b"png")
    asset_id, path = asset.id, asset.file_path

    async def _commit():
        raise StorageError("commit failed")

    monkeypatch.setattr(db, "commit", _commit)
    with pytest.raises(StorageError):
        await asset_service.delete_asset(db, storage, asset_id, family.therapist_id)
    with pytest.raises(StorageError):
        await asset_service.upload_asset(db, storage, note_id, family.therapist_id, "b.pdf", None, b"%PDF")

    monkeypatch.undo()
    assert len(await asset_service.list_assets(db, note_id, family.parent_id)) == 1
    assert storage.resolve(path).exists()
    assert list(storage.root.rglob("*.pdf")) == []

    await asset_service.delete_asset(db, storage, asset_id, family.therapist_id)
    assert not storage.resolve(path).exists()
