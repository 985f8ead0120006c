from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from kidcare import kafka
from kidcare.db import Base
from kidcare.models import ChildPermission, MissionCategory, MissionDifficulty, User, UserRole
from kidcare.services import authorization_service, child_service, template_service
from kidcare.services.storage import LocalStorage


class FakeProducer:
    """send_and_wait 만 흉내내는 Kafka producer"""

    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    async def send_and_wait(self, topic, value=None, key=None):
        if self.fail:
            raise RuntimeError("broker unavailable")
        self.sent.append({"topic": topic, "key": key, "value": value})


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_maker(engine):
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def producer(monkeypatch):
    fake = FakeProducer()
    monkeypatch.setattr(kafka, "producer", fake)
    return fake


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(str(tmp_path / "uploads"))


@pytest.fixture
def make_user(db):
    async def _make(role: UserRole, name: str = "user") -> User:
        user = User(email=f"{name}@example.com", name=name, role=role)
        db.add(user)
        await db.commit()
        return user

    return _make


@pytest_asyncio.fixture
async def family(db, make_user):
    """
    부모 P 가 아동 C 를 등록하고 치료사 T 에게 {VIEW_REPORT, WRITE_NOTE} 를 부여한 상태.
    롤백 후에도 안전하게 쓰도록 id 만 돌려줍니다.
    """
    parent = await make_user(UserRole.PARENT, "parent")
    therapist = await make_user(UserRole.THERAPIST, "therapist")
    stranger = await make_user(UserRole.PARENT, "stranger")

    child = await child_service.create_child(db, parent, "김하늘")
    await authorization_service.grant(
        db, child.id, parent.id, therapist.id,
        [ChildPermission.VIEW_REPORT, ChildPermission.WRITE_NOTE],
    )
    template = await template_service.create_template(
        db,
        title="거울 보고 웃는 표정 짓기",
        description="거울 앞에서 다양한 웃는 표정을 따라해 봅니다.",
        category=MissionCategory.EXPRESSION,
        difficulty=MissionDifficulty.BEGINNER,
        instructions="1. 거울 앞에 앉기 2. 보호자 표정 따라하기",
        expected_duration=10,
    )
    return SimpleNamespace(
        parent_id=parent.id,
        therapist_id=therapist.id,
        stranger_id=stranger.id,
        child_id=child.id,
        template_id=template.id,
    )


@pytest.fixture
def tomorrow():
    return datetime.now(timezone.utc) + timedelta(days=1)
