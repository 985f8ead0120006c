import asyncio
from datetime import date

from kidcare.db import SessionLocal
from kidcare.models import ChildPermission, MissionCategory, MissionDifficulty, User, UserRole
from kidcare.services import authorization_service, child_service, template_service
from kidcare.services.auth_service import create_access_token

TEMPLATES = [
    dict(
        title="거울 보고 웃는 표정 짓기",
        description="거울 앞에서 다양한 웃는 표정을 따라해 봅니다.",
        category=MissionCategory.EXPRESSION,
        difficulty=MissionDifficulty.BEGINNER,
        instructions="1. 거울 앞에 앉기 2. 보호자 표정 따라하기 3. 사진 찍기",
        expected_duration=10,
    ),
    dict(
        title="그림 카드로 감정 맞히기",
        description="그림 카드 속 친구의 감정을 맞혀 봅니다.",
        category=MissionCategory.EMOTION_RECOGNITION,
        difficulty=MissionDifficulty.INTERMEDIATE,
        instructions="카드를 한 장씩 보여주고 어떤 기분인지 말하게 합니다.",
        expected_duration=15,
    ),
    dict(
        title=None,
        description="만나는 사람에게 먼저 인사하기",
        category=MissionCategory.COMMUNICATION,
        difficulty=MissionDifficulty.BEGINNER,
        instructions="하루 동안 세 번 먼저 인사하고 기록합니다.",
        llm_generated=True,
    ),
]


async def seed_data():
    async with SessionLocal() as session:
        # 1) User 예시
        parent = User(email="parent1@example.com", name="김부모", role=UserRole.PARENT)
        therapist = User(email="therapist1@example.com", name="이치료", role=UserRole.THERAPIST)
        session.add_all([parent, therapist])
        await session.commit()

        # 2) 아동 등록 + 치료사 권한 부여
        child = await child_service.create_child(session, parent, "김하늘", birth_date=date(2019, 3, 2))
        await authorization_service.grant(
            session, child.id, parent.id, therapist.id,
            [ChildPermission.VIEW_REPORT, ChildPermission.WRITE_NOTE],
        )

        # 3) 미션 템플릿 예시
        for kwargs in TEMPLATES:
            await template_service.create_template(session, **kwargs)

        print("child_id:", child.id)
        for user in (parent, therapist):
            print(f"{user.role.value} token:", create_access_token({"sub": str(user.id)}))


if __name__ == "__main__":
    asyncio.run(seed_data())
