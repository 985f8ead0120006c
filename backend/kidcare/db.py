from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import DeclarativeBase

from kidcare.config import ASYNC_DATABASE_URL

class Base(DeclarativeBase):
    pass

engine = create_async_engine(ASYNC_DATABASE_URL, echo=False, pool_pre_ping=True)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

async def get_db():
    async with SessionLocal() as session:
        yield session


@asynccontextmanager
async def transaction(db: AsyncSession):
    """
    요청 하나 = 트랜잭션 하나.
    블록이 정상 종료되면 commit, 예외가 나면 rollback 후 그대로 다시 던집니다.
    """
    try:
        yield db
        await db.commit()
    except BaseException:
        await db.rollback()
        raise
