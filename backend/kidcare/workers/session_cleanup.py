# kidcare/workers/session_cleanup.py
import asyncio
import logging

from kidcare.config import GAME_SESSION_CLEANUP_INTERVAL, LOG_LEVEL
from kidcare.db import SessionLocal
from kidcare.services.game_session_service import cleanup_expired_sessions

logger = logging.getLogger("kidcare.session_cleanup")


async def run_once() -> int:
    async with SessionLocal() as db:
        return await cleanup_expired_sessions(db)


async def main():
    logger.info("🧹 시작 - interval=%ss", GAME_SESSION_CLEANUP_INTERVAL)
    while True:
        await run_once()
        await asyncio.sleep(GAME_SESSION_CLEANUP_INTERVAL)


if __name__ == "__main__":
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    asyncio.run(main())
