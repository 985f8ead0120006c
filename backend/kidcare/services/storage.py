"""로컬 파일 저장소. 경로 계산과 루트 이탈 검사는 여기서만 합니다."""
import asyncio
import logging
import os
import re
import uuid
from pathlib import Path

from kidcare.config import STORAGE_BASE_PATH
from kidcare.errors import InvalidArgumentError, NotFoundError, StorageError

logger = logging.getLogger(__name__)


_EXTENSION = re.compile(r"^[a-z0-9]{1,10}$")


def file_extension(file_name: str, default: str = "bin") -> str:
    """영숫자 1-10자 확장자만 인정하고 나머지는 default"""
    if not file_name or "." not in file_name:
        return default
    ext = file_name.rsplit(".", 1)[1].lower()
    return ext if _EXTENSION.match(ext) else default


class LocalStorage:
    def __init__(self, base_path: str):
        self.root = Path(base_path).resolve()

    def build_path(self, kind: str, child_id: uuid.UUID, parent_id: uuid.UUID, ext: str) -> str:
        """{kind}/{child_id}/{parent_id}/{uuid}.{ext}"""
        return f"{kind}/{child_id}/{parent_id}/{uuid.uuid4()}.{ext}"

    def resolve(self, relative_path: str) -> Path:
        target = (self.root / relative_path).resolve()
        if target != self.root and self.root not in target.parents:
            logger.warning("path traversal rejected: %s", relative_path)
            raise InvalidArgumentError("잘못된 파일 경로입니다")
        return target

    def _write(self, target: Path, data: bytes) -> None:
        os.makedirs(target.parent, exist_ok=True)
        target.write_bytes(data)

    async def save(self, relative_path: str, data: bytes) -> None:
        target = self.resolve(relative_path)
        try:
            await asyncio.to_thread(self._write, target, data)
        except OSError as e:
            logger.exception("파일 저장 실패: %s", relative_path)
            raise StorageError(f"파일 저장에 실패했습니다: {e}") from e

    async def read(self, relative_path: str) -> bytes:
        target = self.resolve(relative_path)
        try:
            return await asyncio.to_thread(target.read_bytes)
        except FileNotFoundError:
            raise NotFoundError("파일을 찾을 수 없습니다")
        except OSError as e:
            logger.exception("파일 읽기 실패: %s", relative_path)
            raise StorageError(f"파일 읽기에 실패했습니다: {e}") from e

    async def delete(self, relative_path: str) -> bool:
        target = self.resolve(relative_path)
        try:
            await asyncio.to_thread(target.unlink)
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.exception("파일 삭제 실패: %s", relative_path)
            raise StorageError(f"파일 삭제에 실패했습니다: {e}") from e

    async def discard(self, relative_paths: list[str]) -> None:
        """커밋 이후 정리용. 실패해도 이미 끝난 작업을 되돌리지 않고 로그만 남깁니다."""
        for path in relative_paths:
            try:
                await self.delete(path)
            except (StorageError, InvalidArgumentError):
                logger.exception("파일 정리 실패: %s", path)


storage = LocalStorage(STORAGE_BASE_PATH)


def get_storage() -> LocalStorage:
    return storage
