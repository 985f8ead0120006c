import re
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession

from kidcare.config import ALGORITHM, PIN_PATTERN, SECRET_KEY
from kidcare.db import get_db
from kidcare.errors import InvalidArgumentError
from kidcare.models import User, UserRole

ACCESS_TOKEN_EXPIRE_MINUTES = 30

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
# 토큰 발급은 별도 인증 서버 담당. tokenUrl 은 문서용
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


# ============= Parental Gate PIN =============

def hash_pin(pin: str) -> str:
    if pin is None or not re.fullmatch(PIN_PATTERN, pin):
        raise InvalidArgumentError("PIN은 4자리 숫자여야 합니다")
    return pwd_context.hash(pin)


def verify_pin_hash(pin: Optional[str], pin_hash: Optional[str]) -> bool:
    if not pin or not pin_hash:
        return False
    return pwd_context.verify(pin, pin_hash)


# ============= JWT =============

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


async def get_current_user(token: str = Depends(oauth2_scheme), db: AsyncSession = Depends(get_db)):
    """
    API 요청 헤더의 토큰을 검증하고 DB에서 현재 사용자를 찾아 반환하는 의존성.
    sub 에는 사용자 UUID 가 들어 있어야 합니다.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        user_id_str = payload.get("sub")
        if user_id_str is None:
            raise credentials_exception
        try:
            user_id = uuid.UUID(user_id_str)
        except ValueError:
            raise credentials_exception
    except JWTError:
        raise credentials_exception

    res = await db.execute(select(User).where(User.id == user_id))
    user = res.scalar_one_or_none()
    if user is None:
        raise credentials_exception
    return user


def require_roles(*roles: UserRole):
    """
    역할 기반 1차 필터.
    아동 단위 접근 판단은 항상 서비스 계층의 권한 검사가 담당합니다.
    """
    async def checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="접근 권한이 없는 역할입니다.")
        return current_user

    return checker
