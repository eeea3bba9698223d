"""
Адаптер identity-провайдера для HabitSync API

Учетные данные здесь не хранятся: токены выдает внешний провайдер, сервис
проверяет подпись JWT общим секретом и берет стабильный идентификатор
пользователя из claim "sub". При первом обращении пользователю создается
профиль с настройками приватности по умолчанию.
"""

import logging
import os
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from habitsync.config import AUTH_JWT_ALGORITHM, AUTH_JWT_EXPIRATION_MINUTES
from habitsync.database import get_db
from habitsync.models import Profile

logger = logging.getLogger(__name__)

# auto_error=False: отсутствие токена превращается в 401 ниже, а не в 403
bearer_scheme = HTTPBearer(auto_error=False)

_DEFAULT_KEY = "REPLACE_WITH_SECURE_RANDOM_KEY"
SECRET_KEY = os.getenv("AUTH_JWT_SECRET_KEY", _DEFAULT_KEY)
if SECRET_KEY == _DEFAULT_KEY:  # noqa: S105
    SECRET_KEY = secrets.token_urlsafe(32)
    logger.warning("Using generated secret key. Set AUTH_JWT_SECRET_KEY in production!")


def create_access_token(subject: str, expires_delta: Optional[timedelta] = None) -> str:
    """
    Выпустить JWT для идентификатора (локальные инструменты и тесты)

    Args:
        subject: Идентификатор пользователя (claim "sub")
        expires_delta: Время жизни токена

    Returns:
        JWT токен
    """
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=AUTH_JWT_EXPIRATION_MINUTES))
    return jwt.encode({"sub": subject, "exp": expire}, SECRET_KEY, algorithm=AUTH_JWT_ALGORITHM)


def _credentials_exception() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_identity(token: str) -> str:
    """
    Проверить токен и вернуть идентификатор пользователя

    Raises:
        HTTPException: 401 если токен невалиден или без "sub"
    """
    try:
        payload = jwt.decode(
            token,
            SECRET_KEY,
            algorithms=[AUTH_JWT_ALGORITHM],
            options={"verify_aud": False},
        )
    except JWTError as e:
        raise _credentials_exception() from e

    user_id = payload.get("sub")
    if not user_id:
        raise _credentials_exception()
    return str(user_id)


def get_profile(db: Session, user_id: str) -> Optional[Profile]:
    return db.query(Profile).filter(Profile.id == user_id).first()


def get_profile_by_username(db: Session, username: str) -> Optional[Profile]:
    return db.query(Profile).filter(Profile.username == username).first()


def get_or_create_profile(db: Session, user_id: str) -> Profile:
    """Профиль пользователя; при первом обращении создается с настройками по умолчанию"""
    profile = get_profile(db, user_id)
    if profile is not None:
        return profile

    profile = Profile(
        id=user_id,
        public_profile=False,
        public_habits=False,
        public_cigarette_streak=True,
        public_joint_streak=True,
    )
    db.add(profile)
    db.commit()
    db.refresh(profile)
    logger.info("Provisioned profile for user %s", user_id)
    return profile


async def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),  # noqa: B008
) -> str:
    """Dependency: идентификатор текущего пользователя из Bearer-токена"""
    if credentials is None or not credentials.credentials:
        raise _credentials_exception()
    return decode_identity(credentials.credentials)


def get_current_profile(
    user_id: str = Depends(get_current_user_id),  # noqa: B008
    db: Session = Depends(get_db),  # noqa: B008
) -> Profile:
    """Dependency: профиль текущего пользователя"""
    return get_or_create_profile(db, user_id)
