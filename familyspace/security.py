import logging

from fastapi import HTTPException, Header, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from familyspace.config import settings
from familyspace.database import get_db
from familyspace.models.user import User
from familyspace.services.init_data import InitDataVerifier
from familyspace.services.tokens import InvalidToken, decode_access_token
from familyspace.services.users import get_user

logger = logging.getLogger(__name__)

# Секретный ключ считается один раз: токен бота не меняется за время жизни процесса
verifier = InitDataVerifier(settings.verifier_config())


def get_verifier() -> InitDataVerifier:
    return verifier


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )

# --- FASTAPI DEPENDENCY ---
# Эту функцию мы будем вставлять в аргументы защищенных эндпоинтов.
# Она ищет заголовок Authorization, достает оттуда JWT и находит пользователя.

async def get_current_user(
    authorization: str | None = Header(None, description="String 'Bearer <token>'"),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Формат заголовка: Authorization: Bearer <token>
    Токен выдается эндпоинтом /auth/init.
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise _unauthorized("Authorization header missing or invalid")

    try:
        user_id = decode_access_token(authorization[len("Bearer "):].strip())
    except InvalidToken as e:
        logger.info(f"Rejected bearer token: {e}")
        raise _unauthorized("Invalid or expired token")

    user = await get_user(db, user_id)
    if user is None:
        raise _unauthorized("User not found")
    return user
