import time

import jwt

from familyspace.config import settings

ALGORITHM = "HS256"


class InvalidToken(Exception):
    pass


def create_access_token(user_id: int, *, secret: str | None = None, ttl_seconds: int | None = None) -> str:
    """Выдает JWT с sub = id пользователя в нашей базе."""
    issued_at = int(time.time())
    payload = {
        "sub": str(user_id),
        "iat": issued_at,
        "exp": issued_at + (settings.JWT_TTL_SECONDS if ttl_seconds is None else ttl_seconds),
    }
    return jwt.encode(payload, settings.JWT_SECRET if secret is None else secret, algorithm=ALGORITHM)


def decode_access_token(token: str, *, secret: str | None = None) -> int:
    """Проверяет подпись и срок действия, возвращает id пользователя."""
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET if secret is None else secret,
            algorithms=[ALGORITHM],
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError as e:
        raise InvalidToken("Token expired") from e
    except jwt.InvalidTokenError as e:
        raise InvalidToken("Invalid token") from e

    try:
        return int(payload["sub"])
    except (TypeError, ValueError) as e:
        raise InvalidToken("Invalid token subject") from e
