import logging

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import func

from familyspace.models.user import User
from familyspace.schemas import TelegramUser

logger = logging.getLogger(__name__)

_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


async def find_or_create_user(session: AsyncSession, tg_user: TelegramUser) -> User:
    """
    Находит пользователя по telegram_id или создает нового.
    Один INSERT ... ON CONFLICT DO UPDATE, поэтому два одновременных
    первых входа одного пользователя дают одну строку.
    """
    insert = _DIALECT_INSERTS[session.bind.dialect.name]

    profile = {
        "first_name": tg_user.first_name,
        "last_name": tg_user.last_name,
        "username": tg_user.username,
        "photo_url": tg_user.photo_url,
        "language_code": tg_user.language_code,
        "is_premium": bool(tg_user.is_premium),
    }
    stmt = insert(User).values(telegram_id=tg_user.id, is_bot=False, **profile)
    stmt = stmt.on_conflict_do_update(
        index_elements=[User.telegram_id],
        # Обновляем данные при изменении профиля в Telegram
        set_={**{key: stmt.excluded[key] for key in profile}, "updated_at": func.now()},
    )

    result = await session.scalars(
        stmt.returning(User),
        execution_options={"populate_existing": True},
    )
    user = result.one()
    await session.commit()

    logger.info(f"User upserted: id={user.id}, telegram_id={user.telegram_id}")
    return user


async def get_user(session: AsyncSession, user_id: int) -> User | None:
    result = await session.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()
