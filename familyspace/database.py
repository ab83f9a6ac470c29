from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool
from familyspace.config import settings

DATABASE_URL = settings.database_url

# Создаем движок (Engine)
# Для SQLite не держим пул: соединения не переживают смену event loop
engine_options = {"poolclass": NullPool} if DATABASE_URL.startswith("sqlite") else {}
engine = create_async_engine(
    DATABASE_URL,
    echo=False,  # Ставь True, если хочешь видеть SQL запросы в консоли
    **engine_options,
)

# Создаем фабрику сессий
# expire_on_commit=False обязателен для асинхронной работы
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False
)

# Базовый класс для всех моделей
class Base(DeclarativeBase):
    pass

# Dependency для FastAPI
# Позволяет получать сессию БД в каждом эндпоинте: async def handler(db: AsyncSession = Depends(get_db))
async def get_db():
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()
