import asyncio
import logging
import random
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Depends, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from aiogram import Bot, Dispatcher
from aiogram.types import BotCommand
from sqlalchemy.ext.asyncio import AsyncSession

from familyspace.config import settings
from familyspace.bot.handlers import router as bot_router
from familyspace.database import get_db
from familyspace.models.user import User
from familyspace.schemas import AuthResponse, MeResponse, TelegramAuthData, TelegramUser, UserOut, UserProfileOut
from familyspace.security import get_current_user, get_verifier
from familyspace.services.init_data import InitDataError, InitDataVerifier, InvalidSignature
from familyspace.services.tokens import create_access_token
from familyspace.services.users import find_or_create_user

# Настройка логирования
logging.basicConfig(level=logging.DEBUG if settings.DEBUG else logging.INFO)
logger = logging.getLogger(__name__)

# --- AIOGRAM SETUP ---
bot = Bot(token=settings.BOT_TOKEN)
dp = Dispatcher()
dp.include_router(bot_router)

async def set_bot_commands(bot_instance: Bot):
    commands = [
        BotCommand(command="start", description="Открыть FamilySpace"),
    ]
    await bot_instance.set_my_commands(commands)

# --- FASTAPI LIFESPAN ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.ALLOW_INSECURE_TEST_BYPASS:
        logger.warning(f"Insecure initData bypass is ENABLED (environment={settings.ENVIRONMENT})")
    if not settings.BOT_POLLING_ENABLED:
        yield
        return

    logger.info("Startup: Setting up bot...")
    await set_bot_commands(bot)
    polling_task = asyncio.create_task(dp.start_polling(bot))
    yield
    logger.info("Shutdown: Stopping bot...")
    polling_task.cancel()
    try:
        await polling_task
    except asyncio.exceptions.CancelledError:
        pass
    await bot.session.close()

# --- FASTAPI SETUP ---
app = FastAPI(title="FamilySpace API", lifespan=lifespan)

# --- ERROR HANDLING ---
# Клиенту отдаем только общее сообщение. Посчитанный хеш и data-check-string
# пишем в лог и только в режиме DEBUG.
@app.exception_handler(InitDataError)
async def init_data_error_handler(request: Request, exc: InitDataError):
    logger.warning(f"initData rejected: {type(exc).__name__}: {exc.reason}")
    if settings.DEBUG and isinstance(exc, InvalidSignature):
        logger.debug(f"Calculated hash: {exc.expected_hash}")
        logger.debug(f"Received hash: {exc.received_hash}")
        logger.debug(f"Data-check-string:\n{exc.data_check_string}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

# Кривое тело запроса - 400 без подробностей pydantic (они эхом возвращают input)
@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    logger.info(f"Malformed request to {request.url.path}: {[e['type'] for e in exc.errors()]}")
    detail = "initData is required" if request.url.path == "/auth/init" else "Invalid request"
    return JSONResponse(status_code=400, content={"detail": detail})


def user_out(user: User) -> UserOut:
    return UserOut(
        id=str(user.id),
        first_name=user.first_name,
        last_name=user.last_name,
        username=user.username,
        telegram_id=str(user.telegram_id),
    )

# --- ENDPOINTS ---

@app.get("/health")
async def health_check():
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

@app.get("/api/")
async def api_root():
    return {"message": "Hello from FamilySpace API!"}

@app.post("/auth/init", response_model=AuthResponse)
async def auth_init(
    payload: TelegramAuthData,
    db: AsyncSession = Depends(get_db),
    verifier: InitDataVerifier = Depends(get_verifier),
):
    """
    Основной эндпоинт аутентификации.
    Проверяет initData, создает/обновляет пользователя и выдает JWT.
    """
    if not payload.initData:
        raise HTTPException(status_code=400, detail="initData is required")

    result = verifier.verify(payload.initData)
    if result.bypassed:
        logger.warning(f"initData accepted via insecure bypass for telegram_id={result.identity.id}")
    else:
        logger.info(f"initData verified for telegram_id={result.identity.id}")
    if settings.DEBUG:
        logger.debug(f"Parsed user data: {result.identity.model_dump()}")

    user = await find_or_create_user(db, result.identity)
    return AuthResponse(token=create_access_token(user.id), user=user_out(user))

@app.post("/auth/test", response_model=AuthResponse)
async def auth_test(db: AsyncSession = Depends(get_db)):
    """
    Тестовый вход без Telegram: случайный пользователь.
    Доступен только при ALLOW_INSECURE_TEST_BYPASS.
    """
    if not settings.ALLOW_INSECURE_TEST_BYPASS:
        raise HTTPException(status_code=404, detail="Not Found")

    telegram_id = random.randint(1, 999_999_999)
    suffix = str(telegram_id)[:3]
    tg_user = TelegramUser(
        id=telegram_id,
        first_name="Test",
        last_name=f"User{suffix}",
        username=f"testuser{suffix}",
        language_code="ru",
        allows_write_to_pm=True,
    )
    user = await find_or_create_user(db, tg_user)
    return AuthResponse(token=create_access_token(user.id), user=user_out(user))

@app.get("/users/me", response_model=MeResponse)
async def get_my_profile(user: User = Depends(get_current_user)):
    return MeResponse(
        user=UserProfileOut(**user_out(user).model_dump(), created_at=user.created_at)
    )
