from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# Модель пользователя внутри initData (Telegram присылает JSON внутри строки)
class TelegramUser(BaseModel):
    id: int
    first_name: str
    last_name: str | None = None
    username: str | None = None
    photo_url: str | None = None
    language_code: str | None = None
    is_premium: bool | None = False
    allows_write_to_pm: bool | None = False

# Модель данных авторизации, которые мы ждем от фронтенда
class TelegramAuthData(BaseModel):
    initData: str | None = Field(None, description="Raw query string from Telegram WebApp")

# Ответы API отдаем в camelCase, как ждет фронтенд
class UserOut(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    first_name: str
    last_name: str | None = None
    username: str | None = None
    telegram_id: str

class UserProfileOut(UserOut):
    created_at: datetime

class AuthResponse(BaseModel):
    token: str
    user: UserOut

class MeResponse(BaseModel):
    user: UserProfileOut
