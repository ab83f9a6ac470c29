from aiogram import Router
from aiogram.types import Message, InlineKeyboardMarkup, InlineKeyboardButton, WebAppInfo
from aiogram.filters import Command

from familyspace.config import settings

# Создаем роутер для регистрации обработчиков.
# Это позволяет нам модульно подключать логику.
router = Router()


def miniapp_keyboard(url: str | None) -> InlineKeyboardMarkup | None:
    """Кнопка, которая открывает Mini App. Без MINIAPP_URL кнопки нет."""
    if not url:
        return None
    return InlineKeyboardMarkup(
        inline_keyboard=[[InlineKeyboardButton(text="Открыть FamilySpace", web_app=WebAppInfo(url=url))]]
    )


# Обработчик команды /start
@router.message(Command("start"))
async def command_start_handler(message: Message) -> None:
    """Приветствует пользователя и дает кнопку запуска Mini App."""
    await message.answer(
        f"Привет, {message.from_user.full_name}! Это FamilySpace. "
        "Нажми кнопку ниже, чтобы открыть приложение.",
        reply_markup=miniapp_keyboard(settings.MINIAPP_URL),
    )
