"""
Проверка initData от Telegram Mini App.

Модуль не читает окружение и ничего не логирует: вся конфигурация приходит
через VerifierConfig, а диагностику (посчитанный и полученный хеш) забирает
вызывающий код из атрибутов InvalidSignature.
"""
import hashlib
import hmac
import json
import re
import time
from dataclasses import dataclass, field
from typing import Literal
from urllib.parse import unquote

from pydantic import ValidationError

from familyspace.schemas import TelegramUser

BOT_TOKEN_PATTERN = r"\d+:[A-Za-z0-9_-]+"

# Поля, которые мы декодируем для логики (auth_date, user и т.д.).
# В data-check-string всегда идут сырые значения.
DECODED_KEYS = ("auth_date", "query_id", "user")

DEFAULT_MAX_AGE = 1800  # 30 минут

BYPASS_SENTINEL = "hash=development_fallback_hash"

_BAD_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")
_UNIX_TIMESTAMP = re.compile(r"-?[0-9]+")

# Тестовый пользователь для режима обхода
FALLBACK_USER = TelegramUser(
    id=123456789,
    first_name="Test",
    last_name="User",
    username="testuser",
    language_code="en",
    is_premium=True,
    allows_write_to_pm=True,
)


# --- ОШИБКИ ---

class InitDataError(Exception):
    """Базовая ошибка проверки. message безопасно отдавать клиенту."""

    status_code = 400
    message = "Invalid initData"

    def __init__(self, reason: str | None = None):
        # reason - подробности только для локального лога
        self.reason = reason or self.message
        super().__init__(self.reason)


class MissingHash(InitDataError):
    message = "Missing hash parameter in initData"


class MissingTimestamp(InitDataError):
    message = "Missing auth_date parameter in initData"


class InvalidTimestamp(InitDataError):
    message = "Invalid auth_date format. Expected UNIX timestamp"


class InvalidUserPayload(InitDataError):
    message = "Invalid user data in initData"


class InvalidCredential(InitDataError):
    status_code = 500
    message = "Authentication is not configured"


class InvalidSignature(InitDataError):
    status_code = 401
    message = "Authentication failed, please re-open the app"

    def __init__(self, expected_hash: str, received_hash: str, data_check_string: str):
        super().__init__("Invalid hash")
        self.expected_hash = expected_hash
        self.received_hash = received_hash
        self.data_check_string = data_check_string


class StaleSession(InitDataError):
    status_code = 401
    message = "Authentication failed, please re-open the app"


# --- СТРУКТУРЫ ---

@dataclass(frozen=True)
class VerifierConfig:
    bot_token: str
    max_age: int = DEFAULT_MAX_AGE
    max_future_skew: int | None = None
    skip_freshness_check: bool = False
    allow_insecure_test_bypass: bool = False
    key_scheme: Literal["sha256", "hmac"] = "sha256"


@dataclass
class ParsedInitData:
    raw: dict[str, str] = field(default_factory=dict)
    decoded: dict[str, str] = field(default_factory=dict)

    @property
    def hash(self) -> str | None:
        # hash берем только из сырых параметров
        return self.raw.get("hash") or None


@dataclass
class VerificationResult:
    identity: TelegramUser
    auth_date: int | None = None
    query_id: str | None = None
    bypassed: bool = False


# --- ПАРСЕР ---

def _percent_decode(value: str) -> str:
    # Как decodeURIComponent: битая escape-последовательность - ошибка, отдаем raw целиком
    if _BAD_ESCAPE.search(value):
        return value
    try:
        return unquote(value, errors="strict")
    except UnicodeDecodeError:
        return value


def parse_init_data(init_data: str) -> ParsedInitData:
    """
    Разбирает query string initData.
    Сохраняет и оригинальные (URL-encoded) значения, и декодированные
    для полей из DECODED_KEYS.
    """
    cleaned = init_data[1:] if init_data.startswith("?") else init_data
    parsed = ParsedInitData()

    for pair in cleaned.split("&"):
        if not pair:
            continue
        key, _, value = pair.partition("=")
        # Повторный ключ перезаписывает предыдущий
        parsed.raw[key] = value

    for key in DECODED_KEYS:
        if key in parsed.raw:
            parsed.decoded[key] = _percent_decode(parsed.raw[key])

    return parsed


# --- КАНОНИЗАЦИЯ ---

def build_data_check_string(raw_params: dict[str, str]) -> str:
    """Формирует data-check-string: key=value\\nkey=value... по сырым значениям."""
    items = sorted((k, v) for k, v in raw_params.items() if k != "hash")
    return "\n".join(f"{k}={v}" for k, v in items)


# --- ПОДПИСЬ ---

def validate_bot_token(bot_token: str | None) -> str:
    token = (bot_token or "").strip()
    if not token:
        raise InvalidCredential("BOT_TOKEN is empty")
    if not re.fullmatch(BOT_TOKEN_PATTERN, token, re.ASCII):
        raise InvalidCredential('Invalid BOT_TOKEN format. Expected format: "number:secret"')
    return token


def derive_secret_key(bot_token: str, scheme: str = "sha256") -> bytes:
    """
    sha256: SHA256("WebAppData" + bot_token).
    hmac:   HMAC_SHA256(key="WebAppData", msg=bot_token) - схема из документации Telegram.
    """
    if scheme == "sha256":
        return hashlib.sha256(b"WebAppData" + bot_token.encode()).digest()
    if scheme == "hmac":
        return hmac.new(b"WebAppData", bot_token.encode(), hashlib.sha256).digest()
    raise InvalidCredential(f"Unknown key scheme: {scheme}")


def compute_hash(secret_key: bytes, data_check_string: str) -> str:
    return hmac.new(secret_key, data_check_string.encode(), hashlib.sha256).hexdigest()


def sign_init_data(params: dict[str, str], bot_token: str, scheme: str = "sha256") -> str:
    """
    Собирает подписанную строку initData из уже закодированных значений.
    Нужна для тестов и скрипта make_init_data.
    """
    secret_key = derive_secret_key(validate_bot_token(bot_token), scheme)
    signature = compute_hash(secret_key, build_data_check_string(params))
    return "&".join([*(f"{k}={v}" for k, v in params.items()), f"hash={signature}"])


# --- СВЕЖЕСТЬ ---

def parse_auth_date(value: str | None) -> int:
    if not value:
        raise MissingTimestamp()
    # int() принимает "1_700", пробелы, "+" и не-ASCII цифры - нам нужны только ASCII цифры
    if not _UNIX_TIMESTAMP.fullmatch(value):
        raise InvalidTimestamp(f"auth_date={value!r}")
    return int(value)


def check_freshness(auth_date: int, now: int, max_age: int, max_future_skew: int | None = None) -> None:
    age = now - auth_date
    if age > max_age:
        raise StaleSession(f"Auth date is too old ({age // 60} minutes). Maximum allowed: {max_age // 60} minutes")
    if max_future_skew is not None and -age > max_future_skew:
        raise StaleSession(f"Auth date is {-age} seconds in the future")


# --- ПОЛЬЗОВАТЕЛЬ ---

def parse_identity(user_json: str | None) -> TelegramUser:
    if not user_json:
        raise InvalidUserPayload("Missing user data in initData")
    try:
        payload = json.loads(user_json)
    except (json.JSONDecodeError, RecursionError) as e:
        raise InvalidUserPayload(f"Malformed user JSON: {e}")
    if not isinstance(payload, dict):
        raise InvalidUserPayload("User data is not an object")
    try:
        return TelegramUser(**payload)
    except ValidationError as e:
        raise InvalidUserPayload(str(e))


# --- ПАЙПЛАЙН ---

class InitDataVerifier:
    """Создается один раз при старте, дальше используется всеми запросами."""

    def __init__(self, config: VerifierConfig):
        self.config = config
        self._secret_key = derive_secret_key(validate_bot_token(config.bot_token), config.key_scheme)

    def check_signature(self, parsed: ParsedInitData) -> None:
        data_check_string = build_data_check_string(parsed.raw)
        expected = compute_hash(self._secret_key, data_check_string)
        received = parsed.hash or ""
        if not hmac.compare_digest(expected.encode(), received.encode()):
            raise InvalidSignature(expected, received, data_check_string)

    def _bypass(self, parsed: ParsedInitData) -> VerificationResult:
        identity = FALLBACK_USER
        if parsed.decoded.get("user"):
            try:
                identity = parse_identity(parsed.decoded["user"])
            except InvalidUserPayload:
                # Битый user в режиме обхода - берем тестового пользователя
                identity = FALLBACK_USER
        return VerificationResult(
            identity=identity,
            query_id=parsed.decoded.get("query_id"),
            bypassed=True,
        )

    def verify(self, init_data: str, now: int | None = None) -> VerificationResult:
        """
        Проверяет initData и возвращает пользователя.
        Любая проблема - исключение InitDataError, повторов нет.
        """
        # 1. Парсим параметры
        parsed = parse_init_data(init_data)

        # 2. Режим обхода (только если явно включен конфигом)
        if self.config.allow_insecure_test_bypass and BYPASS_SENTINEL in init_data:
            return self._bypass(parsed)

        if not parsed.hash:
            raise MissingHash()

        # 3. Подпись
        self.check_signature(parsed)

        # 4. Время (auth_date)
        auth_date = parse_auth_date(parsed.decoded.get("auth_date"))
        if not self.config.skip_freshness_check:
            check_freshness(
                auth_date,
                int(time.time()) if now is None else now,
                self.config.max_age,
                self.config.max_future_skew,
            )

        # 5. Пользователь
        identity = parse_identity(parsed.decoded.get("user"))

        return VerificationResult(
            identity=identity,
            auth_date=auth_date,
            query_id=parsed.decoded.get("query_id"),
        )
