from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from familyspace.services.init_data import InvalidCredential, VerifierConfig, validate_bot_token


class Settings(BaseSettings):
    BOT_TOKEN: str
    ENVIRONMENT: Literal["development", "production"] = "production"
    DEBUG: bool = False

    # Проверка initData
    INIT_DATA_MAX_AGE: int = 1800
    INIT_DATA_MAX_FUTURE_SKEW: int | None = None
    INIT_DATA_KEY_SCHEME: Literal["sha256", "hmac"] = "sha256"
    SKIP_INIT_DATA_FRESHNESS: bool = False
    # Небезопасный обход подписи для локальной разработки. В production запрещен.
    ALLOW_INSECURE_TEST_BYPASS: bool = False

    JWT_SECRET: str
    JWT_TTL_SECONDS: int = 7 * 24 * 3600

    # Если задан, перекрывает POSTGRES_* (например, sqlite+aiosqlite для тестов)
    DATABASE_URL: str | None = None
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DB: str = "familyspace"
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432

    MINIAPP_URL: str | None = None
    BOT_POLLING_ENABLED: bool = True

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @field_validator("BOT_TOKEN")
    @classmethod
    def check_bot_token(cls, v: str) -> str:
        """Токен бота должен иметь вид "число:секрет". Проверка та же, что у верификатора."""
        try:
            return validate_bot_token(v)
        except InvalidCredential as e:
            raise ValueError(e.reason) from e

    @field_validator("JWT_SECRET")
    @classmethod
    def validate_jwt_secret(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("JWT_SECRET is empty")
        return v

    @model_validator(mode="after")
    def refuse_insecure_flags_in_production(self) -> "Settings":
        if self.ENVIRONMENT == "production":
            if self.ALLOW_INSECURE_TEST_BYPASS:
                raise ValueError("ALLOW_INSECURE_TEST_BYPASS cannot be enabled in production")
            if self.SKIP_INIT_DATA_FRESHNESS:
                raise ValueError("SKIP_INIT_DATA_FRESHNESS cannot be enabled in production")
        return self

    @property
    def database_url(self) -> str:
        # Важно: используем драйвер postgresql+asyncpg для асинхронной работы.
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@"
            f"{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    def verifier_config(self) -> VerifierConfig:
        return VerifierConfig(
            bot_token=self.BOT_TOKEN,
            max_age=self.INIT_DATA_MAX_AGE,
            max_future_skew=self.INIT_DATA_MAX_FUTURE_SKEW,
            skip_freshness_check=self.SKIP_INIT_DATA_FRESHNESS,
            allow_insecure_test_bypass=self.ALLOW_INSECURE_TEST_BYPASS,
            key_scheme=self.INIT_DATA_KEY_SCHEME,
        )


settings = Settings()
