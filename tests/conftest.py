import asyncio
import hashlib
import hmac
import json
import os
import tempfile
from urllib.parse import quote

import pytest

# Окружение задаем до импорта приложения: settings читаются один раз при импорте
BOT_TOKEN = "123456:ABC-DEF"
_TMP_DIR = tempfile.mkdtemp(prefix="familyspace-tests-")

os.environ.update(
    {
        "BOT_TOKEN": BOT_TOKEN,
        "JWT_SECRET": "test-jwt-secret",
        "ENVIRONMENT": "development",
        "DEBUG": "true",
        "BOT_POLLING_ENABLED": "false",
        "ALLOW_INSECURE_TEST_BYPASS": "false",
        "SKIP_INIT_DATA_FRESHNESS": "false",
        "DATABASE_URL": f"sqlite+aiosqlite:///{os.path.join(_TMP_DIR, 'test.db')}",
    }
)

from familyspace.database import Base, engine  # noqa: E402
from familyspace.models.user import User  # noqa: E402,F401


async def _create_tables():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def _drop_tables():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def _database():
    asyncio.run(_create_tables())
    yield
    asyncio.run(_drop_tables())


def encode_user(user: dict) -> str:
    return quote(json.dumps(user, separators=(",", ":")), safe="")


def build_init_data(
    params: dict,
    bot_token: str = BOT_TOKEN,
    *,
    secret_key: bytes | None = None,
) -> str:
    """Подписывает уже закодированные параметры по эталонному алгоритму."""
    if secret_key is None:
        secret_key = hashlib.sha256(b"WebAppData" + bot_token.encode()).digest()
    dcs = "\n".join(f"{k}={params[k]}" for k in sorted(params))
    signature = hmac.new(secret_key, dcs.encode(), hashlib.sha256).hexdigest()
    return "&".join([*(f"{k}={v}" for k, v in params.items()), f"hash={signature}"])
