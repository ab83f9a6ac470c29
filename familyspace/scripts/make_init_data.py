"""
Генерирует подписанную строку initData для локальной проверки /auth/init.

    python -m familyspace.scripts.make_init_data --user-id 42 --first-name Anna
"""
import argparse
import json
import time
from urllib.parse import quote

from familyspace.config import settings
from familyspace.services.init_data import sign_init_data


def build_init_data(user: dict, auth_date: int, query_id: str | None = None) -> str:
    params = {"auth_date": str(auth_date)}
    if query_id:
        params["query_id"] = query_id
    # Telegram кладет user как URL-encoded JSON без пробелов
    params["user"] = quote(json.dumps(user, separators=(",", ":"), ensure_ascii=False), safe="")
    return sign_init_data(params, settings.BOT_TOKEN, settings.INIT_DATA_KEY_SCHEME)


def main():
    parser = argparse.ArgumentParser(description="Print signed Telegram initData for the configured BOT_TOKEN")
    parser.add_argument("--user-id", type=int, default=123456789)
    parser.add_argument("--first-name", default="Test")
    parser.add_argument("--last-name")
    parser.add_argument("--username", default="testuser")
    parser.add_argument("--auth-date", type=int, help="UNIX timestamp, defaults to now")
    parser.add_argument("--query-id")
    args = parser.parse_args()

    user = {"id": args.user_id, "first_name": args.first_name}
    if args.last_name:
        user["last_name"] = args.last_name
    if args.username:
        user["username"] = args.username

    auth_date = args.auth_date if args.auth_date is not None else int(time.time())
    print("Generated initData:")
    print(build_init_data(user, auth_date, args.query_id))


if __name__ == "__main__":
    main()
