import time

import pytest
from fastapi.testclient import TestClient

from conftest import BOT_TOKEN, build_init_data, encode_user
from familyspace.config import settings
from familyspace.main import app
from familyspace.security import get_verifier
from familyspace.services.init_data import InitDataVerifier, VerifierConfig
from familyspace.services.tokens import create_access_token

client = TestClient(app)

USER = {"id": 424242, "first_name": "Anna", "last_name": "K", "username": "anna"}


def fresh_init_data(user: dict = USER, auth_date: int | None = None) -> str:
    params = {
        "query_id": "AAEAAAE",
        "user": encode_user(user),
        "auth_date": str(int(time.time()) if auth_date is None else auth_date),
    }
    return build_init_data(params)


@pytest.fixture
def bypass_enabled(monkeypatch):
    monkeypatch.setattr(settings, "ALLOW_INSECURE_TEST_BYPASS", True)
    app.dependency_overrides[get_verifier] = lambda: InitDataVerifier(
        VerifierConfig(bot_token=BOT_TOKEN, allow_insecure_test_bypass=True)
    )
    yield
    app.dependency_overrides.clear()


def test_health():
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_api_root():
    assert client.get("/api/").json() == {"message": "Hello from FamilySpace API!"}


def test_auth_init_returns_token_and_user():
    r = client.post("/auth/init", json={"initData": fresh_init_data()})

    assert r.status_code == 200
    body = r.json()
    assert body["token"]
    assert body["user"]["firstName"] == "Anna"
    assert body["user"]["lastName"] == "K"
    assert body["user"]["username"] == "anna"
    assert body["user"]["telegramId"] == "424242"
    assert isinstance(body["user"]["id"], str)


def test_token_from_auth_init_opens_profile():
    auth = client.post("/auth/init", json={"initData": fresh_init_data()}).json()

    r = client.get("/users/me", headers={"Authorization": f"Bearer {auth['token']}"})

    assert r.status_code == 200
    user = r.json()["user"]
    assert user["id"] == auth["user"]["id"]
    assert user["telegramId"] == "424242"
    assert "createdAt" in user


def test_repeat_login_keeps_user_id_and_updates_profile():
    first = client.post("/auth/init", json={"initData": fresh_init_data()}).json()
    second = client.post("/auth/init", json={"initData": fresh_init_data({**USER, "username": "anna_new"})}).json()

    assert second["user"]["id"] == first["user"]["id"]
    assert second["user"]["username"] == "anna_new"


def test_missing_init_data():
    for body in ({}, {"initData": ""}):
        r = client.post("/auth/init", json=body)
        assert r.status_code == 400
        assert r.json()["detail"] == "initData is required"


def test_missing_hash_is_bad_request():
    r = client.post("/auth/init", json={"initData": f"auth_date={int(time.time())}&user={encode_user(USER)}"})
    assert r.status_code == 400


def test_forged_init_data_is_unauthorized():
    forged = fresh_init_data().replace("Anna", "Eve")
    r = client.post("/auth/init", json={"initData": forged})

    assert r.status_code == 401
    assert "token" not in r.json()
    # посчитанный хеш клиенту не отдаем
    assert "hash" not in r.json()["detail"].lower()


def test_stale_init_data_is_unauthorized_with_same_message():
    stale = client.post("/auth/init", json={"initData": fresh_init_data(auth_date=int(time.time()) - 3600)})
    forged = client.post("/auth/init", json={"initData": fresh_init_data().replace("Anna", "Eve")})

    assert stale.status_code == forged.status_code == 401
    assert stale.json() == forged.json()


def test_sentinel_rejected_when_bypass_disabled():
    r = client.post("/auth/init", json={"initData": f"user={encode_user(USER)}&hash=development_fallback_hash"})
    assert r.status_code == 401


def test_sentinel_accepted_when_bypass_enabled(bypass_enabled):
    r = client.post("/auth/init", json={"initData": "hash=development_fallback_hash"})

    assert r.status_code == 200
    assert r.json()["user"]["telegramId"] == "123456789"
    assert r.json()["user"]["username"] == "testuser"


def test_auth_test_hidden_without_bypass():
    assert client.post("/auth/test").status_code == 404


def test_auth_test_creates_random_user(bypass_enabled):
    r = client.post("/auth/test")

    assert r.status_code == 200
    assert r.json()["user"]["firstName"] == "Test"
    assert r.json()["token"]


@pytest.mark.parametrize(
    "headers",
    [{}, {"Authorization": "Token abc"}, {"Authorization": "Bearer not-a-jwt"}],
)
def test_profile_requires_valid_bearer(headers):
    r = client.get("/users/me", headers=headers)
    assert r.status_code == 401
    assert r.headers["www-authenticate"] == "Bearer"


def test_profile_for_unknown_user():
    r = client.get("/users/me", headers={"Authorization": f"Bearer {create_access_token(987654)}"})
    assert r.status_code == 401
    assert r.json()["detail"] == "User not found"


@pytest.mark.parametrize("body", [{"initData": 123}, {"initData": ["a"]}, {"initData": {"hash": "x"}}])
def test_non_string_init_data_is_bad_request(body):
    r = client.post("/auth/init", json=body)

    assert r.status_code == 400
    assert r.json() == {"detail": "initData is required"}


def test_non_json_body_is_bad_request():
    r = client.post("/auth/init", content=b"initData=abc", headers={"Content-Type": "text/plain"})

    assert r.status_code == 400
    assert r.json() == {"detail": "initData is required"}


@pytest.mark.parametrize(
    "auth_date, user",
    [
        (None, encode_user(USER)),
        ("yesterday", encode_user(USER)),
        ("now", None),
        ("now", "not-json"),
    ],
    ids=["missing-auth-date", "invalid-auth-date", "missing-user", "malformed-user"],
)
def test_malformed_signed_payload_is_bad_request(auth_date, user):
    params = {}
    if auth_date is not None:
        params["auth_date"] = str(int(time.time())) if auth_date == "now" else auth_date
    if user is not None:
        params["user"] = user

    r = client.post("/auth/init", json={"initData": build_init_data(params)})

    assert r.status_code == 400
    assert "token" not in r.json()
