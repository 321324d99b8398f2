import pathlib
import sys
from datetime import UTC, datetime, timedelta

import jwt
import pytest
from fastapi.testclient import TestClient

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from catrescue.main import create_app
from catrescue.repositories.reports import InMemoryReportsRepository

JWT_SECRET = "jwt_test_secret"


def issue_token(
    *,
    sub: str,
    role: str | None = None,
    email: str | None = None,
    ttl_minutes: int = 30,
    secret: str = JWT_SECRET,
) -> str:
    now = datetime.now(UTC)
    payload: dict[str, object] = {
        "sub": sub,
        "exp": int((now + timedelta(minutes=ttl_minutes)).timestamp()),
        "iat": int(now.timestamp()),
        "iss": "test-issuer",
        "aud": "test-audience",
    }
    if role is not None:
        payload["role"] = role
    if email is not None:
        payload["email"] = email
    return jwt.encode(payload, secret, algorithm="HS256")


class TickingClock:
    """Deterministic clock: every call returns one second after the previous one."""

    def __init__(self, start: datetime | None = None) -> None:
        self._current = start or datetime(2024, 5, 1, 8, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        self._current = self._current + timedelta(seconds=1)
        return self._current


class AuthenticatedClient:
    def __init__(self, client: TestClient, *, subject: str, role: str | None = None, email: str | None = None):
        self._client = client
        self._token = issue_token(sub=subject, role=role, email=email)
        self.subject = subject

    def request(self, method: str, url: str, **kwargs):
        headers = dict(kwargs.pop("headers", {}) or {})
        headers.setdefault("Authorization", f"Bearer {self._token}")
        return self._client.request(method, url, headers=headers, **kwargs)

    def post(self, url: str, **kwargs):
        return self.request("POST", url, **kwargs)

    def get(self, url: str, **kwargs):
        return self.request("GET", url, **kwargs)


@pytest.fixture(autouse=True)
def security_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("JWT_SHARED_SECRET", JWT_SECRET)
    monkeypatch.setenv("JWT_ISSUER", "test-issuer")
    monkeypatch.setenv("JWT_AUDIENCE", "test-audience")
    monkeypatch.setenv("JWT_REQUIRED_CLAIMS", "sub,exp")
    monkeypatch.delenv("ROLE_OVERRIDES", raising=False)
    monkeypatch.delenv("CATRESCUE_STORE_BACKEND", raising=False)
    monkeypatch.delenv("CATRESCUE_REQUIRE_DURABLE_STORE", raising=False)
    yield


@pytest.fixture
def repository() -> InMemoryReportsRepository:
    return InMemoryReportsRepository()


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def client(repository, clock) -> TestClient:
    return TestClient(create_app(repository=repository, clock=clock))


@pytest.fixture
def as_user(client):
    def _factory(subject: str, role: str | None = None, email: str | None = None) -> AuthenticatedClient:
        return AuthenticatedClient(client, subject=subject, role=role, email=email)

    return _factory


def report_payload(**overrides) -> dict:
    payload = {
        "numberOfCats": 1,
        "type": "stray",
        "contactPhone": "0812345678",
        "description": "Near the 7-11",
        "images": ["https://example.com/cat.jpg"],
        "location": {"lat": 13.7563, "long": 100.5018, "description": "Near 7-11"},
    }
    payload.update(overrides)
    return payload
