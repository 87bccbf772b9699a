from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from config import Settings
from database import TodoStore
from main import create_app


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    # Low bcrypt cost keeps the suite fast; no .env file is read
    return Settings(
        _env_file=None,
        JWT_SECRET="test-secret",
        DATABASE_URL=f"sqlite:///{tmp_path / 'todo.db'}",
        BCRYPT_ROUNDS=4,
    )


@pytest.fixture()
def store(tmp_path: Path):
    s = TodoStore(f"sqlite:///{tmp_path / 'store.db'}")
    yield s
    s.close()


@pytest.fixture()
def app(settings: Settings):
    return create_app(settings)


@pytest.fixture()
def client(app):
    with TestClient(app) as c:
        yield c


def register(client: TestClient, email: str = "a@x.com", password: str = "pw123456"):
    return client.post("/api/register", json={"email": email, "password": password})


def login(client: TestClient, email: str = "a@x.com", password: str = "pw123456"):
    return client.post("/api/login", json={"email": email, "password": password})


def auth_headers(client: TestClient, email: str = "a@x.com", password: str = "pw123456") -> dict:
    register(client, email, password)
    token = login(client, email, password).json()["token"]
    return {"Authorization": f"Bearer {token}"}
