from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from taskapi.config import get_settings
from taskapi.identity import LocalIdentityProvider
from taskapi.main import create_app


class FakeClock:
    """Returns a strictly increasing time on every call."""

    def __init__(self, start: datetime | None = None, step: timedelta = timedelta(seconds=1)):
        self.current = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
        self.step = step

    def __call__(self) -> datetime:
        self.current += self.step
        return self.current


@pytest.fixture
def reset_codes() -> dict[str, str]:
    return {}


@pytest.fixture
def make_client(tmp_path, monkeypatch, reset_codes):
    clients = []

    def build_client(clock=None, **env):
        values = {
            "database_path": tmp_path / "tasks.db",
            "blob_dir": tmp_path / "blobs",
            "identity_database_path": tmp_path / "identity.db",
            "token_secret_key": "test-secret",
            "max_upload_size_bytes": 1_000_000,
            **env,
        }
        for name, value in values.items():
            monkeypatch.setenv(f"TASKAPI_{name.upper()}", str(value))
        get_settings.cache_clear()
        settings = get_settings()

        provider = LocalIdentityProvider(
            settings.identity_database_path,
            secret_key=settings.token_secret_key,
            user_pool_id=settings.user_pool_id,
            client_id=settings.client_id,
            code_sink=reset_codes.__setitem__,
        )
        client = TestClient(create_app(settings, identity_provider=provider, clock=clock))
        client.__enter__()
        clients.append(client)
        return client

    yield build_client

    for client in clients:
        client.__exit__(None, None, None)
    get_settings.cache_clear()


@pytest.fixture
def client(make_client):
    return make_client()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
