import os
import tempfile

import pytest

os.environ.setdefault("TB_LOG_PATH", os.path.join(tempfile.gettempdir(), "tradebook_test.log"))
os.environ.setdefault("TB_AUTO_UPDATE", "0")
os.environ.pop("REDIS_URL", None)
os.environ.pop("TB_REDIS_URL", None)

from tradebook.app.config import settings  # noqa: E402
from tradebook.app.db import ensure_schema  # noqa: E402
from tradebook.app.services import users  # noqa: E402
from tradebook.app.services.cache import cache  # noqa: E402

PASSWORD = "s3cret-pw"


@pytest.fixture
def db(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "db_path", str(tmp_path / "tradebook.db"))
    ensure_schema()
    cache.clear_all()
    yield
    cache.clear_all()


@pytest.fixture
def make_user(db):
    def _make(user_id, role="customer", email=None, year=None, **extra):
        payload = {
            "email": email or f"{user_id}@example.com",
            "userId": user_id,
            "password": PASSWORD,
            "role": role,
            "year": year,
            **extra,
        }
        return users.create_user(payload)

    return _make


@pytest.fixture
def client_for(db):
    """TestClient factory; each client is signed in as ``account``."""
    from fastapi.testclient import TestClient
    from tradebook.app.main import app

    clients = []

    def _client(account=None, password=PASSWORD):
        client = TestClient(app)
        clients.append(client)
        if account:
            resp = client.post(f"{settings.api_prefix}/auth/login", json={"account": account, "password": password})
            assert resp.status_code == 200, resp.text
        return client

    yield _client
    for client in clients:
        client.close()
