"""Shared test fixtures for Passport-Engine."""

import pytest
from httpx import ASGITransport, AsyncClient

from passport_engine.common.database import DatabaseManager
from tests.fakes import FakeClock, RecordingDispatcher
from tests.helpers import (
    API_KEY,
    HMAC_KEY,
    REVIEWER_KEY,
    SECRET_KEY,
    build_stack,
    make_settings,
)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def db(settings):
    manager = DatabaseManager(settings)
    await manager.init()
    await manager.create_all()
    yield manager
    await manager.close()


@pytest.fixture
def stack(settings, clock):
    return build_stack(settings, clock)


# ── HTTP ──


@pytest.fixture
def api_key():
    return API_KEY


@pytest.fixture
def outbox():
    return RecordingDispatcher()


@pytest.fixture
def app(tmp_path, outbox, monkeypatch):
    """Create a test app with in-memory DB."""
    monkeypatch.setenv("PASSPORT_DB_URL", "sqlite+aiosqlite://")
    monkeypatch.setenv("PASSPORT_SECRET_KEY", SECRET_KEY)
    monkeypatch.setenv("PASSPORT_HMAC_KEY", HMAC_KEY)
    monkeypatch.setenv("PASSPORT_API_KEY", API_KEY)
    monkeypatch.setenv("PASSPORT_REVIEWER_KEY", REVIEWER_KEY)
    monkeypatch.setenv("PASSPORT_BLOB_DIR", str(tmp_path / "blobs"))
    monkeypatch.setenv("PASSPORT_SCHEDULER_ENABLED", "false")
    monkeypatch.setenv("PASSPORT_RECALC_CONCURRENCY", "1")

    # Clear caches and singletons so new env vars take effect
    from passport_engine.common.config import get_settings
    get_settings.cache_clear()

    from passport_engine.deps import get_otp_service, reset_singletons
    reset_singletons()
    get_otp_service().dispatcher = outbox

    from passport_engine.app import create_app
    return create_app()


@pytest.fixture
async def client(app):
    # Manually init DB since ASGITransport doesn't run lifespan
    from passport_engine.deps import get_db
    db = get_db()
    await db.init()
    await db.create_all()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await db.close()


@pytest.fixture
def admin_headers():
    return {"X-Passport-Api-Key": API_KEY}


@pytest.fixture
def reviewer_headers():
    return {"X-Passport-Api-Key": REVIEWER_KEY}


@pytest.fixture
def login(client, outbox):
    """Sign in through the OTP endpoints; returns the token response body."""

    async def _login(email: str, device_id: str = "") -> dict:
        resp = await client.post("/auth/otp/request", json={"email": email})
        assert resp.status_code == 202, resp.text
        resp = await client.post("/auth/otp/verify", json={
            "email": email, "code": outbox.last_code(email), "device_id": device_id,
        })
        assert resp.status_code == 200, resp.text
        return resp.json()

    return _login
