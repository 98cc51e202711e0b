"""Shared test fixtures for RentalCore."""

import pytest
from httpx import ASGITransport, AsyncClient

from rentalcore.common.config import RentalCoreSettings
from rentalcore.common.database import DatabaseManager


API_KEY = "test-admin-api-key"
GDPR_KEY = "test-gdpr-encryption-key"


def make_settings(tmp_path, key_dir=None, **overrides) -> RentalCoreSettings:
    defaults = {
        "db_url": "sqlite+aiosqlite://",
        "api_key": API_KEY,
        "gdpr_encryption_key": GDPR_KEY,
        "archive_dir": str(tmp_path / "archive"),
        "key_dir": str(key_dir or tmp_path / "keys"),
    }
    defaults.update(overrides)
    return RentalCoreSettings(**defaults)


@pytest.fixture(scope="session")
def key_dir(tmp_path_factory):
    """One RSA key pair for the whole run; generating it is slow."""
    return tmp_path_factory.mktemp("keys")


@pytest.fixture
def settings(tmp_path, key_dir):
    return make_settings(tmp_path, key_dir=key_dir)


@pytest.fixture
async def db(settings):
    manager = DatabaseManager(settings)
    await manager.init()
    await manager.create_all()
    yield manager
    await manager.close()


@pytest.fixture
def api_key():
    return API_KEY


@pytest.fixture
def app(monkeypatch, tmp_path, key_dir):
    """Create a test app with in-memory DB."""
    monkeypatch.setenv("RENTALCORE_DB_URL", "sqlite+aiosqlite://")
    monkeypatch.setenv("RENTALCORE_API_KEY", API_KEY)
    monkeypatch.setenv("RENTALCORE_GDPR_ENCRYPTION_KEY", GDPR_KEY)
    monkeypatch.setenv("RENTALCORE_ARCHIVE_DIR", str(tmp_path / "archive"))
    monkeypatch.setenv("RENTALCORE_KEY_DIR", str(key_dir))

    # Clear caches and singletons so new env vars take effect
    from rentalcore.common.config import get_settings
    get_settings.cache_clear()

    from rentalcore.deps import reset_singletons
    reset_singletons()

    from rentalcore.app import create_app
    yield create_app()

    get_settings.cache_clear()
    reset_singletons()


@pytest.fixture
async def client(app):
    # Manually init DB since ASGITransport doesn't run lifespan
    from rentalcore.deps import get_db, get_retention_manager
    db = get_db()
    await db.init()
    await db.create_all()
    async with db.get_session() as session:
        await get_retention_manager().seed_default_policies(session)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await db.close()


@pytest.fixture
def admin_headers():
    return {"X-RentalCore-Api-Key": API_KEY}
