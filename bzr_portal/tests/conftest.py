"""
Test fixtures for BZR portal storage tests.

Provides:
- In-memory SQLite database for isolated testing
- In-memory object store and a controllable clock
- Async test client with proper session management
- Account factories and Supabase-style auth headers
"""
# IMPORTANT: Set environment variables BEFORE any other imports
import os

TEST_JWT_SECRET = "test-supabase-jwt-secret-with-enough-length-for-hs256"

os.environ["SUPABASE_JWT_SECRET"] = TEST_JWT_SECRET
# DB settings required by Settings validation (tests use SQLite in-memory, these are not actually used)
os.environ.setdefault("DB_USER", "test")
os.environ.setdefault("DB_PASSWORD", "test")
os.environ.setdefault("DB_NAME", "test")
# Development mode for tests (disables ALLOWED_ORIGINS requirement)
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("STORAGE_BACKEND", "local")

import pytest
from datetime import datetime, timedelta
from typing import AsyncGenerator, Dict, List, Optional, Set

from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
)
from sqlalchemy.pool import StaticPool

from bzr_portal.app.core.base import Base
from bzr_portal.app.main import app
from bzr_portal.app.api.deps import get_clock, get_object_store, get_session
from bzr_portal.app.core.auth import create_access_token
from bzr_portal.app.models.account import Account
from bzr_portal.app.services.object_store import (
    ObjectNotFoundError,
    StorageUnavailableError,
    StoredObject,
)
from bzr_portal.app.services.referrals import ReferralService
from bzr_portal.app.services.storage_quota import StorageQuotaService


# Test database URL - SQLite in-memory
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


# Create test engine with StaticPool for in-memory SQLite
test_engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
    echo=False,
)

TestSessionLocal = async_sessionmaker(
    bind=test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

START_TIME = datetime(2025, 1, 15, 12, 0, 0)


class FrozenClock:
    """Naive-UTC clock that only moves when told to."""

    def __init__(self, now: datetime = START_TIME):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class StaticTierLookup:
    """Tier lookup with a fixed set of pro accounts."""

    def __init__(self, pro_accounts: Optional[Set[str]] = None):
        self.pro_accounts = set(pro_accounts or ())

    async def is_account_pro(self, account_id: str) -> bool:
        return account_id in self.pro_accounts


class InMemoryObjectStore:
    """Object store on a dict with S3 delimiter listing semantics."""

    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.list_calls: List[str] = []
        self.fail_operations: Set[str] = set()

    def _check(self, operation: str):
        if operation in self.fail_operations:
            raise StorageUnavailableError(operation, "simulated outage")

    def add(self, key: str, size: int) -> None:
        self.objects[key] = b"x" * size

    async def list_objects(self, prefix: str) -> List[StoredObject]:
        self._check("list")
        self.list_calls.append(prefix)
        files = []
        folders = []
        for key in sorted(self.objects):
            if not key.startswith(prefix):
                continue
            rest = key[len(prefix):]
            if "/" in rest:
                folder = prefix + rest.split("/", 1)[0] + "/"
                if folder not in folders:
                    folders.append(folder)
            else:
                files.append(StoredObject(key=key, size_bytes=len(self.objects[key])))
        return files + [StoredObject(key=f, size_bytes=0, is_folder=True) for f in folders]

    async def put_object(self, key: str, body: bytes, content_type: str) -> None:
        self._check("put")
        self.objects[key] = body

    async def get_object(self, key: str) -> bytes:
        self._check("get")
        if key not in self.objects:
            raise ObjectNotFoundError(key)
        return self.objects[key]

    async def delete_object(self, key: str) -> None:
        self._check("delete")
        self.objects.pop(key, None)


@pytest.fixture(scope="function")
async def test_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Create a fresh database session for each test.
    Creates all tables before and drops after each test.
    """
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestSessionLocal() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def tier_lookup() -> StaticTierLookup:
    return StaticTierLookup()


@pytest.fixture
def object_store() -> InMemoryObjectStore:
    return InMemoryObjectStore()


@pytest.fixture
def referral_service(
    test_session: AsyncSession,
    tier_lookup: StaticTierLookup,
    clock: FrozenClock,
) -> ReferralService:
    return ReferralService(
        test_session,
        tier_lookup=tier_lookup,
        clock=clock,
        app_url="https://portal.test",
    )


@pytest.fixture
def storage_service(
    referral_service: ReferralService,
    object_store: InMemoryObjectStore,
) -> StorageQuotaService:
    return StorageQuotaService(referral_service, object_store)


@pytest.fixture
async def client(
    test_session: AsyncSession,
    object_store: InMemoryObjectStore,
    clock: FrozenClock,
) -> AsyncGenerator[AsyncClient, None]:
    """
    Async HTTP client for testing API endpoints.
    Overrides database, object store and clock dependencies.

    Note: We create a fresh session for each API call to avoid
    transaction conflicts with the test_session used for fixtures.
    """
    async def override_get_session():
        async with TestSessionLocal() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_object_store] = lambda: object_store
    app.dependency_overrides[get_clock] = lambda: clock

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


# --- Test Data Factories ---

async def create_account(
    session: AsyncSession,
    account_id: str,
    is_pro: bool = False,
    is_admin: bool = False,
) -> Account:
    account = Account(
        id=account_id,
        email=f"{account_id}@example.rs",
        is_pro=is_pro,
        is_admin=is_admin,
    )
    session.add(account)
    await session.commit()
    await session.refresh(account)
    return account


@pytest.fixture
async def free_account(test_session: AsyncSession) -> Account:
    return await create_account(test_session, "acc-free-1")


@pytest.fixture
async def pro_account(test_session: AsyncSession) -> Account:
    return await create_account(test_session, "acc-pro-1", is_pro=True)


@pytest.fixture
async def admin_account(test_session: AsyncSession) -> Account:
    return await create_account(test_session, "acc-admin-1", is_admin=True)


# --- Auth Helpers ---

def get_auth_header_for_account(account_id: str, email: Optional[str] = None) -> dict:
    """Bearer header with a Supabase-style access token for any account id."""
    token = create_access_token(account_id, email=email)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_header(free_account: Account) -> dict:
    return get_auth_header_for_account(free_account.id, free_account.email)


@pytest.fixture
def admin_header(admin_account: Account) -> dict:
    return get_auth_header_for_account(admin_account.id, admin_account.email)


@pytest.fixture
def session_factory() -> async_sessionmaker:
    """Independent sessions for reading back what the API committed."""
    return TestSessionLocal
