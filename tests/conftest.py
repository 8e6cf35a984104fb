"""
EduConnect API - Test Configuration and Fixtures
"""
import os
from typing import Any, AsyncGenerator, Optional

import pytest
from faker import Faker
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

# Set testing environment
TEST_DATABASE_URL = "sqlite+aiosqlite:///./test_educonnect.db"
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["SECRET_KEY"] = "test-secret-key-for-testing-only"
os.environ["APP_ENV"] = "test"
os.environ["DEBUG"] = "false"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["USER_CREATE_MAX_ATTEMPTS"] = "3"
os.environ["USER_CREATE_RETRY_BACKOFF_SECONDS"] = "0"
os.environ["LOG_JSON"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["BREVO_API_KEY"] = ""

from educonnect.main import app
from educonnect.core.database import Base, get_db
from educonnect.core.notifications import DispatchResult, get_notifier
from educonnect.core.security import create_access_token, hash_password
from educonnect.models.role_request import RequestStatus, RoleRequest
from educonnect.models.user import User, UserRole

fake = Faker()

DEFAULT_PASSWORD = "testpassword123"

test_engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=NullPool)
TestSessionLocal = async_sessionmaker(
    bind=test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


class FakeNotifier:
    """Records every dispatch instead of calling Brevo."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.fail = False

    async def send(self, recipient: str, subject: str, template_name: str, data: dict[str, Any]) -> DispatchResult:
        if self.fail:
            raise ConnectionError("provider unreachable")
        self.sent.append(
            {"recipient": recipient, "subject": subject, "template": template_name, "data": data}
        )
        return DispatchResult(success=True, message_id=str(len(self.sent)))

    def last(self, template_name: str) -> Optional[dict[str, Any]]:
        for message in reversed(self.sent):
            if message["template"] == template_name:
                return message
        return None


@pytest.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Fresh schema and session for each test"""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestSessionLocal() as session:
        yield session
        await session.rollback()

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
async def client(db_session: AsyncSession, notifier: FakeNotifier) -> AsyncGenerator[AsyncClient, None]:
    """Test client with database and notifier overrides"""
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db_session: AsyncSession):
    """Factory: await make_user(role=UserRole.FACULTY, program="CS")"""
    async def _make_user(
        role: UserRole = UserRole.STUDENT,
        *,
        email: Optional[str] = None,
        password: str = DEFAULT_PASSWORD,
        is_verified: bool = True,
        program: Optional[str] = None,
        admin_programs: Optional[list[str]] = None,
    ) -> User:
        user = User(
            name=fake.name(),
            email=(email or fake.unique.email()).lower(),
            password_hash=hash_password(password),
            role=role,
            is_verified=is_verified,
            program=program,
            admin_programs=admin_programs or [],
        )
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture
def make_registration_request(db_session: AsyncSession):
    """Factory for pre-account requests carrying staged registration data."""
    async def _make_request(
        requested_role: UserRole = UserRole.STUDENT,
        *,
        program: Optional[str] = None,
        email: Optional[str] = None,
        password_hash: Optional[str] = "staged",
        status: RequestStatus = RequestStatus.PENDING,
    ) -> RoleRequest:
        request = RoleRequest(
            requested_role=requested_role,
            current_role="none",
            reason="New user registration request",
            program=program,
            name=fake.name(),
            email=(email or fake.unique.email()).lower(),
            password_hash=hash_password(DEFAULT_PASSWORD) if password_hash == "staged" else password_hash,
            branch="Engineering",
            course="B.Tech",
            status=status,
        )
        db_session.add(request)
        await db_session.commit()
        await db_session.refresh(request)
        return request

    return _make_request


@pytest.fixture
def make_role_change_request(db_session: AsyncSession):
    """Factory for requests filed by an existing account."""
    async def _make_request(
        user: User,
        requested_role: UserRole,
        *,
        program: Optional[str] = None,
    ) -> RoleRequest:
        request = RoleRequest(
            user_id=user.id,
            requested_role=requested_role,
            current_role=user.role.value,
            reason="promotion",
            program=program,
        )
        db_session.add(request)
        await db_session.commit()
        await db_session.refresh(request)
        return request

    return _make_request


@pytest.fixture
def auth_headers():
    """auth_headers(user) -> Bearer header with a full session token"""
    def _headers(user: User) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user)}"}

    return _headers


@pytest.fixture
async def super_admin(make_user) -> User:
    return await make_user(UserRole.ADMIN)


@pytest.fixture
async def cs_admin(make_user) -> User:
    return await make_user(UserRole.ADMIN, admin_programs=["CS"])


@pytest.fixture
async def cs_faculty(make_user) -> User:
    return await make_user(UserRole.FACULTY, program="CS")
