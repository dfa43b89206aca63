import os

# Set test environment
os.environ["DEBUG"] = "true"
os.environ["IDENTITY_PROVIDER"] = "fake"
os.environ["REVOCATION_BACKEND"] = "memory"
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from collections.abc import AsyncGenerator
from http.cookies import SimpleCookie
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient, Response
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from microblog.config import SESSION_COOKIE_NAME, get_settings
from microblog.database import Base, get_db
from microblog.main import app
from microblog.models import Post, User
from microblog.services.identity_provider import FakeIdentityProvider
from microblog.services.revocation import InMemoryRevocationStore
from microblog.services.session_auth import AuthComponents, build_auth_components

# SQLite by default; point TEST_DATABASE_URL at PostgreSQL to run against the real schema
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:")


@pytest_asyncio.fixture(scope="function")
async def async_engine():
    """Create async engine for each test."""
    if TEST_DATABASE_URL.startswith("sqlite"):
        engine = create_async_engine(
            TEST_DATABASE_URL,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_async_engine(TEST_DATABASE_URL, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with async_session_maker() as session:
        yield session


@pytest.fixture
def identity_provider() -> FakeIdentityProvider:
    return FakeIdentityProvider("test-identity-secret")


@pytest.fixture
def revocation_store() -> InMemoryRevocationStore:
    return InMemoryRevocationStore()


@pytest.fixture
def auth_components(
    identity_provider: FakeIdentityProvider, revocation_store: InMemoryRevocationStore
) -> AuthComponents:
    return build_auth_components(
        get_settings(), provider=identity_provider, store=revocation_store
    )


@pytest_asyncio.fixture(scope="function")
async def client(
    db_session: AsyncSession, auth_components: AuthComponents
) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client with database and auth overrides."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    # ASGITransport does not run the lifespan, so install components directly
    app.state.auth = auth_components

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    app.state.auth = None


@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession) -> User:
    """Create a test user with unique identifiers."""
    unique_id = uuid4()
    user = User(
        id=unique_id,
        external_id=f"firebase-uid-{unique_id}",
        email=f"test-{unique_id}@example.com",
        display_name="Test User",
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture
async def other_user(db_session: AsyncSession) -> User:
    unique_id = uuid4()
    user = User(
        id=unique_id,
        external_id=f"firebase-uid-{unique_id}",
        email=f"other-{unique_id}@example.com",
        display_name="Other User",
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture
async def test_post(db_session: AsyncSession, test_user: User) -> Post:
    post = Post(user_id=test_user.id, body="Hello from the test user")
    db_session.add(post)
    await db_session.commit()
    await db_session.refresh(post)
    return post


@pytest.fixture
def user_token(identity_provider: FakeIdentityProvider, test_user: User) -> str:
    """ID token for the test user, as the client SDK would hand it over."""
    return identity_provider.issue_token(
        test_user.external_id, email=test_user.email, name=test_user.display_name
    )


@pytest.fixture
def session_headers(user_token: str) -> dict[str, str]:
    """Headers carrying the session cookie for the test user."""
    return cookie_header(user_token)


@pytest.fixture
def auth_headers(user_token: str) -> dict[str, str]:
    """Authorization headers for bearer-token requests."""
    return {"Authorization": f"Bearer {user_token}"}


def cookie_header(token: str) -> dict[str, str]:
    return {"Cookie": f"{SESSION_COOKIE_NAME}={token}"}


def session_cookie(response: Response):
    """Parse the session cookie from a response's Set-Cookie header."""
    cookie = SimpleCookie()
    for header in response.headers.get_list("set-cookie"):
        cookie.load(header)
    return cookie.get(SESSION_COOKIE_NAME)


@pytest.fixture(name="cookie_header")
def cookie_header_fixture():
    return cookie_header


@pytest.fixture(name="session_cookie")
def session_cookie_fixture():
    return session_cookie
