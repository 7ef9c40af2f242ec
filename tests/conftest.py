"""
Pytest configuration and fixtures.

Tests run against an in-memory SQLite database; Redis, Stripe, Twilio and
the payment automation API are replaced with mocks.
"""
import os

os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("PAYMENT_API_BASE_URL", "https://api.example.com")
os.environ.setdefault("ALLOWED_ORIGINS", "http://localhost:3000")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_fake_key_for_testing")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_fake_secret")

import secrets
from datetime import timedelta
from typing import Any, AsyncGenerator, Awaitable, Callable, Dict

import pytest
import pytest_asyncio
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from zpay.api.main import app
from zpay.config import Settings
from zpay.core.security import hash_password, utcnow
from zpay.database.connection import get_db
from zpay.database.models import Base, Session, User

TEST_PASSWORD = "correct-horse-battery"


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "unit: fast tests with no HTTP layer")
    config.addinivalue_line("markers", "integration: tests that go through the FastAPI app")


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        app_env="test",
        database_url="sqlite+aiosqlite:///:memory:",
        payment_api_base_url="https://api.example.com",
        public_base_url="https://dashboard.example.com",
        stripe_secret_key="sk_test_fake_key_for_testing",
        stripe_webhook_secret="whsec_test_fake_secret",
        log_level="WARNING",
    )


@pytest.fixture(scope="session")
def rsa_keys() -> Dict[str, str]:
    """Throwaway RSA key pair for license signing."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode("utf-8")
    public_pem = key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("utf-8")
    return {"private": private_pem, "public": public_pem}


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, Any]:
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, Any]:
    """Create test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def make_user(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Awaitable[User]]:
    """Factory committing a user in its own session."""

    async def _make_user(
        email: str = "merchant@example.com",
        is_admin: bool = False,
        password: str = TEST_PASSWORD,
        **fields: Any,
    ) -> User:
        async with session_factory() as session:
            user = User(
                email=email,
                password=hash_password(password),
                is_admin=is_admin,
                first_name=fields.pop("first_name", "Test"),
                last_name=fields.pop("last_name", "User"),
                **fields,
            )
            session.add(user)
            await session.commit()
            return user

    return _make_user


@pytest_asyncio.fixture
async def login_as(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[[User], Awaitable[Dict[str, str]]]:
    """Open a session for a user and return the Authorization header."""

    async def _login_as(user: User) -> Dict[str, str]:
        token = secrets.token_urlsafe(32)
        async with session_factory() as session:
            session.add(
                Session(
                    session_token=token,
                    user_id=user.id,
                    expires=utcnow() + timedelta(days=1),
                )
            )
            await session.commit()
        return {"Authorization": f"Bearer {token}"}

    return _login_as


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncClient, Any]:
    """Create test HTTP client bound to the test database."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, Any]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
