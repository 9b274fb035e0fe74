"""
Pytest configuration and fixtures.

Provides shared fixtures for testing SchemaForge.

Modern pytest-asyncio configuration (v0.23+):

Configuration in pyproject.toml:
    asyncio_mode = "auto"
        - Auto-detects async test functions
        - No need for @pytest.mark.asyncio decorator

    asyncio_default_fixture_loop_scope = "function"
        - Every test and its async fixtures share one fresh event loop;
          the database engine is created and disposed inside it

Environment:
    Settings are read from the environment, so the variables below are set
    before anything imports the application. The database is in-memory
    SQLite; ``close_db`` at the end of each test discards it.
"""

import os

os.environ["JWT_SECRET"] = "test-jwt-secret-for-testing-purposes-1234567890"
os.environ["ADMIN_API_KEY"] = "test-admin-key-for-testing-purposes-1234567890"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DEBUG"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"

from collections.abc import AsyncGenerator  # noqa: E402
from typing import Any  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from fastapi import FastAPI  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402

from schemaforge.core.config import Settings, get_settings  # noqa: E402
from schemaforge.core.security import create_access_token  # noqa: E402
from schemaforge.database.connection import close_db, get_session, init_db  # noqa: E402
from schemaforge.database.models import Project  # noqa: E402
from schemaforge.database.repository import ProjectRepository  # noqa: E402
from schemaforge.utils.exceptions import SchemaGenerationError  # noqa: E402

USER_ID = "user-1"
OTHER_USER_ID = "user-2"

# ============================================================
# Settings Fixtures
# ============================================================


@pytest.fixture
def test_settings() -> Settings:
    """Settings as loaded from the test environment."""
    return get_settings()


@pytest.fixture
def admin_api_key(test_settings: Settings) -> str:
    return test_settings.admin_api_key


# ============================================================
# Processor Fixtures
# ============================================================


async def fake_processor(url: str, keywords: list[str] | None) -> dict[str, Any]:
    """
    Stand-in for scrape + AI generation.

    URLs containing "fail" raise the way a provider error would.
    """
    if "fail" in url:
        raise SchemaGenerationError("Provider rejected the page", url=url)
    schema: dict[str, Any] = {
        "@context": "https://schema.org",
        "@type": "WebPage",
        "url": url,
    }
    if keywords:
        schema["keywords"] = ", ".join(keywords)
    return schema


@pytest.fixture
def url_processor():
    return fake_processor


# ============================================================
# Database Fixtures
# ============================================================


@pytest_asyncio.fixture
async def database() -> AsyncGenerator[None, None]:
    """Fresh in-memory database for one test."""
    await init_db()
    try:
        yield
    finally:
        await close_db()


@pytest_asyncio.fixture
async def session(database: None) -> AsyncGenerator[AsyncSession, None]:
    """Session committed when the test finishes."""
    async with get_session() as session:
        yield session


@pytest_asyncio.fixture
async def project(session: AsyncSession) -> Project:
    """A project owned by ``USER_ID``."""
    return await ProjectRepository.create(
        session,
        owner_id=USER_ID,
        project_name="Blog",
        target_url="https://example.com/blog",
        target_keywords=["seo", "schema"],
    )


# ============================================================
# Auth Fixtures
# ============================================================


@pytest.fixture
def user_token() -> str:
    return create_access_token(USER_ID, "Test User")


@pytest.fixture
def other_token() -> str:
    return create_access_token(OTHER_USER_ID, "Other User")


@pytest.fixture
def auth_headers(user_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {user_token}"}


@pytest.fixture
def other_headers(other_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {other_token}"}


# ============================================================
# HTTP Client Fixtures (for API testing)
# ============================================================


@pytest_asyncio.fixture
async def app(url_processor) -> AsyncGenerator[FastAPI, None]:
    """Application with its lifespan running (tables, registries, loops)."""
    from api.app import create_app

    application = create_app(url_processor=url_processor)
    async with application.router.lifespan_context(application):
        yield application


@pytest_asyncio.fixture
async def test_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client
