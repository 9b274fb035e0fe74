"""
FastAPI dependencies for authentication and resource injection.

Provides:
- Bearer JWT authentication for every user-facing route
- Admin API key authentication via X-API-Key header
- Database session injection
- Job store, scheduler and draft service from app state
"""

import secrets
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Header, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from schemaforge.core.config import Settings, get_settings
from schemaforge.core.security import AuthenticatedUser, decode_token
from schemaforge.database.connection import get_session
from schemaforge.services.draft_service import DraftService
from schemaforge.services.job_store import JobStore
from schemaforge.services.scheduler import BatchScheduler
from schemaforge.utils.exceptions import AuthenticationError
from schemaforge.utils.logging import get_logger

logger = get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> AuthenticatedUser:
    """
    Resolve the caller from the ``Authorization: Bearer`` header.

    Raises:
        AuthenticationError: 401 if the token is missing, invalid or expired
    """
    if credentials is None:
        logger.warning("Missing bearer token in request")
        raise AuthenticationError("Access token required")

    return decode_token(credentials.credentials, settings)


async def verify_admin_key(
    x_api_key: Annotated[str | None, Header()] = None,
    settings: Settings = Depends(get_settings),
) -> str:
    """
    Verify the admin key from the X-API-Key header.

    Uses constant-time comparison. Admin endpoints are closed entirely when
    no admin key is configured.

    Raises:
        AuthenticationError: 401 if the key is missing, invalid or not configured
    """
    if not settings.admin_enabled:
        logger.warning("Admin endpoint called but no admin key is configured")
        raise AuthenticationError("Admin API is disabled")

    if x_api_key is None:
        logger.warning("Missing API key in request")
        raise AuthenticationError("Missing X-API-Key header")

    if not secrets.compare_digest(x_api_key, settings.admin_api_key):
        logger.warning("Invalid API key attempt")
        raise AuthenticationError("Invalid API key")

    return x_api_key


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """One session per request; committed when the handler returns normally."""
    async with get_session() as session:
        yield session


async def get_job_store(request: Request) -> JobStore:
    return request.app.state.job_store


async def get_scheduler(request: Request) -> BatchScheduler:
    return request.app.state.scheduler


async def get_draft_service(request: Request) -> DraftService:
    return request.app.state.draft_service


# Type aliases for cleaner route signatures
CurrentUserDep = Annotated[AuthenticatedUser, Depends(get_current_user)]
AdminKeyDep = Annotated[str, Depends(verify_admin_key)]
DbSessionDep = Annotated[AsyncSession, Depends(get_db_session)]
JobStoreDep = Annotated[JobStore, Depends(get_job_store)]
SchedulerDep = Annotated[BatchScheduler, Depends(get_scheduler)]
DraftServiceDep = Annotated[DraftService, Depends(get_draft_service)]
