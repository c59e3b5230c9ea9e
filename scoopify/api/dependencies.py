"""
API dependencies for FastAPI endpoints.
Provides the database session, the caller identity and cron authentication.
"""

import hmac
from typing import AsyncGenerator, Optional

from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

import structlog

from scoopify.core.config import settings
from scoopify.core.database import get_async_session
from scoopify.core.exceptions import AuthenticationError, AuthorizationError
from scoopify.core.identity import Caller, UserRole
from scoopify.core.logging import bind_context

logger = structlog.get_logger(__name__)

cron_auth_scheme = HTTPBearer(auto_error=False)


async def get_database() -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency; commits when the request succeeds."""
    async with get_async_session() as session:
        yield session


async def get_caller(
    x_user_id: Optional[str] = Header(default=None, description="Authenticated user id"),
    x_user_role: Optional[str] = Header(default=None, description="CUSTOMER, EMPLOYEE or ADMIN")
) -> Caller:
    """Caller identity forwarded by the upstream auth layer."""
    if not x_user_id or not x_user_role:
        raise AuthenticationError("Missing caller identity")
    try:
        role = UserRole(x_user_role.upper())
    except ValueError:
        raise AuthenticationError("Unknown caller role", {"role": x_user_role})

    bind_context(user_id=x_user_id, role=role.value)
    return Caller(user_id=x_user_id, role=role)


async def get_admin(caller: Caller = Depends(get_caller)) -> Caller:
    if not caller.is_admin:
        raise AuthorizationError("Administrator role required")
    return caller


async def verify_cron_secret(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(cron_auth_scheme)
) -> None:
    """Require ``Authorization: Bearer <CRON_SECRET>``."""
    if credentials is None or not hmac.compare_digest(
        credentials.credentials.encode(), settings.cron_secret.encode()
    ):
        logger.warning("Rejected cron request")
        raise AuthenticationError("Invalid cron secret")
