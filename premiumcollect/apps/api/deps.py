from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncGenerator, Coroutine

from fastapi import Depends, HTTPException, Request, status
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from premiumcollect.core.config import get_settings
from premiumcollect.core.timeutils import ensure_utc, utc_now
from premiumcollect.domain.models import User
from premiumcollect.persistence.db import SessionLocal, get_session
from premiumcollect.persistence.repos import api_keys as api_keys_repo
from premiumcollect.services.auth.api_keys import (
    Scope,
    has_api_key_prefix,
    hash_api_key,
    parse_scopes,
    scope_allows,
)
from premiumcollect.services.auth.sessions import SessionTokenError, decode_session_token


logger = logging.getLogger(__name__)

_background_tasks: set[asyncio.Task[Any]] = set()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


class CaptivePrincipal(BaseModel):
    # Identity resolved from a tenant API key; every captive query is scoped by it.
    api_key_id: str
    key_name: str
    scopes: frozenset[Scope]
    cell_captive_id: str
    cell_captive_name: str
    cell_captive_code: str


class StaffPrincipal(BaseModel):
    user_id: str
    email: str
    role: str
    first_name: str | None = None
    last_name: str | None = None


def _api_key_error(code: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": code, "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def _auth_error(message: str) -> HTTPException:
    # Normalize staff auth errors for clients without leaking internal details.
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "AUTH_UNAUTHORIZED", "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def _forbidden_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={"code": "AUTH_FORBIDDEN", "message": message},
    )


def _parse_bearer_token(header_value: str | None) -> str | None:
    if not header_value:
        return None
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]


def spawn_background(coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
    # Keep a strong reference so the task is not collected mid-flight.
    task = asyncio.create_task(coro)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


async def drain_background_tasks() -> None:
    if _background_tasks:
        await asyncio.gather(*list(_background_tasks), return_exceptions=True)


async def _touch_last_used(api_key_id: str) -> None:
    # Update last_used_at asynchronously without affecting request transactions.
    async with SessionLocal() as session:
        try:
            await api_keys_repo.touch_last_used(session, api_key_id, utc_now())
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.warning("api_key_touch_failed api_key_id=%s", api_key_id, exc_info=exc)


async def get_current_captive(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> CaptivePrincipal:
    token = _parse_bearer_token(request.headers.get("Authorization"))
    if not token:
        raise _api_key_error("MISSING_API_KEY", "API key is required")
    # Reject malformed tokens before touching the database.
    if not has_api_key_prefix(token):
        raise _api_key_error("INVALID_API_KEY_FORMAT", "Invalid API key format")

    row = await api_keys_repo.get_key_with_captive(db, hash_api_key(token))
    if row is None:
        logger.info("api_key_rejected reason=unknown path=%s", request.url.path)
        raise _api_key_error("INVALID_API_KEY", "Invalid API key")
    api_key, captive = row
    if not api_key.is_active:
        raise _api_key_error("API_KEY_REVOKED", "API key has been revoked")
    if not captive.is_active:
        raise _api_key_error("CAPTIVE_INACTIVE", "Cell captive is inactive")
    expires_at = ensure_utc(api_key.expires_at)
    if expires_at is not None and expires_at <= utc_now():
        raise _api_key_error("API_KEY_EXPIRED", "API key has expired")

    if get_settings().api_key_touch_last_used:
        spawn_background(_touch_last_used(api_key.id))
    principal = CaptivePrincipal(
        api_key_id=api_key.id,
        key_name=api_key.key_name,
        scopes=parse_scopes(api_key.permissions),
        cell_captive_id=captive.id,
        cell_captive_name=captive.name,
        cell_captive_code=captive.code,
    )
    request.state.captive_id = captive.id
    return principal


def require_permission(scope: Scope):
    # Dependency factory enforcing API key scopes at the route level.
    async def _dependency(captive: CaptivePrincipal = Depends(get_current_captive)) -> CaptivePrincipal:
        if not scope_allows(captive.scopes, scope):
            logger.info(
                "api_key_forbidden api_key_id=%s required=%s",
                captive.api_key_id,
                scope.value,
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "code": "INSUFFICIENT_PERMISSIONS",
                    "message": "API key lacks the required permission",
                    "required": scope.value,
                },
            )
        return captive

    return _dependency


async def authenticate_staff_token(db: AsyncSession, token: str) -> StaffPrincipal:
    """Resolve a staff session token to an active user; shared by HTTP and WebSocket auth."""
    claims = decode_session_token(token)
    user = await db.get(User, str(claims["sub"]))
    if user is None or not user.is_active:
        raise SessionTokenError("Staff user not found or inactive")
    # Role comes from the user row so demotions take effect before token expiry.
    return StaffPrincipal(
        user_id=user.id,
        email=user.email,
        role=user.role,
        first_name=user.first_name,
        last_name=user.last_name,
    )


async def get_current_staff(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> StaffPrincipal:
    token = _parse_bearer_token(request.headers.get("Authorization"))
    if not token:
        raise _auth_error("Missing or invalid bearer token")
    try:
        return await authenticate_staff_token(db, token)
    except SessionTokenError as exc:
        raise _auth_error(str(exc)) from exc


def require_staff_role(*roles: str):
    allowed = set(roles)

    async def _dependency(staff: StaffPrincipal = Depends(get_current_staff)) -> StaffPrincipal:
        if staff.role not in allowed:
            raise _forbidden_error("Insufficient role for this operation")
        return staff

    return _dependency
