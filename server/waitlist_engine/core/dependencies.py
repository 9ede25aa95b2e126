"""FastAPI dependencies for database sessions, authentication and collaborators."""

import hmac
from dataclasses import dataclass
from typing import AsyncGenerator, Optional

import jwt
from fastapi import Depends, Header
from jwt import PyJWTError
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.waitlist import ActorRole
from ..services.booking_gateway import BookingGateway, build_booking_gateway
from ..services.notifier import NotificationDispatcher, build_notifier
from ..services.waitlist_service import WaitlistService
from .clock import Clock, utcnow
from .config import settings
from .database import get_async_session
from .exceptions import AuthenticationError, ForbiddenError


@dataclass(frozen=True)
class Actor:
    """The authenticated caller."""
    user_id: str
    role: ActorRole = ActorRole.CLIENT

    @property
    def is_admin(self) -> bool:
        return self.role == ActorRole.ADMIN


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Database dependency that provides async database sessions.

    Yields:
        AsyncSession: Database session
    """
    async for session in get_async_session():
        yield session


def _bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise AuthenticationError(detail="Authorization header missing")
    try:
        scheme, token = authorization.split()
    except ValueError:
        raise AuthenticationError(detail="Invalid authorization header format")
    if scheme.lower() != "bearer":
        raise AuthenticationError(detail="Invalid authentication scheme")
    return token


def _role_from_claims(payload: dict) -> ActorRole:
    """Highest-privilege role named by the ``role`` claim or the ``roles`` list."""
    claimed = []
    if payload.get("role"):
        claimed.append(payload["role"])
    claimed.extend(payload.get("roles") or [])

    roles = set()
    for value in claimed:
        try:
            roles.add(ActorRole(str(value).lower()))
        except ValueError:
            continue

    for role in (ActorRole.ADMIN, ActorRole.EMPLOYEE):
        if role in roles:
            return role
    return ActorRole.CLIENT


def _decode_actor(token: str) -> Actor:
    try:
        payload = jwt.decode(token, settings.bearer_token_secret, algorithms=["HS256"])
    except PyJWTError as e:
        raise AuthenticationError(detail=f"Token validation failed: {e!s}")

    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError(detail="Invalid token payload")
    return Actor(user_id=str(user_id), role=_role_from_claims(payload))


async def get_current_user(
    authorization: Optional[str] = Header(None, alias="Authorization")
) -> Actor:
    """
    Authentication dependency that validates HS256 bearer tokens.

    Raises:
        AuthenticationError: If the token is missing, malformed, expired or
            has no subject
    """
    return _decode_actor(_bearer_token(authorization))


async def require_admin(actor: Actor = Depends(get_current_user)) -> Actor:
    if not actor.is_admin:
        raise ForbiddenError(detail="This operation requires the admin role")
    return actor


async def require_staff(actor: Actor = Depends(get_current_user)) -> Actor:
    if actor.role not in (ActorRole.ADMIN, ActorRole.EMPLOYEE):
        raise ForbiddenError(detail="This operation requires the admin or employee role")
    return actor


async def verify_sweep_caller(
    authorization: Optional[str] = Header(None, alias="Authorization")
) -> str:
    """
    Accept the scheduler's shared cron secret or an admin JWT.

    Returns:
        "cron" or the admin's user id, for logging
    """
    token = _bearer_token(authorization)
    if settings.cron_secret and hmac.compare_digest(token, settings.cron_secret):
        return "cron"

    actor = _decode_actor(token)
    if not actor.is_admin:
        raise ForbiddenError(detail="Sweeps may only be triggered by the scheduler or an admin")
    return actor.user_id


def get_clock() -> Clock:
    return utcnow


def get_dispatcher() -> NotificationDispatcher:
    return NotificationDispatcher(build_notifier())


def get_booking_gateway() -> BookingGateway:
    return build_booking_gateway()


async def get_waitlist_service(
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    booking_gateway: BookingGateway = Depends(get_booking_gateway),
    clock: Clock = Depends(get_clock),
) -> WaitlistService:
    return WaitlistService(db, dispatcher=dispatcher, booking_gateway=booking_gateway, clock=clock)


CurrentUser = Depends(get_current_user)
DatabaseSession = Depends(get_db)
