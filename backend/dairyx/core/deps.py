"""Request dependencies: database session and calling user"""
from typing import AsyncGenerator, Optional

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from dairyx.core.actor import Actor
from dairyx.core.errors import ForbiddenError
from dairyx.db.session import SessionLocal
from dairyx.models.catalog import User


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Database session for one request
    """
    async with SessionLocal() as session:
        yield session


async def get_actor(
    x_user_id: Optional[int] = Header(None, alias="X-User-Id"),
    db: AsyncSession = Depends(get_db),
) -> Actor:
    """
    Caller identity. Tokens are issued and checked upstream; this layer
    only trusts the user id the gateway forwards.
    """
    if x_user_id is None:
        raise ForbiddenError("Missing X-User-Id header")
    user = await db.get(User, x_user_id)
    if not user or not user.is_active:
        raise ForbiddenError("Unknown or inactive user")
    return Actor(user_id=user.id, role=user.role)
