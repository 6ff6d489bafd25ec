"""
Schema bootstrap
- creates every table from the model metadata
- seeds a manager account so a fresh install can be used at once
"""
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from dairyx.db.base import Base
from dairyx.db import session as db_session
from dairyx.core.states import UserRole
import dairyx.models  # noqa: F401  registers all tables on Base.metadata
from dairyx.models.catalog import User

logger = logging.getLogger(__name__)


async def ensure_tables_exist(bind: Optional[AsyncEngine] = None):
    """Create missing tables (existing ones are left untouched)"""
    target = bind or db_session.engine
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ready")


async def ensure_default_manager(db: AsyncSession, username: str = "admin") -> User:
    """Seed the first manager account if there is no manager yet"""
    result = await db.execute(select(User).where(User.role == UserRole.MANAGER).limit(1))
    manager = result.scalar_one_or_none()
    if manager:
        return manager

    manager = User(username=username, full_name="Default manager", role=UserRole.MANAGER, is_active=True)
    db.add(manager)
    await db.commit()
    logger.info(f"Created default manager '{username}' (id={manager.id})")
    return manager
