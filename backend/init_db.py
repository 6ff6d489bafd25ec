import asyncio
import logging

from dairyx.db.init_db import ensure_default_manager, ensure_tables_exist
from dairyx.db.session import SessionLocal

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def init_db() -> None:
    """
    Create tables and the first manager account
    """
    try:
        await ensure_tables_exist()
        async with SessionLocal() as db:
            manager = await ensure_default_manager(db)
            logger.info(f"Manager account: {manager.username} (id={manager.id})")
        logger.info("Database initialised")
    except Exception as e:
        logger.error(f"Database initialisation failed: {e}")
        raise


if __name__ == "__main__":
    asyncio.run(init_db())
