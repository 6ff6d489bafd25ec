from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from dairyx.api.api_v1.api import api_router
from dairyx.api.exception_handlers import register_exception_handlers
from dairyx.core.config import settings
from dairyx.core.logging_config import setup_logging, get_logger
from dairyx.db.init_db import ensure_default_manager, ensure_tables_exist
from dairyx.db.session import SessionLocal

setup_logging(settings.LOG_LEVEL, log_dir=settings.LOG_DIR, to_files=settings.LOG_TO_FILE)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown"""
    logger.info("Starting DairyX backend...")

    await ensure_tables_exist()
    async with SessionLocal() as db:
        await ensure_default_manager(db)

    yield
    logger.info("Shutting down DairyX backend...")


app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    description="Dairy distribution: stock ledger, truck loads, sales and daily reconciliation",
    lifespan=lifespan
)

register_exception_handlers(app)

if settings.BACKEND_CORS_ORIGINS:
    logger.info(f"CORS origins: {settings.BACKEND_CORS_ORIGINS}")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[str(origin) for origin in settings.BACKEND_CORS_ORIGINS],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.include_router(api_router, prefix=settings.API_V1_STR)


@app.get("/")
async def root():
    return {"message": settings.PROJECT_NAME}


@app.get("/health")
async def health():
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8000, log_level="info")
