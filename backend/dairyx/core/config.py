from decimal import Decimal
from typing import List, Union
import logging

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    PROJECT_NAME: str = "DairyX Distribution"
    API_V1_STR: str = "/api/v1"

    # CORS
    BACKEND_CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",")]
        elif isinstance(v, (list, str)):
            return v
        raise ValueError(v)

    # Database (async driver is required)
    DATABASE_URI: str = "sqlite+aiosqlite:///./dairyx.db"
    SQL_ECHO: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"
    LOG_TO_FILE: bool = True

    # Business rules
    DEFAULT_TRUCK_ALLOWANCE_LIMIT: Decimal = Field(
        default=Decimal("4000.00"),
        description="Per-truck allowance ceiling applied to new trucks"
    )
    DISCREPANCY_TOLERANCE: Decimal = Field(
        default=Decimal("0.01"),
        description="Allowed gap between expected and declared truck returns"
    )

    class Config:
        case_sensitive = True
        env_file = ".env"


settings = Settings()
logger.info(f"Loaded settings: API_V1_STR={settings.API_V1_STR}, DATABASE_URI={settings.DATABASE_URI}")
