from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Required: mongodb://... in deployments, memory:// for a throwaway store
    DATABASE_URL: str
    DATABASE_NAME: str = "ecommerce"

    JWT_SECRET: str = "devsecret"
    JWT_REFRESH_SECRET: str = "devrefreshsecret"
    ACCESS_TOKEN_MINUTES: int = 60
    REFRESH_TOKEN_DAYS: int = 7

    UPLOAD_DIR: str = "uploads"

    # Bootstrap admin, created at startup if missing
    ADMIN_EMAIL: Optional[str] = None
    ADMIN_PASSWORD: Optional[str] = None

    LOG_LEVEL: str = "INFO"
    PORT: int = 10000


@lru_cache
def get_settings() -> Settings:
    return Settings()
