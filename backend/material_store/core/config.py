import os
from typing import List
from pydantic_settings import BaseSettings

DEFAULT_SECRET = "secret"

class Settings(BaseSettings):
    PROJECT_NAME: str = "Toko Material Pesantren"
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    LOG_LEVEL: str = "INFO"

    SECRET_KEY: str = os.getenv("SECRET_KEY", DEFAULT_SECRET)
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7
    REFRESH_TOKEN_EXPIRE_DAYS: int = 30

    DATABASE_URL: str = os.getenv("DATABASE_URL", "")
    TIMEZONE: str = "Asia/Jakarta"

    DEFAULT_PAGE_SIZE: int = 10
    MAX_PAGE_SIZE: int = 100

    UPLOAD_DIR: str = "uploads"
    MAX_UPLOAD_SIZE: int = 5 * 1024 * 1024
    ALLOWED_IMAGE_TYPES: List[str] = ["image/jpeg", "image/png", "image/webp"]

    CORS_ORIGINS: List[str] = ["*"]

    class Config:
        env_file = ".env"

settings = Settings()


def validate_settings(s: Settings = settings) -> List[str]:
    """Return the list of configuration problems; raise in production."""
    problems = []
    if not s.DATABASE_URL:
        problems.append("DATABASE_URL is not set")
    if s.SECRET_KEY == DEFAULT_SECRET:
        problems.append("SECRET_KEY is using the default value")
    if problems and s.ENVIRONMENT == "production":
        raise RuntimeError("Invalid configuration: " + "; ".join(problems))
    return problems
