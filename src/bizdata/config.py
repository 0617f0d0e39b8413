"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Placeholder signing secret; running with it is a deployment misconfiguration.
DEFAULT_JWT_SECRET = "change-me-insecure-default-secret"


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    database_url: str = Field("sqlite:///bizdata.db")
    api_title: str = Field("Business Data API")
    environment: str = Field("development")
    log_level: str = Field("INFO")
    jwt_secret: str = Field(DEFAULT_JWT_SECRET)
    jwt_algorithm: str = Field("HS256")
    session_expire_days: int = Field(7, ge=1)
    auth_cookie_name: str = Field("auth-token")
    min_password_length: int = Field(6, ge=1)

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() == "production"

    @property
    def uses_default_secret(self) -> bool:
        return not self.jwt_secret or self.jwt_secret == DEFAULT_JWT_SECRET


@lru_cache
def get_settings() -> Settings:
    return Settings()
