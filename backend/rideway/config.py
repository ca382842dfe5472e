import logging
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_SECRET_KEY = "change-me-in-production"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Rideway"
    debug: bool = False
    secret_key: str = Field(default=DEFAULT_SECRET_KEY)

    # CORS
    cors_origins: list[str] = Field(default=["http://localhost:3000"])

    # Backend API (auth, users, presence bulk query)
    api_url: str = Field(default="http://localhost:8000/api/v1")
    api_timeout: float = Field(default=30.0)

    # Session lifecycle
    access_token_lease_minutes: int = Field(default=15)
    login_timeout: float = Field(default=10.0)
    refresh_timeout: float = Field(default=10.0)

    # BFF session cookie
    session_cookie_name: str = Field(default="rideway_session")
    session_max_age: int = Field(default=7 * 24 * 60 * 60)  # 7 days
    session_cookie_secure: bool = Field(default=False)

    # Presence
    watch_list_limit: int = Field(default=100)

    def validate_security(self) -> None:
        if self.secret_key == DEFAULT_SECRET_KEY and not self.debug:
            raise RuntimeError(
                "SECRET_KEY is still the default value. "
                "Set a secure SECRET_KEY or enable DEBUG mode for development."
            )

        if self.access_token_lease_minutes <= 0:
            raise RuntimeError("ACCESS_TOKEN_LEASE_MINUTES must be a positive number of minutes.")

        if self.login_timeout <= 0 or self.refresh_timeout <= 0:
            raise RuntimeError("LOGIN_TIMEOUT and REFRESH_TIMEOUT must be positive.")

    def get_cookie_mode(self) -> str:
        if self.debug and self.secret_key == DEFAULT_SECRET_KEY:
            return "dev"
        if self.session_cookie_secure:
            return "secure"
        return "insecure"


@lru_cache
def get_settings() -> Settings:
    return Settings()
