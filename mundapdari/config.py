from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEV_JWT_SECRET = "dev-jwt-secret-change-me"
_DEV_JWT_REFRESH_SECRET = "dev-jwt-refresh-secret-change-me"
_DEV_ENCRYPTION_KEY = "0" * 64


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # App
    APP_NAME: str = "Mundapdari API"
    VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    API_PREFIX: str = "/api"

    # Database
    DATABASE_URL: str | None = None
    USE_POSTGRES: bool = False
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "mundapdari"
    DB_USER: str = "postgres"
    DB_PASSWORD: str = ""
    SQLITE_PATH: str = "./mundapdari.db"

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"

    # Auth / JWT
    JWT_SECRET: str = _DEV_JWT_SECRET
    JWT_REFRESH_SECRET: str = _DEV_JWT_REFRESH_SECRET
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_HOURS: int = 24
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7
    JWT_ISSUER: str = "mundapdari"
    JWT_AUDIENCE: str = "mundapdari-users"

    # Field encryption (64 hex chars = 32 bytes)
    ENCRYPTION_KEY: str = _DEV_ENCRYPTION_KEY
    PHONE_HASH_KEY: str | None = None

    # CORS
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Rate limiting
    RATE_LIMIT_DEFAULT: str = "100/15minutes"
    RATE_LIMIT_AUTH: str = "10/minute"

    # Invitations
    INVITATION_EXPIRE_HOURS: int = 24
    FRONTEND_URL: str = "http://localhost:3000"

    # Notifications
    NOTIFICATION_RETRY_ATTEMPTS: int = 3
    NOTIFICATION_RETRY_DELAY: float = 2.0
    KAKAO_API_URL: str | None = None
    KAKAO_API_KEY: str | None = None

    # Scheduler
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_TIMEZONE: str = "Asia/Seoul"

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def database_url(self) -> str:
        """Explicit DATABASE_URL wins, otherwise PostgreSQL or SQLite by flag."""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        if self.USE_POSTGRES:
            return (
                f"postgresql+asyncpg://{self.DB_USER}:{self.DB_PASSWORD}"
                f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
            )
        return f"sqlite+aiosqlite:///{self.SQLITE_PATH}"

    @model_validator(mode="after")
    def _check_production_secrets(self) -> "Settings":
        if not self.is_production:
            return self

        missing = []
        if self.JWT_SECRET == _DEV_JWT_SECRET:
            missing.append("JWT_SECRET")
        if self.JWT_REFRESH_SECRET == _DEV_JWT_REFRESH_SECRET:
            missing.append("JWT_REFRESH_SECRET")
        if self.ENCRYPTION_KEY == _DEV_ENCRYPTION_KEY:
            missing.append("ENCRYPTION_KEY")
        if self.USE_POSTGRES and not self.DATABASE_URL:
            for name in ("DB_HOST", "DB_NAME", "DB_USER", "DB_PASSWORD"):
                if not getattr(self, name):
                    missing.append(name)
        if missing:
            raise ValueError(
                f"Missing required environment variables: {', '.join(missing)}"
            )
        return self


settings = Settings()
