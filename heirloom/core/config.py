"""Application configuration."""
from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # ==========================================================================
    # Server
    # ==========================================================================

    HOST: str = "0.0.0.0"
    PORT: int = 8080
    DEBUG: bool = False

    # Emit JSON log lines instead of the human-readable format
    LOG_JSON: bool = False

    # API
    API_V1_PREFIX: str = "/api/v1"
    PROJECT_NAME: str = "Heirloom Deployment API"

    # CORS
    CORS_ORIGINS: list[str] = ["*"]

    METRICS_ENABLED: bool = True

    # ==========================================================================
    # Database
    # ==========================================================================

    # Backend type: "sqlite" (embedded) or "postgres"
    DB_TYPE: str = "sqlite"

    SQLITE_PATH: str = "heirloom.db"

    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "heirloom"
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_SSLMODE: str = "disable"

    # ==========================================================================
    # Ledger
    # ==========================================================================

    # Inactive versions kept per application/environment/region (0 disables pruning)
    MAX_VERSIONS: int = 10

    # Attempts for a release that loses the race on the active-row index
    RELEASE_RETRY_ATTEMPTS: int = 3

    DEFAULT_PAGE_SIZE: int = 10

    # Report rollback failures with their own status code instead of 500
    ROLLBACK_PRECISE_STATUS_CODES: bool = False

    @property
    def database_url(self) -> str:
        """Construct the SQLAlchemy async connection URL."""
        if self.DB_TYPE in ("postgres", "postgresql"):
            return (
                f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
                f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
            )
        if self.DB_TYPE in ("sqlite", "sqlite3"):
            return f"sqlite+aiosqlite:///{Path(self.SQLITE_PATH).expanduser().resolve()}"
        raise ValueError(f"Unsupported database type: {self.DB_TYPE}")

    @property
    def database_connect_args(self) -> dict:
        """Driver-specific connection arguments."""
        if self.DB_TYPE in ("postgres", "postgresql") and self.POSTGRES_SSLMODE != "disable":
            return {"ssl": self.POSTGRES_SSLMODE}
        return {}

    @property
    def cors_allows_credentials(self) -> bool:
        """Only allow credentials if CORS is not wildcard."""
        return "*" not in self.CORS_ORIGINS

    class Config:
        env_file = ".env"
        case_sensitive = True
