"""Application configuration using pydantic-settings."""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Database
    # ======================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/metaswap.db",
        description="Database connection URL (holds balances and consumed digests)",
    )

    # ======================
    # API
    # ======================
    api_host: str = Field(default="0.0.0.0", description="API server host")
    api_port: int = Field(default=8000, description="API server port")

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=True, description="Enable debug mode")

    # ======================
    # Swap protocol
    # ======================
    swap_domain: Optional[str] = Field(
        default=None,
        description="Optional address prefixed to every digest as a domain separator",
    )
    allow_mint: Optional[bool] = Field(
        default=None,
        description="Expose the development mint endpoint (defaults to debug outside production)",
    )

    @field_validator("swap_domain")
    @classmethod
    def validate_swap_domain(cls, v: Optional[str]) -> Optional[str]:
        """Normalize the domain separator to a checksum address."""
        if v is None or not v.strip():
            return None
        from metaswap.terms import normalize_address

        return normalize_address(v.strip())

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def mint_enabled(self) -> bool:
        """Check if the mint endpoint may be served."""
        if self.allow_mint is not None:
            return self.allow_mint
        return self.debug and not self.is_production

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "api_host": self.api_host,
            "api_port": self.api_port,
            "database_url": self._redact_url(self.database_url),
            "swap_domain": self.swap_domain or "(none)",
            "mint_enabled": self.mint_enabled,
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact sensitive parts of database URL."""
        if "://" in url and "@" in url:
            proto, rest = url.split("://", 1)
            if "@" in rest:
                creds, host = rest.rsplit("@", 1)
                if ":" in creds:
                    user, _ = creds.split(":", 1)
                    return f"{proto}://{user}:***@{host}"
        return url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
