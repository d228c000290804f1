from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False
    )

    # Database
    database_url: str = "sqlite+aiosqlite:///./artfinance.db"

    # Email
    email_mode: str = "dev"  # dev | prod
    sendgrid_api_key: Optional[str] = None
    sender_email: str = "noreply@artfinancehub.app"
    sender_name: str = "Art Finance Hub"

    # Auth
    secret_key: str = "dev-secret-key-change-me"
    token_ttl_hours: int = 24
    custom_token_ttl_minutes: int = 60
    session_ttl_days: int = 30
    session_cookie_secure: bool = False

    # Comma-separated origins a continueUrl may point to. Empty accepts any http(s) URL.
    allowed_continue_origins: str = ""

    # Callers presenting this key in X-Diagnostics-Key get the raw token back
    diagnostics_api_key: Optional[str] = None

    # Expiry reaper
    cleanup_batch_size: int = 450  # Stays under a 500-operation batch limit
    cleanup_interval_hours: int = 24  # 0 disables the in-process schedule

    # App
    allowed_origins: str = ""
    debug: bool = False

    def continue_origins(self) -> list[str]:
        """Parsed allow-list of continueUrl origins."""
        return [
            origin.strip().rstrip("/")
            for origin in self.allowed_continue_origins.split(",")
            if origin.strip()
        ]


settings = Settings()
