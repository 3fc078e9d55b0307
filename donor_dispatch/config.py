from pydantic_settings import BaseSettings
from functools import lru_cache
import secrets
import os


class Settings(BaseSettings):
    # App
    app_name: str = "DonorDispatch"
    debug: bool = False
    environment: str = "development"  # development, staging, production, testing
    log_level: str = "INFO"

    # Database - can be overridden with DATABASE_URL env var
    # Note: SQLite absolute paths need 4 slashes (sqlite:////path)
    database_url: str = (
        "sqlite+aiosqlite:///:memory:"
        if os.environ.get("TESTING") == "1"
        else (
            "sqlite+aiosqlite:////data/donor_dispatch.db"
            if os.path.exists("/data")
            else "sqlite+aiosqlite:///./donor_dispatch.db"
        )
    )

    # JWT bearer verification for the notification inbox
    # IMPORTANT: Set SECRET_KEY env var in production, tokens are issued elsewhere
    secret_key: str = secrets.token_urlsafe(32)
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24 * 7  # 7 days

    # Firebase Cloud Messaging
    # Either the full service account JSON (newlines in private_key may be escaped)
    # or a path to the service account file
    firebase_service_account_json: str = ""
    firebase_credentials_path: str = ""

    # Push dispatch
    push_max_concurrent_batches: int = 4
    prune_stale_tokens: bool = True
    notification_channel_id: str = "blood_requests"

    class Config:
        env_file = ".env"

    def is_production(self) -> bool:
        return self.environment == "production"

    def firebase_configured(self) -> bool:
        return bool(self.firebase_service_account_json or self.firebase_credentials_path)


@lru_cache()
def get_settings() -> Settings:
    return Settings()
