from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class ClientSettings(BaseSettings):
    """Device-side settings for the token registration manager"""
    model_config = SettingsConfigDict(env_prefix="DONOR_CLIENT_", env_file=".env", extra="ignore")

    backend_base_url: str = "http://localhost:8000"
    request_timeout: float = 10.0

    # Registration retry: retry n runs n * backoff seconds after the previous failure
    registration_max_retries: int = 3
    registration_backoff_seconds: float = 5.0

    # Local device state (last user, last token, login flag)
    cache_path: str = "~/.donor_dispatch/device.json"

    device_type: str = "android"
    app_version: str = "1.0.0"


@lru_cache()
def get_client_settings() -> ClientSettings:
    return ClientSettings()
