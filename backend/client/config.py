from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class ClientSettings(BaseSettings):
    AGENDA_API_BASE: str = "http://localhost:8000"
    AGENDA_API_TOKEN: Optional[str] = None
    AGENDA_CLIENT_TIMEOUT_SECONDS: float = 15.0
    CLIENT_SYNC_INTERVAL_SECONDS: int = 300
    CLIENT_DRAG_DEBOUNCE_SECONDS: float = 0.35

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


client_settings = ClientSettings()
