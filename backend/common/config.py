from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # Shared
    APP_ENV: str = "dev"
    APP_PORT: int = 8000
    APP_URL: str = "http://localhost:8000"
    DATABASE_URL: str
    REDIS_URL: Optional[str] = None
    APP_AUTH_BEARER_TOKENS: str  # Comma-separated
    APP_AUTH_TOKEN_USER_MAP: Optional[str] = None  # token:user_id pairs, comma-separated
    APP_AUTH_USER_NAMES: Optional[str] = None  # user_id:display name pairs, comma-separated

    # Provider
    LLM_PROVIDER: str = "openai"
    LLM_API_KEY: str
    LLM_API_BASE_URL: str = "https://api.openai.com/v1"
    LLM_TIMEOUT_SECONDS: int = 30
    LLM_MAX_RETRIES: int = 2
    LLM_RETRY_BACKOFF_SECONDS: float = 1.0
    LLM_MODEL_EXTRACT: str = "gpt-4.1-mini"
    LLM_MODEL_EXTRACT_PRO: str = "gpt-4.1"
    LLM_MODEL_DATE: str = "gpt-4.1-mini"
    LLM_MODEL_REMINDER: str = "gpt-4.1-mini"
    LLM_EXTRACT_TEMPERATURE: float = 0.2
    LLM_EXTRACT_MAX_TOKENS: int = 500

    # Conversation extraction
    CONVERSATION_TTL_SECONDS: int = 60 * 60 * 24
    EXTRACT_LOOP_THRESHOLD: int = 3
    EXTRACT_WORKSPACE_CONTEXT_LIMIT: int = 10

    # Workspaces
    WORKSPACE_LIMIT_FREE: int = 3
    WORKSPACE_LIMIT_PRO: int = 5

    # Reminders and email
    EMAIL_API_BASE: str = "https://api.resend.com"
    EMAIL_API_KEY: Optional[str] = None
    EMAIL_FROM: str = "agenda <reminders@agenda.dev>"
    REMINDER_CHECK_INTERVAL_SECONDS: int = 60

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def auth_tokens(self) -> List[str]:
        return [t.strip() for t in self.APP_AUTH_BEARER_TOKENS.split(",") if t.strip()]

    @property
    def token_user_map(self) -> dict:
        return self._parse_pairs(self.APP_AUTH_TOKEN_USER_MAP)

    @property
    def user_name_map(self) -> dict:
        return self._parse_pairs(self.APP_AUTH_USER_NAMES)

    @staticmethod
    def _parse_pairs(raw: Optional[str]) -> dict:
        if not raw:
            return {}
        mapping = {}
        for pair in raw.split(","):
            pair = pair.strip()
            if not pair or ":" not in pair:
                continue
            key, value = pair.split(":", 1)
            key = key.strip()
            value = value.strip()
            if key and value:
                mapping[key] = value
        return mapping

settings = Settings()
