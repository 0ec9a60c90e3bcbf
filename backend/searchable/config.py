"""Application settings"""
from pydantic_settings import BaseSettings
from pydantic import model_validator
from typing import List


class Settings(BaseSettings):
    """Searchable backend settings"""

    # Application
    APP_NAME: str = "Searchable"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/searchable.db"

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # OpenAI (completion endpoint upstream)
    OPENAI_API_KEY: str = ""
    OPENAI_BASE_URL: str = ""
    DEFAULT_MODEL: str = "gpt-4o"
    CHAT_TEMPERATURE: float = 0.7
    CHAT_SYSTEM_PROMPT: str = (
        "You are a helpful AI assistant that provides informative and detailed "
        "responses to user questions."
    )

    # Chat session client
    COMPLETION_URL: str = "http://localhost:8000/api/v1/ai-services/chat"
    STREAM_CONNECT_TIMEOUT_SEC: float = 15.0
    STREAM_READ_TIMEOUT_SEC: float = 120.0
    PERSIST_TIMEOUT_SEC: float = 15.0
    DEFAULT_CHAT_TITLE: str = "New Chat"

    @model_validator(mode="before")
    @classmethod
    def treat_empty_env_as_unset(cls, data):
        """
        Treat empty environment values as unset.
        A blank entry in .env keeps the default instead of overriding it.
        """
        if not isinstance(data, dict):
            return data

        cleaned = dict(data)
        for field_name, field in cls.model_fields.items():
            default = field.default

            # Only fall back when the field has a usable default
            if default in (None, ""):
                continue

            keys = {field_name}
            alias = field.validation_alias
            if isinstance(alias, str):
                keys.add(alias)

            for key in keys:
                if cleaned.get(key) == "":
                    cleaned.pop(key, None)

        return cleaned

    @property
    def cors_origins_list(self) -> List[str]:
        """CORS origins as a list"""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    class Config:
        env_file = (".env", "backend/.env")
        case_sensitive = True
        extra = "ignore"


# Global settings instance
settings = Settings()
