from functools import lru_cache
from typing import Any, Literal

from pydantic import AnyHttpUrl, BaseModel, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Supported AI providers (all speak the OpenAI chat completions format)
AIProviderType = Literal[
    "openai",
    "groq",
    "together",
    "deepseek",
    "qwen",
    "kimi",
    "moonshot",
    "openrouter",
]

# Supported STT providers
STTProviderType = Literal["openai", "groq"]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    app_name: str = "ledgerbot"
    log_level: str = "INFO"
    log_json: bool = False

    # Database
    database_url: str = "postgresql+asyncpg://postgres:postgres@db:5432/ledger"
    auto_run_migrations: bool = True

    # Messaging gateway (Evolution-style WhatsApp API)
    gateway_url: AnyHttpUrl | str = "http://localhost:8080"
    gateway_api_key: str | None = None
    gateway_instance: str = "default"
    gateway_timeout: float = 30.0

    # Primary AI provider
    ai_provider: AIProviderType = "openai"
    ai_api_key: str | None = None
    ai_base_url: str | None = None
    ai_model: str = "gpt-4o-mini"
    vision_model: str | None = None

    # Fallback AI provider
    ai_fallback_provider: AIProviderType | None = None
    ai_fallback_api_key: str | None = None
    ai_fallback_base_url: str | None = None
    ai_fallback_model: str | None = None

    ai_timeout: float = 30.0
    ai_debug_logging: bool = False

    # Speech-to-text
    stt_provider: STTProviderType = "openai"
    stt_api_key: str | None = None
    stt_model: str | None = None
    stt_language: str = "pt"

    # Locale
    currency_symbol: str = "R$"
    timezone: str = "America/Sao_Paulo"
    phone_country_code: str = "55"

    # Fixed text commands
    balance_commands: list[str] = ["balance", "saldo"]
    statement_commands: list[str] = ["statement", "extrato"]
    statement_limit: int = 5

    # Media
    media_download_timeout: float = 30.0
    verify_media_mac: bool = False

    # Inbound filtering and dedup
    broadcast_jid: str = "status@broadcast"
    dedup_window_seconds: int = 0

    # Category resolution
    fallback_category_marker: str = "outros"

    def __init__(self, **data: Any) -> None:
        super().__init__(**data)

    @field_validator("ai_fallback_provider", mode="before")
    @classmethod
    def normalize_fallback_provider(cls, v: str | None) -> str | None:
        """Normalize fallback provider names to lowercase, treating empty strings as None."""
        if v is None or v == "":
            return None
        return v.lower()

    @field_validator("ai_provider", mode="before")
    @classmethod
    def normalize_provider(cls, v: str | None) -> str:
        """Normalize provider names to lowercase, defaulting empty to 'openai'."""
        if v is None or v == "":
            return "openai"
        return v.lower()

    @field_validator("stt_provider", mode="before")
    @classmethod
    def normalize_stt_provider(cls, v: str | None) -> str:
        if v is None or v == "":
            return "openai"
        return v.lower()

    def get_sync_database_url(self) -> str:
        """Return a synchronous driver URL for Alembic/CLI usage."""

        if "+asyncpg" in self.database_url:
            return self.database_url.replace("+asyncpg", "+psycopg")
        return self.database_url

    def get_effective_vision_model(self) -> str:
        return self.vision_model or self.ai_model

    def get_effective_stt_model(self) -> str:
        """Get the STT model, defaulting per provider when unset."""
        if self.stt_model:
            return self.stt_model
        if self.stt_provider == "groq":
            return "whisper-large-v3"
        return "whisper-1"

    def get_effective_stt_api_key(self) -> str | None:
        """STT key, falling back to the AI key when both use the same vendor."""
        if self.stt_api_key:
            return self.stt_api_key
        if self.stt_provider == self.ai_provider:
            return self.ai_api_key
        return None


class AppConfig(BaseModel):
    version: str = "0.1.0"
    description: str = (
        "WhatsApp webhook that turns text, voice notes and receipts into ledger transactions."
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
