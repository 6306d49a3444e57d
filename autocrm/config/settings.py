"""
config/settings.py
──────────────────
Centralised configuration loaded from .env via Pydantic-Settings.
All agents and tools import `settings` from here, never raw os.environ.
"""
from __future__ import annotations

from typing import List

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Hosted backend (Supabase) ─────────────────────────────────────────────
    supabase_url: str = Field(default="")
    supabase_service_key: str = Field(default="")

    # ── LLM ───────────────────────────────────────────────────────────────────
    llm_provider: str = Field(default="openai", pattern="^(openai|ollama)$")
    openai_api_key: str = Field(default="")
    openai_model: str = Field(default="gpt-4o-mini", min_length=1)
    ollama_base_url: str = Field(default="http://localhost:11434")
    ollama_model: str = Field(default="llama3.1", min_length=1)

    # ── Assistant loop ────────────────────────────────────────────────────────
    max_agent_steps: int = Field(default=25, ge=4, le=200)
    tool_timeout_seconds: int = Field(default=60, ge=5, le=300)
    max_tool_output_chars: int = Field(default=4000, ge=200)

    # ── Intake / support ──────────────────────────────────────────────────────
    handoff_sentiment_threshold: float = Field(default=0.3, ge=0.0, le=1.0)

    # ── HTTP ──────────────────────────────────────────────────────────────────
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000, ge=1, le=65535)
    cors_allow_origins: List[str] = Field(default=["http://localhost:8080"])

    # ── Local run journal ─────────────────────────────────────────────────────
    sqlite_db_path: str = Field(default="autocrm_runs.db")

    # ── System ────────────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_file: str = Field(default="")

    # ── LangSmith ─────────────────────────────────────────────────────────────
    langchain_tracing_v2: bool = Field(default=False)
    langchain_api_key: str = Field(default="")
    langchain_project: str = Field(default="autocrm")

    @property
    def backend_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_key)

    @model_validator(mode="after")
    def warn_on_missing_credentials(self) -> "Settings":
        """Missing backend or model credentials only warn; the CLI health command still works."""
        import warnings

        if not self.backend_configured:
            warnings.warn(
                "Supabase URL or service key is missing. Company lookups and order creation will fail.",
                RuntimeWarning,
                stacklevel=2,
            )

        if self.llm_provider == "openai" and not self.openai_api_key:
            warnings.warn(
                "OPENAI_API_KEY is missing. The assistant cannot reach the language model.",
                RuntimeWarning,
                stacklevel=2,
            )

        return self


# Singleton: import this everywhere
settings = Settings()
