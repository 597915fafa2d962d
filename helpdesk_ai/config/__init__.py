"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache
from pathlib import Path
from typing import List, Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="helpdesk-intake", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/helpdesk",
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== LLM Provider ==========
    ai_enabled: bool = Field(default=True, description="Master switch for model calls")
    llm_provider: str = Field(default="openai", description="openai, zai or mock")
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API key")
    openai_base_url: Optional[str] = Field(
        default=None,
        description="Override for OpenAI-compatible endpoints (e.g. Groq)"
    )
    zai_api_key: Optional[str] = Field(default=None, description="Z.AI API key for GLM models")
    mock_llm: bool = Field(
        default=False,
        description="Use mock LLM responses for testing (no API calls)"
    )
    llm_model: str = Field(
        default="gpt-4o-mini",
        description="Chat model for classification, drafting and relevance checks"
    )
    embedding_model: str = Field(
        default="text-embedding-3-small",
        description="Embedding model for knowledge base and ticket retrieval"
    )
    provider_settings_ttl_seconds: float = Field(
        default=60.0,
        description="How long resolved provider settings are reused",
        ge=0
    )

    # ========== Timeouts (seconds) ==========
    llm_timeout_seconds: float = Field(default=30.0, ge=0.1, le=300)
    embedding_timeout_seconds: float = Field(default=10.0, ge=0.1, le=120)
    storage_timeout_seconds: float = Field(default=5.0, ge=0.1, le=60)

    # ========== Fast-Track Rules ==========
    fast_track_config_path: Path = Field(
        default=Path("fast_track.yaml"),
        description="Path to fast-track rules YAML file"
    )

    # ========== Sessions ==========
    session_idle_timeout_minutes: int = Field(default=30, ge=1)
    session_sweep_interval_seconds: int = Field(default=60, ge=5)

    # ========== Business Hours ==========
    business_timezone: str = Field(default="Europe/Kyiv")
    business_open_hour: int = Field(default=9, ge=0, le=23)
    business_close_hour: int = Field(default=18, ge=1, le=24)
    business_working_days: List[int] = Field(
        default=[0, 1, 2, 3, 4],
        description="Working weekdays, Monday=0"
    )
    business_holidays: List[str] = Field(
        default=[
            "01-01", "01-07", "03-08", "05-01", "05-09",
            "06-28", "08-24", "10-14", "12-25",
        ],
        description="Public holidays as MM-DD"
    )

    # ========== Retrieval Policy ==========
    kb_high_threshold: float = Field(default=0.78, ge=0.0, le=1.0)
    kb_medium_threshold: float = Field(default=0.50, ge=0.0, le=1.0)
    kb_max_candidates: int = Field(default=3, ge=1, le=10)
    similar_tickets_limit: int = Field(default=3, ge=1, le=10)
    ticket_rating_boost: float = Field(default=1.2, ge=1.0, le=3.0)

    # ========== Detector Policy ==========
    duplicate_window_minutes: int = Field(default=10, ge=1)
    outage_window_minutes: int = Field(default=10, ge=1)
    outage_min_reports: int = Field(default=3, ge=2)

    # ========== Conversation Policy ==========
    ticket_confidence_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    max_questions: int = Field(default=4, ge=1)
    max_low_confidence_attempts: int = Field(default=2, ge=1)
    light_tier_max_chars: int = Field(default=40, ge=1)
    min_extra_context_chars: int = Field(default=40, ge=1)
    max_message_chars: int = Field(default=2000, ge=100)

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production", "test"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("llm_provider")
    @classmethod
    def validate_provider(cls, v: str) -> str:
        """Ensure the provider is one we ship a client for."""
        v = v.lower()
        if v not in VALID_PROVIDERS:
            raise ValueError(f"llm_provider must be one of {VALID_PROVIDERS}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# ========== Constants ==========

class Priority(str):
    """Ticket priority levels."""
    URGENT = "urgent"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class RequestType(str):
    """Classifier distinction between wanting information and wanting action."""
    QUESTION = "question"
    APPEAL = "appeal"


class ContextSource(str):
    """Sources the classifier may ask to be expanded."""
    KB = "kb"
    TICKETS = "tickets"
    NONE = "none"


class TicketStatus(str):
    """Ticket lifecycle statuses."""
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


class LLMProvider(str):
    """Supported chat/embedding providers."""
    OPENAI = "openai"
    ZAI = "zai"
    MOCK = "mock"


DEFAULT_CATEGORY = "general"


# ========== Lists for validation ==========

VALID_PRIORITIES = [Priority.LOW, Priority.MEDIUM, Priority.HIGH, Priority.URGENT]
VALID_REQUEST_TYPES = [RequestType.QUESTION, RequestType.APPEAL]
VALID_CONTEXT_SOURCES = [ContextSource.KB, ContextSource.TICKETS, ContextSource.NONE]
OPEN_STATUSES = [TicketStatus.OPEN, TicketStatus.IN_PROGRESS]
RESOLVED_STATUSES = [TicketStatus.RESOLVED, TicketStatus.CLOSED]
VALID_PROVIDERS = [LLMProvider.OPENAI, LLMProvider.ZAI, LLMProvider.MOCK]
