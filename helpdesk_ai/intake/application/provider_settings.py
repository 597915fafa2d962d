"""
Provider Settings
=================

The AI on/off switch plus provider and model names, resolved through an
explicitly passed cache with an injected clock.

Within the TTL repeated reads are free; after expiry the loader runs
again. A loader failure keeps serving the last good value.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from helpdesk_ai.config import LLMProvider, Settings
from helpdesk_ai.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ProviderSettings:
    """Resolved model-provider configuration."""
    enabled: bool
    provider: str
    api_key: Optional[str] = None
    model: str = "gpt-4o-mini"
    embedding_model: str = "text-embedding-3-small"
    base_url: Optional[str] = None

    @property
    def usable(self) -> bool:
        """Enabled and either the mock provider or a provider with a key."""
        if not self.enabled:
            return False
        return self.provider == LLMProvider.MOCK or bool(self.api_key)

    @classmethod
    def disabled(cls) -> "ProviderSettings":
        return cls(enabled=False, provider=LLMProvider.MOCK)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ProviderSettings":
        """Environment-only settings."""
        provider = LLMProvider.MOCK if settings.mock_llm else settings.llm_provider
        api_key = {
            LLMProvider.OPENAI: settings.openai_api_key,
            LLMProvider.ZAI: settings.zai_api_key,
        }.get(provider)
        return cls(
            enabled=settings.ai_enabled,
            provider=provider,
            api_key=api_key,
            model=settings.llm_model,
            embedding_model=settings.embedding_model,
            base_url=settings.openai_base_url if provider == LLMProvider.OPENAI else None,
        )


ProviderSettingsLoader = Callable[[], Awaitable[ProviderSettings]]


def env_settings_loader(settings: Settings) -> ProviderSettingsLoader:
    """Loader that always answers from environment Settings."""
    async def load() -> ProviderSettings:
        return ProviderSettings.from_settings(settings)
    return load


class ProviderSettingsCache:
    """
    TTL cache around a provider-settings loader.

    Args:
        loader: Coroutine factory returning fresh settings
        ttl_seconds: How long a loaded value is reused
        clock: Monotonic clock in seconds, injectable for tests
    """

    def __init__(
        self,
        loader: ProviderSettingsLoader,
        ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._loader = loader
        self._ttl = ttl_seconds
        self._clock = clock
        self._value: Optional[ProviderSettings] = None
        self._expires_at = 0.0
        self._lock = asyncio.Lock()

    async def get(self) -> ProviderSettings:
        if self._value is not None and self._clock() < self._expires_at:
            return self._value

        async with self._lock:
            if self._value is not None and self._clock() < self._expires_at:
                return self._value
            try:
                self._value = await self._loader()
            except Exception as e:
                if self._value is None:
                    logger.error("Provider settings unavailable, disabling AI", extra={"error": str(e)})
                    return ProviderSettings.disabled()
                logger.warning("Provider settings refresh failed, keeping last value", extra={"error": str(e)})
            self._expires_at = self._clock() + self._ttl
            return self._value

    def invalidate(self) -> None:
        """Force the next read to reload."""
        self._expires_at = 0.0
