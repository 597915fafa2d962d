"""Unit tests for provider settings resolution and its TTL cache."""

import pytest

from helpdesk_ai.config import Settings
from helpdesk_ai.intake.application.provider_settings import (
    ProviderSettings, ProviderSettingsCache, env_settings_loader,
)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class CountingLoader:
    def __init__(self, *results):
        self.results = list(results)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


OPENAI = ProviderSettings(enabled=True, provider="openai", api_key="sk-test")
ZAI = ProviderSettings(enabled=True, provider="zai", api_key="zai-test")


@pytest.mark.unit
class TestProviderSettings:

    def test_usable(self):
        assert OPENAI.usable
        assert ProviderSettings(enabled=True, provider="mock").usable
        assert not ProviderSettings(enabled=True, provider="openai").usable
        assert not ProviderSettings(enabled=False, provider="openai", api_key="sk").usable
        assert not ProviderSettings.disabled().usable

    def test_from_settings_picks_provider_key(self):
        settings = Settings(llm_provider="zai", zai_api_key="zai-key", openai_api_key="sk-key", mock_llm=False)

        resolved = ProviderSettings.from_settings(settings)

        assert resolved.provider == "zai"
        assert resolved.api_key == "zai-key"
        assert resolved.base_url is None

    def test_mock_flag_overrides_provider(self):
        settings = Settings(llm_provider="openai", mock_llm=True)

        assert ProviderSettings.from_settings(settings).provider == "mock"


@pytest.mark.unit
@pytest.mark.asyncio
class TestProviderSettingsCache:

    async def test_value_is_reused_within_ttl(self):
        clock = FakeClock()
        loader = CountingLoader(OPENAI, ZAI)
        cache = ProviderSettingsCache(loader, ttl_seconds=60, clock=clock)

        assert await cache.get() == OPENAI
        clock.now = 59
        assert await cache.get() == OPENAI
        assert loader.calls == 1

        clock.now = 61
        assert await cache.get() == ZAI
        assert loader.calls == 2

    async def test_first_failure_disables_ai(self):
        cache = ProviderSettingsCache(CountingLoader(RuntimeError("db down")), clock=FakeClock())

        settings = await cache.get()

        assert not settings.enabled
        assert not settings.usable

    async def test_refresh_failure_keeps_last_value(self):
        clock = FakeClock()
        cache = ProviderSettingsCache(CountingLoader(OPENAI, RuntimeError("db down")), ttl_seconds=10, clock=clock)
        await cache.get()

        clock.now = 11

        assert await cache.get() == OPENAI

    async def test_invalidate_forces_reload(self):
        loader = CountingLoader(OPENAI, ZAI)
        cache = ProviderSettingsCache(loader, ttl_seconds=600, clock=FakeClock())
        await cache.get()

        cache.invalidate()

        assert await cache.get() == ZAI

    async def test_env_loader(self):
        loader = env_settings_loader(Settings(ai_enabled=False, mock_llm=True))

        assert (await loader()).enabled is False
