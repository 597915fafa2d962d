"""
Intake External Service Integrations
====================================

- Provider-backed language model and embedding adapters
- Fast-track YAML catalogue with watchdog hot reload
- Health checks
- APScheduler job that sweeps idle sessions
"""

import threading
from datetime import timedelta
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np
import yaml
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from helpdesk_ai.core import ConfigurationException, EmbeddingException
from helpdesk_ai.infrastructure.llm import ILLMClient, create_llm_client
from helpdesk_ai.intake.application.interfaces import (
    IEmbeddingProvider, IHealthCheck, ILanguageModel,
)
from helpdesk_ai.intake.application.provider_settings import ProviderSettings, ProviderSettingsCache
from helpdesk_ai.intake.application.sessions import SessionStore
from helpdesk_ai.intake.domain.entities import utc_now
from helpdesk_ai.intake.domain.value_objects import ComponentHealth, FastTrackCatalog, HealthReport
from helpdesk_ai.shared.infrastructure.logging import get_logger
from helpdesk_ai.shared.infrastructure.retry import MODEL_CALL_POLICY, call_with_retry

logger = get_logger(__name__)

HEALTHY = "healthy"
DEGRADED = "degraded"
UNHEALTHY = "unhealthy"


# ========== Model providers ==========

class ProviderClientPool:
    """
    Builds and memoizes one client per provider configuration.

    A settings change (provider, key, model or URL) yields a new client on
    the next call; unchanged settings reuse the existing one.
    """

    def __init__(self, factory: Callable[..., ILLMClient] = create_llm_client):
        self._factory = factory
        self._clients: Dict[Tuple, ILLMClient] = {}
        self._lock = threading.Lock()

    def client_for(self, settings: ProviderSettings) -> ILLMClient:
        key = (settings.provider, settings.api_key, settings.model, settings.embedding_model, settings.base_url)
        with self._lock:
            client = self._clients.get(key)
            if client is None:
                client = self._factory(
                    provider=settings.provider,
                    api_key=settings.api_key,
                    model=settings.model,
                    embedding_model=settings.embedding_model,
                    base_url=settings.base_url,
                )
                self._clients = {key: client}
                logger.info("LLM client created", extra={"provider": settings.provider, "model": settings.model})
            return client


class ProviderLanguageModel(ILanguageModel):
    """
    Language model resolved per call from the provider-settings cache.

    Each call runs under the model timeout and the model retry policy.
    """

    def __init__(self, settings_cache: ProviderSettingsCache, pool: ProviderClientPool, timeout: float):
        self._settings_cache = settings_cache
        self._pool = pool
        self._timeout = timeout

    async def is_available(self) -> bool:
        return (await self._settings_cache.get()).usable

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        temperature: float,
        json_mode: bool = False,
        operation: str = "completion"
    ) -> str:
        settings = await self._settings_cache.get()
        if not settings.usable:
            raise ConfigurationException("Language model is disabled or not configured")
        client = self._pool.client_for(settings)
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        result = await call_with_retry(
            lambda: client.chat_completion(
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                json_mode=json_mode,
                operation=operation,
            ),
            MODEL_CALL_POLICY,
            operation,
            timeout=self._timeout,
        )
        logger.debug(
            "Model call completed",
            extra={"operation": operation, "tokens": result.total_tokens, "latency_ms": result.latency_ms}
        )
        return result.content


class ProviderEmbeddingProvider(IEmbeddingProvider):
    """Embeddings from the configured provider, L2-normalized with numpy."""

    def __init__(
        self,
        settings_cache: ProviderSettingsCache,
        pool: ProviderClientPool,
        timeout: float,
        max_chars: int = 8000,
    ):
        self._settings_cache = settings_cache
        self._pool = pool
        self._timeout = timeout
        self._max_chars = max_chars

    async def is_available(self) -> bool:
        return (await self._settings_cache.get()).usable

    async def embed(self, text: str) -> List[float]:
        settings = await self._settings_cache.get()
        if not settings.usable:
            raise ConfigurationException("Embeddings are disabled or not configured")
        client = self._pool.client_for(settings)
        result = await call_with_retry(
            lambda: client.generate_embedding(text[:self._max_chars]),
            MODEL_CALL_POLICY,
            "embedding",
            timeout=self._timeout,
        )
        return normalize_vector(result.embedding)


def normalize_vector(values: List[float]) -> List[float]:
    vector = np.asarray(values, dtype=np.float64)
    norm = np.linalg.norm(vector)
    if vector.size == 0 or norm == 0:
        raise EmbeddingException("Provider returned an empty or zero embedding")
    return (vector / norm).tolist()


# ========== Fast-track catalogue ==========

class FastTrackFileHandler(FileSystemEventHandler):
    """Watchdog event handler for fast-track file changes."""

    def __init__(self, manager: "FastTrackConfigManager", path: Path):
        self.manager = manager
        self.path = path
        super().__init__()

    def on_modified(self, event):
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.path.resolve():
            logger.info("Fast-track file changed", extra={"path": str(event.src_path)})
            self.manager.reload()

    on_created = on_modified


class FastTrackConfigManager:
    """
    Thread-safe fast-track catalogue with hot-reload support.

    A missing file yields an empty catalogue; an invalid edit keeps the
    last good catalogue.
    """

    def __init__(self):
        self._catalog = FastTrackCatalog()
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> FastTrackCatalog:
        """Initial load; raises on an invalid file."""
        self._path = Path(path)
        catalog = self._load_from_file(self._path)
        with self._lock:
            self._catalog = catalog
        logger.info("Fast-track catalogue loaded", extra={"rules": len(catalog.rules)})
        return catalog

    @staticmethod
    def _load_from_file(path: Path) -> FastTrackCatalog:
        if not path.exists():
            logger.warning("Fast-track file not found, using empty catalogue", extra={"path": str(path)})
            return FastTrackCatalog()
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return FastTrackCatalog(**data)

    def reload(self) -> bool:
        if self._path is None:
            return False
        try:
            catalog = self._load_from_file(self._path)
        except Exception as e:
            logger.error("Failed to reload fast-track catalogue", extra={"error": str(e)})
            return False
        with self._lock:
            self._catalog = catalog
        logger.info("Fast-track catalogue reloaded", extra={"rules": len(catalog.rules)})
        return True

    def start_watching(self) -> None:
        """Watch the catalogue's directory; a no-op where inotify is unavailable."""
        if self._path is None:
            raise RuntimeError("Catalogue not loaded. Call load() first.")
        if not self._path.parent.exists():
            logger.info("Fast-track directory missing, not watching", extra={"path": str(self._path)})
            return
        try:
            self._observer = Observer()
            self._observer.schedule(
                FastTrackFileHandler(self, self._path),
                str(self._path.parent),
                recursive=False
            )
            self._observer.start()
            logger.info("Watching fast-track file", extra={"path": str(self._path)})
        except OSError as e:
            logger.warning("File watching not available, using static catalogue", extra={"error": str(e)})
            self._observer = None

    def stop_watching(self) -> None:
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    @property
    def catalog(self) -> FastTrackCatalog:
        with self._lock:
            return self._catalog


# ========== Health ==========

class HealthCheckService(IHealthCheck):
    """
    Health of the database, the model configuration and the fast-track file.

    Any unhealthy component makes the overall status ``degraded``; a
    missing database makes it ``unhealthy``.
    """

    def __init__(
        self,
        engine: Optional[AsyncEngine],
        settings_cache: ProviderSettingsCache,
        fast_track: FastTrackConfigManager,
    ):
        self._engine = engine
        self._settings_cache = settings_cache
        self._fast_track = fast_track

    async def run_all_checks(self) -> HealthReport:
        components = {
            "database": await self._check_database(),
            "language_model": await self._check_model(),
            "fast_track": self._check_fast_track(),
        }
        if components["database"].status == UNHEALTHY:
            status = UNHEALTHY
        elif any(c.status != HEALTHY for c in components.values()):
            status = DEGRADED
        else:
            status = HEALTHY
        return HealthReport(status=status, components=components)

    async def _check_database(self) -> ComponentHealth:
        if self._engine is None:
            return ComponentHealth(UNHEALTHY, "not configured")
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return ComponentHealth(HEALTHY)
        except Exception as e:
            return ComponentHealth(UNHEALTHY, str(e)[:200])

    async def _check_model(self) -> ComponentHealth:
        settings = await self._settings_cache.get()
        if not settings.enabled:
            return ComponentHealth(DEGRADED, "AI disabled")
        if not settings.usable:
            return ComponentHealth(DEGRADED, f"no credentials for {settings.provider}")
        return ComponentHealth(HEALTHY, f"{settings.provider}/{settings.model}")

    def _check_fast_track(self) -> ComponentHealth:
        rules = len(self._fast_track.catalog.rules)
        if rules == 0:
            return ComponentHealth(DEGRADED, "no fast-track rules loaded")
        return ComponentHealth(HEALTHY, f"{rules} rules")


# ========== Session sweeping ==========

class SessionSweeper:
    """
    Wrapper for APScheduler that tears down idle sessions.

    Manages the lifecycle of the scheduler and its single interval job.
    """

    def __init__(
        self,
        sessions: SessionStore,
        idle_timeout: timedelta,
        interval_seconds: int = 60,
        clock=utc_now,
    ):
        self.sessions = sessions
        self.idle_timeout = idle_timeout
        self.interval_seconds = interval_seconds
        self._clock = clock
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def sweep(self) -> List[str]:
        return self.sessions.sweep_idle(self._clock(), self.idle_timeout)

    async def start(self) -> None:
        if self._running:
            logger.warning("Session sweeper already running")
            return

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self.sweep,
            "interval",
            seconds=self.interval_seconds,
            id="session_sweep",
            name="Idle Session Sweep",
            misfire_grace_time=60,
            max_instances=1,
            replace_existing=True
        )
        self._scheduler.start()
        self._running = True
        logger.info("Session sweeper started", extra={"interval_seconds": self.interval_seconds})

    async def stop(self) -> None:
        if not self._running:
            return
        if self._scheduler:
            self._scheduler.shutdown(wait=False)
        self._running = False
        logger.info("Session sweeper stopped")

    @property
    def is_running(self) -> bool:
        return self._running
