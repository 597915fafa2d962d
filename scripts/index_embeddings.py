#!/usr/bin/env python3
"""
Index Corpus Embeddings
=======================

Generates embeddings for published knowledge-base articles and resolved
tickets that have none yet, using the configured provider.

Usage:
    python scripts/index_embeddings.py
"""

import asyncio
import sys

from helpdesk_ai.config import get_settings
from helpdesk_ai.infrastructure.database import close_database, get_session_maker, init_database
from helpdesk_ai.intake.application import ProviderSettings, ProviderSettingsCache
from helpdesk_ai.intake.infrastructure import (
    EmbeddingBackfill, ProviderClientPool, ProviderEmbeddingProvider,
    SQLAlchemyAISettingsRepository, database_settings_loader,
)
from helpdesk_ai.shared.infrastructure.logging import setup_logging


async def main() -> int:
    settings = get_settings()
    setup_logging(settings.log_level, settings.environment)

    init_database()
    session_maker = get_session_maker()
    try:
        loader = database_settings_loader(
            SQLAlchemyAISettingsRepository(session_maker), ProviderSettings.from_settings(settings)
        )
        embedder = ProviderEmbeddingProvider(
            ProviderSettingsCache(loader, ttl_seconds=settings.provider_settings_ttl_seconds),
            ProviderClientPool(),
            settings.embedding_timeout_seconds,
        )
        if not await embedder.is_available():
            print("Embeddings are disabled or not configured; nothing to do")
            return 1

        print("Generating embeddings...")
        report = await EmbeddingBackfill(session_maker, embedder).run()
    finally:
        await close_database()

    print(f"Indexed {report.articles} articles and {report.tickets} tickets ({report.failed} failed)")
    return 0 if report.failed == 0 else 2


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
