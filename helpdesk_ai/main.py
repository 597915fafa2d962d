"""
Helpdesk Intake - Main Application
==================================

Conversational intake engine for an IT helpdesk.

Modules:
- Intake: dialogue state machine, retrieval, detectors and ticket drafting

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Engine, services and DTOs
- Domain: Entities, value objects, prompts and validation
- Infrastructure: Database, LLM providers, YAML rules, scheduler
"""

from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncEngine

# Configuration and Core
from helpdesk_ai.config import Settings, get_settings
from helpdesk_ai.core import ApplicationException

# Infrastructure
from helpdesk_ai.infrastructure.database import (
    close_database, create_tables, get_session_maker, init_database,
)

# Intake module
from helpdesk_ai.intake.application import (
    ClassificationService, ContextAssembler, ConversationEngine, FastTrackMatcher,
    IntentClassifier, KnowledgeRetrievalService, ProviderSettings, ProviderSettingsCache,
    QuestionGenerator, RelevanceChecker, SessionStore, TicketDrafter, TicketRetrievalService,
    env_settings_loader,
)
from helpdesk_ai.intake.domain.validation import ResponseValidator
from helpdesk_ai.intake.domain.value_objects import BusinessSchedule, IntakePolicy
from helpdesk_ai.intake.infrastructure import (
    FastTrackConfigManager, HealthCheckService, ProviderClientPool, ProviderEmbeddingProvider,
    ProviderLanguageModel, SessionSweeper, SQLAlchemyAISettingsRepository,
    SQLAlchemyKnowledgeBaseStore, SQLAlchemyTicketStore, database_settings_loader,
)
from helpdesk_ai.intake.interfaces import intake_router

# Shared
from helpdesk_ai.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler,
)
from helpdesk_ai.shared.infrastructure.logging import get_logger, setup_logging

logger = get_logger(__name__)


def build_engine(
    settings: Settings,
    db_engine: Optional[AsyncEngine],
    fast_track_manager: FastTrackConfigManager,
    sessions: SessionStore,
) -> tuple[ConversationEngine, HealthCheckService]:
    """
    Wire the conversation engine and its collaborators.

    Without a reachable database, provider settings come from the
    environment only; store calls then fail and degrade per turn.
    """
    session_maker = get_session_maker()
    env_provider = ProviderSettings.from_settings(settings)
    if db_engine is not None:
        loader = database_settings_loader(SQLAlchemyAISettingsRepository(session_maker), env_provider)
    else:
        loader = env_settings_loader(settings)
    settings_cache = ProviderSettingsCache(loader, ttl_seconds=settings.provider_settings_ttl_seconds)

    pool = ProviderClientPool()
    language_model = ProviderLanguageModel(settings_cache, pool, settings.llm_timeout_seconds)
    embedder = ProviderEmbeddingProvider(settings_cache, pool, settings.embedding_timeout_seconds)

    knowledge_store = SQLAlchemyKnowledgeBaseStore(session_maker)
    ticket_store = SQLAlchemyTicketStore(session_maker)
    health = HealthCheckService(db_engine, settings_cache, fast_track_manager)

    policy = IntakePolicy.from_settings(settings)
    validator = ResponseValidator()
    relevance = RelevanceChecker(language_model)
    knowledge = KnowledgeRetrievalService(knowledge_store, embedder, relevance, policy)
    tickets = TicketRetrievalService(ticket_store, embedder, relevance, policy)

    engine = ConversationEngine(
        sessions=sessions,
        language_model=language_model,
        classification=ClassificationService(
            IntentClassifier(language_model, validator), knowledge, tickets, policy
        ),
        knowledge=knowledge,
        tickets=tickets,
        context=ContextAssembler(ticket_store, health, BusinessSchedule.from_settings(settings), policy),
        fast_track=FastTrackMatcher(lambda: fast_track_manager.catalog),
        questions=QuestionGenerator(language_model, validator),
        drafter=TicketDrafter(language_model, validator),
        ticket_creator=ticket_store,
        policy=policy,
    )
    return engine, health


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Load fast-track rules and watch the file
    4. Wire the conversation engine
    5. Start the idle-session sweeper

    SHUTDOWN:
    1. Stop the sweeper
    2. Stop the file watcher
    3. Close database connections
    """
    settings = get_settings()

    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Helpdesk Intake", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    logger.info("Initializing database")
    db_engine = init_database()
    try:
        await create_tables(db_engine)
    except Exception as e:
        # Starts anyway; store calls degrade per turn
        logger.warning("Database not available - running in degraded mode", extra={"error": str(e)})
        db_engine = None

    logger.info("Loading fast-track rules")
    fast_track_manager = FastTrackConfigManager()
    try:
        fast_track_manager.load(settings.fast_track_config_path)
    except Exception as e:
        logger.error("Fast-track rules invalid, starting with none", extra={"error": str(e)})
    else:
        fast_track_manager.start_watching()

    sessions = SessionStore()
    engine, health = build_engine(settings, db_engine, fast_track_manager, sessions)

    sweeper = SessionSweeper(
        sessions,
        idle_timeout=timedelta(minutes=settings.session_idle_timeout_minutes),
        interval_seconds=settings.session_sweep_interval_seconds,
    )
    await sweeper.start()

    app.state.settings = settings
    app.state.engine = engine
    app.state.health = health
    app.state.sweeper = sweeper

    logger.info("Helpdesk Intake started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down Helpdesk Intake")
    await sweeper.stop()
    fast_track_manager.stop_watching()
    await close_database()
    logger.info("Helpdesk Intake shutdown complete")


app = FastAPI(
    title="Helpdesk Intake API",
    description="""
    ## Conversational Helpdesk Intake

    Turns a chat conversation into either a self-service answer or a
    well-formed support ticket.

    **Endpoints:**
    - `POST /intake/sessions/{session_id}/messages` - Send one user message
    - `POST /intake/sessions/{session_id}/feedback` - Send a button signal

    **Flow:**
    - Fast-track rules and knowledge-base articles answer common problems
    - Duplicate, outage and active-ticket detectors prevent ticket spam
    - Clarifying questions until a ticket draft can be confirmed
    - Escalation guard hands over to a manual draft after repeated questions
    """,
    version=get_settings().app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# === CORS Middleware ===
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# === Custom Middleware (from shared) ===
app.add_middleware(LoggingMiddleware)
app.add_middleware(CorrelationIDMiddleware)
app.add_exception_handler(ApplicationException, application_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# === Include Module Routers ===
app.include_router(intake_router)


# === Health Check Endpoint ===

@app.get("/health", tags=["Health"])
async def health_check(request: Request):
    """
    Health check endpoint for load balancers and orchestrators.

    Reports database connectivity, model configuration and fast-track
    rules, plus the number of live conversations.
    """
    settings = get_settings()
    health = getattr(request.app.state, "health", None)
    engine = getattr(request.app.state, "engine", None)
    sweeper = getattr(request.app.state, "sweeper", None)

    if health is None:
        return {"status": "starting", "version": settings.app_version, "checks": {}}

    report = await health.run_all_checks()
    checks = {name: {"status": c.status, "detail": c.detail} for name, c in report.components.items()}
    checks["session_sweeper"] = {"status": "running" if sweeper and sweeper.is_running else "stopped", "detail": ""}
    return {
        "status": report.status,
        "version": settings.app_version,
        "environment": settings.environment,
        "active_sessions": len(engine.sessions) if engine else 0,
        "checks": checks
    }


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "service": "Helpdesk Intake",
        "version": get_settings().app_version,
        "docs": "/docs",
        "health": "/health",
        "modules": {
            "intake": {
                "prefix": "/intake",
                "endpoints": [
                    "POST /intake/sessions/{session_id}/messages - Send message",
                    "POST /intake/sessions/{session_id}/feedback - Send button signal"
                ]
            }
        }
    }


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "helpdesk_ai.main:app",
        host=get_settings().host,
        port=get_settings().port,
        reload=get_settings().environment == "development",
        log_level="info"
    )
