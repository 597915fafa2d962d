"""Pytest configuration and fixtures."""

import pytest

from helpdesk_ai.intake.domain.entities import UserContext
from helpdesk_ai.intake.domain.validation import ResponseValidator
from helpdesk_ai.intake.domain.value_objects import IntakePolicy
from tests.doubles import (
    InMemoryKnowledgeStore, InMemoryTicketStore, KeywordEmbedder, ScriptedLanguageModel,
    build_engine, default_catalog,
)


@pytest.fixture
def policy() -> IntakePolicy:
    return IntakePolicy()


@pytest.fixture
def validator() -> ResponseValidator:
    return ResponseValidator()


@pytest.fixture
def language_model() -> ScriptedLanguageModel:
    return ScriptedLanguageModel()


@pytest.fixture
def embedder() -> KeywordEmbedder:
    return KeywordEmbedder()


@pytest.fixture
def knowledge_store() -> InMemoryKnowledgeStore:
    return InMemoryKnowledgeStore()


@pytest.fixture
def ticket_store() -> InMemoryTicketStore:
    return InMemoryTicketStore()


@pytest.fixture
def requester() -> UserContext:
    """Requester with a location, so the duplicate and outage detectors run."""
    return UserContext(requester_id="u-1", name="Olena", city="Lviv", institution="School 12")


@pytest.fixture
def engine(language_model, embedder, knowledge_store, ticket_store, policy):
    return build_engine(
        language_model, embedder, knowledge_store, ticket_store,
        catalog=default_catalog(), policy=policy,
    )
