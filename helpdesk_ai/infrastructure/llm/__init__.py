"""
LLM Client Infrastructure
==========================

Wrapper for LLM providers (OpenAI, Z.AI) providing clean interface for LLM operations.

This module abstracts the LLM client implementation following the
Dependency Inversion Principle - the intake layer depends on abstractions,
not concrete implementations. Clients receive their credentials and model
names explicitly; nothing here reads global settings.

Every SDK error is wrapped in LLMException / EmbeddingException with the
``transient`` flag set for timeouts, connection failures, rate limits and
HTTP 408/429/5xx so the retry wrapper can decide what to repeat.
"""

import asyncio
import hashlib
import json
import math
import random
import time
from typing import List, Optional
from abc import ABC, abstractmethod

import openai
from openai import AsyncOpenAI
from zai import ZaiClient

from helpdesk_ai.config import LLMProvider
from helpdesk_ai.core import LLMException, EmbeddingException, ConfigurationException
from helpdesk_ai.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

MOCK_EMBEDDING_DIMENSION = 256


class EmbeddingResult:
    """Result of an embedding generation."""

    def __init__(self, embedding: List[float], model: str):
        self.embedding = embedding
        self.model = model
        self.dimension = len(embedding)


class ChatCompletionResult:
    """Result of a chat completion."""

    def __init__(
        self,
        content: str,
        model: str,
        prompt_tokens: int,
        completion_tokens: int,
        latency_ms: int
    ):
        self.content = content
        self.model = model
        self.prompt_tokens = prompt_tokens
        self.completion_tokens = completion_tokens
        self.total_tokens = prompt_tokens + completion_tokens
        self.latency_ms = latency_ms


class ILLMClient(ABC):
    """
    Interface for LLM client operations.

    Following Interface Segregation Principle - only methods
    actually needed by the application are defined.
    """

    @abstractmethod
    async def generate_embedding(self, text: str) -> EmbeddingResult:
        """Generate embedding for text."""

    @abstractmethod
    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.3,
        max_tokens: int = 1000,
        json_mode: bool = False,
        operation: str = "chat_completion"
    ) -> ChatCompletionResult:
        """Generate chat completion."""


def _status_code_of(error: Exception) -> Optional[int]:
    status = getattr(error, "status_code", None)
    if isinstance(status, int):
        return status
    response = getattr(error, "response", None)
    status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def _is_transient_status(status: Optional[int]) -> bool:
    return status is not None and (status in (408, 429) or 500 <= status < 600)


class ZAILLMClient(ILLMClient):
    """
    Z.AI SDK client implementation for GLM models.

    The SDK is synchronous, so calls run in a worker thread to keep the
    event loop (and per-call timeouts) responsive.
    """

    def __init__(self, api_key: Optional[str], model: str, embedding_model: str):
        if not api_key:
            raise ConfigurationException("Z.AI API key not configured")

        self._client = ZaiClient(api_key=api_key)
        self._model = model
        self._embedding_model = embedding_model

    async def generate_embedding(self, text: str) -> EmbeddingResult:
        """
        Generate embedding for text using Z.AI embedding model.

        Raises:
            EmbeddingException: If embedding generation fails
        """
        try:
            response = await asyncio.to_thread(
                self._client.embeddings.create,
                model=self._embedding_model,
                input=text
            )
            return EmbeddingResult(
                embedding=list(response.data[0].embedding),
                model=self._embedding_model
            )
        except Exception as e:
            status = _status_code_of(e)
            raise EmbeddingException(
                f"Embedding generation failed: {str(e)}",
                transient=_is_transient_status(status),
                status_code=status
            )

    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.3,
        max_tokens: int = 1000,
        json_mode: bool = False,
        operation: str = "chat_completion"
    ) -> ChatCompletionResult:
        """
        Generate chat completion using GLM.

        Args:
            messages: List of message dicts with 'role' and 'content'
            temperature: Sampling temperature (0-1)
            max_tokens: Maximum tokens to generate
            json_mode: Ask for a bare JSON object
            operation: Operation type for logging

        Returns:
            ChatCompletionResult with generated text

        Raises:
            LLMException: If completion fails
        """
        start_time = time.perf_counter()
        kwargs = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = await asyncio.to_thread(
                self._client.chat.completions.create,
                model=self._model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                **kwargs
            )
        except Exception as e:
            status = _status_code_of(e)
            raise LLMException(
                f"Chat completion failed: {str(e)}",
                details={"operation": operation},
                transient=_is_transient_status(status),
                status_code=status
            )

        latency_ms = int((time.perf_counter() - start_time) * 1000)
        content = response.choices[0].message.content or ""

        # Z.AI usage is not always populated, so estimate
        usage = getattr(response, "usage", None)
        prompt_tokens = getattr(usage, "prompt_tokens", None) or len(str(messages)) // 4
        completion_tokens = getattr(usage, "completion_tokens", None) or len(content) // 4

        return ChatCompletionResult(
            content=content,
            model=self._model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            latency_ms=latency_ms
        )


class OpenAILLMClient(ILLMClient):
    """
    OpenAI client implementation for GPT models.

    Also serves OpenAI-compatible endpoints (Groq and similar) through
    ``base_url``.
    """

    def __init__(
        self,
        api_key: Optional[str],
        model: str,
        embedding_model: str,
        base_url: Optional[str] = None
    ):
        if not api_key:
            raise ConfigurationException("OpenAI API key not configured")

        # Retries are owned by the retry wrapper
        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url, max_retries=0)
        self._model = model
        self._embedding_model = embedding_model

    @staticmethod
    def _wrap_error(error: Exception, exc_type: type, prefix: str, operation: str):
        if isinstance(error, (openai.APITimeoutError, openai.APIConnectionError)):
            return exc_type(f"{prefix}: {str(error)}", {"operation": operation}, True, None)
        if isinstance(error, openai.RateLimitError):
            return exc_type(f"{prefix}: {str(error)}", {"operation": operation}, True, 429)
        if isinstance(error, openai.APIStatusError):
            return exc_type(
                f"{prefix}: {str(error)}",
                {"operation": operation},
                _is_transient_status(error.status_code),
                error.status_code
            )
        return exc_type(f"{prefix}: {str(error)}", {"operation": operation}, False, None)

    async def generate_embedding(self, text: str) -> EmbeddingResult:
        """
        Generate embedding for text using OpenAI embedding model.

        Raises:
            EmbeddingException: If embedding generation fails
        """
        try:
            response = await self._client.embeddings.create(
                model=self._embedding_model,
                input=text
            )
        except Exception as e:
            raise self._wrap_error(e, EmbeddingException, "Embedding generation failed", "embedding")

        return EmbeddingResult(
            embedding=list(response.data[0].embedding),
            model=self._embedding_model
        )

    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.3,
        max_tokens: int = 1000,
        json_mode: bool = False,
        operation: str = "chat_completion"
    ) -> ChatCompletionResult:
        """
        Generate chat completion using OpenAI GPT.

        Raises:
            LLMException: If completion fails
        """
        start_time = time.perf_counter()
        kwargs = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                **kwargs
            )
        except Exception as e:
            raise self._wrap_error(e, LLMException, "Chat completion failed", operation)

        latency_ms = int((time.perf_counter() - start_time) * 1000)
        usage = response.usage

        return ChatCompletionResult(
            content=response.choices[0].message.content or "",
            model=self._model,
            prompt_tokens=usage.prompt_tokens if usage else 0,
            completion_tokens=usage.completion_tokens if usage else 0,
            latency_ms=latency_ms
        )


class MockLLMClient(ILLMClient):
    """
    Mock LLM client for local development.

    Returns predictable responses without calling external APIs.
    Embeddings are deterministic pseudo-random unit vectors seeded
    from the text hash.
    """

    def __init__(self, dimension: int = MOCK_EMBEDDING_DIMENSION):
        self._dimension = dimension

    async def generate_embedding(self, text: str) -> EmbeddingResult:
        """Return a deterministic unit vector for the text."""
        seed = int(hashlib.sha256(text.encode("utf-8")).hexdigest()[:8], 16)
        rng = random.Random(seed)
        vector = [rng.uniform(-1, 1) for _ in range(self._dimension)]
        norm = math.sqrt(sum(v * v for v in vector)) or 1.0
        return EmbeddingResult(
            embedding=[v / norm for v in vector],
            model="mock-embedding"
        )

    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.3,
        max_tokens: int = 1000,
        json_mode: bool = False,
        operation: str = "chat_completion"
    ) -> ChatCompletionResult:
        """Return mock response based on operation type."""
        op = operation.lower()

        if "relevance" in op:
            content = "YES"
        elif "question" in op:
            content = "Could you describe what exactly happens and when it started?"
        elif "draft" in op:
            content = json.dumps({
                "title": "Support request",
                "description": "Mock: ticket drafted from the conversation.",
                "category": "general",
                "priority": "medium"
            })
        elif "intent" in op:
            content = "```json\n" + json.dumps({
                "requestType": "appeal",
                "confidence": 0.5,
                "isTicketIntent": True,
                "needsMoreInfo": True,
                "missingInfo": ["what exactly happens"],
                "category": None,
                "priority": "medium"
            }, indent=2) + "\n```"
        else:
            content = "This is a mock LLM response for testing purposes."

        return ChatCompletionResult(
            content=content,
            model="mock-model",
            prompt_tokens=100,
            completion_tokens=len(content.split()),
            latency_ms=1
        )


def create_llm_client(
    provider: str,
    api_key: Optional[str],
    model: str,
    embedding_model: str,
    base_url: Optional[str] = None
) -> ILLMClient:
    """
    Build a client for the named provider.

    Raises:
        ConfigurationException: Unknown provider or missing credentials
    """
    provider = (provider or "").lower()
    if provider == LLMProvider.MOCK:
        return MockLLMClient()
    if provider == LLMProvider.OPENAI:
        return OpenAILLMClient(api_key, model, embedding_model, base_url=base_url)
    if provider == LLMProvider.ZAI:
        return ZAILLMClient(api_key, model, embedding_model)
    raise ConfigurationException(f"Unsupported LLM provider: {provider!r}")
