"""
Core Exceptions
================

Exception taxonomy shared by every layer of the intake service.

The HTTP layer maps each family onto a status code. Inside the engine,
provider errors never reach the caller: they are retried when
``transient`` is set and otherwise turned into a fallback reply.
"""

from typing import Optional


class ApplicationException(Exception):
    """Root of the taxonomy; ``details`` is merged into error logs."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """A request the conversation rules do not allow."""


class RepositoryException(ApplicationException):
    """Knowledge base or ticket storage failed."""


class ValidationException(ApplicationException):
    """Caller input rejected after DTO validation."""


class ConfigurationException(ApplicationException):
    """No model credentials, or AI switched off in settings."""


class ExternalServiceException(ApplicationException):
    """
    A model or embedding provider call failed.

    ``transient`` marks timeouts, dropped connections, rate limits and
    HTTP 408/429/5xx; ``status_code`` is the provider's HTTP status when
    one was returned.
    """

    service_name = "External Service"

    def __init__(
        self,
        message: str,
        details: Optional[dict] = None,
        transient: bool = False,
        status_code: Optional[int] = None,
        service_name: Optional[str] = None
    ):
        if service_name:
            self.service_name = service_name
        self.transient = transient
        self.status_code = status_code
        super().__init__(f"{self.service_name}: {message}", details)


class LLMException(ExternalServiceException):
    service_name = "LLM Service"


class EmbeddingException(ExternalServiceException):
    service_name = "Embedding Service"
