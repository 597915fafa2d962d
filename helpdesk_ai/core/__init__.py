"""
Core Module
============

Shared core utilities and abstractions used across the application.

This module contains framework-agnostic code that defines the fundamental
building blocks of the system.
"""

from helpdesk_ai.core.exceptions import (
    ApplicationException,
    DomainException,
    RepositoryException,
    ValidationException,
    ConfigurationException,
    ExternalServiceException,
    LLMException,
    EmbeddingException,
)

__all__ = [
    "ApplicationException",
    "DomainException",
    "RepositoryException",
    "ValidationException",
    "ConfigurationException",
    "ExternalServiceException",
    "LLMException",
    "EmbeddingException",
]
