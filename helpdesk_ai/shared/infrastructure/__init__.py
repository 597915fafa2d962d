"""
Shared Infrastructure
=====================

- Structured JSON logging
- Bounded retry with exponential backoff
"""
