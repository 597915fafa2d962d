"""
Helpdesk AI
===========

Conversational intake engine for an IT helpdesk.

Architecture Pattern: Modular Monolith
- ``intake`` is the bounded context: chat message in, answer/question/ticket out
- ``shared`` and ``infrastructure`` hold generic technical concerns only
"""

__version__ = "1.0.0"
