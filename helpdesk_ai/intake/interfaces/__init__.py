"""
Intake Interfaces Layer
=======================

Interface adapters (controllers) for the intake module.

Contains:
- Controllers: FastAPI route handlers
"""

from helpdesk_ai.intake.interfaces.controllers import intake_router

__all__ = ["intake_router"]
