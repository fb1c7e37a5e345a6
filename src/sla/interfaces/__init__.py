"""
SLA Interfaces Layer
====================

Interface adapters (controllers) for the SLA engine.

Contains:
- Controllers: FastAPI route handlers

This is the outermost layer - handles HTTP requests/responses and
delegates to application services.
"""

from src.sla.interfaces.controllers import (
    sla_router,
    build_engine_service,
    engine_session_factory,
)

__all__ = ["sla_router", "build_engine_service", "engine_session_factory"]
