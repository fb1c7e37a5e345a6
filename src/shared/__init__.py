"""
Shared Kernel Module
====================

Generic infrastructure used by the SLA engine's bounded context:
structured logging, HTTP middleware and metrics export.

Architecture Pattern: Modular Monolith
- The sla module is a bounded context
- Shared kernel contains only generic infrastructure

DO NOT add SLA business logic to the shared kernel.
"""

__version__ = "1.0.0"
