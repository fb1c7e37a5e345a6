"""
SLA Infrastructure Layer
=========================

Infrastructure implementations for the SLA engine:
- Models: SQLAlchemy ORM models
- Repositories: Data access layer
- Config providers: YAML, database and cached configuration lookups
- External: Config file watcher and sweep scheduler
"""

from src.sla.infrastructure.models import (
    TicketSLAModel,
    EscalationAlertModel,
    NotificationModel,
    AuditEntryModel,
)
from src.sla.infrastructure.repositories import (
    SQLAlchemyTicketSLARepository,
    SQLAlchemyEscalationAlertRepository,
    SQLAlchemyNotificationRepository,
    SQLAlchemyAuditRepository,
)
from src.sla.infrastructure.external import SLAConfigManager, SLAScheduler
from src.sla.infrastructure.config_providers import (
    YAMLConfigProvider,
    SQLAlchemyConfigProvider,
    CachingConfigProvider,
)

__all__ = [
    "TicketSLAModel",
    "EscalationAlertModel",
    "NotificationModel",
    "AuditEntryModel",
    "SQLAlchemyTicketSLARepository",
    "SQLAlchemyEscalationAlertRepository",
    "SQLAlchemyNotificationRepository",
    "SQLAlchemyAuditRepository",
    "SLAConfigManager",
    "SLAScheduler",
    "YAMLConfigProvider",
    "SQLAlchemyConfigProvider",
    "CachingConfigProvider",
]
