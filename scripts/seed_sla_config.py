#!/usr/bin/env python3
"""
Seed SLA Configuration Tables
=============================

Copies the scopes of an SLA configuration YAML document into the
configuration tables read when SLA_CONFIG_SOURCE=database.

Usage:
    python scripts/seed_sla_config.py [path/to/sla_config.yaml]

Existing rows of every scope present in the document are replaced.
"""

import asyncio
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import delete


async def main():
    from src.config import settings
    from src.infrastructure.database import (
        close_database,
        create_tables,
        get_session_context,
        init_database,
    )
    from src.shared.infrastructure.logging import get_logger, setup_logging
    from src.sla.infrastructure.external import SLAConfigManager
    from src.sla.infrastructure.models import (
        BusinessCalendarModel,
        EscalationConfigModel,
        RoleMemberModel,
        SLAConfigModel,
        StatusThresholdsModel,
    )

    setup_logging(settings.log_level, settings.environment)
    logger = get_logger("seed_sla_config")

    path = Path(sys.argv[1]) if len(sys.argv) > 1 else settings.sla_config_path
    document = SLAConfigManager().load(path)
    if not document.scopes:
        logger.warning("No scopes found, nothing to seed", extra={"path": str(path)})
        return

    init_database()
    await create_tables()

    try:
        async with get_session_context() as session:
            for scope, section in document.scopes.items():
                for model in (
                    BusinessCalendarModel, SLAConfigModel, EscalationConfigModel,
                    StatusThresholdsModel, RoleMemberModel,
                ):
                    await session.execute(delete(model).where(model.scope == scope))

                if section.calendar is not None:
                    calendar = section.calendar.to_calendar()
                    session.add(BusinessCalendarModel(scope=scope, **calendar.to_dict()))

                for priority, row in section.sla.items():
                    session.add(SLAConfigModel(
                        scope=scope,
                        priority=priority,
                        response_hours=row.response_hours,
                        resolution_hours=row.resolution_hours,
                        resolution_type=row.resolution_type.value,
                    ))

                if section.escalation is not None:
                    thresholds = section.escalation.status_thresholds
                    session.add(StatusThresholdsModel(
                        scope=scope,
                        warning=thresholds.warning,
                        critical=thresholds.critical,
                        breached=thresholds.breached,
                    ))
                    for level in section.escalation.levels:
                        session.add(EscalationConfigModel(scope=scope, **level.model_dump()))

                for role, emails in section.role_members.items():
                    for email in dict.fromkeys(emails):
                        session.add(RoleMemberModel(scope=scope, role=role, email=email))

                logger.info(
                    "Seeded scope",
                    extra={
                        "scope": scope,
                        "priorities": sorted(section.sla),
                        "levels": len(section.escalation.levels) if section.escalation else 0,
                    }
                )
    finally:
        await close_database()


if __name__ == "__main__":
    asyncio.run(main())
