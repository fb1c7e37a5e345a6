"""
SLA Configuration Providers
============================

Implementations of ISLAConfigProvider and IRoleDirectory:

- YAMLConfigProvider: reads the hot-reloaded YAML document
- SQLAlchemyConfigProvider: reads the configuration tables
- CachingConfigProvider: per-scope TTL cache in front of either

None of them invents defaults for a missing scope, priority or ladder.
"""

import time
from typing import Any, AsyncContextManager, Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.exceptions import ConfigurationException
from src.shared.infrastructure.logging import get_logger
from src.sla.application import IRoleDirectory, ISLAConfigProvider
from src.sla.domain import (
    BusinessCalendar,
    EscalationLevel,
    EscalationPolicy,
    SLATarget,
    StatusThresholds,
)
from src.sla.domain.value_objects import ScopeDocument, parse_time, parse_weekdays
from src.sla.infrastructure.external import SLAConfigManager
from src.sla.infrastructure.models import (
    BusinessCalendarModel,
    EscalationConfigModel,
    RoleMemberModel,
    SLAConfigModel,
    StatusThresholdsModel,
)

logger = get_logger(__name__)


def _unique(values: Sequence[str]) -> List[str]:
    seen = set()
    ordered = []
    for value in values:
        if value not in seen:
            seen.add(value)
            ordered.append(value)
    return ordered


class YAMLConfigProvider(ISLAConfigProvider, IRoleDirectory):
    """
    SLA configuration provider that reads from YAML.

    The manager watches the file and swaps in the new document on change;
    every lookup reads whatever document is current.
    """

    def __init__(self, config_manager: SLAConfigManager):
        self._manager = config_manager

    def _scope(self, scope: str) -> ScopeDocument:
        document = self._manager.get_config()
        section = document.scopes.get(scope)
        if section is None:
            raise ConfigurationException(f"No SLA configuration for scope '{scope}'", {"scope": scope})
        return section

    async def get_sla_target(self, scope: str, priority: str) -> SLATarget:
        row = self._scope(scope).sla.get(priority)
        if row is None:
            raise ConfigurationException(
                f"No SLA target for priority '{priority}' in scope '{scope}'",
                {"scope": scope, "priority": priority}
            )
        return row.to_target()

    async def get_calendar(self, scope: str) -> Optional[BusinessCalendar]:
        section = self._scope(scope)
        return section.calendar.to_calendar() if section.calendar else None

    async def get_escalation_policy(self, scope: str) -> EscalationPolicy:
        section = self._scope(scope)
        if section.escalation is None:
            raise ConfigurationException(
                f"No escalation ladder for scope '{scope}'", {"scope": scope}
            )
        return section.escalation.to_policy()

    async def get_members(self, scope: str, roles: Sequence[str]) -> List[str]:
        members = self._scope(scope).role_members
        return _unique([email for role in roles for email in members.get(role, [])])


class SQLAlchemyConfigProvider(ISLAConfigProvider, IRoleDirectory):
    """
    SLA configuration provider backed by the configuration tables.

    Each lookup runs in its own short session so the provider can be shared
    (and cached) across requests.
    """

    def __init__(self, session_factory: Callable[[], AsyncContextManager[AsyncSession]]):
        self._session_factory = session_factory

    async def get_sla_target(self, scope: str, priority: str) -> SLATarget:
        async with self._session_factory() as session:
            stmt = select(SLAConfigModel).where(
                SLAConfigModel.scope == scope,
                SLAConfigModel.priority == priority,
            )
            row = (await session.execute(stmt)).scalar_one_or_none()

        if row is None:
            raise ConfigurationException(
                f"No SLA target for priority '{priority}' in scope '{scope}'",
                {"scope": scope, "priority": priority}
            )
        return SLATarget(
            response_hours=row.response_hours,
            resolution_hours=row.resolution_hours,
            resolution_type=row.resolution_type,
        )

    async def get_calendar(self, scope: str) -> Optional[BusinessCalendar]:
        async with self._session_factory() as session:
            row = await session.get(BusinessCalendarModel, scope)

        if row is None:
            return None
        return BusinessCalendar(
            daily_start=parse_time(row.daily_start),
            daily_end=parse_time(row.daily_end),
            working_weekdays=parse_weekdays(row.working_weekdays),
            timezone=row.timezone,
        )

    async def get_escalation_policy(self, scope: str) -> EscalationPolicy:
        async with self._session_factory() as session:
            stmt = (
                select(EscalationConfigModel)
                .where(EscalationConfigModel.scope == scope)
                .order_by(EscalationConfigModel.level.asc())
            )
            rows = (await session.execute(stmt)).scalars().all()
            thresholds_row = await session.get(StatusThresholdsModel, scope)

        if not rows:
            raise ConfigurationException(
                f"No escalation ladder for scope '{scope}'", {"scope": scope}
            )

        thresholds = StatusThresholds()
        if thresholds_row is not None:
            thresholds = StatusThresholds(
                warning=thresholds_row.warning,
                critical=thresholds_row.critical,
                breached=thresholds_row.breached,
            )
        return EscalationPolicy(
            levels=tuple(
                EscalationLevel(
                    level=row.level,
                    threshold_percent=row.threshold_percent,
                    notify_roles=tuple(row.notify_roles or []),
                    action_description=row.action_description or "",
                )
                for row in rows
            ),
            status_thresholds=thresholds,
        )

    async def get_members(self, scope: str, roles: Sequence[str]) -> List[str]:
        if not roles:
            return []
        async with self._session_factory() as session:
            stmt = (
                select(RoleMemberModel.email)
                .where(RoleMemberModel.scope == scope, RoleMemberModel.role.in_(list(roles)))
                .order_by(RoleMemberModel.id.asc())
            )
            emails = (await session.execute(stmt)).scalars().all()
        return _unique(emails)


class CachingConfigProvider(ISLAConfigProvider, IRoleDirectory):
    """
    TTL cache in front of another provider.

    Entries are keyed by lookup and scope. Failed lookups are not cached.
    """

    def __init__(
        self,
        inner: Any,
        ttl_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self._inner = inner
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: Dict[Tuple, Tuple[float, Any]] = {}

    def invalidate(self, scope: Optional[str] = None) -> None:
        """Drop cached entries (all of them, or those of one scope)."""
        if scope is None:
            self._entries.clear()
        else:
            for key in [k for k in self._entries if k[1] == scope]:
                del self._entries[key]
        logger.debug("SLA config cache invalidated", extra={"scope": scope})

    async def _cached(self, key: Tuple, loader: Callable[[], Any]) -> Any:
        now = self._clock()
        entry = self._entries.get(key)
        if entry is not None and entry[0] > now:
            return entry[1]
        value = await loader()
        if self._ttl > 0:
            self._entries[key] = (now + self._ttl, value)
        return value

    async def get_sla_target(self, scope: str, priority: str) -> SLATarget:
        return await self._cached(
            ("sla_target", scope, priority),
            lambda: self._inner.get_sla_target(scope, priority),
        )

    async def get_calendar(self, scope: str) -> Optional[BusinessCalendar]:
        return await self._cached(("calendar", scope), lambda: self._inner.get_calendar(scope))

    async def get_escalation_policy(self, scope: str) -> EscalationPolicy:
        return await self._cached(
            ("escalation_policy", scope),
            lambda: self._inner.get_escalation_policy(scope),
        )

    async def get_members(self, scope: str, roles: Sequence[str]) -> List[str]:
        members = await self._cached(
            ("role_members", scope, tuple(sorted(roles))),
            lambda: self._inner.get_members(scope, roles),
        )
        return list(members)
