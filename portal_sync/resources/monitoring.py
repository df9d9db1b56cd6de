"""System monitoring: application logs and service health metrics."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Mapping

from portal_common.logging import get_logger
from portal_common.utils import utcnow
from portal_sync.authz import Permission
from portal_sync.backend import Query, Record
from portal_sync.errors import ValidationError
from portal_sync.fallback import Resolution
from portal_sync.orchestrator import (
    Mutation,
    clean_text,
    optional_float,
    optional_int,
    require_fields,
)
from portal_sync.reconciler import active_value, count_by, within_window
from portal_sync.store import ResourceStore

logger = get_logger(__name__)

LOG_LEVELS = ("info", "warning", "error", "critical")
SERVICE_STATUSES = ("operational", "degraded", "outage")
_STATUS_SEVERITY = {status: rank for rank, status in enumerate(SERVICE_STATUSES)}


@dataclass(frozen=True)
class ServiceHealth:
    service_name: str
    status: str
    metrics: int


@dataclass(frozen=True)
class SystemOverview:
    total_logs: int = 0
    recent_logs: int = 0
    daily_logs: int = 0
    error_count: int = 0
    critical_count: int = 0
    warning_count: int = 0
    recent_error_count: int = 0
    logs_by_level: dict[str, int] = field(default_factory=dict)
    services: tuple[ServiceHealth, ...] = ()
    operational_services: int = 0
    degraded_services: int = 0
    outage_services: int = 0
    system_health: str = "healthy"


def service_status(statuses: list[str]) -> str:
    """Worst status wins: outage > degraded > operational."""
    known = [s for s in statuses if s in _STATUS_SEVERITY]
    if not known:
        return "operational"
    return max(known, key=_STATUS_SEVERITY.__getitem__)


def summarize_services(metrics: list[Record]) -> tuple[ServiceHealth, ...]:
    grouped: dict[str, list[str]] = {}
    for metric in metrics:
        name = metric.get("service_name") or "unknown"
        grouped.setdefault(name, []).append(str(metric.get("status") or "operational"))
    return tuple(
        ServiceHealth(service_name=name, status=service_status(statuses), metrics=len(statuses))
        for name, statuses in sorted(grouped.items())
    )


def overall_health(critical: int, outages: int, errors: int, degraded: int) -> str:
    if critical or outages:
        return "critical"
    if errors or degraded:
        return "warning"
    return "healthy"


class MonitoringStore(ResourceStore[SystemOverview]):
    resource = "monitoring"
    collection_names = ("logs", "metrics")
    auto_refresh_default = True

    def __init__(
        self,
        *args: Any,
        level: str | None = None,
        category: str | None = None,
        service: str | None = None,
        **kwargs: Any,
    ) -> None:
        self.level = level
        self.category = category
        self.service = service
        super().__init__(*args, **kwargs)

    def can_auto_refresh(self) -> bool:
        return self.is_open and self.authorizer.is_admin

    async def load(self) -> dict[str, Resolution]:
        if not self.authorizer.is_admin:
            return {"logs": Resolution.skipped(), "metrics": Resolution.skipped()}

        eq = {
            key: value
            for key, value in (
                ("level", active_value(self.level)),
                ("category", active_value(self.category)),
                ("service_name", active_value(self.service)),
            )
            if value is not None
        }
        limit = self.settings.monitoring_fetch_limit
        log_query = Query(eq=eq, order_by="created_at", descending=True, limit=limit)
        metric_query = Query(order_by="created_at", descending=True, limit=limit)

        logs = await self.resolver(
            "logs", [self.table_tier("system_logs", log_query)], seed_query=log_query
        ).resolve()
        metrics = await self.resolver(
            "metrics", [self.table_tier("system_health_metrics", metric_query)], seed_query=metric_query
        ).resolve()
        return {"logs": logs, "metrics": metrics}

    def derive(self, collections: Mapping[str, list[Record]], now: datetime) -> SystemOverview:
        logs = collections["logs"]
        services = summarize_services(collections["metrics"])
        by_level = count_by(logs, "level")
        hour, day = timedelta(hours=1), timedelta(hours=24)

        errors = by_level.get("error", 0)
        critical = by_level.get("critical", 0)
        outages = sum(1 for s in services if s.status == "outage")
        degraded = sum(1 for s in services if s.status == "degraded")

        return SystemOverview(
            total_logs=len(logs),
            recent_logs=sum(1 for log in logs if within_window(log.get("created_at"), now, hour)),
            daily_logs=sum(1 for log in logs if within_window(log.get("created_at"), now, day)),
            error_count=errors,
            critical_count=critical,
            warning_count=by_level.get("warning", 0),
            recent_error_count=sum(
                1
                for log in logs
                if log.get("level") in ("error", "critical")
                and within_window(log.get("created_at"), now, hour)
            ),
            logs_by_level=by_level,
            services=services,
            operational_services=sum(1 for s in services if s.status == "operational"),
            degraded_services=degraded,
            outage_services=outages,
            system_health=overall_health(critical, outages, errors, degraded),
        )

    @property
    def logs(self) -> list[Record]:
        return self._reconciler.get("logs")

    @property
    def metrics(self) -> list[Record]:
        return self._reconciler.get("metrics")

    def recent_alerts(self, now: datetime | None = None) -> list[Record]:
        """Error and critical logs from the last hour, newest first."""
        now = now or utcnow()
        return [
            log
            for log in self.logs
            if log.get("level") in ("error", "critical")
            and within_window(log.get("created_at"), now, timedelta(hours=1))
        ]

    def logs_by_category(self, category: str) -> list[Record]:
        return [log for log in self.logs if log.get("category") == category]

    def metrics_by_service(self, service: str) -> list[Record]:
        return [metric for metric in self.metrics if metric.get("service_name") == service]

    # -- mutations ------------------------------------------------------

    async def create_log(self, data: Mapping[str, Any]) -> Record:
        def prepare() -> dict[str, Any]:
            require_fields(data, "level", "message", "category")
            level = clean_text(data.get("level")).lower()
            if level not in LOG_LEVELS:
                raise ValidationError(f"Unknown log level {level!r}")
            user = self.authorizer.user
            return {
                "level": level,
                "message": clean_text(data.get("message")),
                "category": clean_text(data.get("category")),
                "metadata": dict(data.get("metadata") or {}),
                "service_name": clean_text(data.get("service_name")) or "webapp",
                "environment": self.settings.environment_name,
                "user_id": user.id if user else None,
            }

        return await self.execute(
            Mutation(
                action="create_log",
                permission=Permission.AUTHENTICATED,
                prepare=prepare,
                perform=lambda record: self.backend.insert("system_logs", record),
                success_message="Log entry recorded",
                failure_message="Failed to create log entry",
            )
        )

    async def create_metric(self, data: Mapping[str, Any]) -> Record:
        def prepare() -> dict[str, Any]:
            require_fields(data, "service_name", "metric_name")
            status = clean_text(data.get("status")) or "operational"
            if status not in SERVICE_STATUSES:
                raise ValidationError(f"Unknown service status {status!r}")
            return {
                "service_name": clean_text(data.get("service_name")),
                "metric_name": clean_text(data.get("metric_name")),
                "metric_value": optional_float(data.get("metric_value"), "metric_value"),
                "metric_unit": clean_text(data.get("metric_unit")),
                "status": status,
                "metadata": dict(data.get("metadata") or {}),
            }

        return await self.execute(
            Mutation(
                action="create_metric",
                permission=Permission.ADMIN,
                prepare=prepare,
                perform=lambda record: self.backend.insert("system_health_metrics", record),
                success_message="Health metric recorded",
                failure_message="Failed to create health metric",
            )
        )

    async def clear_old_logs(self, days_to_keep: int = 30) -> int:
        """Delete logs older than ``days_to_keep`` days in one backend call.

        Returns how many rows the backend removed.
        """

        def prepare() -> dict[str, Any]:
            days = optional_int(days_to_keep, "days_to_keep")
            if days is None or days < 0:
                raise ValidationError("days_to_keep cannot be negative")
            return {"p_days_to_keep": days}

        result = await self.execute(
            Mutation(
                action="clear_old_logs",
                permission=Permission.ADMIN,
                prepare=prepare,
                perform=lambda payload: self.backend.call("clear_old_logs", payload),
                success_message=f"Cleared logs older than {days_to_keep} days",
                failure_message="Failed to clear old logs",
            )
        )
        removed = int(result.get("deleted_count") or 0)
        logger.info("old_logs_cleared", removed=removed, days_to_keep=days_to_keep)
        return removed
