"""System monitoring models - application logs and service health samples."""

import enum

from sqlalchemy import Float, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from portal_common.models.base import Base, GUID, status_enum


class LogLevel(str, enum.Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ServiceStatus(str, enum.Enum):
    OPERATIONAL = "operational"
    DEGRADED = "degraded"
    OUTAGE = "outage"


class SystemLog(Base):
    """Application log entry written by the portal or its services."""

    __tablename__ = "system_logs"

    level: Mapped[LogLevel] = mapped_column(status_enum(LogLevel), nullable=False, index=True)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    user_id: Mapped[str | None] = mapped_column(GUID(), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    metadata_: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)
    service_name: Mapped[str] = mapped_column(String(100), nullable=False, default="webapp", index=True)
    environment: Mapped[str] = mapped_column(String(50), nullable=False, default="production")

    def __repr__(self) -> str:
        return f"<SystemLog(level={self.level}, service={self.service_name!r})>"


class SystemHealthMetric(Base):
    """Point-in-time health sample for one service metric."""

    __tablename__ = "system_health_metrics"

    service_name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    metric_name: Mapped[str] = mapped_column(String(100), nullable=False)
    metric_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    metric_unit: Mapped[str | None] = mapped_column(String(20), nullable=True)
    status: Mapped[ServiceStatus] = mapped_column(
        status_enum(ServiceStatus), nullable=False, default=ServiceStatus.OPERATIONAL
    )
    metadata_: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)
