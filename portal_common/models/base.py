"""
Base SQLAlchemy setup for async operations.
"""

import enum
import uuid
from datetime import date, datetime
from typing import Any

from sqlalchemy import CHAR, Enum, MetaData
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from portal_common.utils import utcnow


# Naming convention for constraints
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=convention)


class GUID(TypeDecorator):
    """Fixed-length GUID stored as CHAR(36).

    Records travel through the sync layer as plain dicts, so values are
    returned as strings rather than ``uuid.UUID`` objects.
    """

    impl = CHAR(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        return dialect.type_descriptor(CHAR(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if not isinstance(value, uuid.UUID):
            value = uuid.UUID(str(value))
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        return str(value)


def new_id() -> str:
    return str(uuid.uuid4())


def status_enum(enum_cls: type[enum.Enum]) -> Enum:
    """Non-native enum column that stores member values ("active"), not names."""
    return Enum(
        enum_cls,
        native_enum=False,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
        length=32,
    )


class Base(AsyncAttrs, DeclarativeBase):
    """
    Base class for all models.
    Includes common columns: id, created_at, updated_at.
    """

    metadata = metadata

    # Every table gets a UUID primary key
    id: Mapped[str] = mapped_column(
        GUID(),
        primary_key=True,
        default=new_id,
        index=True,
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        """String representation showing class and id."""
        return f"<{self.__class__.__name__}(id={self.id})>"

    def to_dict(self) -> dict[str, Any]:
        """Convert model to a plain record, enum members flattened to values."""
        record: dict[str, Any] = {}
        for column in self.__table__.columns:
            value = getattr(self, column.key)
            if isinstance(value, enum.Enum):
                value = value.value
            elif isinstance(value, (datetime, date)):
                value = value.isoformat()
            record[column.name] = value
        return record
