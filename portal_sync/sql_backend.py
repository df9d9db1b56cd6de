"""
Self-hosted backend: serves the backend contract from the portal database.

Tables are resolved by name from the shared declarative metadata so the
stores can stay agnostic of ORM classes; procedures are plain async
functions executed inside a single transaction.
"""

from __future__ import annotations

import enum
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import Any, AsyncGenerator, Mapping

from sqlalchemy import Date, DateTime, MetaData, Table, delete, func, insert, or_, select, update
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError, StatementError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from portal_common.config import DEFAULT_ADMIN_ROLES
from portal_common.logging import get_logger
from portal_common.models.base import Base, new_id
from portal_common.security import verify_password
from portal_common.utils import parse_date, parse_timestamp, utcnow
from portal_sync.backend import CurrentUser, Query, QueryResult, Record
from portal_sync.errors import BackendError

logger = get_logger(__name__)

# Readable only through authenticate(), never through query/insert/update.
PRIVATE_TABLES = frozenset({"member_credentials"})


def plain_value(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def to_record(row: Mapping[str, Any]) -> Record:
    """Flatten a result row into the plain dict shape the hosted backend returns."""
    return {key: plain_value(value) for key, value in row.items()}


def column_of(table: Table, name: str):
    try:
        return table.c[name]
    except KeyError:
        raise BackendError(
            f'column "{name}" of relation "{table.name}" does not exist', code="42703"
        ) from None


def coerce_value(column, value: Any) -> Any:
    """Convert JSON-ish input into what the column type binds."""
    if value is None or not isinstance(value, str):
        if isinstance(value, datetime) and value.tzinfo is not None:
            return value.astimezone(timezone.utc)
        return value
    if isinstance(column.type, DateTime):
        parsed = parse_timestamp(value)
        if parsed is None:
            raise BackendError(f'invalid input syntax for type timestamp: "{value}"', code="22007")
        return parsed.astimezone(timezone.utc)
    if isinstance(column.type, Date):
        parsed_date = parse_date(value)
        if parsed_date is None:
            raise BackendError(f'invalid input syntax for type date: "{value}"', code="22007")
        return parsed_date
    return value


def like_pattern(term: str) -> str:
    """Substring pattern for ``term`` with LIKE wildcards matched literally."""
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def coerce_values(table: Table, values: Mapping[str, Any]) -> dict[str, Any]:
    return {key: coerce_value(column_of(table, key), value) for key, value in values.items()}


def translate_error(exc: Exception) -> BackendError:
    """Map driver/SQLAlchemy failures onto backend error codes."""
    if isinstance(exc, BackendError):
        return exc
    if isinstance(exc, IntegrityError):
        text = str(exc.orig).lower()
        if "unique" in text or "duplicate" in text:
            return BackendError("duplicate key value violates unique constraint", code="23505")
        if "foreign key" in text:
            return BackendError("insert or update violates foreign key constraint", code="23503")
        if "not null" in text or "cannot be null" in text:
            return BackendError("null value violates not-null constraint", code="23502")
        return BackendError(f"integrity violation: {exc.orig}", code="23000")
    if isinstance(exc, StatementError) and isinstance(exc.orig, LookupError):
        return BackendError(f"invalid input value: {exc.orig}", code="22P02")
    if isinstance(exc, OperationalError) and "no such table" in str(exc.orig).lower():
        return BackendError(f"relation does not exist: {exc.orig}", code="42P01")
    return BackendError(str(exc))


class SqlBackend:
    """Backend contract over an async SQLAlchemy session factory."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        user: CurrentUser | None = None,
        admin_roles: tuple[str, ...] = DEFAULT_ADMIN_ROLES,
        procedures=None,
        metadata: MetaData | None = None,
    ) -> None:
        if procedures is None:
            from portal_sync.procedures import default_procedures

            procedures = default_procedures
        self._session_factory = session_factory
        self._user = user
        self.admin_roles = tuple(admin_roles)
        self.procedures = procedures
        self.metadata = metadata or Base.metadata

    @classmethod
    def for_engine(cls, engine: AsyncEngine, **kwargs: Any) -> "SqlBackend":
        factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        return cls(factory, **kwargs)

    def table(self, name: str) -> Table:
        if name in PRIVATE_TABLES:
            raise BackendError(f"permission denied for table {name}", code="42501")
        table = self.metadata.tables.get(name)
        if table is None:
            raise BackendError(f'relation "public.{name}" does not exist', code="42P01", status=404)
        return table

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession, None]:
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def query(self, collection: str, query: Query | None = None) -> QueryResult:
        table = self.table(collection)
        query = query or Query()
        conditions = self._conditions(table, query)

        stmt = select(table).where(*conditions)
        if query.order_by:
            column = column_of(table, query.order_by)
            stmt = stmt.order_by(column.desc() if query.descending else column.asc())
        if query.offset:
            stmt = stmt.offset(query.offset)
        if query.limit is not None:
            stmt = stmt.limit(query.limit)

        try:
            async with self._session() as session:
                rows = (await session.execute(stmt)).mappings().all()
                records = [to_record(row) for row in rows]
                total = len(records)
                if query.count:
                    count_stmt = select(func.count()).select_from(table).where(*conditions)
                    total = (await session.execute(count_stmt)).scalar_one()
        except SQLAlchemyError as exc:
            raise translate_error(exc) from exc
        return QueryResult(records, total)

    def _conditions(self, table: Table, query: Query) -> list:
        conditions = []
        for name, value in query.eq.items():
            column = column_of(table, name)
            conditions.append(column.is_(None) if value is None else column == coerce_value(column, value))
        for name, values in query.in_.items():
            column = column_of(table, name)
            conditions.append(column.in_([coerce_value(column, v) for v in values]))
        for name, bound in query.gte.items():
            column = column_of(table, name)
            conditions.append(column >= coerce_value(column, bound))
        for name, bound in query.lte.items():
            column = column_of(table, name)
            conditions.append(column <= coerce_value(column, bound))
        for name, bound in query.lt.items():
            column = column_of(table, name)
            conditions.append(column < coerce_value(column, bound))
        if query.search and query.search_fields:
            pattern = like_pattern(query.search.strip())
            conditions.append(
                or_(
                    *(
                        column_of(table, name).ilike(pattern, escape="\\")
                        for name in query.search_fields
                    )
                )
            )
        return conditions

    async def call(self, procedure: str, args: Mapping[str, Any] | None = None) -> Any:
        handler = self.procedures.get(procedure)
        if handler is None:
            raise BackendError(
                f"Could not find the function public.{procedure} in the schema cache",
                code="PGRST202",
                status=404,
            )

        from portal_sync.procedures import ProcedureContext

        try:
            async with self._session() as session:
                ctx = ProcedureContext(session, self._user, self.admin_roles, self.metadata)
                return await handler(ctx, dict(args or {}))
        except SQLAlchemyError as exc:
            raise translate_error(exc) from exc

    async def insert(self, collection: str, record: Mapping[str, Any]) -> Record:
        table = self.table(collection)
        values = coerce_values(table, record)
        values.setdefault("id", new_id())
        try:
            async with self._session() as session:
                await session.execute(insert(table).values(**values))
                row = (
                    await session.execute(select(table).where(table.c.id == values["id"]))
                ).mappings().one()
                return to_record(row)
        except SQLAlchemyError as exc:
            raise translate_error(exc) from exc

    async def update(self, collection: str, record_id: str, patch: Mapping[str, Any]) -> Record:
        table = self.table(collection)
        values = coerce_values(table, {k: v for k, v in patch.items() if k != "id"})
        if "updated_at" in table.c:
            values["updated_at"] = utcnow()
        try:
            async with self._session() as session:
                result = await session.execute(
                    update(table).where(table.c.id == record_id).values(**values)
                )
                if result.rowcount == 0:
                    raise BackendError(f"No {collection} record matched", code="PGRST116", status=404)
                row = (
                    await session.execute(select(table).where(table.c.id == record_id))
                ).mappings().one()
                return to_record(row)
        except SQLAlchemyError as exc:
            raise translate_error(exc) from exc

    async def delete(self, collection: str, record_id: str) -> None:
        table = self.table(collection)
        try:
            async with self._session() as session:
                await session.execute(delete(table).where(table.c.id == record_id))
        except SQLAlchemyError as exc:
            raise translate_error(exc) from exc

    async def current_user(self) -> CurrentUser | None:
        return self._user

    def act_as(self, user: CurrentUser | None) -> None:
        self._user = user

    async def resolve_user(self, email: str) -> CurrentUser | None:
        """Look up a member by email and act as them for subsequent calls."""
        profiles = self.table("profiles")
        roles = self.table("user_roles")
        email = email.strip().lower()
        try:
            async with self._session() as session:
                profile = (
                    await session.execute(select(profiles).where(profiles.c.email == email))
                ).mappings().first()
                if profile is None:
                    logger.warning("acting_user_not_found", email=email)
                    return None
                user_id = profile["user_id"] or profile["id"]
                role_rows = (
                    await session.execute(
                        select(roles.c.role).where(roles.c.user_id == user_id).order_by(roles.c.created_at)
                    )
                ).scalars().all()
        except SQLAlchemyError as exc:
            raise translate_error(exc) from exc

        user = CurrentUser(id=user_id, email=email, roles=tuple(role_rows))
        self._user = user
        return user

    async def authenticate(self, email: str, password: str) -> CurrentUser | None:
        """Act as the member with ``email`` only when ``password`` matches their stored hash."""
        profiles = self.table("profiles")
        credentials = self.metadata.tables["member_credentials"]
        email = email.strip().lower()
        stmt = (
            select(credentials.c.password_hash)
            .select_from(profiles.join(credentials, credentials.c.user_id == profiles.c.user_id))
            .where(profiles.c.email == email)
        )
        try:
            async with self._session() as session:
                stored = (await session.execute(stmt)).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise translate_error(exc) from exc

        if not verify_password(password, stored):
            logger.warning("sign_in_rejected", email=email)
            return None
        return await self.resolve_user(email)

    async def aclose(self) -> None:
        return None
