"""
Database initialization and bootstrap data.
"""

import asyncio

from sqlalchemy import select

from portal_common.db import close_engine, get_engine, get_session
from portal_common.logging import get_logger
from portal_common.models.base import Base
from portal_common.models.member import MemberCredential, Profile, UserRole
from portal_common.security import hash_password

logger = get_logger(__name__)


async def create_all_tables() -> None:
    """Create all tables from SQLAlchemy models."""
    engine = get_engine()

    logger.info("creating_database_tables")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("database_tables_created", tables=sorted(Base.metadata.tables))


async def seed_admin(
    email: str, full_name: str, role: str = "super_admin", password: str | None = None
) -> str:
    """
    Ensure an admin profile and role assignment exist.

    When ``password`` is given the admin can also sign in through the API.

    Returns:
        The admin's user id.
    """
    email = email.strip().lower()
    async with get_session() as session:
        result = await session.execute(select(Profile).where(Profile.email == email))
        profile = result.scalar_one_or_none()
        if profile is None:
            profile = Profile(email=email, full_name=full_name.strip())
            session.add(profile)
            await session.flush()
        if profile.user_id is None:
            profile.user_id = profile.id

        existing = await session.execute(
            select(UserRole).where(UserRole.user_id == profile.user_id, UserRole.role == role)
        )
        if existing.scalar_one_or_none() is None:
            session.add(UserRole(user_id=profile.user_id, role=role))
        if password is not None:
            await _store_password(session, profile.user_id, password)

        logger.info("admin_seeded", email=email, role=role)
        return profile.user_id


async def _store_password(session, user_id: str, password: str) -> None:
    password_hash = hash_password(password)
    result = await session.execute(select(MemberCredential).where(MemberCredential.user_id == user_id))
    credential = result.scalar_one_or_none()
    if credential is None:
        session.add(MemberCredential(user_id=user_id, password_hash=password_hash))
    else:
        credential.password_hash = password_hash


async def set_password(email: str, password: str) -> bool:
    """
    Set the sign-in password of an existing member.

    Returns:
        False when no member has ``email``.

    Raises:
        ValueError: If the password is too short or too long.
    """
    email = email.strip().lower()
    async with get_session() as session:
        result = await session.execute(select(Profile).where(Profile.email == email))
        profile = result.scalar_one_or_none()
        if profile is None:
            logger.warning("password_member_not_found", email=email)
            return False
        if profile.user_id is None:
            profile.user_id = profile.id
        await _store_password(session, profile.user_id, password)

    logger.info("member_password_set", email=email)
    return True


async def init_database(
    admin_email: str | None = None,
    admin_name: str = "Portal Admin",
    admin_password: str | None = None,
) -> None:
    """Initialize database with tables and an optional bootstrap admin."""
    await create_all_tables()
    if admin_email:
        await seed_admin(admin_email, admin_name, password=admin_password)
    logger.info("database_initialization_complete")


if __name__ == "__main__":
    from portal_common.logging import setup_logging

    setup_logging()

    async def _main() -> None:
        try:
            await init_database()
        finally:
            await close_engine()

    asyncio.run(_main())
