"""User repository: database operations for users."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reacher_api.models.user import DEFAULT_CREDITS, User


async def get_user_by_auth0_id(session: AsyncSession, auth0_id: str) -> User | None:
    """Get a user by their identity-provider subject."""
    statement = select(User).where(User.auth0_id == auth0_id)
    result = (await session.execute(statement)).scalars()
    return result.first()


async def create_user(
    session: AsyncSession,
    *,
    auth0_id: str,
    credits: int = DEFAULT_CREDITS,
) -> User:
    """Create a new user with no verifications."""
    user = User(auth0_id=auth0_id, credits=credits, verifications=[])
    session.add(user)
    await session.flush()
    await session.refresh(user)
    return user


async def list_users(session: AsyncSession) -> list[User]:
    """All users, oldest first."""
    statement = select(User).order_by(User.created_at)
    result = await session.execute(statement)
    return list(result.scalars().all())
