from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from surveykit.models import User


async def get_user(db: AsyncSession, user_id: str) -> Optional[User]:
    if user_id is None:
        return None
    return await db.get(User, user_id)


async def create_user(
    db: AsyncSession,
    *,
    email: str,
    name: str,
    hashed_password: str,
    is_verified: bool = False,
) -> User:
    """Insert a user row. Hashing the password is the caller's job."""
    db_user = User(
        email=email,
        name=name,
        hashed_password=hashed_password,
        is_verified=is_verified,
    )
    db.add(db_user)
    await db.flush()
    return db_user
