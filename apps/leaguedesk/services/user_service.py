"""
User service: local records of identity-provider users and their global role.
"""

import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leaguedesk.database.models import User, UserRole

logger = logging.getLogger(__name__)


def _user_to_dict(user: User) -> Dict:
    """
    Convert a User ORM instance to a dictionary.

    Args:
        user: User ORM instance

    Returns:
        User dictionary
    """
    return {
        "id": user.id,
        "email": user.email,
        "display_name": user.display_name,
        "role": user.role,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


async def get_user_by_id(session: AsyncSession, user_id: str) -> Optional[Dict]:
    """
    Get user by ID.

    Args:
        session: Database session
        user_id: Identity-provider user id

    Returns:
        User dictionary or None if not found
    """
    result = await session.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    return _user_to_dict(user) if user else None


async def ensure_user(
    session: AsyncSession,
    user_id: str,
    email: Optional[str] = None,
    display_name: Optional[str] = None,
) -> Dict:
    """
    Return the user, creating a local record the first time an id is seen.

    Args:
        session: Database session
        user_id: Identity-provider user id
        email: Email claim, if any
        display_name: Name claim, if any

    Returns:
        User dictionary
    """
    result = await session.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        user = User(id=user_id, email=email, display_name=display_name, role=UserRole.READER.value)
        session.add(user)
        await session.flush()
        await session.refresh(user)
        logger.info(f"Provisioned user {user_id}")
    return _user_to_dict(user)


async def set_global_admins(session: AsyncSession, user_ids: Iterable[str]) -> List[str]:
    """
    Grant the global admin role to the given user ids, creating the users if
    needed.

    Returns:
        Ids that were promoted by this call
    """
    promoted = []
    for user_id in {u.strip() for u in user_ids if u and u.strip()}:
        result = await session.execute(select(User).where(User.id == user_id))
        user = result.scalar_one_or_none()
        if user is None:
            session.add(User(id=user_id, role=UserRole.ADMIN.value))
            promoted.append(user_id)
        elif user.role != UserRole.ADMIN.value:
            user.role = UserRole.ADMIN.value
            promoted.append(user_id)
    await session.flush()
    return sorted(promoted)
