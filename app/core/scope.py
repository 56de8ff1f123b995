import logging
from typing import Iterable, Optional, Set

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import CircleMember

logger = logging.getLogger(__name__)


class CircleScopeResolver:
    """Resolves which circles a user may currently see items in."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def active_circles_of(self, user_id: str) -> Set[str]:
        """Circle ids with an active (not left) membership. Empty on any error."""
        try:
            result = await self.db.execute(
                select(CircleMember.circle_id).where(
                    CircleMember.user_id == user_id,
                    CircleMember.left_at.is_(None),
                )
            )
            return set(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Failed to resolve circles for user {user_id}: {e}", exc_info=True)
            return set()

    async def resolve(self, user_id: str, requested: Optional[Iterable[str]] = None) -> Set[str]:
        """
        All active circles, or the subset of ``requested`` the user belongs to.
        Circles the user is not a member of are dropped without error.
        """
        active = await self.active_circles_of(user_id)
        wanted = set(requested or [])
        if not wanted:
            return active

        dropped = wanted - active
        if dropped:
            logger.info(f"Dropping {len(dropped)} non-member circle(s) from scope for user {user_id}")
        return active & wanted
