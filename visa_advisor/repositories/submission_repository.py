"""Repository for submission rows."""

from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from visa_advisor.database.models import Submission
from visa_advisor.repositories.base_repository import BaseRepository


class SubmissionRepository(BaseRepository[Submission]):
    """Owner-scoped access to submissions."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, Submission)

    async def get_for_user(self, submission_id: UUID, user_id: str) -> Optional[Submission]:
        """Get a submission owned by ``user_id``, or None."""
        try:
            query = select(Submission).where(
                Submission.id == submission_id,
                Submission.user_id == user_id,
            )
            result = await self.session.execute(query)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            self.logger.error(
                f"Error retrieving submission {submission_id}: {str(e)}",
                exc_info=True,
            )
            raise

    async def lock_for_update(self, submission_id: UUID, user_id: str) -> Optional[Submission]:
        """Load an owned submission with ``SELECT ... FOR UPDATE``.

        The lock is held until the surrounding transaction ends, which
        serializes concurrent stage runs on the same submission.
        """
        try:
            query = (
                select(Submission)
                .where(Submission.id == submission_id, Submission.user_id == user_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            result = await self.session.execute(query)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            self.logger.error(
                f"Error locking submission {submission_id}: {str(e)}",
                exc_info=True,
            )
            raise

    async def list_for_user(self, user_id: str, limit: int = 50, offset: int = 0) -> List[Submission]:
        """Newest-first submissions of a user."""
        try:
            query = (
                select(Submission)
                .where(Submission.user_id == user_id)
                .order_by(Submission.created_at.desc())
                .offset(offset)
                .limit(limit)
            )
            result = await self.session.execute(query)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            self.logger.error(
                f"Error listing submissions for user {user_id}: {str(e)}",
                exc_info=True,
            )
            raise
